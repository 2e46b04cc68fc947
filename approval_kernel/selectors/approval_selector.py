"""
ApprovalSelector -- read-only queries over approval chains.

Backs the orchestrator's read operations (get_chain, chain_for_entity,
pending_for_role) and the escalation sweep's search for due steps.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from approval_engines.approval import is_qualified
from approval_kernel.domain.approval import ApprovalChainInstance, ChainStatus, EntityRef
from approval_kernel.domain.roles import Role
from approval_kernel.models.approval import ApprovalChainModel, ApprovalStepModel

_IN_PROGRESS = ChainStatus.IN_PROGRESS.value


class ApprovalSelector:
    """Queries for approval chains and their current steps.

    Read-only: never adds, flushes or commits.  Returns DTOs, not ORM rows.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_chain(self, chain_id: UUID) -> ApprovalChainInstance | None:
        model = self.session.execute(
            select(ApprovalChainModel).where(ApprovalChainModel.chain_id == chain_id)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def active_chain_for_entity(self, entity_ref: EntityRef) -> ApprovalChainInstance | None:
        """The in-progress chain bound to ``entity_ref``, if any."""
        model = self.session.execute(
            select(ApprovalChainModel).where(
                ApprovalChainModel.entity_type == entity_ref.entity_type,
                ApprovalChainModel.entity_id == entity_ref.entity_id,
                ApprovalChainModel.status == _IN_PROGRESS,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def latest_chain_for_entity(self, entity_ref: EntityRef) -> ApprovalChainInstance | None:
        """The active chain for ``entity_ref``, else its most recently created one."""
        active = self.active_chain_for_entity(entity_ref)
        if active is not None:
            return active
        model = self.session.execute(
            select(ApprovalChainModel)
            .where(
                ApprovalChainModel.entity_type == entity_ref.entity_type,
                ApprovalChainModel.entity_id == entity_ref.entity_id,
            )
            .order_by(ApprovalChainModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def pending_for_role(self, tenant_id: str, role: Role | str) -> list[ApprovalChainInstance]:
        """In-progress chains whose current step ``role`` may decide.

        Includes steps where ``role`` is only a fallback.  Ordered oldest first.
        """
        parsed = Role.parse(role)
        if parsed is None:
            return []
        models = self.session.execute(
            select(ApprovalChainModel)
            .join(
                ApprovalStepModel,
                and_(
                    ApprovalStepModel.chain_id == ApprovalChainModel.chain_id,
                    ApprovalStepModel.position == ApprovalChainModel.current_position,
                ),
            )
            .where(
                ApprovalChainModel.tenant_id == tenant_id,
                ApprovalChainModel.status == _IN_PROGRESS,
            )
            .order_by(ApprovalChainModel.created_at, ApprovalChainModel.chain_id)
        ).scalars().unique().all()

        result: list[ApprovalChainInstance] = []
        for model in models:
            chain = model.to_dto()
            if is_qualified(parsed, chain.step_at(chain.current_position)):
                result.append(chain)
        return result

    def due_for_escalation(
        self, now: datetime, limit: int | None = None,
    ) -> list[tuple[UUID, int]]:
        """(chain_id, current_position) of in-progress chains whose deadline passed."""
        stmt = (
            select(ApprovalChainModel.chain_id, ApprovalChainModel.current_position)
            .where(
                ApprovalChainModel.status == _IN_PROGRESS,
                ApprovalChainModel.auto_approve_after_days > 0,
                ApprovalChainModel.current_step_due_at.is_not(None),
                ApprovalChainModel.current_step_due_at <= now,
            )
            .order_by(ApprovalChainModel.current_step_due_at, ApprovalChainModel.chain_id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [(row.chain_id, row.current_position) for row in self.session.execute(stmt)]
