"""
WorkflowOrchestrator -- public entry point of the approval engine.

Responsibility:
    Starts approval chains for approvable entities, routes human decisions
    and cancellations through the decision applier, answers read queries,
    and publishes status events and notifications after each commit.

Architecture position:
    Kernel > Services.  Owns the unit of work: every mutating call opens
    its own session, holds the chain lock, commits (or rolls back), and
    only then publishes outbound events.

Invariants enforced:
    - A chain's definition is resolved and snapshotted exactly once, at
      ``start()``; later settings changes never reach in-flight chains.
    - At most one in-progress chain per entity (DuplicateChainError).
    - Decisions on one chain are serialized: the chain lock within the
      process, SELECT ... FOR UPDATE and the optimistic ``version`` column
      across processes.  Losers see StaleStepError.
    - Nothing is published for a rolled-back operation.

Failure modes:
    - ConfigurationError from ``start()`` when the definition is missing or
      malformed; no chain is created.
    - Every error of DecisionApplier, re-raised after rollback.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_engines.approval import current_step as find_current_step
from approval_engines.approval import definition_errors
from approval_engines.escalation import compute_deadline
from approval_kernel.domain.approval import (
    ApprovalChainDefinition,
    ApprovalChainInstance,
    ApprovalStepInstance,
    ChainStatus,
    DecisionAction,
    DecisionRecord,
    DefinitionSource,
    EntityRef,
    StepStatus,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.roles import Role
from approval_kernel.exceptions import (
    ChainNotFoundError,
    ConfigurationError,
    DuplicateChainError,
    StaleStepError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import ApprovalChainModel, ApprovalStepModel
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.chain_locks import ChainLockRegistry, default_chain_locks
from approval_kernel.services.decision_applier import DecisionApplier
from approval_kernel.services.outbound import ApprovalEventPublisher

logger = get_logger("services.orchestrator")


class WorkflowOrchestrator:
    """Start, decide, cancel and query approval chains."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        definitions: DefinitionSource,
        clock: Clock | None = None,
        publisher: ApprovalEventPublisher | None = None,
        locks: ChainLockRegistry | None = None,
    ):
        self._session_factory = session_factory
        self._definitions = definitions
        self._clock = clock or SystemClock()
        self._publisher = publisher or ApprovalEventPublisher(clock=self._clock)
        self._locks = locks or default_chain_locks

    @property
    def publisher(self) -> ApprovalEventPublisher:
        return self._publisher

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def start(
        self,
        entity_ref: EntityRef,
        workflow_type: str,
        tenant_id: str,
        requested_by: UUID | None = None,
    ) -> UUID:
        """Create the approval chain for ``entity_ref`` and activate step 1."""
        with LogContext.bind(tenant_id=tenant_id, workflow_type=workflow_type):
            definition = self._resolve_definition(workflow_type, tenant_id)

            chain_id = uuid4()
            now = self._clock.now()
            with self._unit_of_work() as session:
                existing = ApprovalSelector(session).active_chain_for_entity(entity_ref)
                if existing is not None:
                    raise DuplicateChainError(str(entity_ref), str(existing.chain_id))

                model = self._build_chain(chain_id, entity_ref, definition, requested_by, now)
                session.add(model)
                try:
                    session.flush()
                except IntegrityError as exc:
                    raise DuplicateChainError(str(entity_ref)) from exc
                chain = model.to_dto()

            logger.info(
                "chain_started",
                extra={
                    "chain_id": str(chain_id),
                    "entity_ref": str(entity_ref),
                    "step_count": len(chain.steps),
                    "multi_level": chain.multi_level,
                    "definition_version": chain.definition_version,
                    "definition_hash": chain.definition_hash,
                    "current_step_due_at": chain.current_step_due_at,
                },
            )
            self._publisher.chain_started(chain)
            return chain_id

    def decide(
        self,
        chain_id: UUID,
        actor_id: UUID,
        actor_role: Role | str,
        action: DecisionAction | str,
        remarks: str | None = None,
        expected_position: int | None = None,
    ) -> ApprovalChainInstance:
        """Apply an approve/reject decision to the chain's current step."""
        with LogContext.bind(chain_id=str(chain_id), actor_id=str(actor_id)):
            with self._locks.hold(chain_id):
                with self._unit_of_work(chain_id) as session:
                    outcome = self._applier(session).decide(
                        chain_id, actor_id, actor_role, action, remarks, expected_position,
                    )
            self._publisher.decision_applied(outcome)
            return outcome.chain

    def cancel(
        self,
        chain_id: UUID,
        actor_id: UUID | None = None,
        actor_role: Role | str | None = None,
    ) -> ApprovalChainInstance:
        """Cancel an in-progress chain (the requester withdrew the entity).

        Cancelling an already-cancelled chain is a no-op.  Approved and
        rejected chains cannot be cancelled (InvalidTransitionError).
        """
        with LogContext.bind(chain_id=str(chain_id), actor_id=actor_id):
            with self._locks.hold(chain_id):
                with self._unit_of_work(chain_id) as session:
                    chain = self._require_chain(session, chain_id)
                    if chain.status == ChainStatus.CANCELLED:
                        logger.info("chain_cancel_noop", extra={"chain_id": str(chain_id)})
                        return chain
                    outcome = self._applier(session).cancel(chain_id, actor_id, actor_role)
            self._publisher.decision_applied(outcome)
            return outcome.chain

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_chain(self, chain_id: UUID) -> ApprovalChainInstance:
        with self._read_session() as session:
            return self._require_chain(session, chain_id)

    def current_step(self, chain_id: UUID) -> ApprovalStepInstance | None:
        """The step awaiting a decision, or None once the chain is terminal."""
        return find_current_step(self.get_chain(chain_id))

    def chain_for_entity(self, entity_ref: EntityRef) -> ApprovalChainInstance | None:
        """The entity's in-progress chain, else its most recent one."""
        with self._read_session() as session:
            return ApprovalSelector(session).latest_chain_for_entity(entity_ref)

    def audit_trail(self, chain_id: UUID) -> tuple[DecisionRecord, ...]:
        with self._read_session() as session:
            self._require_chain(session, chain_id)
            return AuditTrail(session, self._clock).list_for(chain_id)

    def pending_for_role(self, tenant_id: str, role: Role | str) -> list[ApprovalChainInstance]:
        """Chains whose current step ``role`` can decide (primary or fallback)."""
        with self._read_session() as session:
            return ApprovalSelector(session).pending_for_role(tenant_id, role)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _resolve_definition(self, workflow_type: str, tenant_id: str) -> ApprovalChainDefinition:
        try:
            definition = self._definitions.resolve_definition(workflow_type, tenant_id)
        except ConfigurationError:
            logger.warning("chain_definition_unavailable", exc_info=True)
            raise
        errors = definition_errors(definition)
        if errors:
            logger.warning("chain_definition_invalid", extra={"errors": errors})
            raise ConfigurationError(workflow_type, tenant_id, errors)
        return definition

    def _build_chain(
        self,
        chain_id: UUID,
        entity_ref: EntityRef,
        definition: ApprovalChainDefinition,
        requested_by: UUID | None,
        now: datetime,
    ) -> ApprovalChainModel:
        first = definition.steps[0]
        model = ApprovalChainModel(
            chain_id=chain_id,
            tenant_id=definition.tenant_id,
            workflow_type=definition.workflow_type,
            entity_type=entity_ref.entity_type,
            entity_id=entity_ref.entity_id,
            requested_by=requested_by,
            status=ChainStatus.IN_PROGRESS.value,
            current_position=first.position,
            current_step_due_at=compute_deadline(
                now, definition.auto_approve_after_days, definition.calendar,
            ),
            multi_level=definition.multi_level,
            auto_approve_after_days=definition.auto_approve_after_days,
            definition_version=definition.version,
            definition_hash=definition.definition_hash,
            policy_snapshot={
                "calendar": definition.calendar.to_dict(),
                "notifications": definition.notifications.to_dict(),
                "require_remarks_on_reject": definition.require_remarks_on_reject,
            },
            created_at=now,
        )
        model.steps = [
            ApprovalStepModel(
                chain_id=chain_id,
                position=template.position,
                required_role=template.required_role.value,
                fallback_roles=sorted(r.value for r in template.fallback_roles),
                status=StepStatus.PENDING.value,
                activated_at=now if template.position == first.position else None,
            )
            for template in definition.steps
        ]
        return model

    def _applier(self, session: Session) -> DecisionApplier:
        return DecisionApplier(session, AuditTrail(session, self._clock), self._clock)

    def _require_chain(self, session: Session, chain_id: UUID) -> ApprovalChainInstance:
        chain = ApprovalSelector(session).get_chain(chain_id)
        if chain is None:
            raise ChainNotFoundError(str(chain_id))
        return chain

    @contextmanager
    def _unit_of_work(self, chain_id: UUID | None = None) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except StaleDataError as exc:
            session.rollback()
            raise StaleStepError(str(chain_id)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _read_session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

