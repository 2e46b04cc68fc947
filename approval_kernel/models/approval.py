"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval chains, their steps, and the
    append-only decision records.

Architecture position: Kernel > Models.  May import from db/ only (domain
    DTOs are imported lazily inside to_dto/from_dto).

Invariants enforced:
    - Lifecycle: DB check constraints limit chain and step status values;
      the decision applier enforces transition rules; db/immutability.py
      blocks mutation of terminal chains and steps.
    - At most one in-progress chain per entity: partial unique index on
      (entity_type, entity_id) WHERE status = 'in_progress'.
    - Gap-free audit: UNIQUE(chain_id, sequence) on decision records.
    - Optimistic concurrency: approval_chains.version is the mapper's
      version_id_col; a stale UPDATE raises StaleDataError.
    - A step is decided by a human or auto-resolved, never both.

Failure modes:
    - IntegrityError on a second in-progress chain for the same entity.
    - IntegrityError on a duplicate (chain_id, sequence) record.
    - ImmutabilityViolationError on decision record UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base
from approval_kernel.db.types import UTCDateTime, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import (
        ApprovalChainInstance,
        ApprovalStepInstance,
        DecisionRecord,
    )


_ACTIVE_CHAIN = text("status = 'in_progress'")


class ApprovalChainModel(Base):
    """Persistent approval chain bound to one approvable entity.

    Contract:
        Status transitions are lifecycle-constrained.  Terminal statuses
        (approved, rejected, cancelled) cannot be changed once set.

    Guarantees:
        - Definition snapshot columns (definition_version, definition_hash,
          multi_level, auto_approve_after_days, policy_snapshot) are written
          once at start.
        - ``version`` increments on every UPDATE.
    """

    __tablename__ = "approval_chains"

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'approved', 'rejected', 'cancelled')",
            name="ck_approval_chains_valid_status",
        ),
        CheckConstraint(
            "auto_approve_after_days >= 0",
            name="ck_approval_chains_auto_approve_days",
        ),
        Index(
            "ix_approval_chains_active_entity",
            "entity_type", "entity_id",
            unique=True,
            postgresql_where=_ACTIVE_CHAIN,
            sqlite_where=_ACTIVE_CHAIN,
        ),
        # Escalation sweep
        Index(
            "ix_approval_chains_status_due",
            "status", "current_step_due_at",
        ),
        Index(
            "ix_approval_chains_tenant_status",
            "tenant_id", "status",
        ),
    )

    chain_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    workflow_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requested_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="in_progress",
    )
    current_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_step_due_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    multi_level: Mapped[bool] = mapped_column(Boolean, nullable=False)
    auto_approve_after_days: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )
    definition_version: Mapped[int] = mapped_column(Integer, nullable=False)
    definition_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Calendar, notification policy and remarks rule copied from the definition
    policy_snapshot: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        "ApprovalStepModel",
        back_populates="chain",
        primaryjoin="ApprovalChainModel.chain_id == ApprovalStepModel.chain_id",
        order_by="ApprovalStepModel.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalChain {self.chain_id} "
            f"{self.workflow_type} {self.entity_type}:{self.entity_id} "
            f"status={self.status} step={self.current_position}>"
        )

    def step_at(self, position: int) -> ApprovalStepModel:
        for step in self.steps:
            if step.position == position:
                return step
        raise KeyError(position)

    def to_dto(self) -> ApprovalChainInstance:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApprovalChainInstance as ApprovalChainDTO,
            ChainStatus,
            EntityRef,
            NotificationPolicy,
        )
        from approval_kernel.domain.calendar import WorkCalendar

        snapshot = self.policy_snapshot or {}
        return ApprovalChainDTO(
            chain_id=self.chain_id,
            tenant_id=self.tenant_id,
            workflow_type=self.workflow_type,
            entity_ref=EntityRef(self.entity_type, self.entity_id),
            status=ChainStatus(self.status),
            steps=tuple(s.to_dto() for s in self.steps),
            current_position=self.current_position,
            definition_version=self.definition_version,
            definition_hash=self.definition_hash,
            multi_level=self.multi_level,
            auto_approve_after_days=self.auto_approve_after_days,
            created_at=self.created_at,
            requested_by=self.requested_by,
            calendar=WorkCalendar.from_dict(snapshot.get("calendar")),
            notifications=NotificationPolicy.from_dict(snapshot.get("notifications")),
            require_remarks_on_reject=bool(
                snapshot.get("require_remarks_on_reject", False)
            ),
            current_step_due_at=self.current_step_due_at,
            resolved_at=self.resolved_at,
            version=self.version,
        )


class ApprovalStepModel(Base):
    """Persistent step of an approval chain.

    Guarantees:
        - UNIQUE(chain_id, position).
        - decided_at and auto_resolved_at are mutually exclusive.
    """

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint("chain_id", "position", name="uq_approval_steps_position"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'skipped')",
            name="ck_approval_steps_valid_status",
        ),
        CheckConstraint(
            "position >= 1",
            name="ck_approval_steps_position",
        ),
        CheckConstraint(
            "decided_at IS NULL OR auto_resolved_at IS NULL",
            name="ck_approval_steps_single_resolution",
        ),
    )

    chain_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_chains.chain_id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    required_role: Mapped[str] = mapped_column(String(50), nullable=False)
    fallback_roles: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    decided_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_as_fallback: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    auto_resolved_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    chain: Mapped[ApprovalChainModel] = relationship(
        "ApprovalChainModel",
        back_populates="steps",
        primaryjoin="ApprovalStepModel.chain_id == ApprovalChainModel.chain_id",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.chain_id}#{self.position} "
            f"{self.required_role} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStepInstance:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApprovalStepInstance as ApprovalStepDTO,
            StepStatus,
        )
        from approval_kernel.domain.roles import Role

        return ApprovalStepDTO(
            position=self.position,
            required_role=Role(self.required_role),
            fallback_roles=frozenset(Role(r) for r in self.fallback_roles or ()),
            status=StepStatus(self.status),
            activated_at=self.activated_at,
            decided_by=self.decided_by,
            decided_as_fallback=self.decided_as_fallback,
            remarks=self.remarks,
            decided_at=self.decided_at,
            auto_resolved_at=self.auto_resolved_at,
        )


class DecisionRecordModel(Base):
    """Persistent decision record (append-only).

    Contract:
        Immutable after creation -- UPDATE and DELETE are blocked by ORM
        listeners.

    Guarantees:
        - UNIQUE(chain_id, sequence): sequence numbers are never reused.
    """

    __tablename__ = "approval_decision_records"

    __table_args__ = (
        UniqueConstraint(
            "chain_id", "sequence", name="uq_approval_decision_records_sequence",
        ),
        CheckConstraint(
            "action IN ('approved', 'rejected', 'auto_approved', 'cancelled')",
            name="ck_approval_decision_records_valid_action",
        ),
        Index(
            "ix_approval_decision_records_actor",
            "actor_id", "recorded_at",
        ),
    )

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    chain_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_chains.chain_id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    step_position: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    as_fallback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<DecisionRecord {self.chain_id}#{self.sequence} "
            f"step={self.step_position} {self.actor_role} {self.action}>"
        )

    def to_dto(self) -> DecisionRecord:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            AuditAction,
            DecisionRecord as DecisionRecordDTO,
        )

        return DecisionRecordDTO(
            record_id=self.record_id,
            chain_id=self.chain_id,
            sequence=self.sequence,
            step_position=self.step_position,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            action=AuditAction(self.action),
            remarks=self.remarks,
            timestamp=self.recorded_at,
            as_fallback=self.as_fallback,
        )

    @classmethod
    def from_dto(cls, dto: DecisionRecord) -> DecisionRecordModel:
        """Create ORM model from domain DTO."""
        return cls(
            record_id=dto.record_id,
            chain_id=dto.chain_id,
            sequence=dto.sequence,
            step_position=dto.step_position,
            actor_id=dto.actor_id,
            actor_role=dto.actor_role,
            action=dto.action.value,
            remarks=dto.remarks,
            as_fallback=dto.as_fallback,
            recorded_at=dto.timestamp,
        )


# =========================================================================
# Immutability: decision records are append-only
# =========================================================================


@event.listens_for(DecisionRecordModel, "before_update")
def prevent_decision_record_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="DecisionRecord",
        entity_id=str(target.record_id),
        reason="Decision records are immutable -- cannot modify",
    )


@event.listens_for(DecisionRecordModel, "before_delete")
def prevent_decision_record_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="DecisionRecord",
        entity_id=str(target.record_id),
        reason="Decision records are immutable -- cannot delete",
    )
