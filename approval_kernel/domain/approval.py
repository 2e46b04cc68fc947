"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval workflow engine.  Defines the step and
chain state machines, chain definitions resolved from tenant settings, chain
and step instance snapshots, immutable decision records, and the outbound
event/notification payloads.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.  May
import only from ``domain/roles``, ``domain/calendar`` and ``domain/clock``.

Invariants enforced
-------------------
* Step lifecycle -- ``STEP_TRANSITIONS`` defines the only valid step
  status transitions.  Terminal statuses have no outgoing edges.
* Chain lifecycle -- ``CHAIN_TRANSITIONS``; a terminal chain never
  changes status again.
* Definition snapshot -- a chain copies steps, fallback roles, calendar
  and waiting period from its definition at ``start()``; later settings
  changes never affect an in-flight chain.
* A step's required role is never also one of its fallback roles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from approval_kernel.domain.calendar import WorkCalendar
from approval_kernel.domain.roles import Role


# =========================================================================
# Step / Chain Status Lifecycle
# =========================================================================


class StepStatus(str, Enum):
    """Approval step lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.SKIPPED,
    }),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}

TERMINAL_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.APPROVED,
    StepStatus.REJECTED,
    StepStatus.SKIPPED,
})


class ChainStatus(str, Enum):
    """Approval chain lifecycle states."""

    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


CHAIN_TRANSITIONS: dict[ChainStatus, frozenset[ChainStatus]] = {
    ChainStatus.IN_PROGRESS: frozenset({
        ChainStatus.APPROVED,
        ChainStatus.REJECTED,
        ChainStatus.CANCELLED,
    }),
    ChainStatus.APPROVED: frozenset(),
    ChainStatus.REJECTED: frozenset(),
    ChainStatus.CANCELLED: frozenset(),
}

TERMINAL_CHAIN_STATUSES: frozenset[ChainStatus] = frozenset({
    ChainStatus.APPROVED,
    ChainStatus.REJECTED,
    ChainStatus.CANCELLED,
})


class DecisionAction(str, Enum):
    """Decisions that can be applied to the current step."""

    APPROVE = "approve"
    REJECT = "reject"
    AUTO_APPROVE = "auto_approve"

    @classmethod
    def _missing_(cls, value: object) -> DecisionAction | None:
        # Dashboards submit past-tense statuses ("approved" / "rejected").
        if isinstance(value, str):
            return _ACTION_ALIASES.get(value.strip().lower())
        return None


_ACTION_ALIASES: dict[str, DecisionAction] = {
    "approve": DecisionAction.APPROVE,
    "approved": DecisionAction.APPROVE,
    "reject": DecisionAction.REJECT,
    "rejected": DecisionAction.REJECT,
    "auto_approve": DecisionAction.AUTO_APPROVE,
    "auto_approved": DecisionAction.AUTO_APPROVE,
}


class AuditAction(str, Enum):
    """Action recorded on an immutable decision record."""

    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"
    CANCELLED = "cancelled"


ACTION_STEP_STATUS: dict[DecisionAction, StepStatus] = {
    DecisionAction.APPROVE: StepStatus.APPROVED,
    DecisionAction.REJECT: StepStatus.REJECTED,
    DecisionAction.AUTO_APPROVE: StepStatus.APPROVED,
}

ACTION_AUDIT: dict[DecisionAction, AuditAction] = {
    DecisionAction.APPROVE: AuditAction.APPROVED,
    DecisionAction.REJECT: AuditAction.REJECTED,
    DecisionAction.AUTO_APPROVE: AuditAction.AUTO_APPROVED,
}


# =========================================================================
# Entity reference
# =========================================================================


@dataclass(frozen=True)
class EntityRef:
    """Opaque reference to the approvable entity (leave, expense, asset...)."""

    entity_type: str
    entity_id: UUID

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id}"


# =========================================================================
# Chain definition (resolved from tenant settings)
# =========================================================================


@dataclass(frozen=True)
class StepTemplate:
    """One ordered position of an approver chain definition."""

    position: int
    required_role: Role
    fallback_roles: frozenset[Role] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.position < 1:
            raise ValueError(f"Step position must be >= 1, got {self.position}")
        if self.required_role in self.fallback_roles:
            raise ValueError(
                f"Role '{self.required_role.value}' cannot be both required "
                f"and fallback for step {self.position}"
            )


@dataclass(frozen=True)
class NotificationPolicy:
    """Which roles hear about approval progress for a workflow."""

    notify_approver: bool = True
    notify_requester_on_decision: bool = True
    notify_hr: bool = False
    cc_roles: tuple[Role, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "notify_approver": self.notify_approver,
            "notify_requester_on_decision": self.notify_requester_on_decision,
            "notify_hr": self.notify_hr,
            "cc_roles": [r.value for r in self.cc_roles],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> NotificationPolicy:
        if not data:
            return cls()
        return cls(
            notify_approver=bool(data.get("notify_approver", True)),
            notify_requester_on_decision=bool(
                data.get("notify_requester_on_decision", True)
            ),
            notify_hr=bool(data.get("notify_hr", False)),
            cc_roles=tuple(Role(r) for r in data.get("cc_roles", [])),
        )


@dataclass(frozen=True)
class ApprovalChainDefinition:
    """An ordered approver chain for one (workflow_type, tenant).

    ``steps`` is already normalized: when ``multi_level`` is False it holds
    exactly one step.  ``auto_approve_after_days`` of 0 disables
    auto-approval.
    """

    workflow_type: str
    tenant_id: str
    steps: tuple[StepTemplate, ...]
    multi_level: bool = True
    auto_approve_after_days: int = 0
    version: int = 1
    calendar: WorkCalendar = field(default_factory=WorkCalendar)
    notifications: NotificationPolicy = field(default_factory=NotificationPolicy)
    require_remarks_on_reject: bool = False
    definition_hash: str | None = None

    @property
    def auto_approve_enabled(self) -> bool:
        return self.auto_approve_after_days > 0


class DefinitionSource(Protocol):
    """Resolves the chain definition for a workflow type and tenant.

    Implementations must raise ``ConfigurationError`` when no definition
    exists or the configured one is malformed.
    """

    def resolve_definition(
        self, workflow_type: str, tenant_id: str,
    ) -> ApprovalChainDefinition:
        ...


# =========================================================================
# Chain / step instances
# =========================================================================


@dataclass(frozen=True)
class ApprovalStepInstance:
    """Snapshot of one step of a running or finished chain."""

    position: int
    required_role: Role
    fallback_roles: frozenset[Role]
    status: StepStatus
    activated_at: datetime | None = None
    decided_by: UUID | None = None
    decided_as_fallback: bool = False
    remarks: str | None = None
    decided_at: datetime | None = None
    auto_resolved_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES

    @property
    def was_auto_approved(self) -> bool:
        return self.auto_resolved_at is not None


@dataclass(frozen=True)
class ApprovalChainInstance:
    """Snapshot of an approval chain bound to one entity."""

    chain_id: UUID
    tenant_id: str
    workflow_type: str
    entity_ref: EntityRef
    status: ChainStatus
    steps: tuple[ApprovalStepInstance, ...]
    current_position: int | None
    definition_version: int
    multi_level: bool
    auto_approve_after_days: int
    created_at: datetime
    definition_hash: str | None = None
    requested_by: UUID | None = None
    calendar: WorkCalendar = field(default_factory=WorkCalendar)
    notifications: NotificationPolicy = field(default_factory=NotificationPolicy)
    require_remarks_on_reject: bool = False
    current_step_due_at: datetime | None = None
    resolved_at: datetime | None = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CHAIN_STATUSES

    def step_at(self, position: int) -> ApprovalStepInstance:
        for step in self.steps:
            if step.position == position:
                return step
        raise KeyError(position)


# =========================================================================
# Decision record (immutable audit)
# =========================================================================


@dataclass(frozen=True)
class DecisionRecord:
    """Immutable record of one decision applied to a chain.

    ``sequence`` is gap-free and strictly increasing per chain.
    """

    record_id: UUID
    chain_id: UUID
    sequence: int
    step_position: int
    actor_id: UUID
    actor_role: str
    action: AuditAction
    timestamp: datetime
    remarks: str | None = None
    as_fallback: bool = False


@dataclass(frozen=True)
class DecisionPlan:
    """Pure description of what applying one decision will change.

    Produced by ``approval_engines.approval.plan_decision`` and applied
    atomically by the decision applier.
    """

    step_position: int
    step_status: StepStatus
    chain_status: ChainStatus
    audit_action: AuditAction
    as_fallback: bool = False
    next_position: int | None = None
    skipped_positions: tuple[int, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.chain_status in TERMINAL_CHAIN_STATUSES


# =========================================================================
# Outbound events and notifications
# =========================================================================


@dataclass(frozen=True)
class ChainStatusChanged:
    """Emitted once when a chain reaches a terminal status."""

    chain_id: UUID
    entity_ref: EntityRef
    final_status: ChainStatus
    tenant_id: str
    workflow_type: str
    occurred_at: datetime


class NotificationEvent(str, Enum):
    """Kinds of approval progress an actor can be told about."""

    STEP_ACTIVATED = "step_activated"
    STEP_DECIDED = "step_decided"
    CHAIN_APPROVED = "chain_approved"
    CHAIN_REJECTED = "chain_rejected"
    CHAIN_CANCELLED = "chain_cancelled"


@dataclass(frozen=True)
class ApprovalNotice:
    """Payload handed to an ``ActorNotifier``."""

    kind: NotificationEvent
    chain_id: UUID
    tenant_id: str
    workflow_type: str
    step_position: int | None
    occurred_at: datetime


class StatusChangeListener(Protocol):
    """Owner of the approvable entity; mirrors the final status onto it."""

    def on_status_changed(self, event: ChainStatusChanged) -> None:
        ...


class ActorNotifier(Protocol):
    """Delivers approval notices to every holder of a role."""

    def notify_actor(
        self, role: Role, entity_ref: EntityRef, event: ApprovalNotice,
    ) -> None:
        ...
