"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (other than the injectable Clock interface)
- I/O

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.approval import (
    ApprovalChainDefinition,
    ApprovalChainInstance,
    ApprovalNotice,
    ApprovalStepInstance,
    ActorNotifier,
    AuditAction,
    ChainStatus,
    ChainStatusChanged,
    DecisionAction,
    DecisionPlan,
    DecisionRecord,
    DefinitionSource,
    EntityRef,
    NotificationEvent,
    NotificationPolicy,
    StatusChangeListener,
    StepStatus,
    StepTemplate,
)
from approval_kernel.domain.calendar import DayCountConvention, WorkCalendar
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.roles import SYSTEM_ACTOR_ID, SYSTEM_ACTOR_ROLE, Role
