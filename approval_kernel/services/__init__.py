"""Imperative shell: units of work around the pure approval engines."""

from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.chain_locks import ChainLockRegistry, default_chain_locks
from approval_kernel.services.decision_applier import DecisionApplier, DecisionOutcome
from approval_kernel.services.escalation_timer import EscalationScheduler, EscalationTimer
from approval_kernel.services.outbound import ApprovalEventPublisher
from approval_kernel.services.workflow_orchestrator import WorkflowOrchestrator

__all__ = [
    "ApprovalEventPublisher",
    "AuditTrail",
    "ChainLockRegistry",
    "DecisionApplier",
    "DecisionOutcome",
    "EscalationScheduler",
    "EscalationTimer",
    "WorkflowOrchestrator",
    "default_chain_locks",
]
