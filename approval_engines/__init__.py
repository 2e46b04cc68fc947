"""
Module: approval_engines
Responsibility:
    Pure calculation engines for the approval workflow: role qualification,
    the step/chain state machine, and auto-approval deadline arithmetic.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ (and sibling engine modules).

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Callers (services)
      pass the current time explicitly.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from approval_engines import is_qualified, plan_decision, compute_deadline
"""

from approval_engines.approval import (
    awaiting_label,
    chain_invariant_violations,
    current_step,
    definition_errors,
    is_chain_transition_allowed,
    is_fallback_actor,
    is_qualified,
    is_step_transition_allowed,
    plan_cancellation,
    plan_decision,
    qualified_roles,
)
from approval_engines.escalation import (
    add_business_days,
    add_calendar_days,
    compute_deadline,
    is_due,
)

__all__ = [
    "add_business_days",
    "add_calendar_days",
    "awaiting_label",
    "chain_invariant_violations",
    "compute_deadline",
    "current_step",
    "definition_errors",
    "is_chain_transition_allowed",
    "is_due",
    "is_fallback_actor",
    "is_qualified",
    "is_step_transition_allowed",
    "plan_cancellation",
    "plan_decision",
    "qualified_roles",
]
