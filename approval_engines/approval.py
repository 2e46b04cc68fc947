"""
approval_engines.approval -- Pure role qualification and step state machine.

Responsibility:
    Decide whether an actor's role qualifies for a step (as primary or as
    fallback), locate the current step of a chain, and compute what a
    decision or cancellation will change -- without touching storage.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - A step's qualified set is exactly {required_role} | fallback_roles.
      Unknown roles and the reserved system actor never qualify.
    - At most one step is current: the lowest-positioned pending step of an
      in-progress chain.  Steps after it stay pending; steps before it are
      approved.
    - Approving the last step approves the chain; rejecting any step
      rejects the chain and skips every later step.
    - Every planned status change is checked against STEP_TRANSITIONS and
      CHAIN_TRANSITIONS.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - ValueError from ``plan_decision``/``plan_cancellation`` when the chain
      has no current step or a transition is not in the table.  The decision
      applier checks these preconditions first and raises typed errors.
"""

from __future__ import annotations

from approval_kernel.domain.approval import (
    ACTION_AUDIT,
    ACTION_STEP_STATUS,
    CHAIN_TRANSITIONS,
    STEP_TRANSITIONS,
    ApprovalChainDefinition,
    ApprovalChainInstance,
    ApprovalStepInstance,
    AuditAction,
    ChainStatus,
    DecisionAction,
    DecisionPlan,
    StepStatus,
    StepTemplate,
)
from approval_kernel.domain.roles import Role
from approval_engines.tracer import traced_engine

# =========================================================================
# Role registry
# =========================================================================


def qualified_roles(step: StepTemplate | ApprovalStepInstance) -> frozenset[Role]:
    """All roles allowed to decide ``step``."""
    return frozenset({step.required_role}) | step.fallback_roles


def is_qualified(
    actor_role: Role | str | None,
    step: StepTemplate | ApprovalStepInstance,
) -> bool:
    """True if ``actor_role`` may decide ``step`` as primary or fallback."""
    role = Role.parse(actor_role)
    if role is None:
        return False
    return role in qualified_roles(step)


def is_fallback_actor(
    actor_role: Role | str | None,
    step: StepTemplate | ApprovalStepInstance,
) -> bool:
    """True if ``actor_role`` qualifies for ``step`` only through a fallback role."""
    role = Role.parse(actor_role)
    if role is None or role == step.required_role:
        return False
    return role in step.fallback_roles


def awaiting_label(step: StepTemplate | ApprovalStepInstance) -> str:
    """Display text for the approver a step is waiting on."""
    if not step.fallback_roles:
        return step.required_role.label
    fallbacks = ", ".join(
        r.label for r in sorted(step.fallback_roles, key=lambda r: r.value)
    )
    return f"{step.required_role.label} (fallback: {fallbacks})"


# =========================================================================
# State machine
# =========================================================================


def is_step_transition_allowed(from_status: StepStatus, to_status: StepStatus) -> bool:
    return to_status in STEP_TRANSITIONS.get(from_status, frozenset())


def is_chain_transition_allowed(from_status: ChainStatus, to_status: ChainStatus) -> bool:
    return to_status in CHAIN_TRANSITIONS.get(from_status, frozenset())


def current_step(chain: ApprovalChainInstance) -> ApprovalStepInstance | None:
    """The single step awaiting a decision, or None if the chain is terminal."""
    if chain.status != ChainStatus.IN_PROGRESS:
        return None
    for step in sorted(chain.steps, key=lambda s: s.position):
        if step.status == StepStatus.PENDING:
            return step
    return None


def _later_pending_positions(chain: ApprovalChainInstance, position: int) -> tuple[int, ...]:
    return tuple(
        s.position
        for s in sorted(chain.steps, key=lambda s: s.position)
        if s.position > position and s.status == StepStatus.PENDING
    )


def _require_current(chain: ApprovalChainInstance) -> ApprovalStepInstance:
    step = current_step(chain)
    if step is None:
        raise ValueError(
            f"Chain {chain.chain_id} has no current step (status: {chain.status.value})"
        )
    return step


def _check_transitions(
    step: ApprovalStepInstance,
    step_status: StepStatus,
    chain: ApprovalChainInstance,
    chain_status: ChainStatus,
) -> None:
    if not is_step_transition_allowed(step.status, step_status):
        raise ValueError(
            f"Step transition {step.status.value} -> {step_status.value} not allowed"
        )
    if chain_status != chain.status and not is_chain_transition_allowed(
        chain.status, chain_status,
    ):
        raise ValueError(
            f"Chain transition {chain.status.value} -> {chain_status.value} not allowed"
        )


@traced_engine("approval", "1.0", fingerprint_fields=("action", "actor_role"))
def plan_decision(
    chain: ApprovalChainInstance,
    action: DecisionAction,
    actor_role: Role | str | None = None,
) -> DecisionPlan:
    """Compute the effect of applying ``action`` to the chain's current step.

    Qualification is NOT checked here; callers check ``is_qualified`` first
    so they can raise a typed authorization error.
    """
    step = _require_current(chain)
    step_status = ACTION_STEP_STATUS[action]

    if action == DecisionAction.REJECT:
        chain_status = ChainStatus.REJECTED
        next_position = None
        skipped = _later_pending_positions(chain, step.position)
    else:
        later = _later_pending_positions(chain, step.position)
        next_position = later[0] if later else None
        chain_status = ChainStatus.IN_PROGRESS if next_position else ChainStatus.APPROVED
        skipped = ()

    _check_transitions(step, step_status, chain, chain_status)

    return DecisionPlan(
        step_position=step.position,
        step_status=step_status,
        chain_status=chain_status,
        audit_action=ACTION_AUDIT[action],
        as_fallback=(
            action != DecisionAction.AUTO_APPROVE
            and is_fallback_actor(actor_role, step)
        ),
        next_position=next_position,
        skipped_positions=skipped,
    )


def plan_cancellation(chain: ApprovalChainInstance) -> DecisionPlan:
    """Cancel an in-progress chain: the current and every later step is skipped."""
    step = _require_current(chain)
    _check_transitions(step, StepStatus.SKIPPED, chain, ChainStatus.CANCELLED)
    return DecisionPlan(
        step_position=step.position,
        step_status=StepStatus.SKIPPED,
        chain_status=ChainStatus.CANCELLED,
        audit_action=AuditAction.CANCELLED,
        skipped_positions=_later_pending_positions(chain, step.position),
    )


# =========================================================================
# Structural checks
# =========================================================================


def definition_errors(definition: ApprovalChainDefinition) -> list[str]:
    """Problems that make a chain definition unusable at ``start()``."""
    errors: list[str] = []
    if not definition.steps:
        errors.append("Approver chain is empty")
        return errors

    positions = [s.position for s in definition.steps]
    if positions != list(range(1, len(positions) + 1)):
        errors.append(f"Step positions must be 1..{len(positions)}, got {positions}")

    if not definition.multi_level and len(definition.steps) > 1:
        errors.append("Single-level chain must have exactly one step")

    if definition.auto_approve_after_days < 0:
        errors.append(
            f"auto_approve_after_days must be >= 0, got {definition.auto_approve_after_days}"
        )

    seen: set[Role] = set()
    for step in definition.steps:
        if step.required_role in seen:
            errors.append(
                f"Role '{step.required_role.value}' appears more than once in the chain"
            )
        seen.add(step.required_role)

    return errors


def chain_invariant_violations(chain: ApprovalChainInstance) -> list[str]:
    """Check the step/chain status invariants of a chain snapshot."""
    violations: list[str] = []
    steps = sorted(chain.steps, key=lambda s: s.position)
    statuses = [s.status for s in steps]

    if [s.position for s in steps] != list(range(1, len(steps) + 1)):
        violations.append("step positions are not contiguous from 1")

    for s in steps:
        if s.decided_at is not None and s.auto_resolved_at is not None:
            violations.append(f"step {s.position} is both decided and auto-resolved")

    if chain.status == ChainStatus.IN_PROGRESS:
        cur = current_step(chain)
        if cur is None:
            violations.append("in-progress chain has no pending step")
        else:
            if chain.current_position != cur.position:
                violations.append(
                    f"current_position {chain.current_position} != first pending {cur.position}"
                )
            before = [s.status for s in steps if s.position < cur.position]
            after = [s.status for s in steps if s.position > cur.position]
            if any(st != StepStatus.APPROVED for st in before):
                violations.append("a step before the current step is not approved")
            if any(st != StepStatus.PENDING for st in after):
                violations.append("a step after the current step is not pending")
    else:
        if chain.current_position is not None:
            violations.append("terminal chain still has a current position")
        if StepStatus.PENDING in statuses:
            violations.append("terminal chain still has pending steps")

    if chain.status == ChainStatus.APPROVED and any(
        st != StepStatus.APPROVED for st in statuses
    ):
        violations.append("approved chain has a step that is not approved")

    if chain.status == ChainStatus.REJECTED:
        if statuses.count(StepStatus.REJECTED) != 1:
            violations.append("rejected chain must have exactly one rejected step")
        else:
            idx = statuses.index(StepStatus.REJECTED)
            if any(st != StepStatus.APPROVED for st in statuses[:idx]):
                violations.append("a step before the rejected step is not approved")
            if any(st != StepStatus.SKIPPED for st in statuses[idx + 1:]):
                violations.append("a step after the rejected step is not skipped")

    if chain.status == ChainStatus.CANCELLED:
        if StepStatus.REJECTED in statuses:
            violations.append("cancelled chain has a rejected step")
        if StepStatus.SKIPPED not in statuses:
            violations.append("cancelled chain has no skipped step")

    return violations
