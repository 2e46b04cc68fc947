"""
Tests for the pure approval engine.

Tests cover:
- is_qualified / is_fallback_actor: closed-world role qualification
- awaiting_label: user-facing approver text
- current_step: first pending step of an in-progress chain
- plan_decision: approve advances, last approve finishes, reject skips the rest
- plan_cancellation: current and later steps skipped
- definition_errors / chain_invariant_violations
"""

from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

import pytest

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
from approval_kernel.domain.approval import (
    ApprovalChainDefinition,
    ApprovalChainInstance,
    ApprovalStepInstance,
    AuditAction,
    ChainStatus,
    DecisionAction,
    EntityRef,
    StepStatus,
    StepTemplate,
)
from approval_kernel.domain.roles import SYSTEM_ACTOR_ROLE, Role

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def make_chain(
    *roles: Role,
    statuses: tuple[StepStatus, ...] | None = None,
    status: ChainStatus = ChainStatus.IN_PROGRESS,
    fallback: dict[Role, set[Role]] | None = None,
) -> ApprovalChainInstance:
    fallback = fallback or {}
    statuses = statuses or tuple(StepStatus.PENDING for _ in roles)
    steps = tuple(
        ApprovalStepInstance(
            position=i,
            required_role=role,
            fallback_roles=frozenset(fallback.get(role, ())),
            status=st,
        )
        for i, (role, st) in enumerate(zip(roles, statuses), start=1)
    )
    pending = [s.position for s in steps if s.status == StepStatus.PENDING]
    return ApprovalChainInstance(
        chain_id=uuid4(),
        tenant_id="acme",
        workflow_type="leave",
        entity_ref=EntityRef("leave_request", uuid4()),
        status=status,
        steps=steps,
        current_position=pending[0] if pending and status == ChainStatus.IN_PROGRESS else None,
        definition_version=1,
        multi_level=len(roles) > 1,
        auto_approve_after_days=0,
        created_at=NOW,
    )


def make_definition(*steps: StepTemplate, multi_level: bool = True, days: int = 0):
    return ApprovalChainDefinition(
        workflow_type="leave",
        tenant_id="acme",
        steps=steps,
        multi_level=multi_level,
        auto_approve_after_days=days,
    )


MANAGER_STEP = StepTemplate(
    position=1,
    required_role=Role.MANAGER,
    fallback_roles=frozenset({Role.SUPER_ADMIN, Role.HR_MANAGER}),
)


# =========================================================================
# 1. Role qualification
# =========================================================================


class TestQualification:

    def test_required_role_qualifies(self):
        assert is_qualified(Role.MANAGER, MANAGER_STEP)
        assert is_qualified("manager", MANAGER_STEP)

    def test_fallback_role_qualifies(self):
        assert is_qualified(Role.SUPER_ADMIN, MANAGER_STEP)
        assert is_qualified("HR_MANAGER", MANAGER_STEP)

    @pytest.mark.parametrize(
        "role", [Role.EMPLOYEE, "finance_manager", "ceo", "", None, SYSTEM_ACTOR_ROLE],
    )
    def test_everyone_else_is_denied(self, role):
        assert not is_qualified(role, MANAGER_STEP)

    def test_fallback_actor_detection(self):
        assert not is_fallback_actor(Role.MANAGER, MANAGER_STEP)
        assert is_fallback_actor(Role.SUPER_ADMIN, MANAGER_STEP)
        assert not is_fallback_actor(Role.EMPLOYEE, MANAGER_STEP)
        assert not is_fallback_actor("nonsense", MANAGER_STEP)

    def test_qualified_roles(self):
        assert qualified_roles(MANAGER_STEP) == {Role.MANAGER, Role.SUPER_ADMIN, Role.HR_MANAGER}

    def test_awaiting_label(self):
        assert awaiting_label(StepTemplate(1, Role.HR_MANAGER)) == "HR Manager"
        assert awaiting_label(MANAGER_STEP) == "Manager (fallback: HR Manager, CEO)"


# =========================================================================
# 2. Transition tables and current step
# =========================================================================


class TestTransitions:

    def test_step_transitions(self):
        assert is_step_transition_allowed(StepStatus.PENDING, StepStatus.APPROVED)
        assert is_step_transition_allowed(StepStatus.PENDING, StepStatus.SKIPPED)
        assert not is_step_transition_allowed(StepStatus.APPROVED, StepStatus.REJECTED)
        assert not is_step_transition_allowed(StepStatus.SKIPPED, StepStatus.PENDING)

    def test_chain_transitions(self):
        assert is_chain_transition_allowed(ChainStatus.IN_PROGRESS, ChainStatus.CANCELLED)
        assert not is_chain_transition_allowed(ChainStatus.APPROVED, ChainStatus.IN_PROGRESS)

    def test_current_step_is_first_pending(self):
        chain = make_chain(
            Role.MANAGER, Role.HR_MANAGER, Role.SUPER_ADMIN,
            statuses=(StepStatus.APPROVED, StepStatus.PENDING, StepStatus.PENDING),
        )
        assert current_step(chain).position == 2

    def test_terminal_chain_has_no_current_step(self):
        chain = make_chain(
            Role.MANAGER,
            statuses=(StepStatus.APPROVED,),
            status=ChainStatus.APPROVED,
        )
        assert current_step(chain) is None


# =========================================================================
# 3. plan_decision
# =========================================================================


class TestPlanDecision:

    def test_approve_advances_to_next_step(self):
        chain = make_chain(Role.MANAGER, Role.HR_MANAGER)
        plan = plan_decision(chain, DecisionAction.APPROVE, Role.MANAGER)

        assert plan.step_position == 1
        assert plan.step_status == StepStatus.APPROVED
        assert plan.chain_status == ChainStatus.IN_PROGRESS
        assert plan.next_position == 2
        assert plan.audit_action == AuditAction.APPROVED
        assert not plan.is_terminal

    def test_approving_last_step_approves_chain(self):
        chain = make_chain(
            Role.MANAGER, Role.HR_MANAGER,
            statuses=(StepStatus.APPROVED, StepStatus.PENDING),
        )
        plan = plan_decision(chain, DecisionAction.APPROVE, Role.HR_MANAGER)

        assert plan.step_position == 2
        assert plan.chain_status == ChainStatus.APPROVED
        assert plan.next_position is None
        assert plan.is_terminal

    def test_reject_skips_later_steps(self):
        chain = make_chain(Role.MANAGER, Role.HR_MANAGER, Role.SUPER_ADMIN)
        plan = plan_decision(chain, DecisionAction.REJECT, Role.MANAGER)

        assert plan.step_status == StepStatus.REJECTED
        assert plan.chain_status == ChainStatus.REJECTED
        assert plan.skipped_positions == (2, 3)
        assert plan.audit_action == AuditAction.REJECTED

    def test_fallback_decision_is_flagged(self):
        chain = make_chain(Role.MANAGER, fallback={Role.MANAGER: {Role.SUPER_ADMIN}})
        plan = plan_decision(chain, DecisionAction.APPROVE, Role.SUPER_ADMIN)
        assert plan.as_fallback

    def test_auto_approve_is_never_fallback(self):
        chain = make_chain(Role.MANAGER)
        plan = plan_decision(chain, DecisionAction.AUTO_APPROVE)

        assert plan.audit_action == AuditAction.AUTO_APPROVED
        assert plan.step_status == StepStatus.APPROVED
        assert not plan.as_fallback

    def test_terminal_chain_raises(self):
        chain = make_chain(
            Role.MANAGER, statuses=(StepStatus.REJECTED,), status=ChainStatus.REJECTED,
        )
        with pytest.raises(ValueError, match="no current step"):
            plan_decision(chain, DecisionAction.APPROVE, Role.MANAGER)

    def test_plan_does_not_mutate_chain(self):
        chain = make_chain(Role.MANAGER, Role.HR_MANAGER)
        before = replace(chain)
        plan_decision(chain, DecisionAction.REJECT, Role.MANAGER)
        assert chain == before


class TestPlanCancellation:

    def test_cancel_skips_current_and_later(self):
        chain = make_chain(
            Role.MANAGER, Role.HR_MANAGER, Role.SUPER_ADMIN,
            statuses=(StepStatus.APPROVED, StepStatus.PENDING, StepStatus.PENDING),
        )
        plan = plan_cancellation(chain)

        assert plan.step_position == 2
        assert plan.step_status == StepStatus.SKIPPED
        assert plan.chain_status == ChainStatus.CANCELLED
        assert plan.skipped_positions == (3,)
        assert plan.audit_action == AuditAction.CANCELLED

    def test_cannot_cancel_finished_chain(self):
        chain = make_chain(
            Role.MANAGER, statuses=(StepStatus.APPROVED,), status=ChainStatus.APPROVED,
        )
        with pytest.raises(ValueError):
            plan_cancellation(chain)


# =========================================================================
# 4. Structural checks
# =========================================================================


class TestDefinitionErrors:

    def test_valid_definition(self):
        definition = make_definition(
            StepTemplate(1, Role.MANAGER), StepTemplate(2, Role.HR_MANAGER),
        )
        assert definition_errors(definition) == []

    def test_empty_chain(self):
        assert definition_errors(make_definition()) == ["Approver chain is empty"]

    def test_positions_must_be_contiguous(self):
        errors = definition_errors(
            make_definition(StepTemplate(1, Role.MANAGER), StepTemplate(3, Role.HR_MANAGER)),
        )
        assert any("positions" in e for e in errors)

    def test_single_level_with_two_steps(self):
        errors = definition_errors(
            make_definition(
                StepTemplate(1, Role.MANAGER), StepTemplate(2, Role.HR_MANAGER),
                multi_level=False,
            ),
        )
        assert any("Single-level" in e for e in errors)

    def test_negative_days(self):
        errors = definition_errors(make_definition(StepTemplate(1, Role.MANAGER), days=-1))
        assert any("auto_approve_after_days" in e for e in errors)

    def test_duplicate_roles(self):
        errors = definition_errors(
            make_definition(StepTemplate(1, Role.MANAGER), StepTemplate(2, Role.MANAGER)),
        )
        assert any("more than once" in e for e in errors)


class TestChainInvariants:

    def test_fresh_chain_is_consistent(self):
        assert chain_invariant_violations(make_chain(Role.MANAGER, Role.HR_MANAGER)) == []

    def test_rejected_chain_is_consistent(self):
        chain = make_chain(
            Role.MANAGER, Role.HR_MANAGER, Role.SUPER_ADMIN,
            statuses=(StepStatus.APPROVED, StepStatus.REJECTED, StepStatus.SKIPPED),
            status=ChainStatus.REJECTED,
        )
        assert chain_invariant_violations(chain) == []

    def test_pending_after_rejection_is_flagged(self):
        chain = make_chain(
            Role.MANAGER, Role.HR_MANAGER,
            statuses=(StepStatus.REJECTED, StepStatus.PENDING),
            status=ChainStatus.REJECTED,
        )
        violations = chain_invariant_violations(chain)
        assert "terminal chain still has pending steps" in violations

    def test_gap_before_current_step_is_flagged(self):
        chain = make_chain(
            Role.MANAGER, Role.HR_MANAGER,
            statuses=(StepStatus.SKIPPED, StepStatus.PENDING),
        )
        assert "a step before the current step is not approved" in chain_invariant_violations(chain)
