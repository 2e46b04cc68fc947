"""
Tests for the approval domain types.

Covers:
- Status enums and the step/chain transition tables
- DecisionAction aliases submitted by dashboards
- StepTemplate validation
- NotificationPolicy serialization
- Chain/step instance helpers
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    CHAIN_TRANSITIONS,
    STEP_TRANSITIONS,
    TERMINAL_CHAIN_STATUSES,
    TERMINAL_STEP_STATUSES,
    ApprovalChainDefinition,
    ApprovalChainInstance,
    ApprovalStepInstance,
    ChainStatus,
    DecisionAction,
    DecisionPlan,
    AuditAction,
    EntityRef,
    NotificationPolicy,
    StepStatus,
    StepTemplate,
)
from approval_kernel.domain.roles import Role

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_step(position: int, role: Role, status: StepStatus = StepStatus.PENDING, **kwargs):
    return ApprovalStepInstance(
        position=position,
        required_role=role,
        fallback_roles=frozenset(kwargs.pop("fallback_roles", ())),
        status=status,
        **kwargs,
    )


# =========================================================================
# Status lifecycle tables
# =========================================================================


class TestStepTransitions:

    def test_pending_can_reach_every_terminal_status(self):
        assert STEP_TRANSITIONS[StepStatus.PENDING] == TERMINAL_STEP_STATUSES

    @pytest.mark.parametrize("status", sorted(TERMINAL_STEP_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_exits(self, status):
        assert STEP_TRANSITIONS[status] == frozenset()

    def test_every_status_has_an_entry(self):
        assert set(STEP_TRANSITIONS) == set(StepStatus)


class TestChainTransitions:

    def test_in_progress_exits(self):
        assert CHAIN_TRANSITIONS[ChainStatus.IN_PROGRESS] == TERMINAL_CHAIN_STATUSES

    @pytest.mark.parametrize("status", [ChainStatus.APPROVED, ChainStatus.REJECTED, ChainStatus.CANCELLED])
    def test_terminal_chain_is_final(self, status):
        assert CHAIN_TRANSITIONS[status] == frozenset()


class TestDecisionAction:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("approve", DecisionAction.APPROVE),
            ("approved", DecisionAction.APPROVE),
            ("Rejected", DecisionAction.REJECT),
            (" reject ", DecisionAction.REJECT),
            ("auto_approved", DecisionAction.AUTO_APPROVE),
        ],
    )
    def test_aliases(self, raw, expected):
        assert DecisionAction(raw) is expected

    def test_unknown_action_raises(self):
        with pytest.raises(ValueError):
            DecisionAction("escalate")


# =========================================================================
# Definition types
# =========================================================================


class TestStepTemplate:

    def test_position_must_be_positive(self):
        with pytest.raises(ValueError, match="position"):
            StepTemplate(position=0, required_role=Role.MANAGER)

    def test_required_role_cannot_be_fallback(self):
        with pytest.raises(ValueError, match="both required and fallback"):
            StepTemplate(
                position=1,
                required_role=Role.MANAGER,
                fallback_roles=frozenset({Role.MANAGER, Role.SUPER_ADMIN}),
            )

    def test_frozen(self):
        step = StepTemplate(position=1, required_role=Role.MANAGER)
        with pytest.raises(AttributeError):
            step.position = 2  # type: ignore[misc]


class TestNotificationPolicy:

    def test_round_trip_through_snapshot_dict(self):
        policy = NotificationPolicy(
            notify_approver=False,
            notify_requester_on_decision=True,
            notify_hr=True,
            cc_roles=(Role.HR_ASSISTANT, Role.ADMIN),
        )
        data = policy.to_dict()
        assert data["cc_roles"] == ["hr_assistant", "admin"]
        assert NotificationPolicy.from_dict(data) == policy

    def test_empty_snapshot_gives_defaults(self):
        assert NotificationPolicy.from_dict(None) == NotificationPolicy()
        assert NotificationPolicy.from_dict({}) == NotificationPolicy()


class TestApprovalChainDefinition:

    def test_auto_approve_enabled(self):
        steps = (StepTemplate(1, Role.MANAGER),)
        assert not ApprovalChainDefinition("leave", "acme", steps).auto_approve_enabled
        assert ApprovalChainDefinition(
            "leave", "acme", steps, auto_approve_after_days=2,
        ).auto_approve_enabled


# =========================================================================
# Instances
# =========================================================================


class TestInstances:

    def _chain(self, status=ChainStatus.IN_PROGRESS, steps=None):
        return ApprovalChainInstance(
            chain_id=uuid4(),
            tenant_id="acme",
            workflow_type="leave",
            entity_ref=EntityRef("leave_request", uuid4()),
            status=status,
            steps=steps or (make_step(1, Role.MANAGER), make_step(2, Role.HR_MANAGER)),
            current_position=1,
            definition_version=1,
            multi_level=True,
            auto_approve_after_days=0,
            created_at=NOW,
        )

    def test_step_at(self):
        chain = self._chain()
        assert chain.step_at(2).required_role == Role.HR_MANAGER

    def test_step_at_missing_raises_key_error(self):
        with pytest.raises(KeyError):
            self._chain().step_at(3)

    def test_is_terminal(self):
        assert not self._chain().is_terminal
        assert self._chain(status=ChainStatus.CANCELLED).is_terminal

    def test_step_auto_approved_flag(self):
        step = make_step(1, Role.MANAGER, StepStatus.APPROVED, auto_resolved_at=NOW)
        assert step.was_auto_approved
        assert step.is_terminal
        assert not make_step(1, Role.MANAGER, StepStatus.APPROVED, decided_at=NOW).was_auto_approved

    def test_entity_ref_str(self):
        entity_id = uuid4()
        assert str(EntityRef("expense_claim", entity_id)) == f"expense_claim:{entity_id}"

    def test_plan_is_terminal(self):
        assert DecisionPlan(
            1, StepStatus.REJECTED, ChainStatus.REJECTED, AuditAction.REJECTED,
        ).is_terminal
        assert not DecisionPlan(
            1, StepStatus.APPROVED, ChainStatus.IN_PROGRESS, AuditAction.APPROVED,
            next_position=2,
        ).is_terminal
