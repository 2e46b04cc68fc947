"""
Tests for DecisionApplier, AuditTrail and ChainLockRegistry.

The applier works inside a caller-owned session: it flushes, never commits.
Chains are created through the orchestrator (committed) and then decided
through the plain ``session`` fixture.
"""

import threading
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import AuditAction, ChainStatus, StepStatus
from approval_kernel.domain.roles import SYSTEM_ACTOR_ID, Role
from approval_kernel.exceptions import (
    AuditAppendError,
    ChainNotFoundError,
    InvalidTransitionError,
    NoCurrentStepError,
    StaleStepError,
)
from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.chain_locks import ChainLockRegistry
from approval_kernel.services.decision_applier import DecisionApplier, normalize_remarks


@pytest.fixture
def applier(session, clock):
    return DecisionApplier(session, AuditTrail(session, clock), clock)


@pytest.fixture
def chain_id(orchestrator, entity_ref):
    return orchestrator.start(entity_ref, "leave", "acme")


class TestNormalizeRemarks:

    @pytest.mark.parametrize(
        "raw, expected",
        [(None, None), ("", None), ("   \n", None), (" ok ", "ok"), ("a  b", "a  b")],
    )
    def test_normalize(self, raw, expected):
        assert normalize_remarks(raw) == expected


class TestDecide:

    def test_outcome_describes_change(self, applier, chain_id, clock):
        actor = uuid4()
        outcome = applier.decide(chain_id, actor, Role.MANAGER, "approve", remarks="fine")

        assert outcome.plan.step_position == 1
        assert outcome.plan.next_position == 2
        assert not outcome.is_terminal
        assert outcome.record.sequence == 1
        assert outcome.record.actor_id == actor
        assert outcome.record.remarks == "fine"
        assert outcome.record.timestamp == clock.now()
        assert outcome.chain.current_position == 2
        assert outcome.chain.steps[0].decided_at == clock.now()
        assert outcome.chain.version == 2

    def test_nothing_persists_without_commit(self, applier, session, chain_id, orchestrator):
        applier.decide(chain_id, uuid4(), Role.MANAGER, "reject")
        session.rollback()

        chain = orchestrator.get_chain(chain_id)
        assert chain.status == ChainStatus.IN_PROGRESS
        assert chain.steps[0].status == StepStatus.PENDING
        assert orchestrator.audit_trail(chain_id) == ()

    def test_expected_position_pins_step(self, applier, chain_id):
        with pytest.raises(StaleStepError) as exc_info:
            applier.decide(chain_id, uuid4(), Role.MANAGER, "approve", expected_position=2)
        assert exc_info.value.expected_position == 2
        assert exc_info.value.current_position == 1

    def test_terminal_chain(self, applier, chain_id):
        applier.decide(chain_id, uuid4(), Role.MANAGER, "reject")
        with pytest.raises(NoCurrentStepError) as exc_info:
            applier.decide(chain_id, uuid4(), Role.HR_MANAGER, "approve")
        assert exc_info.value.status == "rejected"

    def test_unknown_chain(self, applier, db_engine):
        with pytest.raises(ChainNotFoundError):
            applier.decide(uuid4(), uuid4(), Role.MANAGER, "approve")


class TestAutoApprove:

    def test_disabled_chain(self, applier, chain_id, clock):
        clock.advance(days=100)
        with pytest.raises(InvalidTransitionError, match="disabled"):
            applier.auto_approve(chain_id, expected_position=1)

    def test_not_yet_due(self, applier, definitions, make_definition, orchestrator, new_entity):
        definitions.register(make_definition(
            Role.ADMIN, workflow_type="asset", auto_approve_after_days=3,
        ))
        chain_id = orchestrator.start(new_entity("asset_request"), "asset", "acme")
        with pytest.raises(InvalidTransitionError, match="not due"):
            applier.auto_approve(chain_id, expected_position=1)

    def test_due_step_approved_as_system(
        self, applier, definitions, make_definition, orchestrator, new_entity, clock,
    ):
        definitions.register(make_definition(
            Role.ADMIN, workflow_type="asset", auto_approve_after_days=3,
        ))
        chain_id = orchestrator.start(new_entity("asset_request"), "asset", "acme")
        clock.advance(days=3)

        outcome = applier.auto_approve(chain_id, expected_position=1)
        assert outcome.record.action == AuditAction.AUTO_APPROVED
        assert outcome.record.actor_id == SYSTEM_ACTOR_ID
        assert outcome.chain.status == ChainStatus.APPROVED
        assert outcome.chain.steps[0].auto_resolved_at == clock.now()
        assert outcome.chain.resolved_at == clock.now()


class TestCancel:

    def test_cancel_records_actor(self, applier, chain_id, actor_id):
        outcome = applier.cancel(chain_id, actor_id, "employee")
        assert outcome.record.actor_id == actor_id
        assert outcome.record.actor_role == "employee"
        assert outcome.record.action == AuditAction.CANCELLED
        assert outcome.plan.skipped_positions == (2,)

    def test_cancel_rejected_chain(self, applier, chain_id):
        applier.decide(chain_id, uuid4(), Role.MANAGER, "reject")
        with pytest.raises(InvalidTransitionError):
            applier.cancel(chain_id)


class TestAuditTrail:

    def test_sequence_is_gap_free(self, applier, session, chain_id, clock):
        applier.decide(chain_id, uuid4(), Role.MANAGER, "approve")
        applier.decide(chain_id, uuid4(), Role.HR_MANAGER, "approve")

        trail = AuditTrail(session, clock)
        records = trail.list_for(chain_id)
        assert [r.sequence for r in records] == [1, 2]
        assert [r.step_position for r in records] == [1, 2]
        assert trail.count_for(chain_id) == 2
        assert trail.count_for(uuid4()) == 0

    def test_list_orders_by_time(self, session, chain_id, clock):
        trail = AuditTrail(session, clock)
        later = clock.now()
        earlier = later.replace(hour=8)
        trail.append(chain_id, 1, uuid4(), "manager", AuditAction.APPROVED, timestamp=later)
        trail.append(chain_id, 2, uuid4(), "hr_manager", AuditAction.APPROVED, timestamp=earlier)

        assert [r.sequence for r in trail.list_for(chain_id)] == [2, 1]

    def test_append_for_missing_chain_fails(self, session, clock, db_engine):
        trail = AuditTrail(session, clock)
        with pytest.raises(AuditAppendError):
            trail.append(uuid4(), 1, uuid4(), "manager", AuditAction.APPROVED)


class TestChainLockRegistry:

    def test_entries_released(self):
        locks = ChainLockRegistry()
        key = uuid4()
        with locks.hold(key):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_same_chain_is_serialized(self):
        locks = ChainLockRegistry()
        key = uuid4()
        inside = threading.Event()
        release = threading.Event()
        order: list[str] = []

        def first():
            with locks.hold(key):
                inside.set()
                release.wait(timeout=5)
                order.append("first")

        def second():
            inside.wait(timeout=5)
            with locks.hold(key):
                order.append("second")

        t1 = threading.Thread(target=first)
        t2 = threading.Thread(target=second)
        t1.start()
        t2.start()
        inside.wait(timeout=5)
        release.set()
        t1.join(timeout=5)
        t2.join(timeout=5)

        assert order == ["first", "second"]

    def test_different_chains_do_not_block(self):
        locks = ChainLockRegistry()
        with locks.hold(uuid4()):
            acquired = threading.Event()

            def other():
                with locks.hold(uuid4()):
                    acquired.set()

            t = threading.Thread(target=other)
            t.start()
            t.join(timeout=5)
            assert acquired.is_set()
