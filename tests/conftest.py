"""
Pytest fixtures for the approval engine test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path by default)
- Deterministic clock, static definition source, recording listener/notifier
- Orchestrator and escalation timer wired to the test database
- Structured log capture

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead of
  the per-test SQLite file.  Tables are dropped and recreated per test.
"""

import json
import logging
import os
from datetime import datetime, timezone
from io import StringIO
from uuid import UUID, uuid4

import pytest

from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.db.immutability import unregister_immutability_listeners
from approval_kernel.domain.approval import (
    ApprovalChainDefinition,
    ApprovalNotice,
    ChainStatusChanged,
    EntityRef,
    NotificationPolicy,
    StepTemplate,
)
from approval_kernel.domain.calendar import WorkCalendar
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.roles import Role
from approval_kernel.exceptions import ConfigurationError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.chain_locks import ChainLockRegistry
from approval_kernel.services.escalation_timer import EscalationTimer
from approval_kernel.services.outbound import ApprovalEventPublisher
from approval_kernel.services.workflow_orchestrator import WorkflowOrchestrator

TENANT = "acme"

# 2024-01-01 is a Monday
START_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.start(...)
            logs = captured_logs()
            assert any(r["message"] == "chain_started" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


def get_database_url(tmp_path) -> str:
    """DATABASE_URL from the environment, else a SQLite file for this test."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'approvals.db'}"


@pytest.fixture
def db_engine(tmp_path):
    """Engine with freshly created tables and immutability listeners."""
    engine = init_engine_from_url(get_database_url(tmp_path), pool_size=10, max_overflow=10)
    drop_tables()
    create_tables()
    yield engine
    unregister_immutability_listeners()
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A plain session for direct model/service tests. Rolled back at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Domain helpers
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(START_TIME)


def build_definition(
    *roles: Role,
    workflow_type: str = "leave",
    tenant_id: str = TENANT,
    fallback: dict[Role, set[Role]] | None = None,
    multi_level: bool = True,
    auto_approve_after_days: int = 0,
    calendar: WorkCalendar | None = None,
    notifications: NotificationPolicy | None = None,
    require_remarks_on_reject: bool = False,
    version: int = 1,
) -> ApprovalChainDefinition:
    fallback = fallback or {}
    return ApprovalChainDefinition(
        workflow_type=workflow_type,
        tenant_id=tenant_id,
        steps=tuple(
            StepTemplate(
                position=i,
                required_role=role,
                fallback_roles=frozenset(fallback.get(role, ())),
            )
            for i, role in enumerate(roles, start=1)
        ),
        multi_level=multi_level,
        auto_approve_after_days=auto_approve_after_days,
        version=version,
        calendar=calendar or WorkCalendar(),
        notifications=notifications or NotificationPolicy(),
        require_remarks_on_reject=require_remarks_on_reject,
    )


@pytest.fixture
def make_definition():
    """Factory fixture: ``make_definition(Role.MANAGER, Role.HR_MANAGER, ...)``."""
    return build_definition


class StaticDefinitionSource:
    """In-memory DefinitionSource keyed by (workflow_type, tenant_id)."""

    def __init__(self):
        self._definitions: dict[tuple[str, str], ApprovalChainDefinition] = {}
        self.resolve_calls = 0

    def register(self, definition: ApprovalChainDefinition) -> ApprovalChainDefinition:
        self._definitions[(definition.workflow_type, definition.tenant_id)] = definition
        return definition

    def resolve_definition(self, workflow_type: str, tenant_id: str) -> ApprovalChainDefinition:
        self.resolve_calls += 1
        try:
            return self._definitions[(workflow_type, tenant_id)]
        except KeyError:
            raise ConfigurationError(workflow_type, tenant_id, ["not configured"]) from None


class RecordingListener:
    def __init__(self):
        self.events: list[ChainStatusChanged] = []

    def on_status_changed(self, event: ChainStatusChanged) -> None:
        self.events.append(event)


class RecordingNotifier:
    def __init__(self):
        self.notices: list[tuple[Role, EntityRef, ApprovalNotice]] = []

    def notify_actor(self, role: Role, entity_ref: EntityRef, event: ApprovalNotice) -> None:
        self.notices.append((role, entity_ref, event))

    def roles_for(self, kind) -> list[Role]:
        return [role for role, _, notice in self.notices if notice.kind == kind]


@pytest.fixture
def definitions(make_definition):
    """Definition source pre-loaded with a two-level leave chain."""
    source = StaticDefinitionSource()
    source.register(
        make_definition(
            Role.MANAGER, Role.HR_MANAGER,
            fallback={
                Role.MANAGER: {Role.SUPER_ADMIN, Role.HR_MANAGER},
                Role.HR_MANAGER: {Role.SUPER_ADMIN},
            },
        )
    )
    return source


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def publisher(listener, notifier, clock):
    return ApprovalEventPublisher([listener], [notifier], clock)


@pytest.fixture
def chain_locks():
    return ChainLockRegistry()


@pytest.fixture
def orchestrator(session_factory, definitions, clock, publisher, chain_locks):
    return WorkflowOrchestrator(
        session_factory, definitions,
        clock=clock, publisher=publisher, locks=chain_locks,
    )


@pytest.fixture
def escalation_timer(session_factory, clock, publisher, chain_locks):
    return EscalationTimer(session_factory, clock=clock, publisher=publisher, locks=chain_locks)


@pytest.fixture
def entity_ref():
    return EntityRef("leave_request", uuid4())


@pytest.fixture
def actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def new_entity():
    """Factory for fresh entity refs."""

    def _make(entity_type: str = "leave_request") -> EntityRef:
        return EntityRef(entity_type, uuid4())

    return _make


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )
