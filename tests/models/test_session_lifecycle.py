"""
Engine/session lifecycle helpers and immutability listener registration.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from approval_kernel.db import engine as db
from approval_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.models.approval import ApprovalChainModel, ApprovalStepModel

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _chain(status="in_progress") -> ApprovalChainModel:
    chain_id = uuid4()
    chain = ApprovalChainModel(
        chain_id=chain_id,
        tenant_id="acme",
        workflow_type="asset",
        entity_type="asset_request",
        entity_id=uuid4(),
        status=status,
        current_position=1 if status == "in_progress" else None,
        multi_level=False,
        auto_approve_after_days=0,
        definition_version=1,
        created_at=NOW,
    )
    chain.steps = [
        ApprovalStepModel(
            chain_id=chain_id, position=1, required_role="admin",
            fallback_roles=[], status="pending" if status == "in_progress" else "approved",
        )
    ]
    return chain


def _chain_count() -> int:
    session = db.get_session()
    try:
        return session.execute(select(func.count(ApprovalChainModel.id))).scalar_one()
    finally:
        session.close()


class TestSessionScope:

    def test_commits_on_success(self, db_engine):
        with db.session_scope() as session:
            session.add(_chain())
        assert _chain_count() == 1

    def test_rolls_back_on_error(self, db_engine, captured_logs):
        with pytest.raises(RuntimeError):
            with db.session_scope() as session:
                session.add(_chain())
                session.flush()
                raise RuntimeError("boom")

        assert _chain_count() == 0
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())

    def test_engine_required(self, db_engine):
        db.reset_engine()
        try:
            with pytest.raises(RuntimeError, match="not initialized"):
                db.get_engine()
            with pytest.raises(RuntimeError):
                db.get_session_factory()
        finally:
            db.init_engine_from_url(db_engine.url.render_as_string(hide_password=False))


class TestListenerRegistration:

    def test_registration_is_idempotent(self, db_engine):
        register_immutability_listeners()
        register_immutability_listeners()

        with db.session_scope() as session:
            session.add(_chain(status="approved"))

        with pytest.raises(ImmutabilityViolationError):
            with db.session_scope() as session:
                chain = session.execute(select(ApprovalChainModel)).scalar_one()
                chain.workflow_type = "leave"

    def test_unregistered_listeners_allow_repair(self, db_engine):
        with db.session_scope() as session:
            session.add(_chain(status="approved"))

        unregister_immutability_listeners()
        try:
            with db.session_scope() as session:
                chain = session.execute(select(ApprovalChainModel)).scalar_one()
                chain.workflow_type = "leave"
        finally:
            register_immutability_listeners()

        session = db.get_session()
        try:
            assert session.execute(select(ApprovalChainModel)).scalar_one().workflow_type == "leave"
        finally:
            session.close()
