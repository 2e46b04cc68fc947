"""
ORM-Level Immutability Enforcement for finished approvals.

===============================================================================
WHY THIS EXISTS
===============================================================================

Once a request is approved, rejected or cancelled, the employee's leave,
expense or asset record is updated from that outcome.  A later write that
re-opened the chain or rewrote who decided a step would make the audit trail
disagree with what actually happened.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                         | Where
------------------|----------------------------------------|---------------------
ApprovalChain     | After status is terminal               | this module
ApprovalStep      | After status is terminal               | this module
DecisionRecord    | ALWAYS (from creation)                 | models/approval.py

===============================================================================
"WAS TERMINAL" NOT "IS TERMINAL"
===============================================================================

The decision applier itself sets the terminal status.  We allow the
in_progress -> approved transition and block any change AFTER it has been
flushed, by inspecting the attribute history of ``status``.

===============================================================================
USAGE
===============================================================================

Registered by ``create_tables()``; may also be called directly at startup:

    from approval_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TERMINAL_CHAIN = frozenset({"approved", "rejected", "cancelled"})
_TERMINAL_STEP = frozenset({"approved", "rejected", "skipped"})


def _status_value(value) -> str:
    return getattr(value, "value", value)


def _was_terminal(target, terminal: frozenset[str]) -> bool:
    status_history = get_history(target, "status")
    if status_history.deleted:
        return _status_value(status_history.deleted[0]) in terminal
    if not status_history.added:
        return _status_value(target.status) in terminal
    return False


def _block_changes(target, entity_type: str, entity_id: str) -> None:
    insp = inspect(target)
    for attr in insp.mapper.column_attrs:
        hist = insp.attrs[attr.key].history
        if hist.has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "operation": "UPDATE",
                    "field": attr.key,
                },
            )
            raise ImmutabilityViolationError(
                entity_type=entity_type,
                entity_id=entity_id,
                reason=f"Cannot modify field '{attr.key}' after the {entity_type.lower()} is finished",
            )


def _check_chain_immutability(mapper, connection, target):
    """Block updates to an approval chain once it was terminal."""
    if _was_terminal(target, _TERMINAL_CHAIN):
        _block_changes(target, "ApprovalChain", str(target.chain_id))


def _check_chain_delete(mapper, connection, target):
    """Approval chains are never deleted."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalChain",
        entity_id=str(target.chain_id),
        reason="Approval chains cannot be deleted -- cancel instead",
    )


def _check_step_immutability(mapper, connection, target):
    """Block updates to a step once it was decided, auto-approved or skipped."""
    if _was_terminal(target, _TERMINAL_STEP):
        _block_changes(
            target, "ApprovalStep", f"{target.chain_id}#{target.position}",
        )


def _check_step_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalStep",
        entity_id=f"{target.chain_id}#{target.position}",
        reason="Approval steps cannot be deleted",
    )


def register_immutability_listeners():
    """Register the chain/step immutability listeners (idempotent)."""
    from approval_kernel.models.approval import ApprovalChainModel, ApprovalStepModel

    for target, name, fn in _listeners(ApprovalChainModel, ApprovalStepModel):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners():
    """
    Remove the chain/step immutability listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from approval_kernel.models.approval import ApprovalChainModel, ApprovalStepModel

    for target, name, fn in _listeners(ApprovalChainModel, ApprovalStepModel):
        if event.contains(target, name, fn):
            event.remove(target, name, fn)


def _listeners(chain_model, step_model):
    return (
        (chain_model, "before_update", _check_chain_immutability),
        (chain_model, "before_delete", _check_chain_delete),
        (step_model, "before_update", _check_step_immutability),
        (step_model, "before_delete", _check_step_delete),
    )
