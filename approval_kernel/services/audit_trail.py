"""
AuditTrail -- append-only decision history per approval chain.

Responsibility:
    Persists one immutable DecisionRecord for every decision applied to a
    chain (human approve/reject, system auto-approve, cancellation) and
    returns a chain's history in order.

Architecture position:
    Kernel > Services -- imperative shell, called by DecisionApplier inside
    the same unit of work as the step/chain status change.  Never commits;
    the caller owns the transaction.

Invariants enforced:
    - Append-only: records are never modified or deleted (ORM listeners on
      DecisionRecordModel).
    - Gap-free sequence: each record's ``sequence`` is one more than the
      chain's previous record.  Appends for one chain are serialized by the
      caller's chain lock and row lock; UNIQUE(chain_id, sequence) backs it.
    - Atomicity: a failed append raises AuditAppendError and the caller's
      unit of work is rolled back, so no status change is ever persisted
      without its record.

Failure modes:
    - AuditAppendError: the INSERT failed (constraint violation, storage
      error).
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import AuditAction, DecisionRecord
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import AuditAppendError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import DecisionRecordModel

logger = get_logger("services.audit_trail")


class AuditTrail:
    """Append-only store of decision records."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def append(
        self,
        chain_id: UUID,
        step_position: int,
        actor_id: UUID,
        actor_role: str,
        action: AuditAction,
        remarks: str | None = None,
        as_fallback: bool = False,
        timestamp: datetime | None = None,
    ) -> DecisionRecord:
        """Persist the next record of ``chain_id`` and return it."""
        record = DecisionRecord(
            record_id=uuid4(),
            chain_id=chain_id,
            sequence=self._next_sequence(chain_id),
            step_position=step_position,
            actor_id=actor_id,
            actor_role=str(getattr(actor_role, "value", actor_role)),
            action=action,
            remarks=remarks,
            timestamp=timestamp or self._clock.now(),
            as_fallback=as_fallback,
        )

        try:
            self._session.add(DecisionRecordModel.from_dto(record))
            self._session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "audit_append_failed",
                extra={
                    "chain_id": str(chain_id),
                    "sequence": record.sequence,
                    "action": action.value,
                    "error": str(exc),
                },
            )
            raise AuditAppendError(str(chain_id), action.value, str(exc)) from exc

        logger.info(
            "decision_recorded",
            extra={
                "chain_id": str(chain_id),
                "sequence": record.sequence,
                "step_position": step_position,
                "actor_role": record.actor_role,
                "action": action.value,
                "as_fallback": as_fallback,
            },
        )
        return record

    def list_for(self, chain_id: UUID) -> tuple[DecisionRecord, ...]:
        """All records for ``chain_id`` ordered by timestamp, then sequence."""
        rows = self._session.execute(
            select(DecisionRecordModel)
            .where(DecisionRecordModel.chain_id == chain_id)
            .order_by(DecisionRecordModel.recorded_at, DecisionRecordModel.sequence)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def count_for(self, chain_id: UUID) -> int:
        return self._session.execute(
            select(func.count(DecisionRecordModel.id))
            .where(DecisionRecordModel.chain_id == chain_id)
        ).scalar_one()

    def _next_sequence(self, chain_id: UUID) -> int:
        current = self._session.execute(
            select(func.max(DecisionRecordModel.sequence))
            .where(DecisionRecordModel.chain_id == chain_id)
        ).scalar_one_or_none()
        return (current or 0) + 1
