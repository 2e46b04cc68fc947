"""
EscalationTimer -- time-based auto-approval of overdue steps.

Contract:
    ``sweep(now)`` finds every in-progress chain whose current step deadline
    has passed and auto-approves that step as the system actor.
    ``fire(chain_id, expected_position)`` is the one-shot form used by an
    external job queue that scheduled a timer at step activation.

Architecture: approval_kernel/services.  Uses ApprovalSelector for the
    due-step query and DecisionApplier for the state change, each firing in
    its own unit of work under the chain lock.

Invariants enforced:
    - Auto-approval never applies to a chain with ``auto_approve_after_days``
      of 0, nor before the step's deadline.
    - A timer for a step that was decided, skipped, or whose chain finished
      or was cancelled in the meantime is a no-op (stale position).
    - Firing twice for the same step applies at most one auto-approval.
    - All timestamps from injected Clock.

EscalationScheduler runs ``sweep`` on a background thread at a fixed
interval and stops gracefully between ticks.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.clock import Clock, SystemClock, as_utc
from approval_kernel.exceptions import InvalidTransitionError, StaleStepError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.chain_locks import ChainLockRegistry, default_chain_locks
from approval_kernel.services.decision_applier import DecisionApplier, DecisionOutcome
from approval_kernel.services.outbound import ApprovalEventPublisher

logger = get_logger("services.escalation")


class EscalationTimer:
    """Applies auto-approvals for overdue steps."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        publisher: ApprovalEventPublisher | None = None,
        locks: ChainLockRegistry | None = None,
        batch_size: int | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._publisher = publisher or ApprovalEventPublisher(clock=self._clock)
        self._locks = locks or default_chain_locks
        self._batch_size = batch_size

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def sweep(
        self,
        now: datetime | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> list[UUID]:
        """Auto-approve every overdue current step. Returns the chains advanced.

        A naive ``now`` is read as UTC.
        """
        now = as_utc(now or self._clock.now())
        session = self._session_factory()
        try:
            due = ApprovalSelector(session).due_for_escalation(now, self._batch_size)
        finally:
            session.close()

        fired: list[UUID] = []
        for chain_id, position in due:
            if should_stop is not None and should_stop():
                break
            try:
                if self.fire(chain_id, position, now):
                    fired.append(chain_id)
            except Exception:
                logger.exception(
                    "escalation_fire_failed",
                    extra={"chain_id": str(chain_id), "step_position": position},
                )

        logger.info(
            "escalation_sweep_completed",
            extra={
                "as_of": now.isoformat(),
                "due_count": len(due),
                "auto_approved_count": len(fired),
            },
        )
        return fired

    def fire(
        self,
        chain_id: UUID,
        expected_position: int,
        now: datetime | None = None,
    ) -> bool:
        """Auto-approve ``expected_position`` of ``chain_id`` if still current and due.

        Returns False (and changes nothing) when the step is no longer
        current, the chain is finished, auto-approval is disabled, or the
        deadline has not passed yet.
        """
        now = as_utc(now or self._clock.now())
        with LogContext.bind(chain_id=str(chain_id)), self._locks.hold(chain_id):
            session = self._session_factory()
            try:
                applier = DecisionApplier(session, AuditTrail(session, self._clock), self._clock)
                outcome = applier.auto_approve(chain_id, expected_position, now)
                session.commit()
            except (StaleStepError, StaleDataError, InvalidTransitionError) as exc:
                session.rollback()
                logger.info(
                    "escalation_skipped",
                    extra={
                        "chain_id": str(chain_id),
                        "step_position": expected_position,
                        "reason": type(exc).__name__,
                    },
                )
                return False
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        logger.info(
            "step_auto_approved",
            extra={
                "chain_id": str(chain_id),
                "step_position": expected_position,
                "chain_status": outcome.chain.status.value,
            },
        )
        self._publish(outcome)
        return True

    def _publish(self, outcome: DecisionOutcome) -> None:
        self._publisher.decision_applied(outcome)


class EscalationScheduler:
    """In-process polling loop around ``EscalationTimer.sweep``.

    Contract:
        - ``tick()`` runs one sweep (public for testing).
        - ``start()`` / ``stop()`` for background thread operation.
        - Respects the stop signal between chains.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Running several
          is safe: the chain lock, row lock and stale-position checks make
          duplicate firings no-ops.
    """

    def __init__(
        self,
        timer: EscalationTimer,
        tick_interval_seconds: int = 3600,
    ):
        self._timer = timer
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> int:
        """Run one sweep. Returns the number of steps auto-approved."""
        try:
            return len(self._timer.sweep(should_stop=self._stop_event.is_set))
        except Exception:
            logger.exception("escalation_tick_failed")
            return 0

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escalation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("escalation_scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("escalation_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._tick_interval)
