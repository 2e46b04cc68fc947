"""
approval_engines.escalation -- Pure auto-approval deadline arithmetic.

Responsibility:
    Compute when a pending step becomes eligible for auto-approval, counting
    either calendar days or business days according to the chain's work
    calendar snapshot.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is always passed
    in by the caller.

Invariants enforced:
    - ``auto_approve_after_days == 0`` means no deadline, ever.
    - Business-day counting preserves the time of day and counts each
      following working day as one; non-working days are stepped over.
    - A step is due exactly when ``now >= deadline``.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from approval_kernel.domain.calendar import DayCountConvention, WorkCalendar
from approval_engines.tracer import traced_engine


def add_calendar_days(start: datetime, days: int) -> datetime:
    return start + timedelta(days=days)


def add_business_days(start: datetime, days: int, calendar: WorkCalendar) -> datetime:
    """Advance ``start`` by ``days`` working days of ``calendar``."""
    if days < 0:
        raise ValueError(f"days must be >= 0, got {days}")
    current = start
    remaining = days
    while remaining > 0:
        current += timedelta(days=1)
        if calendar.is_working_day(current.date()):
            remaining -= 1
    return current


@traced_engine(
    "escalation", "1.0",
    fingerprint_fields=("activated_at", "auto_approve_after_days", "calendar"),
)
def compute_deadline(
    activated_at: datetime,
    auto_approve_after_days: int,
    calendar: WorkCalendar | None = None,
) -> datetime | None:
    """Instant at which a step activated at ``activated_at`` auto-approves.

    Returns None when auto-approval is disabled (0 days).
    """
    if auto_approve_after_days < 0:
        raise ValueError(
            f"auto_approve_after_days must be >= 0, got {auto_approve_after_days}"
        )
    if auto_approve_after_days == 0:
        return None
    calendar = calendar or WorkCalendar()
    if calendar.convention == DayCountConvention.BUSINESS_DAYS or calendar.exclude_public_holidays:
        return add_business_days(activated_at, auto_approve_after_days, calendar)
    return add_calendar_days(activated_at, auto_approve_after_days)


def is_due(deadline: datetime | None, now: datetime) -> bool:
    """True if a step with ``deadline`` should be auto-approved at ``now``."""
    return deadline is not None and now >= deadline
