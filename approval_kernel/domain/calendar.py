"""
Work calendar -- which days count toward an auto-approval waiting period.

Architecture position:
    Kernel > Domain -- pure value object, zero I/O.

A tenant that excludes weekends counts business days; otherwise every
calendar day counts.  Public holidays are skipped only when the tenant
opts in with ``exclude_public_holidays``.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

WEEKDAY_NAMES: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

DEFAULT_WEEKEND_DAYS: frozenset[int] = frozenset({5, 6})


class DayCountConvention(str, Enum):
    """How an auto-approval waiting period is counted."""

    CALENDAR_DAYS = "calendar_days"
    BUSINESS_DAYS = "business_days"


def parse_weekday(value: str | int) -> int | None:
    """Map a weekday name, three-letter abbreviation or 0-6 index to an index."""
    if isinstance(value, int):
        return value if 0 <= value <= 6 else None
    text = value.strip().lower()
    for index, name in enumerate(WEEKDAY_NAMES):
        if text == name or text == name[:3]:
            return index
    return None


@dataclass(frozen=True)
class WorkCalendar:
    """Tenant calendar used to compute auto-approval deadlines."""

    exclude_weekends: bool = False
    weekend_days: frozenset[int] = DEFAULT_WEEKEND_DAYS
    exclude_public_holidays: bool = False
    public_holidays: frozenset[date] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if any(d < 0 or d > 6 for d in self.weekend_days):
            raise ValueError(f"Weekend days must be 0-6, got {sorted(self.weekend_days)}")
        if self.exclude_weekends and len(self.weekend_days) >= 7:
            raise ValueError("A work calendar must have at least one working weekday")

    @property
    def convention(self) -> DayCountConvention:
        if self.exclude_weekends:
            return DayCountConvention.BUSINESS_DAYS
        return DayCountConvention.CALENDAR_DAYS

    def is_working_day(self, day: date) -> bool:
        """True if ``day`` counts toward a waiting period."""
        if self.exclude_weekends and day.weekday() in self.weekend_days:
            return False
        if self.exclude_public_holidays and day in self.public_holidays:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "exclude_weekends": self.exclude_weekends,
            "weekend_days": sorted(self.weekend_days),
            "exclude_public_holidays": self.exclude_public_holidays,
            "public_holidays": sorted(d.isoformat() for d in self.public_holidays),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "WorkCalendar":
        if not data:
            return cls()
        return cls(
            exclude_weekends=bool(data.get("exclude_weekends", False)),
            weekend_days=frozenset(
                int(d) for d in data.get("weekend_days", sorted(DEFAULT_WEEKEND_DAYS))
            ),
            exclude_public_holidays=bool(data.get("exclude_public_holidays", False)),
            public_holidays=frozenset(
                date.fromisoformat(d) for d in data.get("public_holidays", [])
            ),
        )
