"""
Column types shared by every approval table.

Both types exist because SQLite and PostgreSQL disagree on storage: SQLite
has no UUID type and drops tzinfo from timestamps.  Values loaded from
either backend come back as ``uuid.UUID`` and aware UTC ``datetime``.
"""

from datetime import timezone
from uuid import UUID

from sqlalchemy import DateTime, String
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime normalized to UTC.

    Naive values are taken to be UTC on the way in; every loaded value is
    aware, so deadline comparisons never mix naive and aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
