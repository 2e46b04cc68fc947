"""
Declarative base for the approval tables.

Every model gets a surrogate ``id`` (uuid4) in addition to its business key
(``chain_id``, ``record_id``), and ``Mapped[datetime]`` / ``Mapped[UUID]``
annotations resolve to the portable column types in ``db/types.py``.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from approval_kernel.db.types import UTCDateTime, UUIDString


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
