"""
Fingerprints for compiled approval chain definitions.

A chain stores the hash of the definition it was started from, so the exact
approver chain a request was routed through can be proven later, even after
the tenant's settings change.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        # Role sets: order-independent
        return sorted(str(_plain(v)) for v in value)
    raise TypeError(f"Cannot fingerprint value of type {type(value).__name__}")


def canonical_json(payload: Any) -> str:
    """Sorted keys, no whitespace; enums, dates, UUIDs and sets made plain."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=_plain)


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of ``canonical_json(payload)``."""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
