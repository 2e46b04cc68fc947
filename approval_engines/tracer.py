"""
``@traced_engine`` -- debug trace for pure engine calls.

Each call of a decorated engine function logs one APPROVAL_ENGINE_TRACE
record on ``approval_kernel.engines.tracer``: which engine (name and
version), a short fingerprint of the selected inputs, how long it took and
whether it raised.  Two calls with equal fingerprinted inputs log equal
fingerprints, which is how a decision plan is matched to the chain state
it was computed from.

Usage::

    @traced_engine("approval", "1.0", fingerprint_fields=("action", "actor_role"))
    def plan_decision(chain, action, actor_role=None):
        ...

Fingerprint fields may be passed positionally or by keyword.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import json
import logging
import time
from collections.abc import Callable
from datetime import date, datetime
from enum import Enum
from typing import Any

_logger = logging.getLogger("approval_kernel.engines.tracer")

TRACE_TYPE = "APPROVAL_ENGINE_TRACE"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(json.dumps(v, default=_plain, sort_keys=True) for v in value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """First 16 hex chars of SHA-256 over the named arguments.

    A field missing from ``arguments`` is fingerprinted as null.
    """
    selected = [[name, arguments.get(name)] for name in fingerprint_fields]
    canonical = json.dumps(selected, default=_plain, sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                arguments = signature.bind_partial(*args, **kwargs).arguments
                fingerprint = compute_input_fingerprint(fingerprint_fields, arguments)

            started = time.monotonic()
            failed = None
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                failed = type(exc).__name__
                raise
            finally:
                _logger.debug(
                    TRACE_TYPE,
                    extra={
                        "trace_type": TRACE_TYPE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "function": func.__qualname__,
                        "error": failed,
                    },
                )

        return wrapper

    return decorator
