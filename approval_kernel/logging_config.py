"""
Structured JSON logging for the approval kernel.

Every record under the ``approval_kernel`` logger namespace is written as one
JSON object per line: a fixed envelope (ts, level, logger, message), the
request-scoped fields held by ``LogContext`` (which chain, which actor, which
tenant), the record's ``extra`` payload, and for exceptions the kernel
error's ``code`` and structured attributes.

Log messages are snake_case event names (``chain_started``,
``decision_applied``, ``escalation_sweep_completed``); all detail goes in
``extra``.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "approval_kernel"

# ---------------------------------------------------------------------------
# Request-scoped context
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS: frozenset[str] = frozenset({
    "correlation_id",
    "chain_id",
    "actor_id",
    "tenant_id",
    "workflow_type",
    "trace_id",
})

_context: ContextVar[Mapping[str, str]] = ContextVar("approval_log_context", default={})


def _known(values: Mapping[str, Any]) -> dict[str, str]:
    return {
        key: str(val)
        for key, val in values.items()
        if val is not None and key in _CONTEXT_FIELDS
    }


class LogContext:
    """Request-scoped log fields (contextvars: safe across threads and tasks).

    Only the fields in ``_CONTEXT_FIELDS`` are carried; values are stored as
    strings and ``None`` never overwrites an existing value.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        _context.set({**_context.get(), **_known(fields)})

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the duration of the block, then restore the previous ones."""
        token = _context.set({**_context.get(), **_known(fields)})
        try:
            yield
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, val in vars(record).items():
            if key not in _RESERVED_ATTRS:
                payload.setdefault(key, val)
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))
        return json.dumps(payload, default=_to_json)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # ApprovalKernelError subclasses keep their data as public attributes
        for name, val in vars(exc).items():
            if not name.startswith("_"):
                fields[f"exc_{name}"] = val
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger ``approval_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``approval_kernel`` logger.

    Only the first call has any effect; later calls return immediately.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False
    kernel_logger.addHandler(handler)


def reset_logging() -> None:
    """Undo ``configure_logging`` (tests only)."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
