"""
ChainLockRegistry -- in-process mutual exclusion per approval chain.

Decisions, auto-approvals and cancellations for the SAME chain are
serialized; different chains never block each other.  Entries are
reference counted and dropped when the last holder releases, so the
registry does not grow with the number of chains ever touched.

This guards a single process.  Across processes the chain row lock
(SELECT ... FOR UPDATE) and the optimistic ``version`` check apply.
"""

import threading
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID


class _LockEntry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class ChainLockRegistry:
    """Map of chain id -> lock, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[UUID, _LockEntry] = {}

    @contextmanager
    def hold(self, chain_id: UUID) -> Iterator[None]:
        """Hold the lock for ``chain_id`` for the duration of the block."""
        with self._guard:
            entry = self._entries.get(chain_id)
            if entry is None:
                entry = self._entries[chain_id] = _LockEntry()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[chain_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


# Shared by every orchestrator and escalation timer in the process.
default_chain_locks = ChainLockRegistry()
