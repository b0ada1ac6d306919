"""Keyed, task-reentrant asyncio locks.

Serializes mutations within a single conversation (state update, assignment
disable, escalation initiation) while different conversations proceed in
parallel. Reentrant per asyncio task so the escalation workflow can take the
conversation lock even when the orchestrator already holds it.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    owner: asyncio.Task | None = None
    depth: int = 0
    waiters: int = 0


class KeyedLocks:
    """One mutual-exclusion scope per key, created lazily and dropped when idle.

    Usage:
        locks = KeyedLocks()
        async with locks.hold(conversation_id):
            ...
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    def locked(self, key: str) -> bool:
        """Return True if some task currently holds ``key``."""
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        task = asyncio.current_task()
        entry = self._entries.get(key)

        if entry is not None and task is not None and entry.owner is task:
            entry.depth += 1
            try:
                yield
            finally:
                entry.depth -= 1
            return

        if entry is None:
            entry = _LockEntry()
            self._entries[key] = entry

        entry.waiters += 1
        try:
            await entry.lock.acquire()
        finally:
            entry.waiters -= 1

        entry.owner = task
        entry.depth = 1
        try:
            yield
        finally:
            entry.owner = None
            entry.depth = 0
            entry.lock.release()
            if entry.waiters == 0 and self._entries.get(key) is entry:
                del self._entries[key]
