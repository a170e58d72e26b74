"""
Code Journal Backend — Keyed Advisory Locks
============================================

What:  A map of asyncio.Lock objects keyed by an ID, with reference counting.
Why:   Sidecar read-modify-write cycles (per file) and review appends
       (per submission) must not interleave within this process.
How:   `async with locks.hold(key):` creates the lock on first use and drops
       the entry once the last holder or waiter leaves, so the map only ever
       contains keys that are currently in use.

Scope:
    These locks serialize coroutines in one process. Multiple worker
    processes still rely on the relational uniqueness guards.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.refs = 0


class KeyedLock:
    """Reference-counted mutex per key."""

    def __init__(self, name: str = "keyed") -> None:
        self.name = name
        self._entries: Dict[Hashable, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries


# ── Process-wide lock maps ────────────────────────────────────────────────
file_locks = KeyedLock("file")
submission_locks = KeyedLock("submission")
