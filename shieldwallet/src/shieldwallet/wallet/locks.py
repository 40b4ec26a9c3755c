"""
Per-account mutual exclusion for scan and spend operations.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from loguru import logger


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # holders plus waiters; the entry may only be pruned at zero
    refs: int = 0


class AccountLockRegistry:
    """
    Maps account identifiers to exclusive handles.

    The registry's own guard is held only while an entry is looked up,
    created, released or pruned, never while a caller waits for or holds an
    account lock. Entries nobody references are pruned lazily once the map
    grows beyond ``prune_threshold``.
    """

    def __init__(self, prune_threshold: int = 1024):
        self._guard = threading.Lock()
        self._entries: dict[str, _LockEntry] = {}
        self.prune_threshold = prune_threshold

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def is_locked(self, account_id: str) -> bool:
        with self._guard:
            entry = self._entries.get(account_id)
            return entry is not None and entry.lock.locked()

    def _checkout(self, account_id: str) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(account_id)
            if entry is None:
                if len(self._entries) >= self.prune_threshold:
                    self._prune_locked()
                entry = _LockEntry()
                self._entries[account_id] = entry
            entry.refs += 1
            return entry

    def _checkin(self, entry: _LockEntry) -> None:
        with self._guard:
            entry.refs -= 1

    def _prune_locked(self) -> int:
        stale = [key for key, entry in self._entries.items() if entry.refs == 0]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Pruned {len(stale)} idle account locks")
        return len(stale)

    def prune(self) -> int:
        """Drop entries of accounts with no pending work. Returns how many."""
        with self._guard:
            return self._prune_locked()

    @asynccontextmanager
    async def hold(self, account_id: str) -> AsyncIterator[None]:
        """Hold the account's lock for one scan-or-spend operation."""
        entry = self._checkout(account_id)
        try:
            async with entry.lock:
                yield
        finally:
            self._checkin(entry)
