"""Command lock manager — rejects duplicate in-flight operations per user.

A process-local table keyed by (user, operation). Acquiring a held key fails
immediately with ``OperationInProgress``; nothing queues. The janitor task
evicts entries whose holder never released them.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from .errors import OperationInProgress

T = TypeVar("T")


@dataclass(frozen=True)
class LockKey:
    user_id: str
    operation: str

    def __str__(self) -> str:
        return f"{self.user_id}:{self.operation}"


class CommandLockManager:
    """In-process reject-on-contention guard with a stale-entry janitor."""

    def __init__(
        self,
        sweep_interval: float = 60.0,
        stale_after: float = 30.0,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sweep_interval = sweep_interval
        self._stale_after = stale_after
        self._logger = logger or logging.getLogger("economy.locks")
        self._clock = clock
        # key → (acquired_at, token)
        self._held: dict[LockKey, tuple[float, int]] = {}
        self._tokens = itertools.count(1)
        self._janitor: asyncio.Task | None = None

    @property
    def active_count(self) -> int:
        return len(self._held)

    def is_held(self, key: LockKey) -> bool:
        return key in self._held

    def acquire(self, key: LockKey) -> int:
        """Take the key or raise ``OperationInProgress``. Returns a release token."""
        if key in self._held:
            raise OperationInProgress(key)
        token = next(self._tokens)
        self._held[key] = (self._clock(), token)
        return token

    def release(self, key: LockKey, token: int | None = None) -> None:
        """Drop the key. With a token, only if it still belongs to that holder."""
        entry = self._held.get(key)
        if entry is None:
            return
        if token is not None and entry[1] != token:
            return
        del self._held[key]

    @asynccontextmanager
    async def hold(self, user_id: str, operation: str) -> AsyncIterator[LockKey]:
        key = LockKey(user_id, operation)
        token = self.acquire(key)
        try:
            yield key
        finally:
            self.release(key, token)

    async def with_lock(self, key: LockKey, fn: Callable[[], Awaitable[T]]) -> T:
        token = self.acquire(key)
        try:
            return await fn()
        finally:
            self.release(key, token)

    def sweep(self) -> int:
        """Evict entries older than the stale threshold. Returns the count."""
        cutoff = self._clock() - self._stale_after
        stale = [k for k, (acquired, _) in self._held.items() if acquired < cutoff]
        for key in stale:
            del self._held[key]
            self._logger.warning("Evicted stale command lock %s", key)
        return len(stale)

    # ══════════════════════════════════════════════════════════
    #  Janitor
    # ══════════════════════════════════════════════════════════

    async def start(self) -> None:
        if self._janitor is None:
            self._janitor = asyncio.create_task(self._janitor_loop())
            self._logger.info("Command lock janitor started (every %.0fs)", self._sweep_interval)

    async def stop(self) -> None:
        if self._janitor is not None:
            self._janitor.cancel()
            await asyncio.gather(self._janitor, return_exceptions=True)
            self._janitor = None

    async def _janitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                self.sweep()
            except Exception:
                self._logger.exception("Command lock sweep failed")
