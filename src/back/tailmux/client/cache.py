"""Short-lived cache for the tmux session listing."""
from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

SESSION_CACHE_TTL = 5.0

Fetch = Callable[[], Awaitable[dict[str, Any]]]


class SessionCache:
    """Caches the session listing for ``ttl`` seconds.

    Concurrent non-forced callers share one in-flight request. A forced
    call always issues a fresh request without joining or replacing the
    shared one; its result still refreshes the cache.
    """

    def __init__(
        self,
        fetch: Fetch,
        ttl: float = SESSION_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self.ttl = ttl
        self._clock = clock
        self._data: dict[str, Any] | None = None
        self._fetched_at = 0.0
        self._inflight: asyncio.Task | None = None
        # Bumped by invalidate(); fetches started under an older value are not stored.
        self._generation = 0

    @property
    def fresh(self) -> bool:
        return self._data is not None and (self._clock() - self._fetched_at) < self.ttl

    async def get(self, force: bool = False) -> dict[str, Any]:
        """Return the session listing, fetching if stale, missing, or forced.

        Raises:
            Whatever the fetch function raises, to every waiter.
        """
        if not force:
            if self.fresh:
                return self._data
            if self._inflight is not None:
                return await asyncio.shield(self._inflight)

        task = asyncio.ensure_future(self._load(self._generation))
        if not force:
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    async def _load(self, generation: int) -> dict[str, Any]:
        data = await self._fetch()
        if generation == self._generation:
            self._data = data
            self._fetched_at = self._clock()
        return data

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    def invalidate(self) -> None:
        """Drop the cached listing and detach any fetch already in flight.

        Callers already waiting on that fetch still get its result, but it is
        not cached and later callers start a new request.
        """
        self._generation += 1
        self._data = None
        self._fetched_at = 0.0
        self._inflight = None
