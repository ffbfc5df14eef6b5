from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from time import time
from typing import Any, Optional

from carebook.models import EMPTY_SNAPSHOT, AppointmentSnapshot, parse_snapshot
from carebook.subscriptions import Callback, SubscriptionRegistry

logger = logging.getLogger(__name__)

REFRESH_RETRIES = int(os.getenv("REFRESH_RETRIES", "0"))
REFRESH_BACKOFF = float(os.getenv("REFRESH_BACKOFF", "0.5"))
MAX_BACKOFF = 300  # seconds


class FetchFailure(Exception):
    """Refresh failed; `stale` is the snapshot still being served."""

    def __init__(self, message: str = "stale data retained", stale: AppointmentSnapshot = EMPTY_SNAPSHOT):
        super().__init__(message)
        self.stale = stale


@dataclass
class CacheState:
    current: AppointmentSnapshot = EMPTY_SNAPSHOT
    updated_at: Optional[float] = None
    status: str = "warming_up"  # warming_up | ready | error
    last_error: Optional[str] = None
    applied_seq: int = 0
    subscribers: SubscriptionRegistry = field(default_factory=SubscriptionRegistry)
    inflight: Optional[asyncio.Task] = None


class AppointmentCache:
    """
    Read-through cache for the user's booked appointments.

    read() answers from memory right away. refresh() goes to the source,
    swaps in the new snapshot and fans it out to subscribers. Callers that
    refresh while a fetch is running share that fetch instead of starting
    another one. `force=True` always starts a new fetch and is for
    in-process callers only; client-triggered refreshes never pass it.
    Whichever fetch started last wins, no matter which one finishes first.
    """

    def __init__(self, source: Any, retries: int = REFRESH_RETRIES, retry_backoff: float = REFRESH_BACKOFF) -> None:
        self._source = source
        self._retries = max(0, retries)
        self._retry_backoff = retry_backoff
        self._seq = 0
        self.state = CacheState()

    @property
    def source(self) -> Any:
        return self._source

    def read(self) -> AppointmentSnapshot:
        current = self.state.current
        return current if current is not None else EMPTY_SNAPSHOT

    def subscribe(self, callback: Callback) -> int:
        return self.state.subscribers.subscribe(callback)

    def unsubscribe(self, handle: int) -> None:
        self.state.subscribers.unsubscribe(handle)

    @property
    def refreshing(self) -> bool:
        task = self.state.inflight
        return task is not None and not task.done()

    async def refresh(self, force: bool = False) -> AppointmentSnapshot:
        task = self.state.inflight
        if force or task is None or task.done():
            self._seq += 1
            task = asyncio.create_task(self._run(self._seq))
            task.add_done_callback(self._on_done)
            self.state.inflight = task
        # one caller going away must not cancel the fetch for the others
        return await asyncio.shield(task)

    def status(self) -> dict:
        return {
            "status": self.state.status,
            "updated_at": self.state.updated_at,
            "count": len(self.state.current),
            "last_error": self.state.last_error,
            "subscribers": len(self.state.subscribers),
            "refreshing": self.refreshing,
        }

    def _on_done(self, task: asyncio.Task) -> None:
        if self.state.inflight is task:
            self.state.inflight = None
        if not task.cancelled():
            # marks the exception as retrieved when every waiter was cancelled
            task.exception()

    async def _run(self, seq: int) -> AppointmentSnapshot:
        try:
            snapshot = await self._fetch_with_retry()
        except Exception as e:
            logger.warning("[CACHE] refresh #%d failed: %s", seq, e)
            if seq > self.state.applied_seq:
                self.state.status = "error"
                self.state.last_error = str(e) or e.__class__.__name__
            raise FetchFailure(stale=self.state.current) from e

        if seq < self.state.applied_seq:
            logger.info("[CACHE] refresh #%d finished late, keeping #%d", seq, self.state.applied_seq)
            return self.state.current

        self.state.current = snapshot
        self.state.applied_seq = seq
        self.state.updated_at = time()
        self.state.status = "ready"
        self.state.last_error = None
        logger.info("[CACHE] refresh #%d applied (%d appointments)", seq, len(snapshot))

        self.state.subscribers.notify_all(snapshot)
        return snapshot

    async def _fetch_with_retry(self) -> AppointmentSnapshot:
        attempt = 0
        while True:
            try:
                result = await self._source.fetch()
                break
            except Exception as e:
                if attempt >= self._retries:
                    raise
                delay = min(self._retry_backoff * (2 ** attempt), MAX_BACKOFF)
                attempt += 1
                logger.info("[CACHE] fetch attempt %d failed (%s), retrying in %.2fs", attempt, e, delay)
                await asyncio.sleep(delay)

        if not isinstance(result, AppointmentSnapshot):
            result = parse_snapshot(result)
        return result


_cache: Optional[AppointmentCache] = None


def get_cache() -> AppointmentCache:
    """Process-wide cache, built on first use against the booking backend."""
    global _cache
    if _cache is None:
        from carebook.data_sources.booking_api import BookingApiSource
        _cache = AppointmentCache(BookingApiSource())
    return _cache


def set_cache(cache: Optional[AppointmentCache]) -> None:
    global _cache
    _cache = cache
