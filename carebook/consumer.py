from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from carebook.cache import AppointmentCache, FetchFailure
from carebook.models import EMPTY_SNAPSHOT, AppointmentSnapshot

logger = logging.getLogger(__name__)

Push = Callable[[dict], Awaitable[None]]


class AppointmentConsumer:
    """
    One mounted screen.

    mount() shows whatever is cached, subscribes, and kicks off a single
    refresh. Every snapshot the cache publishes is handed to `push`
    (a websocket send, usually) on its own task. unmount() drops the
    subscription and cancels anything still pending, so nothing reaches
    `push` after it returns.
    """

    def __init__(self, cache: AppointmentCache, push: Push, name: str = "consumer") -> None:
        self.name = name
        self.snapshot: AppointmentSnapshot = EMPTY_SNAPSHOT
        self.stale = False
        self.loading = False
        self.mounted = False
        self._cache = cache
        self._push = push
        self._handle: Optional[int] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    def mount(self) -> asyncio.Task:
        if self.mounted and self._refresh_task is not None:
            return self._refresh_task
        self.mounted = True
        self._deliver(self._cache.read())
        self._handle = self._cache.subscribe(self._deliver)
        self._refresh_task = asyncio.create_task(self.refresh())
        return self._refresh_task

    def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        if self._handle is not None:
            self._cache.unsubscribe(self._handle)
            self._handle = None
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    async def refresh(self) -> bool:
        """Pull-to-refresh; joins a fetch already in flight. Failures keep the cached list and flag it stale."""
        self.loading = True
        try:
            await self._cache.refresh()
            self.stale = False
            return True
        except FetchFailure as e:
            self.stale = True
            logger.info("[WS] %s refresh failed, showing cached data: %s", self.name, e.__cause__ or e)
            self._schedule({
                "type": "refresh_failed",
                "message": str(e),
                "data": e.stale.to_dict(),
            })
            return False
        finally:
            self.loading = False

    async def drain(self) -> None:
        """Wait for pushes already scheduled."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _deliver(self, snapshot: AppointmentSnapshot) -> None:
        if not self.mounted:
            return
        self.snapshot = snapshot
        self._schedule({"type": "snapshot", "data": snapshot.to_dict()})

    def _schedule(self, message: dict) -> None:
        if not self.mounted:
            return
        task = asyncio.create_task(self._push(message))
        self._pending.add(task)
        task.add_done_callback(self._on_push_done)

    def _on_push_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("[WS] %s push failed: %r", self.name, exc)
