from __future__ import annotations

import itertools
import logging
from typing import Callable, Dict

from carebook.models import AppointmentSnapshot

logger = logging.getLogger(__name__)

Callback = Callable[[AppointmentSnapshot], None]


class SubscriptionRegistry:
    """
    Handle -> callback registry with ordered fan-out.

    Callbacks run synchronously inside notify_all, in registration order.
    A callback that raises is logged and skipped; the rest still get the
    snapshot.
    """

    def __init__(self) -> None:
        self._callbacks: Dict[int, Callback] = {}  # dict keeps insertion order
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._callbacks)

    def __contains__(self, handle: object) -> bool:
        return handle in self._callbacks

    def subscribe(self, callback: Callback) -> int:
        handle = next(self._ids)
        self._callbacks[handle] = callback
        return handle

    def unsubscribe(self, handle: int) -> None:
        self._callbacks.pop(handle, None)

    def notify_all(self, snapshot: AppointmentSnapshot) -> int:
        delivered = 0
        for handle, callback in list(self._callbacks.items()):
            # removed by an earlier callback in this same fan-out
            if handle not in self._callbacks:
                continue
            try:
                callback(snapshot)
                delivered += 1
            except Exception:
                logger.exception("[CACHE] subscriber %s failed", handle)
        return delivered
