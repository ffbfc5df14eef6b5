import os
import asyncio
import logging

from carebook.cache import AppointmentCache, FetchFailure, MAX_BACKOFF

logger = logging.getLogger(__name__)

CACHE_INTERVAL = float(os.getenv("CACHE_INTERVAL", "60"))


async def cache_loop(cache: AppointmentCache, interval: float = CACHE_INTERVAL, backoff: float = 1):
    """Keep the cache warm. Failures back off 1s, 2s, 4s ... up to MAX_BACKOFF."""
    initial_backoff = backoff

    while True:
        try:
            logger.debug("[WORKER] update started")
            snapshot = await cache.refresh()
            logger.info("[WORKER] update completed (%d appointments)", len(snapshot))
            backoff = initial_backoff
            await asyncio.sleep(interval)

        except FetchFailure as e:
            logger.warning("[WORKER] update failed: %s (cause: %r), retry in %ss", e, e.__cause__, backoff)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, MAX_BACKOFF)
