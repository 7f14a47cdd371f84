"""
Cache Janitor

Periodically trims the fast-path caches and force-clears the in-flight set
if it has grown past its ceiling.
"""

import logging
from typing import Dict

from ..observability.metrics import record_counter
from .caches import FastPathCaches
from .periodic import PeriodicWorker
from .suppressor import InFlightSuppressor

logger = logging.getLogger(__name__)

DEFAULT_EVICTION_INTERVAL = 60.0


class CacheJanitor(PeriodicWorker):

    name = "CacheJanitor"

    def __init__(
        self,
        caches: FastPathCaches,
        suppressor: InFlightSuppressor,
        interval: float = DEFAULT_EVICTION_INTERVAL
    ):
        super().__init__(interval)
        self.caches = caches
        self.suppressor = suppressor

    async def run_once(self) -> Dict[str, int]:
        evicted = self.caches.evict()
        for cache, count in evicted.items():
            if count:
                record_counter("ingest_cache_evictions_total", count, {"cache": cache})

        evicted["in_flight"] = self.suppressor.force_clear_if_leaking()
        if any(evicted.values()):
            logger.debug(f"Cache janitor evicted {evicted}")
        return evicted
