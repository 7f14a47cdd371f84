"""
Stale-Record Reaper

Records stuck in PROCESSING (crashed worker, lost task) would otherwise stay
there forever. The reaper periodically forces any PROCESSING record not
touched for ``stale_after`` seconds into FAILED with failure kind
``abandoned``; the idempotency guard then treats it as a duplicate.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..observability.metrics import record_counter
from .periodic import PeriodicWorker
from .store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_REAPER_INTERVAL = 60.0
DEFAULT_STALE_AFTER = 3600.0


class StaleRecordReaper(PeriodicWorker):

    name = "StaleRecordReaper"

    def __init__(
        self,
        store: RecordStore,
        interval: float = DEFAULT_REAPER_INTERVAL,
        stale_after: float = DEFAULT_STALE_AFTER
    ):
        super().__init__(interval)
        self.store = store
        self.stale_after = stale_after
        self.total_reaped = 0
        self.last_sweep_at: Optional[datetime] = None

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Fail every PROCESSING record older than the staleness window.

        Returns:
            Number of records reaped
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.stale_after)

        reaped = await self.store.fail_stale(cutoff, now=now)
        self.last_sweep_at = now

        if reaped:
            self.total_reaped += reaped
            record_counter("ingest_reaped_total", reaped)
            logger.warning(f"Reaped {reaped} records stuck in PROCESSING since before {cutoff.isoformat()}")

        return reaped

    async def run_once(self) -> int:
        return await self.sweep()
