"""
Periodic Worker

Base class for background loops that run one unit of work every
``interval`` seconds. A failing cycle is logged and the loop keeps going.
"""

import asyncio
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class PeriodicWorker:
    """
    Subclasses implement run_once().

    Usage:
        worker = StaleRecordReaper(store, interval=60)
        await worker.start()
        ...
        await worker.stop()
    """

    name = "PeriodicWorker"

    def __init__(self, interval: float):
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"{self.name} started (interval {self.interval}s)")

    async def stop(self):
        """Stop the loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"{self.name} stopped")

    async def _run(self):
        """Main loop."""
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"{self.name} error: {e}", exc_info=True)

            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break

    async def run_once(self) -> Any:
        raise NotImplementedError
