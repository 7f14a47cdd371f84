"""
Stale-Record Reaper Runner

Standalone process that runs the reaper against the shared record store,
for deployments where webhook instances run with INGEST_REAPER_ENABLED=false.

Usage:
    python -m src.core.ingestion.runner

Environment Variables:
    DATABASE_BACKEND / SQLITE_PATH / DATABASE_URL: record store location
    INGEST_REAPER_INTERVAL: seconds between sweeps (default: 60)
    INGEST_STALE_AFTER_SECONDS: PROCESSING age before reaping (default: 3600)
    LOG_LEVEL: Logging level (default: INFO)
    LOG_STRUCTURED: JSON log lines (default: true)
    OTEL_ENABLED / OTEL_EXPORTER_OTLP_ENDPOINT: export reaper metrics and spans
"""

import sys
import signal
import asyncio
import logging
from typing import Optional

from ..database.adapter import close_database, get_database
from ..observability.setup import init_observability
from .config import IngestionConfig
from .reaper import StaleRecordReaper
from .store import RecordStore

logger = logging.getLogger(__name__)


class ReaperRunner:
    """
    Manages the reaper lifecycle with graceful shutdown.
    """

    def __init__(self, config: Optional[IngestionConfig] = None, store: Optional[RecordStore] = None):
        self.config = config or IngestionConfig()
        self.store = store
        self.reaper: Optional[StaleRecordReaper] = None
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        """Handle shutdown signal."""
        if self._shutdown_requested:
            logger.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(1)

        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self.request_shutdown()

    def request_shutdown(self):
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def run(self, install_signal_handlers: bool = True):
        """Run the reaper until shutdown is requested."""
        logger.info("Starting Stale-Record Reaper Runner")
        logger.info(f"  Sweep interval: {self.config.reaper_interval}s")
        logger.info(f"  Stale after: {self.config.stale_after_seconds}s")

        if install_signal_handlers:
            self._setup_signal_handlers()

        if self.store is None:
            self.store = RecordStore(await get_database())
        await self.store.ensure_schema()

        self.reaper = StaleRecordReaper(
            self.store,
            interval=self.config.reaper_interval,
            stale_after=self.config.stale_after_seconds,
        )

        try:
            await self.reaper.start()
            logger.info("Stale-Record Reaper is running")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Stale-Record Reaper error: {e}", exc_info=True)
            raise
        finally:
            logger.info("Stopping Stale-Record Reaper")
            if self.reaper:
                await self.reaper.stop()
            logger.info("Stale-Record Reaper stopped")

    async def health_check(self) -> dict:
        """Return health status for monitoring."""
        running = bool(self.reaper and self.reaper.running)
        return {
            "status": "healthy" if running else "unhealthy",
            "running": running,
            "total_reaped": self.reaper.total_reaped if self.reaper else 0,
            "last_sweep_at": (
                self.reaper.last_sweep_at.isoformat()
                if self.reaper and self.reaper.last_sweep_at else None
            ),
            "shutdown_requested": self._shutdown_requested
        }


async def main():
    """Main entry point."""
    init_observability()

    runner = ReaperRunner()
    try:
        await runner.run()
    finally:
        await close_database()


if __name__ == "__main__":
    asyncio.run(main())
