"""
Ingestion Lifecycle Management

Starts and stops the background workers that sit next to an orchestrator:
the stale-record reaper and the cache janitor.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from ..observability.setup import init_telemetry
from .janitor import CacheJanitor
from .orchestrator import IngestionOrchestrator
from .reaper import StaleRecordReaper

logger = logging.getLogger(__name__)


@dataclass
class IngestionWorkers:
    janitor: CacheJanitor
    reaper: Optional[StaleRecordReaper] = None


@asynccontextmanager
async def ingestion_lifespan(orchestrator: IngestionOrchestrator, telemetry: bool = False):
    """
    Run the orchestrator's background workers for the duration of the block.

    The reaper only runs when INGEST_REAPER_ENABLED is true; in multi-instance
    deployments one instance (or the standalone runner) is enough.

    With ``telemetry=True`` tracing and metrics are initialized from the
    OTEL_* environment before the workers start. Hosts that already call
    init_observability() leave it off.

    Usage:
        async with ingestion_lifespan(orchestrator) as workers:
            ...
    """
    if telemetry:
        init_telemetry()

    config = orchestrator.config
    workers = IngestionWorkers(
        janitor=CacheJanitor(orchestrator.caches, orchestrator.suppressor, config.eviction_interval)
    )
    if config.reaper_enabled:
        workers.reaper = StaleRecordReaper(
            orchestrator.store,
            interval=config.reaper_interval,
            stale_after=config.stale_after_seconds,
        )
    else:
        logger.info("Stale-record reaper disabled: INGEST_REAPER_ENABLED=false")

    logger.info("Starting ingestion workers...")
    await workers.janitor.start()
    if workers.reaper:
        await workers.reaper.start()

    try:
        yield workers
    finally:
        logger.info("Stopping ingestion workers...")
        if workers.reaper:
            await workers.reaper.stop()
        await workers.janitor.stop()
