"""
Ingestion Configuration

Tunables for the orchestrator and its background workers, read from the
environment the same way DatabaseConfig is.
"""

import os
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class IngestionConfig:
    """
    Environment variables:
        INGEST_CACHE_CEILING: fast-path cache size before eviction (default 10000)
        INGEST_IN_FLIGHT_CEILING: in-flight set size before force-clear (default 100)
        INGEST_EVICTION_INTERVAL: seconds between cache janitor runs (default 60)
        INGEST_REAPER_INTERVAL: seconds between reaper sweeps (default 60)
        INGEST_STALE_AFTER_SECONDS: PROCESSING age before reaping (default 3600)
        INGEST_EXTRACTION_TIMEOUT: extraction call timeout in seconds (default 30)
        INGEST_DAILY_LIMIT: workouts per author per UTC day, 0 for no limit
        INGEST_BACKFILL_CONCURRENCY: backfill worker tasks (default 4)
        INGEST_REAPER_ENABLED: run the reaper in this process (default true)
    """

    def __init__(
        self,
        cache_ceiling: Optional[int] = None,
        in_flight_ceiling: Optional[int] = None,
        eviction_interval: Optional[float] = None,
        reaper_interval: Optional[float] = None,
        stale_after_seconds: Optional[float] = None,
        extraction_timeout: Optional[float] = None,
        daily_limit: Optional[int] = None,
        backfill_concurrency: Optional[int] = None,
        reaper_enabled: Optional[bool] = None
    ):
        self.cache_ceiling = cache_ceiling if cache_ceiling is not None else int(
            os.getenv("INGEST_CACHE_CEILING", "10000"))
        self.in_flight_ceiling = in_flight_ceiling if in_flight_ceiling is not None else int(
            os.getenv("INGEST_IN_FLIGHT_CEILING", "100"))
        self.eviction_interval = eviction_interval if eviction_interval is not None else float(
            os.getenv("INGEST_EVICTION_INTERVAL", "60"))
        self.reaper_interval = reaper_interval if reaper_interval is not None else float(
            os.getenv("INGEST_REAPER_INTERVAL", "60"))
        self.stale_after_seconds = stale_after_seconds if stale_after_seconds is not None else float(
            os.getenv("INGEST_STALE_AFTER_SECONDS", "3600"))
        self.extraction_timeout = extraction_timeout if extraction_timeout is not None else float(
            os.getenv("INGEST_EXTRACTION_TIMEOUT", "30"))
        self.daily_limit = daily_limit if daily_limit is not None else int(
            os.getenv("INGEST_DAILY_LIMIT", "0"))
        self.backfill_concurrency = backfill_concurrency if backfill_concurrency is not None else int(
            os.getenv("INGEST_BACKFILL_CONCURRENCY", "4"))
        self.reaper_enabled = reaper_enabled if reaper_enabled is not None else _env_bool(
            "INGEST_REAPER_ENABLED", "true")

    def to_dict(self) -> dict:
        return dict(self.__dict__)
