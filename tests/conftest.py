"""
Shared Test Fixtures

Every test gets its own in-memory SQLite database, so record stores never
leak state between tests.
"""

import pytest

from src.core.database.adapter import DatabaseAdapter, DatabaseConfig
from src.core.ingestion.aggregates import AggregateStore
from src.core.ingestion.config import IngestionConfig
from src.core.ingestion.orchestrator import IngestionOrchestrator
from src.core.ingestion.store import RecordStore

from tests.fakes import FakeExtractor


@pytest.fixture
async def db():
    """In-memory SQLite adapter."""
    adapter = DatabaseAdapter(DatabaseConfig(backend="sqlite", sqlite_path=":memory:"))
    await adapter.connect()
    yield adapter
    await adapter.disconnect()


@pytest.fixture
async def store(db):
    record_store = RecordStore(db)
    await record_store.ensure_schema()
    return record_store


@pytest.fixture
async def aggregates(db, store):
    aggregate_store = AggregateStore(db)
    await aggregate_store.ensure_schema()
    return aggregate_store


@pytest.fixture
def config():
    """Config with short timeouts and no daily limit."""
    return IngestionConfig(
        cache_ceiling=100,
        in_flight_ceiling=10,
        eviction_interval=0.01,
        reaper_interval=0.01,
        stale_after_seconds=3600,
        extraction_timeout=1.0,
        daily_limit=0,
        backfill_concurrency=3,
        reaper_enabled=True,
    )


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def orchestrator(store, aggregates, extractor, config):
    return IngestionOrchestrator(store, aggregates, extractor, config=config)
