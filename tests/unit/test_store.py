"""
Tests for the event record store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.core.database.adapter import UniqueViolation
from src.core.ingestion.errors import InvalidTransitionError
from src.core.ingestion.models import FailureKind, ProcessingRecord, ProcessingStatus, WorkoutMetrics
from src.core.ingestion.store import ERROR_MESSAGE_LIMIT

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def record(cast_hash="0x1", author_id=42, status=ProcessingStatus.PROCESSING, created_at=NOW, updated_at=NOW):
    return ProcessingRecord(
        cast_hash=cast_hash,
        author_id=author_id,
        status=status,
        created_at=created_at,
        updated_at=updated_at,
    )


class TestInsert:
    """Test insert_if_absent."""

    @pytest.mark.asyncio
    async def test_first_insert_wins(self, store):
        assert await store.insert_if_absent(record()) is True
        assert await store.insert_if_absent(record()) is False

        saved = await store.get("0x1")
        assert saved.status == ProcessingStatus.PROCESSING
        assert saved.author_id == 42
        assert saved.created_at == NOW

    @pytest.mark.asyncio
    async def test_raw_duplicate_insert_is_normalised(self, db, store):
        await store.insert_if_absent(record())

        with pytest.raises(UniqueViolation):
            await db.execute(
                "INSERT INTO processing_records (cast_hash, author_id, status, created_at, updated_at) "
                "VALUES ($1, $2, $3, $4, $5)",
                "0x1", 1, "processing", NOW, NOW
            )

    @pytest.mark.asyncio
    async def test_cannot_insert_terminal(self, store):
        with pytest.raises(InvalidTransitionError):
            await store.insert_if_absent(record(status=ProcessingStatus.COMPLETED))

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("0xmissing") is None


class TestCompareAndSet:
    """Test status updates guarded by the current status."""

    @pytest.mark.asyncio
    async def test_complete_once(self, store):
        await store.insert_if_absent(record())
        metrics = WorkoutMetrics(distance_km=5, duration_minutes=25)

        assert await store.complete("0x1", metrics, "screenshot") is True
        assert await store.complete("0x1", metrics, "screenshot") is False

        saved = await store.get("0x1")
        assert saved.status == ProcessingStatus.COMPLETED
        assert saved.distance_meters == 5000
        assert saved.duration_seconds == 1500
        assert saved.reasoning == "screenshot"

    @pytest.mark.asyncio
    async def test_fail_records_kind_and_truncates(self, store):
        await store.insert_if_absent(record())

        assert await store.fail("0x1", FailureKind.TRANSIENT, "x" * 2000) is True

        saved = await store.get("0x1")
        assert saved.status == ProcessingStatus.FAILED
        assert saved.failure_kind == FailureKind.TRANSIENT
        assert len(saved.error_message) == ERROR_MESSAGE_LIMIT

    @pytest.mark.asyncio
    async def test_claim_failed_clears_failure(self, store):
        await store.insert_if_absent(record())
        await store.fail("0x1", FailureKind.TRANSIENT, "timeout")

        later = NOW + timedelta(minutes=5)
        assert await store.claim("0x1", [ProcessingStatus.FAILED], now=later) is True

        saved = await store.get("0x1")
        assert saved.status == ProcessingStatus.PROCESSING
        assert saved.failure_kind is None
        assert saved.error_message is None
        assert saved.updated_at == later

    @pytest.mark.asyncio
    async def test_claim_wrong_status(self, store):
        await store.insert_if_absent(record())
        assert await store.claim("0x1", [ProcessingStatus.FAILED]) is False

    @pytest.mark.asyncio
    async def test_claim_from_completed_is_illegal(self, store):
        with pytest.raises(InvalidTransitionError):
            await store.claim("0x1", [ProcessingStatus.COMPLETED])

    @pytest.mark.asyncio
    async def test_completed_is_never_failed(self, store):
        await store.insert_if_absent(record())
        await store.complete("0x1", None)

        assert await store.fail("0x1", FailureKind.ABANDONED, "late") is False
        assert (await store.get("0x1")).status == ProcessingStatus.COMPLETED


class TestDelete:
    """Test delete_in_flight."""

    @pytest.mark.asyncio
    async def test_deletes_processing(self, store):
        await store.insert_if_absent(record())

        assert await store.delete_in_flight("0x1") is True
        assert await store.get("0x1") is None

    @pytest.mark.asyncio
    async def test_keeps_terminal(self, store):
        await store.insert_if_absent(record())
        await store.complete("0x1", None)

        assert await store.delete_in_flight("0x1") is False
        assert await store.get("0x1") is not None


class TestQueries:
    """Test staleness, counting and lookups."""

    @pytest.mark.asyncio
    async def test_fail_stale_only_touches_old_processing(self, store):
        old = NOW - timedelta(hours=2)
        await store.insert_if_absent(record("0xold", updated_at=old))
        await store.insert_if_absent(record("0xfresh", updated_at=NOW))
        await store.insert_if_absent(record("0xpending", status=ProcessingStatus.PENDING, updated_at=old))

        reaped = await store.fail_stale(NOW - timedelta(hours=1), now=NOW)

        assert reaped == 1
        stale = await store.get("0xold")
        assert stale.status == ProcessingStatus.FAILED
        assert stale.failure_kind == FailureKind.ABANDONED
        assert (await store.get("0xfresh")).status == ProcessingStatus.PROCESSING
        assert (await store.get("0xpending")).status == ProcessingStatus.PENDING

    @pytest.mark.asyncio
    async def test_count_for_author_excludes_failed_and_other_days(self, store):
        day = datetime(2026, 3, 14, tzinfo=timezone.utc)
        await store.insert_if_absent(record("0x1", created_at=day + timedelta(hours=1)))
        await store.insert_if_absent(record("0x2", created_at=day + timedelta(hours=23)))
        await store.insert_if_absent(record("0x3", created_at=day + timedelta(hours=2)))
        await store.fail("0x3", FailureKind.TRANSIENT, "boom")
        await store.insert_if_absent(record("0x4", created_at=day + timedelta(days=1)))
        await store.insert_if_absent(record("0x5", author_id=7, created_at=day))

        count = await store.count_for_author_between(42, day, day + timedelta(days=1))
        assert count == 2

    @pytest.mark.asyncio
    async def test_existing_hashes(self, store):
        await store.insert_if_absent(record("0x1"))
        await store.insert_if_absent(record("0x2"))

        found = await store.existing_hashes(["0x1", "0x2", "0x3", "0x1"])
        assert found == {"0x1", "0x2"}

    @pytest.mark.asyncio
    async def test_existing_hashes_empty(self, store):
        assert await store.existing_hashes([]) == set()

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.insert_if_absent(record("0x1"))
        await store.insert_if_absent(record("0x2"))
        await store.complete("0x2", None)

        stats = await store.get_stats()
        assert stats == {"pending": 0, "processing": 1, "completed": 1, "failed": 0}
