"""
Tests for the processing orchestrator.

Covers at-most-once processing under concurrent and repeated delivery, the
non-workout release path, failure handling and in-flight slot release.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.core.ingestion.errors import DailyLimitExceededError, ErrorCode, UnknownAuthorError
from src.core.ingestion.hooks import ProcessingHooks
from src.core.ingestion.models import (
    Classification,
    ExtractionResult,
    FailureKind,
    ProcessingStatus,
    RejectionReason,
    SubmissionOutcome,
    WorkoutMetrics,
)
from src.core.ingestion.orchestrator import IngestionOrchestrator, rejection_reason
from src.core.ingestion.policy import KnownAuthors

from tests.fakes import FakeExtractor, make_event, workout_result


class TestRejection:
    """Test events that never enter the pipeline."""

    @pytest.mark.asyncio
    async def test_reply_rejected(self, orchestrator, store, extractor):
        result = await orchestrator.submit_event(make_event(reply_to="0xparent"))

        assert result.outcome == SubmissionOutcome.REJECTED
        assert result.rejected_reason == RejectionReason.REPLY
        assert not result.accepted
        assert await store.get("0xabc123") is None
        assert extractor.calls == []
        assert len(orchestrator.suppressor) == 0

    @pytest.mark.parametrize("cast_hash", ["abc", "0x", "0xZZ", "0x" + "a" * 65, ""])
    @pytest.mark.asyncio
    async def test_malformed_hash_rejected(self, orchestrator, store, cast_hash):
        result = await orchestrator.submit_event(make_event(cast_hash=cast_hash))

        assert result.outcome == SubmissionOutcome.REJECTED
        assert result.rejected_reason == RejectionReason.MALFORMED_HASH
        assert await store.get_stats() == {"pending": 0, "processing": 0, "completed": 0, "failed": 0}

    def test_valid_hashes(self):
        assert rejection_reason(make_event(cast_hash="0x" + "f" * 64)) is None
        assert rejection_reason(make_event(cast_hash="0xA1")) is None


class TestHappyPath:
    """Test a workout going all the way to COMPLETED."""

    @pytest.mark.asyncio
    async def test_completes_and_updates_aggregate(self, orchestrator, store, aggregates, extractor):
        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.COMPLETED
        assert result.classification == Classification.NEW
        assert result.accepted
        assert result.metrics.distance_km == 5.0

        saved = await store.get("0xabc123")
        assert saved.status == ProcessingStatus.COMPLETED
        assert saved.distance_meters == 5000

        totals = await aggregates.get(42)
        assert totals.total_runs == 1
        assert totals.total_distance_meters == 5000
        assert totals.total_duration_seconds == 1500

        assert "0xabc123" in orchestrator.caches.processed
        assert extractor.calls == ["0xabc123"]

    @pytest.mark.asyncio
    async def test_workout_without_metrics_skips_aggregate(self, store, aggregates, config):
        extractor = FakeExtractor(result=ExtractionResult(is_workout=True, metrics=WorkoutMetrics()))
        orchestrator = IngestionOrchestrator(store, aggregates, extractor, config=config)

        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.COMPLETED
        assert await aggregates.get(42) is None

    @pytest.mark.asyncio
    async def test_completed_hook_fires_once(self, store, aggregates, extractor, config):
        hooks = ProcessingHooks()
        seen = []

        @hooks.on_completed
        async def record(cast_hash, metrics):
            seen.append((cast_hash, metrics.distance_km))

        orchestrator = IngestionOrchestrator(store, aggregates, extractor, hooks=hooks, config=config)
        await orchestrator.submit_event(make_event())
        await orchestrator.submit_event(make_event())

        assert seen == [("0xabc123", 5.0)]

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_fail_submission(self, store, aggregates, extractor, config):
        hooks = ProcessingHooks()

        @hooks.on_completed
        async def explode(cast_hash, metrics):
            raise RuntimeError("notification service down")

        orchestrator = IngestionOrchestrator(store, aggregates, extractor, hooks=hooks, config=config)
        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.COMPLETED


class TestAtMostOnce:
    """Test duplicate delivery in its various shapes."""

    @pytest.mark.asyncio
    async def test_simultaneous_delivery_extracts_once(self, store, aggregates, config):
        """Two deliveries in the same instant: one extraction, one in-flight duplicate."""
        extractor = FakeExtractor(delay=0.05)
        orchestrator = IngestionOrchestrator(store, aggregates, extractor, config=config)

        first, second = await asyncio.gather(
            orchestrator.submit_event(make_event()),
            orchestrator.submit_event(make_event()),
        )

        outcomes = sorted([first.outcome, second.outcome])
        assert outcomes == sorted([SubmissionOutcome.COMPLETED, SubmissionOutcome.IN_FLIGHT])
        assert extractor.calls == ["0xabc123"]
        assert (await aggregates.get(42)).total_runs == 1
        assert orchestrator.stats.concurrent_duplicates == 1

    @pytest.mark.asyncio
    async def test_many_concurrent_submissions(self, store, aggregates, config):
        extractor = FakeExtractor(delay=0.02)
        orchestrator = IngestionOrchestrator(store, aggregates, extractor, config=config)

        results = await asyncio.gather(*[
            orchestrator.submit_event(make_event()) for _ in range(20)
        ])

        completed = [r for r in results if r.outcome == SubmissionOutcome.COMPLETED]
        assert len(completed) == 1
        assert all(r.duplicate for r in results if r is not completed[0])
        assert len(extractor.calls) == 1
        assert (await aggregates.get(42)).total_runs == 1

    @pytest.mark.asyncio
    async def test_redelivery_after_completion(self, orchestrator, extractor):
        await orchestrator.submit_event(make_event())
        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.DUPLICATE
        assert result.duplicate
        assert extractor.calls == ["0xabc123"]
        assert orchestrator.stats.duplicates_from_cache == 1

    @pytest.mark.asyncio
    async def test_replay_after_restart(self, store, aggregates, config):
        """A fresh process with empty caches still sees the stored COMPLETED record."""
        before = IngestionOrchestrator(store, aggregates, FakeExtractor(), config=config)
        await before.submit_event(make_event())

        extractor = FakeExtractor()
        after = IngestionOrchestrator(store, aggregates, extractor, config=config)
        result = await after.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.DUPLICATE
        assert extractor.calls == []
        assert after.stats.duplicates_from_store == 1
        assert (await aggregates.get(42)).total_runs == 1

    @pytest.mark.asyncio
    async def test_two_processes_increment_aggregate_once(self, store, aggregates, config):
        """Separate suppressors both extract; the completion compare-and-set picks one winner."""
        first = IngestionOrchestrator(store, aggregates, FakeExtractor(delay=0.02), config=config)
        second = IngestionOrchestrator(store, aggregates, FakeExtractor(delay=0.04), config=config)

        results = await asyncio.gather(
            first.submit_event(make_event()),
            second.submit_event(make_event()),
        )

        outcomes = sorted(r.outcome for r in results)
        assert outcomes == sorted([SubmissionOutcome.COMPLETED, SubmissionOutcome.DUPLICATE])
        totals = await aggregates.get(42)
        assert totals.total_runs == 1
        assert totals.total_distance_meters == 5000

    @pytest.mark.asyncio
    async def test_workout_survives_concurrent_not_workout_verdict(self, store, aggregates, config):
        """A faster actor deleting the record as a non-workout cannot erase a workout."""
        workout = IngestionOrchestrator(
            store, aggregates, FakeExtractor(delay=0.05), config=config
        )
        not_workout = IngestionOrchestrator(
            store, aggregates,
            FakeExtractor(result=ExtractionResult.not_workout("Blurry photo"), delay=0.01),
            config=config,
        )

        first, second = await asyncio.gather(
            workout.submit_event(make_event()),
            not_workout.submit_event(make_event()),
        )

        assert second.outcome == SubmissionOutcome.NOT_WORKOUT
        assert first.outcome == SubmissionOutcome.COMPLETED
        saved = await store.get("0xabc123")
        assert saved.status == ProcessingStatus.COMPLETED
        assert (await aggregates.get(42)).total_runs == 1
        assert "0xabc123" in workout.caches.processed

    @pytest.mark.asyncio
    async def test_reaped_during_extraction_is_not_counted(self, store, aggregates, config):
        """If the reaper fails the record mid-extraction, completion loses."""

        class ReapingExtractor(FakeExtractor):
            async def extract(self, event):
                await store.fail_stale(datetime.now(timezone.utc) + timedelta(seconds=1))
                return await super().extract(event)

        orchestrator = IngestionOrchestrator(store, aggregates, ReapingExtractor(), config=config)
        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.DUPLICATE
        assert await aggregates.get(42) is None
        saved = await store.get("0xabc123")
        assert saved.status == ProcessingStatus.FAILED
        assert saved.failure_kind == FailureKind.ABANDONED


class TestNotWorkout:
    """Test the non-workout release path."""

    @pytest.mark.asyncio
    async def test_record_deleted_and_resubmission_is_new(self, store, aggregates, config):
        extractor = FakeExtractor(result=ExtractionResult.not_workout("Photo of a dog"))
        orchestrator = IngestionOrchestrator(store, aggregates, extractor, config=config)

        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.NOT_WORKOUT
        assert result.accepted
        assert result.message == "Photo of a dog"
        assert await store.get("0xabc123") is None
        assert "0xabc123" not in orchestrator.caches.processed

        extractor.result = workout_result()
        again = await orchestrator.submit_event(make_event())

        assert again.classification == Classification.NEW
        assert again.outcome == SubmissionOutcome.COMPLETED
        assert len(extractor.calls) == 2


class TestFailures:
    """Test extraction failures, timeouts and business errors."""

    @pytest.mark.asyncio
    async def test_timeout_fails_then_resubmission_retries(self, store, aggregates, config):
        config.extraction_timeout = 0.05
        extractor = FakeExtractor(delay=1.0)
        orchestrator = IngestionOrchestrator(store, aggregates, extractor, config=config)

        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.FAILED
        assert "timed out" in result.error
        assert result.error_code == ErrorCode.EXTRACTION_TIMEOUT
        saved = await store.get("0xabc123")
        assert saved.status == ProcessingStatus.FAILED
        assert saved.failure_kind == FailureKind.TRANSIENT

        extractor.delay = 0
        retry = await orchestrator.submit_event(make_event())

        assert retry.classification == Classification.NEEDS_PROCESSING
        assert retry.outcome == SubmissionOutcome.COMPLETED
        assert len(extractor.calls) == 2
        assert (await aggregates.get(42)).total_runs == 1

    @pytest.mark.asyncio
    async def test_extraction_error_marks_failed_and_fires_hook(self, store, aggregates, config):
        hooks = ProcessingHooks()
        failures = []

        @hooks.on_failed
        async def record(cast_hash, reason):
            failures.append((cast_hash, reason))

        extractor = FakeExtractor(error=ValueError("vision model returned garbage"))
        orchestrator = IngestionOrchestrator(store, aggregates, extractor, hooks=hooks, config=config)

        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.FAILED
        assert result.error_type == "ValueError"
        assert failures == [("0xabc123", "vision model returned garbage")]
        assert (await store.get("0xabc123")).status == ProcessingStatus.FAILED
        assert len(orchestrator.suppressor) == 0

    @pytest.mark.asyncio
    async def test_business_error_from_policy_propagates(self, store, aggregates, extractor, config):
        orchestrator = IngestionOrchestrator(
            store, aggregates, extractor, policy=KnownAuthors([1]), config=config
        )

        with pytest.raises(UnknownAuthorError):
            await orchestrator.submit_event(make_event())

        assert len(orchestrator.suppressor) == 0
        assert extractor.calls == []
        assert await store.get("0xabc123") is None

    @pytest.mark.asyncio
    async def test_business_error_during_processing_propagates(self, store, aggregates, config):
        extractor = FakeExtractor(error=DailyLimitExceededError(42, 1))
        orchestrator = IngestionOrchestrator(store, aggregates, extractor, config=config)

        with pytest.raises(DailyLimitExceededError):
            await orchestrator.submit_event(make_event())

        saved = await store.get("0xabc123")
        assert saved.status == ProcessingStatus.FAILED
        assert saved.failure_kind == FailureKind.BUSINESS
        assert len(orchestrator.suppressor) == 0

        # Business failures are not retried automatically
        extractor.error = None
        again = await orchestrator.submit_event(make_event())
        assert again.outcome == SubmissionOutcome.DUPLICATE

    @pytest.mark.asyncio
    async def test_infrastructure_error_becomes_failed_result(self, aggregates, extractor, config):
        class BrokenStore:
            async def get(self, cast_hash):
                raise ConnectionError("database unavailable")

        orchestrator = IngestionOrchestrator(BrokenStore(), aggregates, extractor, config=config)
        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.FAILED
        assert result.error_type == "ConnectionError"
        assert result.error_code == ErrorCode.INTERNAL_ERROR
        assert len(orchestrator.suppressor) == 0

    @pytest.mark.asyncio
    async def test_aggregate_failure_keeps_completion(self, store, extractor, config):
        class BrokenAggregates:
            async def increment(self, author_id, metrics, run_at):
                raise ConnectionError("aggregate table locked")

        orchestrator = IngestionOrchestrator(store, BrokenAggregates(), extractor, config=config)
        result = await orchestrator.submit_event(make_event())

        assert result.outcome == SubmissionOutcome.COMPLETED
        assert (await store.get("0xabc123")).status == ProcessingStatus.COMPLETED


class TestReplyClaims:
    """Test claim_reply."""

    @pytest.mark.asyncio
    async def test_claim_once(self, orchestrator):
        assert orchestrator.claim_reply("0xabc") is True
        assert orchestrator.claim_reply("0xabc") is False
        assert orchestrator.claim_reply("0xdef") is True


class TestHealth:
    """Test health reporting."""

    @pytest.mark.asyncio
    async def test_health_counts(self, orchestrator):
        await orchestrator.submit_event(make_event())
        await orchestrator.submit_event(make_event())
        await orchestrator.submit_event(make_event(reply_to="0xparent"))

        health = orchestrator.health()

        assert health["status"] == "healthy"
        assert health["total_submissions"] == 3
        assert health["completed"] == 1
        assert health["duplicates_detected"] == 1
        assert health["duplicates_from_cache"] == 1
        assert health["rejected"] == 1
        assert health["duplicate_rate"] == round(1 / 3, 4)
        assert health["in_flight"] == 0
        assert health["cache_sizes"] == {"processed": 1, "replied": 0}
        assert health["uptime_seconds"] >= 0
