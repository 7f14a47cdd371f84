"""
Processing Orchestrator

Single entry point for every "cast created" event, whether it comes from the
live webhook or a backfill job:

    reject -> in-flight check -> idempotency guard -> extraction
           -> COMPLETED (+ aggregate, cache, hooks) | delete (not a workout)
           | FAILED

The in-flight slot taken for an event is released on every exit path.
Business errors reach the caller; infrastructure errors become a FAILED
result so a webhook handler can acknowledge and move on.
"""

import asyncio
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from ..observability.metrics import record_counter, record_histogram
from ..observability.tracing import add_cast_hash_to_span, create_span, traced
from .aggregates import AggregateStore
from .caches import FastPathCaches
from .config import IngestionConfig
from .errors import BusinessRuleError, ErrorCode
from .guard import IdempotencyGuard
from .hooks import ProcessingHooks
from .models import (
    Classification,
    Event,
    ExtractionResult,
    FailureKind,
    ProcessingRecord,
    ProcessingStatus,
    RejectionReason,
    SubmissionOutcome,
    SubmissionResult,
)
from .policy import AuthorPolicy, build_policy
from .stats import IngestionStats
from .store import RecordStore
from .suppressor import InFlightSuppressor

logger = logging.getLogger(__name__)

CAST_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{1,64}$")


class WorkoutExtractor(Protocol):
    """Vision collaborator that reads workout numbers off a cast's images."""

    async def extract(self, event: Event) -> ExtractionResult:
        ...


def rejection_reason(event: Event) -> Optional[RejectionReason]:
    """Why an event is ineligible for the pipeline, or None."""
    if event.is_reply:
        return RejectionReason.REPLY
    if not CAST_HASH_PATTERN.match(event.cast_hash):
        return RejectionReason.MALFORMED_HASH
    return None


class IngestionOrchestrator:
    """
    Usage:
        orchestrator = IngestionOrchestrator(RecordStore(db), AggregateStore(db), extractor)
        result = await orchestrator.submit_event(event)
        if result.accepted:
            ...
    """

    def __init__(
        self,
        store: RecordStore,
        aggregates: AggregateStore,
        extractor: WorkoutExtractor,
        caches: Optional[FastPathCaches] = None,
        suppressor: Optional[InFlightSuppressor] = None,
        policy: Optional[AuthorPolicy] = None,
        hooks: Optional[ProcessingHooks] = None,
        config: Optional[IngestionConfig] = None
    ):
        self.config = config or IngestionConfig()
        self.store = store
        self.aggregates = aggregates
        self.extractor = extractor
        self.caches = caches or FastPathCaches(ceiling=self.config.cache_ceiling)
        self.suppressor = suppressor or InFlightSuppressor(self.config.in_flight_ceiling)
        self.hooks = hooks or ProcessingHooks()
        self.stats = IngestionStats()
        self.guard = IdempotencyGuard(
            store,
            self.caches,
            policy or build_policy(store, daily_limit=self.config.daily_limit),
            self.stats,
        )

    @traced("ingest.submit_event")
    async def submit_event(self, event: Event, reclaim_failed: bool = False) -> SubmissionResult:
        """
        Process one event at most once.

        Args:
            event: the inbound cast
            reclaim_failed: also retry abandoned/business FAILED records

        Raises:
            BusinessRuleError: policy refusal, conflicting record, or a
                business error raised during processing
        """
        cast_hash = event.cast_hash
        started = time.monotonic()
        self.stats.total_submissions += 1
        record_counter("ingest_submissions_total")
        add_cast_hash_to_span(cast_hash)

        reason = rejection_reason(event)
        if reason is not None:
            self.stats.rejected += 1
            logger.info(f"Rejected {cast_hash}: {reason.value}", extra={"cast_hash": cast_hash})
            return SubmissionResult(
                cast_hash=cast_hash,
                outcome=SubmissionOutcome.REJECTED,
                rejected_reason=reason,
                message=f"Event rejected: {reason.value}",
            )

        if not self.suppressor.try_enter(cast_hash):
            self.stats.mark_duplicate("concurrent")
            record_counter("ingest_duplicates_total", attributes={"source": "concurrent"})
            logger.info(f"{cast_hash} already in flight, skipping", extra={"cast_hash": cast_hash})
            return SubmissionResult(
                cast_hash=cast_hash,
                outcome=SubmissionOutcome.IN_FLIGHT,
                classification=Classification.DUPLICATE,
                message="Event is already being processed",
            )

        try:
            return await self._process(event, reclaim_failed)
        finally:
            self.suppressor.leave(cast_hash)
            record_histogram("ingest_submission_duration_seconds", time.monotonic() - started)

    def claim_reply(self, cast_hash: str) -> bool:
        """
        Reserve the right to reply to ``cast_hash``.

        True the first time per process, False afterwards.
        """
        if cast_hash in self.caches.replied:
            return False
        self.caches.replied.add(cast_hash)
        return True

    def health(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            **self.stats.to_dict(),
            "in_flight": len(self.suppressor),
            "cache_sizes": self.caches.sizes(),
        }

    async def _process(self, event: Event, reclaim_failed: bool) -> SubmissionResult:
        cast_hash = event.cast_hash

        try:
            classification = await self.guard.classify(
                cast_hash, event.author_id, event.created_at, reclaim_failed=reclaim_failed
            )
        except BusinessRuleError:
            raise
        except Exception as e:
            logger.error(
                f"Idempotency check failed for {cast_hash}: {e}",
                exc_info=True,
                extra={"cast_hash": cast_hash}
            )
            self.stats.failed += 1
            return self._failed(cast_hash, None, e)

        if classification == Classification.DUPLICATE:
            return SubmissionResult(
                cast_hash=cast_hash,
                outcome=SubmissionOutcome.DUPLICATE,
                classification=classification,
                message="Event already processed",
            )

        try:
            extraction = await self._extract(event)
            if not extraction.is_workout:
                return await self._discard(event, classification, extraction)
            return await self._complete(event, classification, extraction)
        except BusinessRuleError as e:
            await self._mark_failed(cast_hash, FailureKind.BUSINESS, e.message)
            raise
        except asyncio.TimeoutError as e:
            message = f"Extraction timed out after {self.config.extraction_timeout}s"
            logger.warning(f"{cast_hash}: {message}", extra={"cast_hash": cast_hash})
            await self._mark_failed(cast_hash, FailureKind.TRANSIENT, message)
            return self._failed(cast_hash, classification, e, message, code=ErrorCode.EXTRACTION_TIMEOUT)
        except Exception as e:
            logger.error(
                f"Processing failed for {cast_hash}: {e}",
                exc_info=True,
                extra={"cast_hash": cast_hash}
            )
            await self._mark_failed(cast_hash, FailureKind.TRANSIENT, str(e) or type(e).__name__)
            return self._failed(cast_hash, classification, e)

    async def _extract(self, event: Event) -> ExtractionResult:
        started = time.monotonic()
        with create_span(
            "ingest.extract",
            {"cast_hash": event.cast_hash, "ingest.image_count": len(event.image_urls)}
        ) as span:
            try:
                result = await asyncio.wait_for(
                    self.extractor.extract(event),
                    timeout=self.config.extraction_timeout
                )
            finally:
                record_histogram("ingest_extraction_duration_seconds", time.monotonic() - started)
            span.set_attribute("ingest.is_workout", result.is_workout)
        return result

    async def _discard(
        self,
        event: Event,
        classification: Classification,
        extraction: ExtractionResult
    ) -> SubmissionResult:
        cast_hash = event.cast_hash
        deleted = await self.store.delete_in_flight(cast_hash)
        if not deleted:
            logger.warning(
                f"Non-workout {cast_hash} was no longer PROCESSING, nothing deleted",
                extra={"cast_hash": cast_hash}
            )

        self.stats.not_workout += 1
        logger.info(f"{cast_hash} is not a workout, record released", extra={"cast_hash": cast_hash})
        return SubmissionResult(
            cast_hash=cast_hash,
            outcome=SubmissionOutcome.NOT_WORKOUT,
            classification=classification,
            message=extraction.reasoning or "Not a workout",
        )

    async def _complete(
        self,
        event: Event,
        classification: Classification,
        extraction: ExtractionResult
    ) -> SubmissionResult:
        cast_hash = event.cast_hash
        metrics = extraction.metrics

        won = await self.store.complete(cast_hash, metrics, extraction.reasoning)
        if not won:
            won = await self._restore_and_complete(event, extraction)
        if not won:
            # Finished by another actor or reaped while we were extracting.
            self.stats.mark_duplicate("completion")
            record_counter("ingest_duplicates_total", attributes={"source": "completion"})
            logger.info(
                f"{cast_hash} left PROCESSING before completion, no aggregate change",
                extra={"cast_hash": cast_hash}
            )
            return SubmissionResult(
                cast_hash=cast_hash,
                outcome=SubmissionOutcome.DUPLICATE,
                classification=classification,
                message="Event was completed or failed elsewhere",
            )

        self.stats.completed += 1
        record_counter("ingest_completed_total")
        self.caches.processed.add(cast_hash)

        if metrics is not None and not metrics.is_empty:
            try:
                await self.aggregates.increment(event.author_id, metrics, event.created_at)
            except Exception as e:
                logger.error(
                    f"Aggregate increment failed for {cast_hash} (author {event.author_id}): {e}; "
                    f"reconcile() will repair the totals",
                    exc_info=True,
                    extra={"cast_hash": cast_hash}
                )

        logger.info(f"Completed {cast_hash}", extra={"cast_hash": cast_hash})
        await self.hooks.fire_completed(cast_hash, metrics)

        return SubmissionResult(
            cast_hash=cast_hash,
            outcome=SubmissionOutcome.COMPLETED,
            classification=classification,
            metrics=metrics,
            message="Workout recorded",
        )

    async def _restore_and_complete(self, event: Event, extraction: ExtractionResult) -> bool:
        """
        Re-create a record that vanished while we were extracting, then complete it.

        A concurrent actor whose extraction found no workout deletes the
        PROCESSING record this actor still owns. A workout verdict outranks
        that deletion. Returns False if the record still exists or someone
        else re-created it first.
        """
        cast_hash = event.cast_hash
        if await self.store.get(cast_hash) is not None:
            return False

        now = datetime.now(timezone.utc)
        inserted = await self.store.insert_if_absent(ProcessingRecord(
            cast_hash=cast_hash,
            author_id=event.author_id,
            status=ProcessingStatus.PROCESSING,
            created_at=event.created_at,
            updated_at=now,
        ))
        if not inserted:
            return False

        logger.warning(
            f"Record for {cast_hash} was deleted during extraction, re-created to record the workout",
            extra={"cast_hash": cast_hash}
        )
        return await self.store.complete(cast_hash, extraction.metrics, extraction.reasoning)

    async def _mark_failed(self, cast_hash: str, kind: FailureKind, message: str) -> None:
        """Best-effort PROCESSING -> FAILED; fires on_failed only if it committed."""
        self.stats.failed += 1
        record_counter("ingest_failed_total", attributes={"kind": kind.value})

        try:
            failed = await self.store.fail(cast_hash, kind, message)
        except Exception as e:
            logger.error(
                f"Could not mark {cast_hash} as failed: {e}; the reaper will pick it up",
                exc_info=True,
                extra={"cast_hash": cast_hash}
            )
            return

        if failed:
            await self.hooks.fire_failed(cast_hash, message)

    def _failed(
        self,
        cast_hash: str,
        classification: Optional[Classification],
        error: BaseException,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR
    ) -> SubmissionResult:
        return SubmissionResult(
            cast_hash=cast_hash,
            outcome=SubmissionOutcome.FAILED,
            classification=classification,
            message=message or "Processing failed",
            error=message or str(error),
            error_type=type(error).__name__,
            error_code=code,
        )
