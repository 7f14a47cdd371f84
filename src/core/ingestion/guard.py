"""
Idempotency Guard

Decides whether an inbound cast is a duplicate, brand new, or an existing
record that still needs processing. The processed cache is only a shortcut;
every other decision is made against the record store, whose primary key
and compare-and-set updates arbitrate between concurrent actors.

FAILED records are split by failure kind:
- transient: extraction error or timeout, resubmission retries it
- abandoned / business: duplicate, unless the caller asks to reclaim failed
  records (backfill jobs)
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..observability.metrics import record_counter
from .caches import FastPathCaches
from .errors import ConflictingRecordError
from .models import Classification, FailureKind, ProcessingRecord, ProcessingStatus
from .policy import AllowAll, AuthorPolicy
from .stats import IngestionStats
from .store import RecordStore

logger = logging.getLogger(__name__)

# A record that keeps changing under us is being driven by another actor.
MAX_RESOLVE_ATTEMPTS = 3

RETRYABLE_FAILURES = (FailureKind.TRANSIENT,)


class IdempotencyGuard:
    """
    Classifies events before any expensive work is done.

    Usage:
        guard = IdempotencyGuard(store, caches)
        verdict = await guard.classify(event.cast_hash, event.author_id, event.created_at)
        if verdict == Classification.DUPLICATE:
            return
        # NEW / NEEDS_PROCESSING: the record is now PROCESSING and ours to finish
    """

    def __init__(
        self,
        store: RecordStore,
        caches: FastPathCaches,
        policy: Optional[AuthorPolicy] = None,
        stats: Optional[IngestionStats] = None
    ):
        self.store = store
        self.caches = caches
        self.policy = policy or AllowAll()
        self.stats = stats or IngestionStats()

    async def classify(
        self,
        cast_hash: str,
        author_id: int,
        created_at: Optional[datetime] = None,
        reclaim_failed: bool = False
    ) -> Classification:
        """
        Classify an event and, unless it is a duplicate, leave its record in
        PROCESSING.

        Raises:
            BusinessRuleError: policy refusal or conflicting existing record
            Exception: storage errors propagate unmodified
        """
        if cast_hash in self.caches.processed:
            return self._duplicate(cast_hash, "cache")

        for _ in range(MAX_RESOLVE_ATTEMPTS):
            record = await self.store.get(cast_hash)

            if record is None:
                return await self._create(cast_hash, author_id, created_at)

            verdict = await self._resolve(record, author_id, reclaim_failed)
            if verdict is not None:
                return verdict

        logger.warning(
            f"Record {cast_hash} changed state {MAX_RESOLVE_ATTEMPTS} times during classification, "
            f"treating as duplicate",
            extra={"cast_hash": cast_hash}
        )
        return self._duplicate(cast_hash, "concurrent")

    async def _create(self, cast_hash: str, author_id: int, created_at: Optional[datetime]) -> Classification:
        now = datetime.now(timezone.utc)
        await self.policy.check(author_id, cast_hash, created_at or now)

        inserted = await self.store.insert_if_absent(ProcessingRecord(
            cast_hash=cast_hash,
            author_id=author_id,
            status=ProcessingStatus.PROCESSING,
            created_at=created_at or now,
            updated_at=now,
        ))
        if inserted:
            logger.debug(f"Created record for {cast_hash}", extra={"cast_hash": cast_hash})
            return Classification.NEW

        # Another writer inserted between our read and our insert.
        logger.info(
            f"Lost insert race for {cast_hash}, continuing as needs-processing",
            extra={"cast_hash": cast_hash}
        )
        return Classification.NEEDS_PROCESSING

    async def _resolve(
        self,
        record: ProcessingRecord,
        author_id: int,
        reclaim_failed: bool
    ) -> Optional[Classification]:
        """Verdict for an existing record, or None if it changed and must be re-read."""
        cast_hash = record.cast_hash

        # COMPLETED is a duplicate for any author, as on the cache path.
        if record.status == ProcessingStatus.COMPLETED:
            self.caches.processed.add(cast_hash)
            return self._duplicate(cast_hash, "store")

        if record.author_id != author_id:
            raise ConflictingRecordError(
                cast_hash,
                f"Record {cast_hash} already exists for author {record.author_id}, not {author_id}"
            )

        if record.status == ProcessingStatus.FAILED:
            if record.failure_kind not in RETRYABLE_FAILURES and not reclaim_failed:
                return self._duplicate(cast_hash, "store")

            if await self.store.claim(cast_hash, [ProcessingStatus.FAILED]):
                self.stats.reclaimed += 1
                logger.info(
                    f"Reclaimed failed record {cast_hash} ({record.failure_kind.value if record.failure_kind else 'unknown'})",
                    extra={"cast_hash": cast_hash}
                )
                return Classification.NEEDS_PROCESSING
            return None

        # PENDING or PROCESSING
        if await self.store.claim(cast_hash, [ProcessingStatus.PENDING, ProcessingStatus.PROCESSING]):
            return Classification.NEEDS_PROCESSING
        return None

    def _duplicate(self, cast_hash: str, source: str) -> Classification:
        self.stats.mark_duplicate(source)
        record_counter("ingest_duplicates_total", attributes={"source": source})
        logger.debug(f"Duplicate {cast_hash} ({source})", extra={"cast_hash": cast_hash})
        return Classification.DUPLICATE
