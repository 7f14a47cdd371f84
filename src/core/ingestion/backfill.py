"""
Backfill / Recovery

Offline jobs that push historical casts through the same submit_event()
entry point as the live webhook, so replays are subject to the same
idempotency rules.

- replay(): submit every event, oldest first, over a fixed worker pool
- seed_pending(): pre-create PENDING records so an interrupted seed can be
  resumed; the guard claims them on the next replay
- recover_missing(): replay only events that never got a record (e.g. casts
  the bot replied to but whose record was lost)
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .errors import BusinessRuleError
from .models import Event, ProcessingRecord, ProcessingStatus, SubmissionOutcome, SubmissionResult
from .orchestrator import IngestionOrchestrator, rejection_reason
from .store import as_utc

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4


@dataclass
class BackfillReport:
    submitted: int = 0
    completed: int = 0
    duplicates: int = 0
    not_workout: int = 0
    rejected: int = 0
    failed: int = 0
    errors: int = 0
    error_details: List[str] = field(default_factory=list)

    def record(self, result: SubmissionResult) -> None:
        if result.outcome == SubmissionOutcome.COMPLETED:
            self.completed += 1
        elif result.duplicate:
            self.duplicates += 1
        elif result.outcome == SubmissionOutcome.NOT_WORKOUT:
            self.not_workout += 1
        elif result.outcome == SubmissionOutcome.REJECTED:
            self.rejected += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        return asdict(self)


class BackfillJob:
    """
    Usage:
        job = BackfillJob(orchestrator, concurrency=4)
        report = await job.replay(events)
    """

    def __init__(
        self,
        orchestrator: IngestionOrchestrator,
        concurrency: Optional[int] = None,
        reclaim_failed: bool = False
    ):
        self.orchestrator = orchestrator
        self.concurrency = max(1, concurrency or orchestrator.config.backfill_concurrency or DEFAULT_CONCURRENCY)
        self.reclaim_failed = reclaim_failed

    async def replay(self, events: Iterable[Event]) -> BackfillReport:
        """Submit events oldest first and tally the outcomes."""
        ordered = sorted(events, key=lambda e: as_utc(e.created_at))
        report = BackfillReport()
        if not ordered:
            return report

        logger.info(f"Backfill: replaying {len(ordered)} events with {self.concurrency} workers")

        queue: asyncio.Queue = asyncio.Queue()
        for event in ordered:
            queue.put_nowait(event)

        workers = [
            asyncio.create_task(self._worker(queue, report))
            for _ in range(min(self.concurrency, len(ordered)))
        ]
        await queue.join()
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        logger.info(f"Backfill finished: {report.to_dict()}")
        return report

    async def _worker(self, queue: asyncio.Queue, report: BackfillReport) -> None:
        while True:
            event = await queue.get()
            try:
                report.submitted += 1
                result = await self.orchestrator.submit_event(event, reclaim_failed=self.reclaim_failed)
                report.record(result)
                if result.outcome == SubmissionOutcome.FAILED:
                    report.error_details.append(f"{event.cast_hash}: {result.error}")
            except BusinessRuleError as e:
                report.errors += 1
                report.error_details.append(f"{event.cast_hash}: {e.code.value} {e.message}")
                logger.info(f"Backfill: {event.cast_hash} refused: {e.message}")
            except Exception as e:
                report.errors += 1
                report.error_details.append(f"{event.cast_hash}: {type(e).__name__} {e}")
                logger.error(f"Backfill: {event.cast_hash} errored: {e}", exc_info=True)
            finally:
                queue.task_done()

    async def seed_pending(self, events: Iterable[Event]) -> int:
        """
        Create PENDING records for events that have none.

        Returns:
            Number of records created
        """
        store = self.orchestrator.store
        created = 0
        now = datetime.now(timezone.utc)

        for event in events:
            if rejection_reason(event) is not None:
                continue
            inserted = await store.insert_if_absent(ProcessingRecord(
                cast_hash=event.cast_hash,
                author_id=event.author_id,
                status=ProcessingStatus.PENDING,
                created_at=event.created_at,
                updated_at=now,
            ))
            if inserted:
                created += 1

        logger.info(f"Backfill: seeded {created} pending records")
        return created

    async def recover_missing(self, events: Iterable[Event]) -> BackfillReport:
        """Replay only the events whose hash has no record at all."""
        events = list(events)
        existing = await self.orchestrator.store.existing_hashes(e.cast_hash for e in events)
        missing = [event for event in events if event.cast_hash not in existing]

        logger.info(
            f"Backfill recovery: {len(events)} events, {len(existing)} already recorded, "
            f"{len(missing)} missing"
        )
        return await self.replay(missing)
