"""
Event Record Store

Durable table of processing records keyed by cast hash. The primary key on
cast_hash is the only true mutual-exclusion primitive across processes:
insert_if_absent() turns a unique violation into "someone else got there
first", and every status change is a compare-and-set on the current status so
two actors can never both move a record into a terminal state.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from ..database.adapter import DatabaseAdapter, UniqueViolation, affected_rows, get_database
from .models import FailureKind, ProcessingRecord, ProcessingStatus, WorkoutMetrics
from .state import transition

logger = logging.getLogger(__name__)

ERROR_MESSAGE_LIMIT = 500
LOOKUP_CHUNK_SIZE = 500

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS processing_records (
        cast_hash VARCHAR(66) PRIMARY KEY,
        author_id BIGINT NOT NULL,
        status VARCHAR(16) NOT NULL,
        distance_meters INTEGER,
        duration_seconds INTEGER,
        reasoning TEXT,
        failure_kind VARCHAR(16),
        error_message TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_processing_records_status_updated
    ON processing_records (status, updated_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_processing_records_author_created
    ON processing_records (author_id, created_at)
    """,
]


def as_utc(value: datetime) -> datetime:
    """Normalise to an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _check(expected: Iterable[ProcessingStatus], target: ProcessingStatus, cast_hash: Optional[str] = None):
    for status in expected:
        transition(status, target, cast_hash=cast_hash)


class RecordStore:
    """
    Processing record persistence.

    Usage:
        store = RecordStore(db)
        await store.ensure_schema()

        if await store.insert_if_absent(record):
            ...  # we own the record
        won = await store.complete(cast_hash, metrics, reasoning)
    """

    def __init__(self, db: Optional[DatabaseAdapter] = None):
        self._db = db

    async def _get_db(self) -> DatabaseAdapter:
        if self._db is None:
            self._db = await get_database()
        return self._db

    async def ensure_schema(self) -> None:
        db = await self._get_db()
        for statement in SCHEMA_STATEMENTS:
            await db.execute(statement)

    async def get(self, cast_hash: str) -> Optional[ProcessingRecord]:
        db = await self._get_db()
        row = await db.fetchrow(
            "SELECT * FROM processing_records WHERE cast_hash = $1",
            cast_hash
        )
        return ProcessingRecord(**row) if row else None

    async def insert_if_absent(self, record: ProcessingRecord) -> bool:
        """
        Insert a new record unless one already exists for the hash.

        Returns:
            True if this call created the row, False if another writer won
        """
        transition(None, record.status, cast_hash=record.cast_hash)
        db = await self._get_db()

        try:
            await db.execute(
                """
                INSERT INTO processing_records
                    (cast_hash, author_id, status, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5)
                """,
                record.cast_hash,
                record.author_id,
                record.status.value,
                as_utc(record.created_at),
                as_utc(record.updated_at)
            )
        except UniqueViolation:
            logger.debug(f"Record {record.cast_hash} already exists, insert skipped")
            return False

        return True

    async def claim(
        self,
        cast_hash: str,
        expected: List[ProcessingStatus],
        now: Optional[datetime] = None
    ) -> bool:
        """
        Move a record from one of ``expected`` into PROCESSING.

        Refreshes updated_at so the reaper measures staleness from the claim,
        and clears any previous failure.
        """
        _check(expected, ProcessingStatus.PROCESSING, cast_hash)
        db = await self._get_db()
        placeholders = ", ".join(f"${i}" for i in range(4, 4 + len(expected)))

        result = await db.execute(
            f"""
            UPDATE processing_records
            SET status = $1, updated_at = $2, failure_kind = NULL, error_message = NULL
            WHERE cast_hash = $3 AND status IN ({placeholders})
            """,
            ProcessingStatus.PROCESSING.value,
            as_utc(now or datetime.now(timezone.utc)),
            cast_hash,
            *[status.value for status in expected]
        )
        return affected_rows(result) == 1

    async def complete(
        self,
        cast_hash: str,
        metrics: Optional[WorkoutMetrics],
        reasoning: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> bool:
        """
        PROCESSING -> COMPLETED with extracted metrics.

        Returns:
            False if the record was no longer PROCESSING (finished by another
            actor, reaped, or deleted)
        """
        _check([ProcessingStatus.PROCESSING], ProcessingStatus.COMPLETED, cast_hash)
        db = await self._get_db()

        result = await db.execute(
            """
            UPDATE processing_records
            SET status = $1, distance_meters = $2, duration_seconds = $3,
                reasoning = $4, updated_at = $5
            WHERE cast_hash = $6 AND status = $7
            """,
            ProcessingStatus.COMPLETED.value,
            metrics.distance_meters if metrics else None,
            metrics.duration_seconds if metrics else None,
            reasoning,
            as_utc(now or datetime.now(timezone.utc)),
            cast_hash,
            ProcessingStatus.PROCESSING.value
        )
        return affected_rows(result) == 1

    async def fail(
        self,
        cast_hash: str,
        kind: FailureKind,
        message: str,
        now: Optional[datetime] = None
    ) -> bool:
        """PROCESSING -> FAILED, recording why."""
        _check([ProcessingStatus.PROCESSING], ProcessingStatus.FAILED, cast_hash)
        db = await self._get_db()

        result = await db.execute(
            """
            UPDATE processing_records
            SET status = $1, failure_kind = $2, error_message = $3, updated_at = $4
            WHERE cast_hash = $5 AND status = $6
            """,
            ProcessingStatus.FAILED.value,
            kind.value,
            message[:ERROR_MESSAGE_LIMIT],
            as_utc(now or datetime.now(timezone.utc)),
            cast_hash,
            ProcessingStatus.PROCESSING.value
        )
        return affected_rows(result) == 1

    async def delete_in_flight(self, cast_hash: str) -> bool:
        """
        Remove a record that is still PROCESSING.

        Used when the content turns out not to be a workout, so the hash can
        enter the pipeline again later. Terminal records are never deleted.
        """
        db = await self._get_db()

        result = await db.execute(
            "DELETE FROM processing_records WHERE cast_hash = $1 AND status = $2",
            cast_hash,
            ProcessingStatus.PROCESSING.value
        )
        return affected_rows(result) == 1

    async def fail_stale(self, cutoff: datetime, now: Optional[datetime] = None) -> int:
        """
        Force every PROCESSING record last touched before ``cutoff`` to FAILED.

        Returns:
            Number of records reaped
        """
        _check([ProcessingStatus.PROCESSING], ProcessingStatus.FAILED)
        db = await self._get_db()

        result = await db.execute(
            """
            UPDATE processing_records
            SET status = $1, failure_kind = $2, error_message = $3, updated_at = $4
            WHERE status = $5 AND updated_at < $6
            """,
            ProcessingStatus.FAILED.value,
            FailureKind.ABANDONED.value,
            "No terminal state reached before the staleness deadline",
            as_utc(now or datetime.now(timezone.utc)),
            ProcessingStatus.PROCESSING.value,
            as_utc(cutoff)
        )
        return affected_rows(result)

    async def count_for_author_between(self, author_id: int, start: datetime, end: datetime) -> int:
        """Count non-failed records created by an author in [start, end)."""
        db = await self._get_db()

        count = await db.fetchval(
            """
            SELECT COUNT(*) FROM processing_records
            WHERE author_id = $1 AND created_at >= $2 AND created_at < $3 AND status <> $4
            """,
            author_id,
            as_utc(start),
            as_utc(end),
            ProcessingStatus.FAILED.value
        )
        return int(count or 0)

    async def existing_hashes(self, cast_hashes: Iterable[str]) -> Set[str]:
        """Subset of ``cast_hashes`` that already have a record."""
        db = await self._get_db()
        hashes = list(dict.fromkeys(cast_hashes))
        found: Set[str] = set()

        for i in range(0, len(hashes), LOOKUP_CHUNK_SIZE):
            chunk = hashes[i:i + LOOKUP_CHUNK_SIZE]
            placeholders = ", ".join(f"${n}" for n in range(1, len(chunk) + 1))
            rows = await db.fetch(
                f"SELECT cast_hash FROM processing_records WHERE cast_hash IN ({placeholders})",
                *chunk
            )
            found.update(row["cast_hash"] for row in rows)

        return found

    async def get_stats(self) -> Dict[str, int]:
        """Record counts per status."""
        db = await self._get_db()

        rows = await db.fetch(
            """
            SELECT status, COUNT(*) AS count
            FROM processing_records
            GROUP BY status
            """
        )

        stats = {status.value: 0 for status in ProcessingStatus}
        for row in rows:
            stats[row["status"]] = int(row["count"])

        return stats
