"""
Author Aggregates

Per-author running totals (runs, distance, duration) feeding leaderboards
and profile stats. Updated incrementally when a record reaches COMPLETED
with non-empty metrics.

Consistency with processing_records is best-effort: the increment is a
separate write issued after the COMPLETED commit, not one transaction. A
crash between the two leaves the author one run short. reconcile()
recomputes totals from COMPLETED records and is the supported repair path.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel

from ..database.adapter import DatabaseAdapter, get_database
from .models import ProcessingStatus, WorkoutMetrics
from .store import as_utc

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS author_aggregates (
        author_id BIGINT PRIMARY KEY,
        total_runs INTEGER NOT NULL DEFAULT 0,
        total_distance_meters BIGINT NOT NULL DEFAULT 0,
        total_duration_seconds BIGINT NOT NULL DEFAULT 0,
        last_run_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
]


class AuthorAggregate(BaseModel):
    author_id: int
    total_runs: int = 0
    total_distance_meters: int = 0
    total_duration_seconds: int = 0
    last_run_at: Optional[datetime] = None

    @property
    def total_distance_km(self) -> float:
        return self.total_distance_meters / 1000

    @property
    def total_duration_minutes(self) -> float:
        return self.total_duration_seconds / 60

    def same_totals(self, other: "AuthorAggregate") -> bool:
        return (
            self.total_runs == other.total_runs
            and self.total_distance_meters == other.total_distance_meters
            and self.total_duration_seconds == other.total_duration_seconds
        )


class AggregateStore:
    """Reads and writes author_aggregates."""

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

    async def get(self, author_id: int) -> Optional[AuthorAggregate]:
        db = await self._get_db()
        row = await db.fetchrow(
            """
            SELECT author_id, total_runs, total_distance_meters,
                   total_duration_seconds, last_run_at
            FROM author_aggregates WHERE author_id = $1
            """,
            author_id
        )
        return AuthorAggregate(**row) if row else None

    async def increment(
        self,
        author_id: int,
        metrics: WorkoutMetrics,
        run_at: datetime,
        now: Optional[datetime] = None
    ) -> None:
        """Add one run to an author's totals. No-op for empty metrics."""
        if metrics.is_empty:
            return

        db = await self._get_db()
        await db.execute(
            """
            INSERT INTO author_aggregates
                (author_id, total_runs, total_distance_meters, total_duration_seconds,
                 last_run_at, updated_at)
            VALUES ($1, 1, $2, $3, $4, $5)
            ON CONFLICT (author_id) DO UPDATE SET
                total_runs = author_aggregates.total_runs + 1,
                total_distance_meters = author_aggregates.total_distance_meters + excluded.total_distance_meters,
                total_duration_seconds = author_aggregates.total_duration_seconds + excluded.total_duration_seconds,
                last_run_at = CASE
                    WHEN author_aggregates.last_run_at IS NULL
                      OR author_aggregates.last_run_at < excluded.last_run_at
                    THEN excluded.last_run_at
                    ELSE author_aggregates.last_run_at
                END,
                updated_at = excluded.updated_at
            """,
            author_id,
            metrics.distance_meters or 0,
            metrics.duration_seconds or 0,
            as_utc(run_at),
            as_utc(now or datetime.now(timezone.utc))
        )

    async def reconcile(self, author_id: Optional[int] = None) -> int:
        """
        Recompute totals from COMPLETED records and overwrite any that drifted.

        Args:
            author_id: limit to one author (all authors when None)

        Returns:
            Number of authors whose totals were corrected
        """
        db = await self._get_db()

        author_filter = "AND author_id = $2" if author_id is not None else ""
        args = [ProcessingStatus.COMPLETED.value]
        if author_id is not None:
            args.append(author_id)

        rows = await db.fetch(
            f"""
            SELECT author_id,
                   COUNT(*) AS total_runs,
                   COALESCE(SUM(distance_meters), 0) AS total_distance_meters,
                   COALESCE(SUM(duration_seconds), 0) AS total_duration_seconds,
                   MAX(created_at) AS last_run_at
            FROM processing_records
            WHERE status = $1
              AND (COALESCE(distance_meters, 0) > 0 OR COALESCE(duration_seconds, 0) > 0)
              {author_filter}
            GROUP BY author_id
            """,
            *args
        )
        expected: Dict[int, AuthorAggregate] = {
            int(row["author_id"]): AuthorAggregate(**row) for row in rows
        }

        current_rows = await db.fetch(
            f"""
            SELECT author_id, total_runs, total_distance_meters,
                   total_duration_seconds, last_run_at
            FROM author_aggregates
            {"WHERE author_id = $1" if author_id is not None else ""}
            """,
            *([author_id] if author_id is not None else [])
        )
        current = {int(row["author_id"]): AuthorAggregate(**row) for row in current_rows}

        for stale_author in set(current) - set(expected):
            expected[stale_author] = AuthorAggregate(author_id=stale_author)

        corrected = 0
        now = datetime.now(timezone.utc)
        for author, totals in expected.items():
            existing = current.get(author)
            if existing is not None and existing.same_totals(totals):
                continue

            logger.warning(
                f"Aggregate drift for author {author}: "
                f"stored={existing.model_dump() if existing else None} "
                f"recomputed={totals.model_dump()}"
            )
            await self._overwrite(db, totals, now)
            corrected += 1

        if corrected:
            logger.info(f"Reconciled aggregates for {corrected} authors")
        return corrected

    async def _overwrite(self, db: DatabaseAdapter, totals: AuthorAggregate, now: datetime) -> None:
        await db.execute(
            """
            INSERT INTO author_aggregates
                (author_id, total_runs, total_distance_meters, total_duration_seconds,
                 last_run_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (author_id) DO UPDATE SET
                total_runs = excluded.total_runs,
                total_distance_meters = excluded.total_distance_meters,
                total_duration_seconds = excluded.total_duration_seconds,
                last_run_at = excluded.last_run_at,
                updated_at = excluded.updated_at
            """,
            totals.author_id,
            totals.total_runs,
            totals.total_distance_meters,
            totals.total_duration_seconds,
            as_utc(totals.last_run_at) if totals.last_run_at else None,
            as_utc(now)
        )
