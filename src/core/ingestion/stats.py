"""
Ingestion Statistics

In-process counters behind IngestionOrchestrator.health(). These reset on
restart; durable per-status counts come from RecordStore.get_stats().
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IngestionStats:
    total_submissions: int = 0
    rejected: int = 0
    duplicates_from_cache: int = 0
    duplicates_from_store: int = 0
    concurrent_duplicates: int = 0
    lost_completions: int = 0
    completed: int = 0
    not_workout: int = 0
    failed: int = 0
    reclaimed: int = 0
    last_duplicate_at: Optional[datetime] = None
    started_at: datetime = field(default_factory=_utcnow)

    @property
    def duplicates_detected(self) -> int:
        return (
            self.duplicates_from_cache
            + self.duplicates_from_store
            + self.concurrent_duplicates
            + self.lost_completions
        )

    @property
    def duplicate_rate(self) -> float:
        if self.total_submissions == 0:
            return 0.0
        return self.duplicates_detected / self.total_submissions

    def mark_duplicate(self, source: str) -> None:
        if source == "cache":
            self.duplicates_from_cache += 1
        elif source == "store":
            self.duplicates_from_store += 1
        elif source == "concurrent":
            self.concurrent_duplicates += 1
        elif source == "completion":
            self.lost_completions += 1
        else:
            raise ValueError(f"Unknown duplicate source: {source}")
        self.last_duplicate_at = _utcnow()

    def uptime_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or _utcnow()) - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_submissions": self.total_submissions,
            "rejected": self.rejected,
            "duplicates_detected": self.duplicates_detected,
            "duplicates_from_cache": self.duplicates_from_cache,
            "duplicates_from_store": self.duplicates_from_store,
            "concurrent_duplicates": self.concurrent_duplicates,
            "lost_completions": self.lost_completions,
            "duplicate_rate": round(self.duplicate_rate, 4),
            "completed": self.completed,
            "not_workout": self.not_workout,
            "failed": self.failed,
            "reclaimed": self.reclaimed,
            "last_duplicate_at": self.last_duplicate_at.isoformat() if self.last_duplicate_at else None,
            "uptime_seconds": round(self.uptime_seconds(), 1),
        }
