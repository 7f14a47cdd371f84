"""
Workout Cast Ingestion

Idempotent processing of "cast created" events: each cast is extracted and
recorded at most once, however many times and from however many places it
is delivered.
"""

from .aggregates import AggregateStore, AuthorAggregate
from .backfill import BackfillJob, BackfillReport
from .caches import BoundedHashSet, EvictionPolicy, FastPathCaches, HashCache, KeepRecentHalf
from .config import IngestionConfig
from .errors import (
    BusinessRuleError,
    ConflictingRecordError,
    DailyLimitExceededError,
    ErrorCode,
    IngestionError,
    InvalidTransitionError,
    RejectedEventError,
    UnknownAuthorError,
)
from .guard import IdempotencyGuard
from .hooks import ProcessingHooks
from .janitor import CacheJanitor
from .lifecycle import ingestion_lifespan
from .models import (
    Classification,
    Embed,
    Event,
    ExtractionResult,
    FailureKind,
    ProcessingRecord,
    ProcessingStatus,
    RejectionReason,
    SubmissionOutcome,
    SubmissionResult,
    WorkoutMetrics,
)
from .orchestrator import IngestionOrchestrator, WorkoutExtractor
from .policy import AllowAll, CompositePolicy, DailyQuota, KnownAuthors, build_policy
from .reaper import StaleRecordReaper
from .state import transition
from .stats import IngestionStats
from .store import RecordStore
from .suppressor import InFlightSuppressor

__all__ = [
    # Orchestration
    "IngestionOrchestrator",
    "WorkoutExtractor",
    "IngestionConfig",
    "ingestion_lifespan",
    "BackfillJob",
    "BackfillReport",
    # Components
    "IdempotencyGuard",
    "InFlightSuppressor",
    "FastPathCaches",
    "BoundedHashSet",
    "HashCache",
    "EvictionPolicy",
    "KeepRecentHalf",
    "StaleRecordReaper",
    "CacheJanitor",
    "ProcessingHooks",
    "IngestionStats",
    # Policies
    "AllowAll",
    "CompositePolicy",
    "DailyQuota",
    "KnownAuthors",
    "build_policy",
    # Persistence
    "RecordStore",
    "AggregateStore",
    "AuthorAggregate",
    "transition",
    # Models
    "Classification",
    "Embed",
    "Event",
    "ExtractionResult",
    "FailureKind",
    "ProcessingRecord",
    "ProcessingStatus",
    "RejectionReason",
    "SubmissionOutcome",
    "SubmissionResult",
    "WorkoutMetrics",
    # Errors
    "ErrorCode",
    "IngestionError",
    "RejectedEventError",
    "BusinessRuleError",
    "DailyLimitExceededError",
    "UnknownAuthorError",
    "ConflictingRecordError",
    "InvalidTransitionError",
]
