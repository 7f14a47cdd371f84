"""
Ingestion Models

Events arriving from the social network, the extraction result handed back
by the vision collaborator, the durable processing record, and the result
returned to callers of submit_event().
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import ErrorCode, RejectedEventError

IMAGE_HOSTS = ("imagedelivery.net",)
IMAGE_EXTENSION = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class ProcessingStatus(str, Enum):
    """Status of a processing record."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why a record ended up FAILED. Decides whether resubmission retries it."""
    TRANSIENT = "transient"
    ABANDONED = "abandoned"
    BUSINESS = "business"


class Classification(str, Enum):
    """Idempotency guard verdict for an inbound event."""
    DUPLICATE = "duplicate"
    NEW = "new"
    NEEDS_PROCESSING = "needs_processing"


class SubmissionOutcome(str, Enum):
    """What submit_event() did with an event."""
    COMPLETED = "completed"
    NOT_WORKOUT = "not_workout"
    DUPLICATE = "duplicate"
    IN_FLIGHT = "in_flight"
    REJECTED = "rejected"
    FAILED = "failed"


class RejectionReason(str, Enum):
    REPLY = "reply"
    MALFORMED_HASH = "malformed_hash"


class Embed(BaseModel):
    """Media attached to a cast."""

    model_config = {"frozen": True}

    url: str
    content_type: Optional[str] = None

    @property
    def is_image(self) -> bool:
        if any(host in self.url for host in IMAGE_HOSTS):
            return True
        if IMAGE_EXTENSION.search(self.url):
            return True
        return bool(self.content_type and self.content_type.startswith("image/"))


class Event(BaseModel):
    """
    A "cast created" event from the social network.

    Immutable. ``reply_to`` is the parent cast hash; replies never enter the
    pipeline.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    cast_hash: str
    author_id: int
    created_at: datetime = Field(default_factory=_utcnow)
    text: str = ""
    embeds: List[Embed] = Field(default_factory=list)
    reply_to: Optional[str] = None

    @property
    def is_reply(self) -> bool:
        return self.reply_to is not None

    @property
    def image_urls(self) -> List[str]:
        return [embed.url for embed in self.embeds if embed.is_image]

    @classmethod
    def from_webhook(cls, payload: Dict[str, Any]) -> "Event":
        """
        Build an Event from a ``cast.created`` webhook envelope.

        Raises:
            RejectedEventError: if the envelope has no cast data, hash or
                author, or carries malformed author or embed fields
        """
        data = payload.get("data")
        if not isinstance(data, dict):
            raise RejectedEventError("Invalid webhook data format")

        cast_hash = data.get("hash")
        if not cast_hash:
            raise RejectedEventError("Cast hash not found", code=ErrorCode.MALFORMED_HASH)

        author = data.get("author") or {}
        if not isinstance(author, dict) or author.get("fid") is None:
            raise RejectedEventError("Cast author not found", cast_hash=cast_hash)
        try:
            author_id = int(author["fid"])
        except (TypeError, ValueError) as e:
            raise RejectedEventError(f"Invalid author fid: {author['fid']!r}", cast_hash=cast_hash) from e

        embeds = []
        for embed in data.get("embeds") or []:
            if not isinstance(embed, dict):
                raise RejectedEventError("Invalid embed format", cast_hash=cast_hash)
            url = embed.get("url")
            if not url:
                continue
            metadata = embed.get("metadata") or {}
            embeds.append(Embed(url=url, content_type=metadata.get("content_type")))

        return cls(
            cast_hash=cast_hash,
            author_id=author_id,
            created_at=data.get("timestamp") or _utcnow(),
            text=data.get("text") or "",
            embeds=embeds,
            reply_to=data.get("parent_hash"),
        )


class WorkoutMetrics(BaseModel):
    """Workout numbers read off a screenshot."""

    distance_km: Optional[float] = Field(default=None, gt=0, lt=500)
    duration_minutes: Optional[float] = Field(default=None, gt=0, lt=600)
    pace: Optional[str] = Field(default=None, max_length=20)
    calories: Optional[int] = Field(default=None, gt=0, lt=5000)

    @property
    def is_empty(self) -> bool:
        return not self.distance_km and not self.duration_minutes

    @property
    def distance_meters(self) -> Optional[int]:
        if self.distance_km is None:
            return None
        return round(self.distance_km * 1000)

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.duration_minutes is None:
            return None
        return round(self.duration_minutes * 60)


class ExtractionResult(BaseModel):
    """What the extraction collaborator returns for one event."""

    is_workout: bool
    metrics: Optional[WorkoutMetrics] = None
    reasoning: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def not_workout(cls, reasoning: Optional[str] = None) -> "ExtractionResult":
        return cls(is_workout=False, reasoning=reasoning)


class ProcessingRecord(BaseModel):
    """One row of the event record store."""

    cast_hash: str
    author_id: int
    status: ProcessingStatus
    distance_meters: Optional[int] = None
    duration_seconds: Optional[int] = None
    reasoning: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)

    @property
    def metrics(self) -> Optional[WorkoutMetrics]:
        if self.distance_meters is None and self.duration_seconds is None:
            return None
        return WorkoutMetrics(
            distance_km=self.distance_meters / 1000 if self.distance_meters else None,
            duration_minutes=self.duration_seconds / 60 if self.duration_seconds else None,
        )


class SubmissionResult(BaseModel):
    """Returned by submit_event() for every non-business-error path."""

    cast_hash: str
    outcome: SubmissionOutcome
    classification: Optional[Classification] = None
    rejected_reason: Optional[RejectionReason] = None
    metrics: Optional[WorkoutMetrics] = None
    message: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @property
    def accepted(self) -> bool:
        return self.outcome in (SubmissionOutcome.COMPLETED, SubmissionOutcome.NOT_WORKOUT)

    @property
    def duplicate(self) -> bool:
        return self.outcome in (SubmissionOutcome.DUPLICATE, SubmissionOutcome.IN_FLIGHT)
