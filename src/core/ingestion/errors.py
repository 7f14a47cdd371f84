"""
Ingestion Error Taxonomy

Error codes with HTTP status mapping and the exception classes raised by the
ingestion core. Webhook and admin surfaces translate these into responses.

Categories:
- Rejection: event structurally ineligible, never persisted
- Business: quota, unknown author, conflicting record; not retried
- Transition: illegal state machine move
Anything else is treated as an infrastructure error by the orchestrator.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Ingestion error codes."""

    # Rejections
    MALFORMED_HASH = "MALFORMED_HASH"
    INVALID_EVENT = "INVALID_EVENT"

    # Business errors
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    USER_NOT_EXISTS = "USER_NOT_EXISTS"
    SESSION_EXISTS = "SESSION_EXISTS"

    # State machine
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"
    EXTRACTION_TIMEOUT = "EXTRACTION_TIMEOUT"


ERROR_STATUS_CODES = {
    ErrorCode.MALFORMED_HASH: 400,
    ErrorCode.INVALID_EVENT: 400,
    ErrorCode.DAILY_LIMIT_EXCEEDED: 400,
    ErrorCode.USER_NOT_EXISTS: 404,
    ErrorCode.SESSION_EXISTS: 409,
    ErrorCode.INVALID_TRANSITION: 422,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.EXTRACTION_TIMEOUT: 504,
}


def get_status_code(error_code: ErrorCode) -> int:
    """Get HTTP status code for an error code (500 if unmapped)."""
    return ERROR_STATUS_CODES.get(error_code, 500)


class IngestionError(Exception):
    """
    Base exception for ingestion errors.

    Carries an ErrorCode and the HTTP status the upstream surface should use.
    """

    def __init__(self, code: ErrorCode, message: str, cast_hash: Optional[str] = None):
        self.code = code
        self.message = message
        self.cast_hash = cast_hash
        self.status_code = get_status_code(code)
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "status_code": self.status_code,
            "cast_hash": self.cast_hash,
        }


class RejectedEventError(IngestionError):
    """Event is structurally ineligible for the pipeline."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.INVALID_EVENT, cast_hash: Optional[str] = None):
        super().__init__(code=code, message=message, cast_hash=cast_hash)


class BusinessRuleError(IngestionError):
    """
    A recognised business rejection.

    Surfaced to the caller untouched; never retried automatically and never
    classified as a duplicate or a new event.
    """


class DailyLimitExceededError(BusinessRuleError):
    """Author already submitted the maximum number of workouts today."""

    def __init__(self, author_id: int, limit: int, cast_hash: Optional[str] = None):
        super().__init__(
            code=ErrorCode.DAILY_LIMIT_EXCEEDED,
            message=f"Author {author_id} reached the daily limit of {limit} workouts",
            cast_hash=cast_hash,
        )
        self.author_id = author_id
        self.limit = limit


class UnknownAuthorError(BusinessRuleError):
    """Author is not registered."""

    def __init__(self, author_id: int, cast_hash: Optional[str] = None):
        super().__init__(
            code=ErrorCode.USER_NOT_EXISTS,
            message=f"User with FID {author_id} not found",
            cast_hash=cast_hash,
        )
        self.author_id = author_id


class ConflictingRecordError(BusinessRuleError):
    """A record already exists for this hash in a state the event contradicts."""

    def __init__(self, cast_hash: str, message: str):
        super().__init__(code=ErrorCode.SESSION_EXISTS, message=message, cast_hash=cast_hash)


class InvalidTransitionError(IngestionError):
    """Illegal processing status transition."""

    def __init__(self, from_status: str, to_status: str, cast_hash: Optional[str] = None):
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=f"Invalid transition: {from_status} -> {to_status}",
            cast_hash=cast_hash,
        )
        self.from_status = from_status
        self.to_status = to_status
