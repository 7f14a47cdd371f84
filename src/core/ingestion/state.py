"""
Processing State Machine

    (none) -> PENDING | PROCESSING
    PENDING -> PROCESSING
    PROCESSING -> PROCESSING (claim refresh) | COMPLETED | FAILED
    FAILED -> PROCESSING (reclaim)
    COMPLETED -> (terminal)

Every status write in the record store goes through transition() or
sources_for(), so an illegal move such as COMPLETED -> PROCESSING cannot be
expressed.
"""

from typing import Dict, List, Optional

from .errors import InvalidTransitionError
from .models import ProcessingStatus

INITIAL_STATUSES: List[ProcessingStatus] = [ProcessingStatus.PENDING, ProcessingStatus.PROCESSING]

TRANSITIONS: Dict[ProcessingStatus, List[ProcessingStatus]] = {
    ProcessingStatus.PENDING: [ProcessingStatus.PROCESSING],
    ProcessingStatus.PROCESSING: [
        ProcessingStatus.PROCESSING,
        ProcessingStatus.COMPLETED,
        ProcessingStatus.FAILED,
    ],
    ProcessingStatus.FAILED: [ProcessingStatus.PROCESSING],
    ProcessingStatus.COMPLETED: [],  # Terminal state
}


def transition(
    current: Optional[ProcessingStatus],
    target: ProcessingStatus,
    cast_hash: Optional[str] = None
) -> ProcessingStatus:
    """
    Validate a status change and return the new status.

    ``current`` is None when no record exists yet.

    Raises:
        InvalidTransitionError: if the move is not in the table
    """
    if current is None:
        allowed = target in INITIAL_STATUSES
    else:
        allowed = target in TRANSITIONS.get(current, [])

    if not allowed:
        raise InvalidTransitionError(
            current.value if current else "none",
            target.value,
            cast_hash=cast_hash,
        )
    return target


def sources_for(target: ProcessingStatus) -> List[ProcessingStatus]:
    """All statuses from which ``target`` is reachable in one step."""
    return [status for status, targets in TRANSITIONS.items() if target in targets]
