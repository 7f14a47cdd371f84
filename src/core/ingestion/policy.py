"""
Author Policies

Business checks run by the idempotency guard right before it inserts a new
record. A policy raises a BusinessRuleError subclass to refuse the event.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Protocol

from .errors import DailyLimitExceededError, UnknownAuthorError
from .store import RecordStore, as_utc

logger = logging.getLogger(__name__)


class AuthorPolicy(Protocol):
    async def check(self, author_id: int, cast_hash: str, created_at: datetime) -> None:
        """Raise a BusinessRuleError to refuse the event."""
        ...


class AllowAll:
    async def check(self, author_id: int, cast_hash: str, created_at: datetime) -> None:
        return None


class KnownAuthors:
    """Refuse events from authors outside a registered set."""

    def __init__(self, author_ids: Iterable[int]):
        self.author_ids = set(author_ids)

    def register(self, author_id: int) -> None:
        self.author_ids.add(author_id)

    async def check(self, author_id: int, cast_hash: str, created_at: datetime) -> None:
        if author_id not in self.author_ids:
            raise UnknownAuthorError(author_id, cast_hash=cast_hash)


class DailyQuota:
    """
    Cap the number of workouts an author can log per UTC day.

    Counts non-failed records created on the same day as the event. The count
    and the later insert are not atomic, so two racing events can both pass.
    """

    def __init__(self, store: RecordStore, limit: int):
        self.store = store
        self.limit = limit

    async def check(self, author_id: int, cast_hash: str, created_at: datetime) -> None:
        if self.limit <= 0:
            return

        day_start = as_utc(created_at).replace(hour=0, minute=0, second=0, microsecond=0)
        count = await self.store.count_for_author_between(
            author_id, day_start, day_start + timedelta(days=1)
        )
        if count >= self.limit:
            logger.info(f"Daily limit reached for author {author_id} ({count}/{self.limit})")
            raise DailyLimitExceededError(author_id, self.limit, cast_hash=cast_hash)


class CompositePolicy:
    """Run several policies in order; the first refusal wins."""

    def __init__(self, policies: List[AuthorPolicy]):
        self.policies = policies

    async def check(self, author_id: int, cast_hash: str, created_at: datetime) -> None:
        for policy in self.policies:
            await policy.check(author_id, cast_hash, created_at)


def build_policy(
    store: RecordStore,
    daily_limit: int = 0,
    known_authors: Optional[Iterable[int]] = None
) -> AuthorPolicy:
    """Assemble the policy chain from configuration."""
    policies: List[AuthorPolicy] = []
    if known_authors is not None:
        policies.append(KnownAuthors(known_authors))
    if daily_limit > 0:
        policies.append(DailyQuota(store, daily_limit))

    if not policies:
        return AllowAll()
    if len(policies) == 1:
        return policies[0]
    return CompositePolicy(policies)
