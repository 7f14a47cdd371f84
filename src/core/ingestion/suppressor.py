"""
In-Flight Suppressor

Process-local short-circuit for the same cast arriving on several concurrent
tasks. try_enter() never awaits, so the check-and-add is atomic with respect
to other asyncio tasks. It is an optimisation only: another process sharing
the record store has its own suppressor.

Every successful try_enter() must be paired with leave(), on every exit path.
"""

import logging
from typing import Set

logger = logging.getLogger(__name__)

DEFAULT_IN_FLIGHT_CEILING = 100


class InFlightSuppressor:

    def __init__(self, ceiling: int = DEFAULT_IN_FLIGHT_CEILING):
        self.ceiling = ceiling
        self._held: Set[str] = set()

    def try_enter(self, cast_hash: str) -> bool:
        """Hold ``cast_hash``. False if another task already holds it."""
        if cast_hash in self._held:
            return False
        self._held.add(cast_hash)
        return True

    def leave(self, cast_hash: str) -> None:
        """Release ``cast_hash``. Safe to call more than once."""
        self._held.discard(cast_hash)

    def __contains__(self, cast_hash: object) -> bool:
        return cast_hash in self._held

    def __len__(self) -> int:
        return len(self._held)

    def force_clear_if_leaking(self) -> int:
        """
        Safety valve run by the cache janitor.

        A held set above the ceiling means some path forgot to leave(); clear
        it so those hashes are not wedged for the life of the process.
        """
        size = len(self._held)
        if size <= self.ceiling:
            return 0

        logger.warning(
            f"In-flight set holds {size} hashes (ceiling {self.ceiling}), force-clearing; "
            f"this indicates a missing leave() on some path"
        )
        self._held.clear()
        return size
