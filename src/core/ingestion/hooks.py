"""
Processing Hooks

Downstream notification points (replying to the author, posting to a
channel, ...). Callbacks fire only after the terminal state is committed and
are best-effort: a failing callback is logged and never reaches the caller.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from .models import WorkoutMetrics

logger = logging.getLogger(__name__)

CompletedCallback = Callable[[str, Optional[WorkoutMetrics]], Awaitable[None]]
FailedCallback = Callable[[str, str], Awaitable[None]]


class ProcessingHooks:
    """
    Usage:
        hooks = ProcessingHooks()

        @hooks.on_completed
        async def reply(cast_hash, metrics):
            ...
    """

    def __init__(self):
        self._completed: List[CompletedCallback] = []
        self._failed: List[FailedCallback] = []

    def on_completed(self, callback: CompletedCallback) -> CompletedCallback:
        self._completed.append(callback)
        return callback

    def on_failed(self, callback: FailedCallback) -> FailedCallback:
        self._failed.append(callback)
        return callback

    async def fire_completed(self, cast_hash: str, metrics: Optional[WorkoutMetrics]) -> None:
        for callback in self._completed:
            try:
                await callback(cast_hash, metrics)
            except Exception as e:
                logger.warning(
                    f"on_completed hook {getattr(callback, '__name__', callback)} failed for {cast_hash}: {e}",
                    extra={"cast_hash": cast_hash}
                )

    async def fire_failed(self, cast_hash: str, reason: str) -> None:
        for callback in self._failed:
            try:
                await callback(cast_hash, reason)
            except Exception as e:
                logger.warning(
                    f"on_failed hook {getattr(callback, '__name__', callback)} failed for {cast_hash}: {e}",
                    extra={"cast_hash": cast_hash}
                )
