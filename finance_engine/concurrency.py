"""
Optimistic Concurrency Helpers

Engine mutators follow one pattern: read the entity, compute the new
state, write it back with the version that was read. When another writer
got there first the store raises VersionConflictError and the whole
read-compute-write step is run again on fresh data.

The step being retried must re-read inside itself, otherwise the retry
just replays the stale write.
"""

import functools
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from finance_engine.services.storage import VersionConflictError

logger = structlog.get_logger(__name__)

ResultT = TypeVar("ResultT")


def _log_conflict(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.debug(
        "version_conflict_retry",
        attempt=retry_state.attempt_number,
        entity_type=getattr(exc, "entity_type", None),
        entity_id=str(getattr(exc, "entity_id", "")),
    )


async def run_with_conflict_retry(
    step: Callable[[], Awaitable[ResultT]],
    max_attempts: int,
) -> ResultT:
    """
    Run `step` until it commits without a version conflict.

    Raises:
        VersionConflictError: if every attempt lost the race
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(VersionConflictError),
        stop=stop_after_attempt(max_attempts),
        wait=wait_random(min=0, max=0.01),
        before_sleep=_log_conflict,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await step()


def retry_on_conflict(method: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """
    Method decorator form of run_with_conflict_retry.

    The attempt budget is read from the instance's `_max_update_attempts`
    at call time, so it follows configuration.
    """

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        return await run_with_conflict_retry(
            lambda: method(self, *args, **kwargs),
            self._max_update_attempts,
        )

    return wrapper
