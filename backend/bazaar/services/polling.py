"""
Bounded poll-with-backoff.

WHAT: Await a condition on repeatedly fetched state, with a declared max wait
WHY: Long-poll clients wait on persisted progress instead of ad hoc sleep loops
HOW: fetch -> predicate -> sleep(interval); interval grows by `backoff` up to
     `max_interval`; PollTimeoutError once `max_wait` has elapsed
"""

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class PollTimeoutError(TimeoutError):
    """Condition not met within max_wait; carries the last fetched value."""

    def __init__(self, message: str, last_value: Any = None, attempts: int = 0):
        super().__init__(message)
        self.last_value = last_value
        self.attempts = attempts


async def poll_until(
    fetch: Callable[[], Union[T, Awaitable[T]]],
    predicate: Callable[[T], bool],
    *,
    max_wait: float | None = None,
    interval: float | None = None,
    backoff: float | None = None,
    max_interval: float | None = None,
) -> T:
    """
    Poll `fetch` until `predicate` holds.

    Args:
        fetch: Sync or async callable returning the current value
        predicate: Condition on the fetched value
        max_wait: Total seconds before giving up
        interval: First sleep between attempts
        backoff: Multiplier applied to the interval after each attempt (>= 1)
        max_interval: Cap on the interval

    Returns:
        First fetched value satisfying the predicate

    Raises:
        PollTimeoutError: max_wait elapsed without the predicate holding
        ValueError: Invalid timing parameters
    """
    max_wait = settings.POLL_MAX_WAIT_SECONDS if max_wait is None else max_wait
    interval = settings.POLL_INTERVAL_SECONDS if interval is None else interval
    backoff = settings.POLL_BACKOFF_FACTOR if backoff is None else backoff
    max_interval = settings.POLL_MAX_INTERVAL_SECONDS if max_interval is None else max_interval

    if max_wait < 0 or interval <= 0 or backoff < 1 or max_interval <= 0:
        raise ValueError(
            f"Invalid poll parameters (max_wait={max_wait}, interval={interval}, "
            f"backoff={backoff}, max_interval={max_interval})"
        )

    deadline = time.monotonic() + max_wait
    attempts = 0
    value: Optional[T] = None

    while True:
        value = fetch()
        if inspect.isawaitable(value):
            value = await value
        attempts += 1

        if predicate(value):
            return value

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.debug(f"Poll gave up after {attempts} attempts ({max_wait}s)")
            raise PollTimeoutError(
                f"Condition not met within {max_wait:g}s", last_value=value, attempts=attempts
            )

        await asyncio.sleep(min(interval, remaining))
        interval = min(interval * backoff, max_interval)
