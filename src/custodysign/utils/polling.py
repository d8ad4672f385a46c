"""Bounded status polling shared by the signer and the transaction monitor.

Both signing jobs and custody transactions are observed the same way: check
the remote status at a fixed interval, stop as soon as a terminal response is
seen, and give up after a fixed number of attempts. Isolated transport
failures count against the same attempt budget instead of aborting the loop.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class PollPolicy:
    """Fixed-interval polling schedule.

    Attributes:
        interval: Seconds between status checks
        max_attempts: Maximum number of status checks (also the ceiling on
            tolerated transient errors)
        sleep_first: Sleep before the first check instead of after it
    """
    interval: float = 5.0
    max_attempts: int = 120
    sleep_first: bool = True

    def __post_init__(self):
        if self.interval < 0:
            raise ValueError(f"Poll interval must be >= 0, got {self.interval}")
        if self.max_attempts < 1:
            raise ValueError(f"Poll attempts must be >= 1, got {self.max_attempts}")

    @property
    def ceiling(self) -> float:
        """Upper bound in seconds spent sleeping across all attempts."""
        return self.interval * self.max_attempts

    def with_interval(self, interval: Optional[float]) -> "PollPolicy":
        """Return a copy with a different interval (None keeps the current one)."""
        if interval is None:
            return self
        return replace(self, interval=interval)


class PollTimeoutError(Exception):
    """Raised when polling exhausts its attempt budget without a terminal result."""

    def __init__(
        self,
        label: str,
        policy: PollPolicy,
        transient_errors: int = 0,
        last_error: Optional[BaseException] = None,
    ):
        self.label = label
        self.policy = policy
        self.transient_errors = transient_errors
        self.last_error = last_error

        message = (
            f"{label}: no terminal status after {policy.max_attempts} attempts "
            f"({policy.ceiling:g} seconds)"
        )
        if transient_errors:
            message += f", {transient_errors} failed status checks (last: {last_error})"
        super().__init__(message)

    @property
    def all_attempts_failed(self) -> bool:
        """True if every single status check raised a transient error."""
        return self.transient_errors >= self.policy.max_attempts


async def poll(
    fetch: Callable[[], Awaitable[T]],
    interpret: Callable[[T], Optional[R]],
    policy: PollPolicy,
    *,
    label: str = "poll",
    transient: tuple = (),
) -> R:
    """Poll until ``interpret`` returns a result.

    Args:
        fetch: Coroutine factory performing one status check
        interpret: Maps a status response to a final result, or None to keep
            polling. Exceptions raised here are not retried.
        policy: Interval and attempt budget
        label: Name used in logs and timeout messages
        transient: Exception types from ``fetch`` that are logged and retried

    Returns:
        The first non-None value returned by ``interpret``

    Raises:
        PollTimeoutError: If the attempt budget is exhausted
    """
    transient_errors = 0
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        if policy.sleep_first or attempt > 1:
            await asyncio.sleep(policy.interval)

        try:
            response = await fetch()
        except transient as e:
            transient_errors += 1
            last_error = e
            logger.warning(
                f"{label}: status check failed (attempt {attempt}/{policy.max_attempts}): {e}"
            )
            continue

        result = interpret(response)
        if result is not None:
            return result

    raise PollTimeoutError(label, policy, transient_errors, last_error)


async def run_with_deadline(awaitable: Awaitable[T], deadline: Optional[float]) -> T:
    """Await ``awaitable``, cancelling it after ``deadline`` seconds.

    Raises:
        asyncio.TimeoutError: If the deadline passes first
    """
    if deadline is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=deadline)
