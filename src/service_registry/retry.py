"""
Bounded retry with a pluggable backoff schedule.

Reads against the store can race writes that have not propagated yet (a
record registered a moment ago, a second registry whose watcher has not
synchronized). `RetryPolicy` hides that window: it re-invokes an async
operation while it fails with a transient error, sleeping between attempts
according to a backoff function, and gives up after a fixed number of
attempts or once an optional deadline passes.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .errors import ServiceNotFoundError, StoreUnavailableError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Backoff = Callable[[int], float]

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (StoreUnavailableError, ServiceNotFoundError)


def fixed_backoff(delay: float) -> Backoff:
    """Same delay before every retry."""

    def _backoff(attempt: int) -> float:
        return delay

    return _backoff


def linear_backoff(step: float, maximum: Optional[float] = None) -> Backoff:
    """Delay grows by `step` with each attempt, optionally capped at `maximum`."""

    def _backoff(attempt: int) -> float:
        delay = step * attempt
        if maximum is not None:
            return min(delay, maximum)
        return delay

    return _backoff


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retries an async operation on transient failures.

    The policy holds no state between calls; every `call` starts a fresh
    attempt counter.

    Attributes:
        max_attempts: Total number of invocations, including the first one.
        backoff: Maps the 1-based index of the failed attempt to the delay
                 in seconds before the next one.
        retry_on: Exception types treated as transient. Anything else
                  propagates immediately.
    """

    max_attempts: int = 6
    backoff: Backoff = field(default_factory=lambda: fixed_backoff(0.1))
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout: Optional[float] = None,
        description: str = "operation",
    ) -> T:
        """
        Runs `operation` until it succeeds or the retry budget is spent.

        Args:
            operation: Zero-argument callable returning a fresh awaitable for
                       each attempt.
            timeout: Optional bound in seconds on the whole retry window.
            description: Label used in log messages.

        Returns:
            The first successful result.

        Raises:
            The last transient error once attempts (or the deadline) run out,
            or `StoreUnavailableError` if the deadline passed before any
            attempt completed. Non-transient errors propagate unchanged.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                if deadline is None:
                    return await operation()
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                return await asyncio.wait_for(operation(), remaining)
            except asyncio.TimeoutError:
                if deadline is None:
                    raise
                break
            except self.retry_on as exc:
                last_error = exc
                if attempt >= self.max_attempts:
                    break
                delay = max(0.0, self.backoff(attempt))
                if deadline is not None and time.monotonic() + delay >= deadline:
                    break
                LOGGER.debug(
                    "Retrying %s after %s (attempt %d/%d, sleeping %.2fs)",
                    description,
                    exc,
                    attempt,
                    self.max_attempts,
                    delay,
                )
                await asyncio.sleep(delay)

        if last_error is None:
            raise StoreUnavailableError(f"{description} timed out after {timeout:.2f}s")
        LOGGER.debug("Giving up on %s: %s", description, last_error)
        raise last_error
