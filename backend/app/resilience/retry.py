"""Retry with exponential backoff and jitter for async operations.

delay_n = min(base_delay * 2**(n-1) + uniform(0, base_delay), max_delay)

Only the base term is jittered, so every delay for retry n falls within
[base * 2**(n-1), base * 2**(n-1) + base], capped at max_delay.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from backend.app.errors import is_retryable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    on_retry: Callable[[int, BaseException], None] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """Compute delay before retry number `attempt` (1-indexed).

    Args:
        attempt: Retry number, 1 for the first retry
        base_delay: Base delay in seconds
        max_delay: Upper bound in seconds
        rng: Uniform sampler, injectable for deterministic tests

    Returns:
        Delay in seconds
    """
    if attempt < 1:
        raise ValueError("attempt is 1-indexed")
    exponential = base_delay * (2 ** (attempt - 1))
    return min(exponential + rng(0.0, base_delay), max_delay)


class RetryExecutor:
    """Runs an async operation up to `max_attempts` times."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
        rng: Callable[[float, float], float] | None = None,
        retry_if: Callable[[BaseException], bool] = is_retryable,
    ) -> None:
        """Initialize executor.

        Args:
            policy: Default retry policy
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
            rng: Injectable uniform sampler (default: random.uniform)
            retry_if: Predicate deciding whether a failure may be retried
        """
        self.policy = policy or RetryPolicy()
        self._sleep = sleep_fn or asyncio.sleep
        self._rng = rng or random.uniform
        self._retry_if = retry_if

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
    ) -> T:
        """Invoke `operation` until it succeeds or the attempt budget is spent.

        Args:
            operation: Zero-argument coroutine factory
            policy: Overrides the executor's default policy for this call

        Returns:
            The operation's result

        Raises:
            The last error raised by the operation, unchanged.
        """
        policy = policy or self.policy
        last_error: BaseException | None = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e

            if attempt == policy.max_attempts or not self._retry_if(last_error):
                break

            self._notify_retry(policy, attempt, last_error)

            delay = compute_backoff_delay(attempt, policy.base_delay, policy.max_delay, self._rng)
            # Cancellation of the calling task interrupts the backoff here
            await self._sleep(delay)

        assert last_error is not None
        raise last_error

    def _notify_retry(self, policy: RetryPolicy, attempt: int, error: BaseException) -> None:
        if policy.on_retry is None:
            return
        try:
            policy.on_retry(attempt, error)
        except Exception:
            logger.warning("on_retry callback raised; ignoring", exc_info=True)
