"""Guarded dependency calls: circuit breaker around retry-with-backoff.

Every external call (store, AI inference, embeddings, mail) goes through the
GuardedDependency for its dependency. The breaker sits outside the retry loop,
so an open circuit fails fast without consuming any retry budget, and a call
that exhausts its retries counts as a single breaker failure.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from backend.app.config import Settings
from backend.app.errors import CLIENT_ERRORS, DependencyUnavailableError
from backend.app.resilience.breaker import BreakerListener, BreakerState, CircuitBreaker
from backend.app.resilience.retry import RetryExecutor, RetryPolicy

T = TypeVar("T")


# Metrics interface (implemented by utils.metrics)
class DependencyMetrics(BreakerListener):
    """Interface for guarded-call metrics."""

    def record_latency(self, dependency: str, outcome: str, latency_ms: float) -> None:
        """Record guarded call latency."""
        pass

    def inc_error(self, dependency: str, reason: str) -> None:
        """Increment error counter."""
        pass


# Logging interface (implemented by utils.logging)
class DependencyLogger:
    """Interface for structured logging of guarded calls."""

    def log_attempt(
        self,
        dependency: str,
        operation: str,
        attempt: int,
        outcome: str,
        error_reason: str | None = None,
    ) -> None:
        """Log a failed attempt that is about to be retried."""
        pass

    def log_call(
        self,
        dependency: str,
        operation: str,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log the final outcome of a guarded call."""
        pass


class GuardedDependency:
    """One external dependency with its own breaker and retry executor."""

    def __init__(
        self,
        name: str,
        breaker: CircuitBreaker,
        retry: RetryExecutor,
        metrics: DependencyMetrics | None = None,
        logger: DependencyLogger | None = None,
    ) -> None:
        self.name = name
        self.breaker = breaker
        self.retry = retry
        self._metrics = metrics or DependencyMetrics()
        self._logger = logger or DependencyLogger()

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        operation: str = "call",
        policy: RetryPolicy | None = None,
    ) -> T:
        """Run `fn` under this dependency's breaker and retry policy.

        Args:
            fn: Zero-argument coroutine factory, invoked once per attempt
            operation: Short label for logs and metrics
            policy: Retry policy override (e.g. max_attempts=1 for non-idempotent calls)

        Returns:
            Result of `fn`

        Raises:
            DependencyUnavailableError: Circuit is open
            The last error from `fn` once retries are exhausted
        """
        start = time.monotonic()
        base_policy = policy or self.retry.policy

        def on_retry(attempt: int, error: BaseException) -> None:
            self._metrics.inc_error(self.name, type(error).__name__)
            self._logger.log_attempt(
                self.name, operation, attempt, "retry", error_reason=type(error).__name__
            )
            if base_policy.on_retry is not None:
                base_policy.on_retry(attempt, error)

        attempt_policy = RetryPolicy(
            max_attempts=base_policy.max_attempts,
            base_delay=base_policy.base_delay,
            max_delay=base_policy.max_delay,
            on_retry=on_retry,
        )

        try:
            result = await self.breaker.call(lambda: self.retry.run(fn, attempt_policy))
        except DependencyUnavailableError:
            elapsed_ms = (time.monotonic() - start) * 1000
            self._metrics.record_latency(self.name, "breaker_open", elapsed_ms)
            self._metrics.inc_error(self.name, "breaker_open")
            self._logger.log_call(
                self.name, operation, "breaker_open", elapsed_ms, error_reason="breaker_open"
            )
            raise
        except Exception as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            outcome = "rejected" if isinstance(e, CLIENT_ERRORS) else "error"
            self._metrics.record_latency(self.name, outcome, elapsed_ms)
            if outcome == "error":
                self._metrics.inc_error(self.name, type(e).__name__)
            self._logger.log_call(
                self.name, operation, outcome, elapsed_ms, error_reason=type(e).__name__
            )
            raise

        elapsed_ms = (time.monotonic() - start) * 1000
        self._metrics.record_latency(self.name, "success", elapsed_ms)
        self._logger.log_call(self.name, operation, "success", elapsed_ms)
        return result

    @property
    def state(self) -> BreakerState:
        return self.breaker.state


@dataclass
class Dependencies:
    """Independent guards, one per external dependency. No shared breaker state."""

    store: GuardedDependency
    ai: GuardedDependency
    mail: GuardedDependency

    def all(self) -> list[GuardedDependency]:
        return [self.store, self.ai, self.mail]


def build_dependencies(
    settings: Settings,
    metrics: DependencyMetrics | None = None,
    dep_logger: DependencyLogger | None = None,
    sleep_fn: Callable[[float], Awaitable[None]] | None = None,
) -> Dependencies:
    """Construct one breaker + retry executor per dependency from settings.

    Args:
        settings: Application settings
        metrics: Metrics recorder shared by all guards (optional)
        dep_logger: Structured logger shared by all guards (optional)
        sleep_fn: Injectable sleep for retry backoff (tests)

    Returns:
        Dependencies container
    """
    policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_ms / 1000,
        max_delay=settings.retry_max_delay_ms / 1000,
    )

    def guard(name: str, failures: int, reset_sec: float) -> GuardedDependency:
        return GuardedDependency(
            name=name,
            breaker=CircuitBreaker(
                name=name,
                failure_threshold=failures,
                reset_timeout=reset_sec,
                listener=metrics,
            ),
            retry=RetryExecutor(policy=policy, sleep_fn=sleep_fn),
            metrics=metrics,
            logger=dep_logger,
        )

    return Dependencies(
        store=guard("database", settings.store_breaker_failures, settings.store_breaker_reset_sec),
        ai=guard("ai", settings.ai_breaker_failures, settings.ai_breaker_reset_sec),
        mail=guard("mail", settings.mail_breaker_failures, settings.mail_breaker_reset_sec),
    )
