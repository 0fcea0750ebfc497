"""Per-dependency circuit breaker.

States:
    closed    -> calls pass; consecutive failures counted
    open      -> fast-fail until reset_timeout elapses since opened_at
    half_open -> exactly one probe admitted; success closes, failure reopens
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from backend.app.errors import DependencyUnavailableError, is_transient

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class BreakerListener:
    """Interface for breaker transition observers (logging, metrics)."""

    def on_transition(self, name: str, old: BreakerState, new: BreakerState) -> None:
        """Called after every state change."""
        pass

    def on_rejected(self, name: str) -> None:
        """Called when a call is rejected without being attempted."""
        pass


class CircuitBreaker:
    """Consecutive-failure circuit breaker shared by all callers of one dependency.

    State transitions happen under an asyncio.Lock so concurrent callers cannot
    both flip closed->open or both claim the half-open probe.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        listener: BreakerListener | None = None,
    ) -> None:
        """Initialize breaker.

        Args:
            name: Dependency name (used in errors, logs and metrics)
            failure_threshold: Consecutive failures before opening
            reset_timeout: Seconds to wait in open state before probing
            clock: Monotonic clock in seconds, injectable for tests
            listener: Transition observer (optional, defaults to no-op)
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._listener = listener or BreakerListener()
        self._lock = asyncio.Lock()

        self.state = BreakerState.CLOSED
        self.failure_count = 0
        self.opened_at: float | None = None
        self._probe_in_flight = False

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run `fn` through the breaker.

        Raises:
            DependencyUnavailableError: Breaker is open (or a probe is already running)
        """
        is_probe = await self._before_call()

        try:
            result = await fn()
        except asyncio.CancelledError:
            if is_probe:
                async with self._lock:
                    self._probe_in_flight = False
            raise
        except Exception as e:
            if not is_transient(e):
                # The dependency answered; only its own faults count against it
                await self._on_success(is_probe)
            else:
                await self._on_failure(is_probe)
            raise

        await self._on_success(is_probe)
        return result

    async def _before_call(self) -> bool:
        """Admit or reject a call. Returns True if the call is the half-open probe."""
        async with self._lock:
            if self.state == BreakerState.CLOSED:
                return False

            if self.state == BreakerState.OPEN:
                assert self.opened_at is not None
                if self._clock() - self.opened_at >= self.reset_timeout:
                    self._transition(BreakerState.HALF_OPEN)
                    self._probe_in_flight = True
                    return True
                self._listener.on_rejected(self.name)
                raise DependencyUnavailableError(self.name)

            # HALF_OPEN: only one probe at a time
            if self._probe_in_flight:
                self._listener.on_rejected(self.name)
                raise DependencyUnavailableError(self.name)
            self._probe_in_flight = True
            return True

    async def _on_success(self, is_probe: bool) -> None:
        async with self._lock:
            if is_probe:
                self._probe_in_flight = False
                self.failure_count = 0
                self.opened_at = None
                self._transition(BreakerState.CLOSED)
            elif self.state == BreakerState.CLOSED:
                # Late successes of calls admitted before an open never close the breaker
                self.failure_count = 0

    async def _on_failure(self, is_probe: bool) -> None:
        async with self._lock:
            self.failure_count += 1
            if is_probe:
                self._probe_in_flight = False
                self.opened_at = self._clock()
                self._transition(BreakerState.OPEN)
                return
            if self.state == BreakerState.CLOSED and self.failure_count >= self.failure_threshold:
                self.opened_at = self._clock()
                self._transition(BreakerState.OPEN)

    def _transition(self, new: BreakerState) -> None:
        old = self.state
        if old == new:
            return
        self.state = new
        if new == BreakerState.OPEN:
            logger.warning(
                f"Circuit breaker opened: {self.name}",
                extra={"structured": {"dependency": self.name, "failures": self.failure_count}},
            )
        else:
            logger.info(
                f"Circuit breaker {new.value}: {self.name}",
                extra={"structured": {"dependency": self.name}},
            )
        self._listener.on_transition(self.name, old, new)

    def stats(self) -> dict[str, object]:
        """Snapshot of breaker state for health endpoints."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "opened_at": self.opened_at,
        }
