"""Error taxonomy for the matching and claim engine.

Client-caused errors (NotFound, InvalidState, Conflict, RateLimited,
PreconditionFailed) are returned to the caller as-is and never retried.
DependencyUnavailable fails fast when a circuit is open. TransientFailure and
connection-class driver errors are the retryable I/O class. MigrationFailure is
the only fatal class and must reach an operator.
"""

import asyncio

import httpx
import openai
from sqlalchemy import exc as sa_exc
from sqlalchemy.exc import DBAPIError


class LostFoundError(Exception):
    """Base class for engine errors."""

    code = "error"
    retryable = False


class PreconditionFailedError(LostFoundError):
    """Caller violated a precondition (e.g. matching an item with no embedding)."""

    code = "precondition_failed"


class NotFoundError(LostFoundError):
    """Referenced entity does not exist."""

    code = "not_found"


class InvalidStateError(LostFoundError):
    """Kind, status or ownership rules forbid the operation."""

    code = "invalid_state"


class ConflictError(LostFoundError):
    """Duplicate claim for the same (item, claimant) pair."""

    code = "conflict"


class RateLimitedError(LostFoundError):
    """Claimant exceeded the rolling claim quota."""

    code = "rate_limited"

    def __init__(self, message: str, retry_after_seconds: int = 0) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class DependencyUnavailableError(LostFoundError):
    """Circuit breaker is open for a dependency."""

    code = "dependency_unavailable"

    def __init__(self, dependency: str) -> None:
        super().__init__(f"Service '{dependency}' is temporarily unavailable (circuit open)")
        self.dependency = dependency


class TransientFailureError(LostFoundError):
    """Retryable I/O failure."""

    code = "transient_failure"
    retryable = True


class MigrationFailureError(LostFoundError):
    """Approved-claim migration could not be completed."""

    code = "migration_failure"

    def __init__(self, claim_id: object, item_id: object, message: str) -> None:
        super().__init__(message)
        self.claim_id = claim_id
        self.item_id = item_id


CLIENT_ERRORS: tuple[type[LostFoundError], ...] = (
    PreconditionFailedError,
    NotFoundError,
    InvalidStateError,
    ConflictError,
    RateLimitedError,
)


def is_transient(error: BaseException) -> bool:
    """Return True if the error means the dependency itself misbehaved.

    Only these count against a circuit breaker or earn a retry. Everything
    else (constraint violations, programming errors, client errors) means the
    dependency answered and repeating the call would give the same answer.
    """
    if isinstance(error, TransientFailureError):
        return True
    if isinstance(error, (CLIENT_ERRORS, DependencyUnavailableError, MigrationFailureError)):
        return False
    if isinstance(error, DBAPIError):
        return error.connection_invalidated or isinstance(
            error, (sa_exc.OperationalError, sa_exc.InterfaceError)
        )
    if isinstance(error, sa_exc.TimeoutError):
        return True
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(
        error,
        (
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        ),
    ):
        return True
    return isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError))


def is_retryable(error: BaseException) -> bool:
    """Return True if a failed attempt may be retried."""
    return is_transient(error)
