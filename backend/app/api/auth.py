"""Minimal auth dependency.

Stub implementation that reads the caller's user id (and optionally email) from
the bearer token. Token validation against the identity provider is out of
scope for this service; the gateway in front of it is trusted.
"""

import uuid
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from backend.app.db.context import RequestContext
from backend.app.services import Services


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the app's service container."""
    return request.app.state.services


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def parse_bearer_token(authorization: str | None) -> RequestContext:
    """Parse "Bearer <user_id>" or "Bearer <user_id>:<email>".

    Raises:
        HTTPException: 401 if the header is missing or malformed
    """
    if not authorization:
        raise _unauthorized("Missing authorization header")

    if not authorization.startswith("Bearer "):
        raise _unauthorized("Invalid authorization header format")

    token = authorization[7:].strip()
    user_id_str, _, email = token.partition(":")
    try:
        user_id = uuid.UUID(user_id_str)
    except ValueError as e:
        raise _unauthorized("Invalid token format (expected user_id[:email])") from e

    return RequestContext(user_id=user_id, email=email or None)


async def get_current_context(
    services: Annotated[Services, Depends(get_services)],
    authorization: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Authenticate the caller and make sure a user row exists for them.

    Args:
        services: Service container
        authorization: Authorization header (e.g., "Bearer <user_id>")

    Returns:
        RequestContext for the caller
    """
    ctx = parse_bearer_token(authorization)
    email = ctx.email or f"{ctx.user_id}@users.invalid"
    await services.deps.store.call(
        lambda: services.repos.users.ensure_user(ctx.user_id, email),
        operation="ensure_user",
    )
    return ctx


async def enforce_rate_limit(
    request: Request,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> RequestContext:
    """Gateway rate limit for the request's route bucket.

    Raises:
        HTTPException: 429 with Retry-After when the bucket is exhausted
    """
    allowed, retry_after = await services.rate_limits.check_rate_limit(
        request.method, request.url.path, ctx
    )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests",
            headers={"Retry-After": str(retry_after)},
        )
    return ctx
