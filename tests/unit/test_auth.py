"""Unit tests for the bearer-token auth dependency."""

import uuid

import pytest
from fastapi import HTTPException

from backend.app.api.auth import get_current_context, parse_bearer_token
from backend.app.services import Services


def test_parse_user_id_only() -> None:
    user_id = uuid.uuid4()

    ctx = parse_bearer_token(f"Bearer {user_id}")

    assert ctx.user_id == user_id
    assert ctx.email is None


def test_parse_user_id_and_email() -> None:
    user_id = uuid.uuid4()

    ctx = parse_bearer_token(f"Bearer {user_id}:sam@campus.edu")

    assert ctx.user_id == user_id
    assert ctx.email == "sam@campus.edu"


@pytest.mark.parametrize(
    "header",
    [None, "", "NotBearer token", "Bearer not-a-uuid", "Bearer eyJhbGciOiJIUzI1NiJ9.e30.x"],
)
def test_parse_rejects_malformed_headers(header: str | None) -> None:
    with pytest.raises(HTTPException) as exc_info:
        parse_bearer_token(header)

    assert exc_info.value.status_code == 401
    assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


@pytest.mark.asyncio
async def test_get_current_context_creates_user_with_placeholder_email(
    services: Services,
) -> None:
    user_id = uuid.uuid4()

    ctx = await get_current_context(services, authorization=f"Bearer {user_id}")

    user = await services.repos.users.get_user(ctx.user_id)
    assert user is not None
    assert user.email == f"{user_id}@users.invalid"
