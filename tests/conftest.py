"""Shared pytest fixtures for all test suites."""

import os
import uuid
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from pydantic import SecretStr
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from backend.app.ai.client import DeterministicStubClient
from backend.app.config import Settings
from backend.app.db.inmemory import InMemoryDatabase, build_inmemory_repositories
from backend.app.db.models import Base
from backend.app.db.repositories import ItemRecord, NewItem, Repositories
from backend.app.models.common import FoundMode, ItemKind
from backend.app.models.items import ItemMetadataV1
from backend.app.services import Services, build_services
from tests.helpers import ItemFactory, RecordingEmailSender, no_sleep


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment: in-memory store, no providers."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url=None,
        redis_url=None,
        openai_api_key=None,
        resend_api_key=None,
        answer_pepper=SecretStr("test-pepper"),
        retry_base_delay_ms=1,
        retry_max_delay_ms=1,
    )


@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def repos(db: InMemoryDatabase) -> Repositories:
    return build_inmemory_repositories(db)


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def services(
    settings: Settings, repos: Repositories, email_sender: RecordingEmailSender
) -> Services:
    """Fully wired in-memory services with instant retries."""
    return build_services(
        settings,
        repos,
        ai_client=DeterministicStubClient(dimensions=64),
        email_sender=email_sender,
        sleep_fn=no_sleep,
    )


@pytest.fixture
def item_factory(repos: Repositories) -> ItemFactory:
    """Create an item (and its owner) directly in the store."""

    async def create(
        kind: ItemKind,
        user_id: uuid.UUID | None = None,
        embedding: list[float] | None = None,
        title: str | None = None,
        **fields: Any,
    ) -> ItemRecord:
        owner = user_id or uuid.uuid4()
        await repos.users.ensure_user(owner, f"{owner.hex[:8]}@campus.edu")
        if kind == ItemKind.found:
            fields.setdefault("found_mode", FoundMode.left_at_location)
            fields.setdefault("location", "Library front desk")
        fields.setdefault(
            "metadata", ItemMetadataV1(verification_question="What is engraved on the back?")
        )
        return await repos.items.create_item(
            NewItem(
                user_id=owner,
                kind=kind,
                title=title or f"Test {kind.value} item",
                embedding=embedding,
                **fields,
            )
        )

    return create


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string with
    the pgvector extension available. Tests using this fixture should be marked
    with @pytest.mark.postgres.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    # Ensure it's a postgres URL
    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    # Convert to async driver if needed
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Cleanup: drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def postgres_session(postgres_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create async session for PostgreSQL integration tests."""
    async with AsyncSession(postgres_engine) as session:
        yield session
        await session.rollback()
