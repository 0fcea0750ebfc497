"""Unit tests for the claims retention job."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from backend.app.db.repositories import NewClaim
from backend.app.jobs.claims_cleanup import run_claims_cleanup
from backend.app.models.common import ItemKind
from backend.app.services import Services
from tests.helpers import ItemFactory


async def _instant_claim(
    services: Services, item_factory: ItemFactory, deleted_at: datetime
) -> uuid.UUID:
    found = await item_factory(ItemKind.found)
    result = await services.repos.claims.create_approved_with_migration(
        NewClaim(item_id=found.id, claimant_id=uuid.uuid4(), owner_id=found.user_id),
        deleted_at=deleted_at,
    )
    return result.claim.id


@pytest.mark.asyncio
async def test_cleanup_purges_only_expired_claims(
    services: Services, item_factory: ItemFactory
) -> None:
    now = datetime(2026, 6, 1, tzinfo=UTC)
    old = await _instant_claim(services, item_factory, now - timedelta(days=91))
    recent = await _instant_claim(services, item_factory, now - timedelta(days=10))

    found = await item_factory(ItemKind.found)
    live = await services.repos.claims.create_claim(
        NewClaim(item_id=found.id, claimant_id=uuid.uuid4(), owner_id=found.user_id)
    )

    deleted = await run_claims_cleanup(services.repos.claims, services.deps.store, 90, now=now)

    assert deleted == 1
    assert await services.repos.claims.get_claim(old) is None
    assert await services.repos.claims.get_snapshot_for_claim(old) is None
    assert await services.repos.claims.get_claim(recent) is not None
    assert await services.repos.claims.get_claim(live.id) is not None


@pytest.mark.asyncio
async def test_cleanup_with_nothing_to_do(services: Services) -> None:
    assert await run_claims_cleanup(services.repos.claims, services.deps.store) == 0
