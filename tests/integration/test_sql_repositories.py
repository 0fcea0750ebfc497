"""Integration tests for the SQL repositories on SQLite.

SQLite runs with foreign keys enabled, so ON DELETE SET NULL / CASCADE behave as
on PostgreSQL. Vector search uses the Python scan path here.
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from backend.app.config import Settings
from backend.app.db.engine import create_async_engine_for_url, create_session_factory
from backend.app.db.models import EMBEDDING_DIMENSIONS, Base
from backend.app.db.repositories import NewClaim, NewItem, Repositories
from backend.app.db.sql_repositories import SqlClaimRepository, build_sql_repositories
from backend.app.errors import (
    ConflictError,
    InvalidStateError,
    MigrationFailureError,
    NotFoundError,
)
from backend.app.models.common import (
    ClaimDecision,
    ClaimStatus,
    FoundMode,
    ItemKind,
    ItemStatus,
    NotificationKind,
)
from backend.app.models.items import ItemMetadataV1
from backend.app.resilience.breaker import BreakerState
from backend.app.services import Services, build_services
from tests.helpers import RecordingEmailSender, base_vector, no_sleep, vector_at

DIMS = EMBEDDING_DIMENSIONS


class FailingDeleteClaimRepository(SqlClaimRepository):
    """Dies between writing the snapshot and deleting the item."""

    async def _delete_item(self, session: AsyncSession, item_id: uuid.UUID) -> None:
        raise ConnectionResetError("connection reset during migration")


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine_for_url("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(sqlite_engine)


@pytest.fixture
def sql_repos(session_factory: async_sessionmaker[AsyncSession]) -> Repositories:
    return build_sql_repositories(session_factory)


@pytest.fixture
def sql_services(
    settings: Settings, sql_repos: Repositories, sqlite_engine: AsyncEngine
) -> Services:
    return build_services(
        settings,
        sql_repos,
        engine=sqlite_engine,
        email_sender=RecordingEmailSender(),
        sleep_fn=no_sleep,
    )


async def _user(repos: Repositories) -> uuid.UUID:
    user_id = uuid.uuid4()
    await repos.users.ensure_user(user_id, f"{user_id.hex[:10]}@campus.edu")
    return user_id


async def _item(
    repos: Repositories,
    kind: ItemKind,
    embedding: list[float] | None = None,
    user_id: uuid.UUID | None = None,
    **fields: object,
) -> uuid.UUID:
    owner = user_id or await _user(repos)
    record = await repos.items.create_item(
        NewItem(
            user_id=owner,
            kind=kind,
            embedding=embedding,
            **{"title": f"{kind.value} item", **fields},  # type: ignore[arg-type]
        )
    )
    return record.id


@pytest.mark.asyncio
async def test_item_round_trip(sql_repos: Repositories) -> None:
    owner = await _user(sql_repos)
    metadata = ItemMetadataV1(colors=["red"], verification_question="What sticker?")
    created = await sql_repos.items.create_item(
        NewItem(
            user_id=owner,
            kind=ItemKind.found,
            title="Red bottle",
            found_mode=FoundMode.keeping,
            contact_email="me@campus.edu",
            metadata=metadata,
            embedding=vector_at(0.6, DIMS),
        )
    )

    loaded = await sql_repos.items.get_item(created.id)

    assert loaded is not None
    assert loaded.title == "Red bottle"
    assert loaded.found_mode == FoundMode.keeping
    assert loaded.metadata == metadata
    assert loaded.embedding == pytest.approx(vector_at(0.6, DIMS))


@pytest.mark.asyncio
async def test_ensure_user_is_idempotent(sql_repos: Repositories) -> None:
    user_id = uuid.uuid4()
    first = await sql_repos.users.ensure_user(user_id, "a@campus.edu")
    second = await sql_repos.users.ensure_user(user_id, "ignored@campus.edu")

    assert first.email == second.email == "a@campus.edu"


@pytest.mark.asyncio
async def test_taken_email_is_a_conflict_not_an_outage(sql_services: Services) -> None:
    """Repeated unique violations on users.email never open the store breaker."""
    store = sql_services.deps.store
    await store.call(lambda: sql_services.repos.users.ensure_user(uuid.uuid4(), "dup@campus.edu"))

    for _ in range(sql_services.settings.store_breaker_failures + 2):
        with pytest.raises(ConflictError):
            await store.call(
                lambda: sql_services.repos.users.ensure_user(uuid.uuid4(), "dup@campus.edu"),
                operation="ensure_user",
            )

    assert store.breaker.state == BreakerState.CLOSED
    assert store.breaker.failure_count == 0


@pytest.mark.asyncio
async def test_nearest_candidates_scan(sql_repos: Repositories) -> None:
    lost = await _item(sql_repos, ItemKind.lost, base_vector(DIMS))
    close = await _item(sql_repos, ItemKind.found, vector_at(0.95, DIMS))
    closer = await _item(sql_repos, ItemKind.found, vector_at(0.99, DIMS))
    await _item(sql_repos, ItemKind.found, vector_at(0.5, DIMS))
    await _item(sql_repos, ItemKind.found, None)
    await _item(sql_repos, ItemKind.lost, base_vector(DIMS))

    hits = await sql_repos.items.nearest_candidates(
        lost, ItemKind.found, base_vector(DIMS), threshold=0.8, limit=5
    )

    assert [h.item_id for h in hits] == [closer, close]


@pytest.mark.asyncio
async def test_upsert_match_is_idempotent(sql_repos: Repositories) -> None:
    lost = await _item(sql_repos, ItemKind.lost)
    found = await _item(sql_repos, ItemKind.found)

    first = await sql_repos.matches.upsert_match(lost, found, 0.85)
    stamp = datetime(2026, 3, 1, tzinfo=UTC)
    assert await sql_repos.matches.claim_notification(first.id, stamp)
    second = await sql_repos.matches.upsert_match(lost, found, 0.91)

    assert second.id == first.id
    assert second.similarity_score == pytest.approx(0.91)
    # Refreshing the score never clears the notification stamp
    assert second.notified_at is not None

    matches = await sql_repos.matches.list_matches_for_item(found, 5)
    assert len(matches) == 1


@pytest.mark.asyncio
async def test_claim_notification_is_conditional(sql_repos: Repositories) -> None:
    """Only the first claimant of a NULL stamp wins; clearing reopens it."""
    lost = await _item(sql_repos, ItemKind.lost)
    found = await _item(sql_repos, ItemKind.found)
    match = await sql_repos.matches.upsert_match(lost, found, 0.9)
    stamp = datetime(2026, 3, 1, tzinfo=UTC)

    assert await sql_repos.matches.claim_notification(match.id, stamp)
    assert not await sql_repos.matches.claim_notification(match.id, stamp + timedelta(seconds=1))

    await sql_repos.matches.clear_notification(match.id)
    [cleared] = await sql_repos.matches.list_matches_for_item(lost, 5)
    assert cleared.notified_at is None
    assert await sql_repos.matches.claim_notification(match.id, stamp)


@pytest.mark.asyncio
async def test_duplicate_claim_is_conflict(sql_repos: Repositories) -> None:
    owner = await _user(sql_repos)
    found = await _item(sql_repos, ItemKind.found, user_id=owner)
    claimant = await _user(sql_repos)
    claim = NewClaim(item_id=found, claimant_id=claimant, owner_id=owner)

    await sql_repos.claims.create_claim(claim)

    with pytest.raises(ConflictError):
        await sql_repos.claims.create_claim(claim)
    with pytest.raises(ConflictError):
        await sql_repos.claims.create_approved_with_migration(claim, deleted_at=datetime.now(UTC))

    # The failed instant claim left the item in place
    assert await sql_repos.items.get_item(found) is not None


@pytest.mark.asyncio
async def test_approve_with_migration(sql_repos: Repositories) -> None:
    """Snapshot written, item deleted, claim unlinked and approved, matches kept."""
    owner = await _user(sql_repos)
    found = await _item(sql_repos, ItemKind.found, user_id=owner, location="Library")
    lost = await _item(sql_repos, ItemKind.lost)
    await sql_repos.matches.upsert_match(lost, found, 0.9)
    claimant = await _user(sql_repos)
    claim = await sql_repos.claims.create_claim(
        NewClaim(item_id=found, claimant_id=claimant, owner_id=owner)
    )

    result = await sql_repos.claims.approve_with_migration(claim.id)

    assert result.claim.status == ClaimStatus.approved
    assert result.claim.item_id is None
    assert result.snapshot.original_item_id == found
    assert result.snapshot.location == "Library"
    assert await sql_repos.items.get_item(found) is None
    [match] = await sql_repos.matches.list_matches_for_item(lost, 5)
    assert match.found_item_id == found

    stored = await sql_repos.claims.get_claim(claim.id)
    assert stored is not None
    assert stored.status == ClaimStatus.approved
    assert stored.item_id is None
    snapshot = await sql_repos.claims.get_snapshot_for_claim(claim.id)
    assert snapshot is not None
    assert snapshot.title == "found item"

    with pytest.raises(InvalidStateError):
        await sql_repos.claims.approve_with_migration(claim.id)


@pytest.mark.asyncio
async def test_migration_rejects_other_pending_claims(sql_repos: Repositories) -> None:
    owner = await _user(sql_repos)
    found = await _item(sql_repos, ItemKind.found, user_id=owner, title="Blue scarf")
    winner = await sql_repos.claims.create_claim(
        NewClaim(item_id=found, claimant_id=await _user(sql_repos), owner_id=owner)
    )
    loser = await sql_repos.claims.create_claim(
        NewClaim(item_id=found, claimant_id=await _user(sql_repos), owner_id=owner)
    )

    result = await sql_repos.claims.approve_with_migration(winner.id)

    assert [c.id for c in result.rejected_claims] == [loser.id]
    assert result.rejected_claims[0].status == ClaimStatus.rejected
    stored = await sql_repos.claims.get_claim(loser.id)
    assert stored is not None
    assert stored.status == ClaimStatus.rejected
    assert stored.item_id is None
    assert stored.original_item_id == found
    snapshot = await sql_repos.claims.get_snapshot_by_original_item(found)
    assert snapshot is not None
    assert snapshot.claim_id == winner.id


@pytest.mark.asyncio
async def test_reject_is_conditional_on_pending(sql_repos: Repositories) -> None:
    owner = await _user(sql_repos)
    found = await _item(sql_repos, ItemKind.found, user_id=owner)
    claim = await sql_repos.claims.create_claim(
        NewClaim(item_id=found, claimant_id=await _user(sql_repos), owner_id=owner)
    )

    rejected = await sql_repos.claims.reject_claim(claim.id)
    assert rejected is not None
    assert rejected.status == ClaimStatus.rejected

    assert await sql_repos.claims.reject_claim(claim.id) is None


@pytest.mark.asyncio
async def test_failed_migration_rolls_back(
    settings: Settings,
    sql_repos: Repositories,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A crash after the snapshot insert leaves no snapshot and no state change."""
    faulty_claims = FailingDeleteClaimRepository(session_factory)
    services = build_services(
        settings,
        Repositories(
            users=sql_repos.users,
            items=sql_repos.items,
            matches=sql_repos.matches,
            claims=faulty_claims,
            notifications=sql_repos.notifications,
        ),
        email_sender=RecordingEmailSender(),
        sleep_fn=no_sleep,
    )
    owner = await _user(sql_repos)
    found = await _item(sql_repos, ItemKind.found, user_id=owner)
    claimant = await _user(sql_repos)
    claim = await services.claims.submit_verification_claim(found, claimant, "answer")

    with pytest.raises(MigrationFailureError):
        await services.claims.resolve_claim(claim.id, owner, ClaimDecision.approve)

    assert await sql_repos.items.get_item(found) is not None
    stored = await sql_repos.claims.get_claim(claim.id)
    assert stored is not None
    assert stored.status == ClaimStatus.pending
    assert stored.item_id == found
    assert await sql_repos.claims.get_snapshot_for_claim(claim.id) is None

    # Instant flow: the claim row itself must not survive
    other = await _user(sql_repos)
    with pytest.raises(MigrationFailureError):
        await services.claims.submit_instant_claim(found, other)
    assert await sql_repos.claims.find_claim(found, other) is None


@pytest.mark.asyncio
async def test_purge_deleted_claims_cascades_snapshot(sql_repos: Repositories) -> None:
    owner = await _user(sql_repos)
    found = await _item(sql_repos, ItemKind.found, user_id=owner)
    claimant = await _user(sql_repos)
    old = datetime.now(UTC) - timedelta(days=120)
    result = await sql_repos.claims.create_approved_with_migration(
        NewClaim(item_id=found, claimant_id=claimant, owner_id=owner), deleted_at=old
    )

    purged = await sql_repos.claims.purge_deleted_claims(datetime.now(UTC) - timedelta(days=90))

    assert purged == 1
    assert await sql_repos.claims.get_claim(result.claim.id) is None
    assert await sql_repos.claims.get_snapshot_for_claim(result.claim.id) is None


@pytest.mark.asyncio
async def test_count_claims_since(sql_repos: Repositories) -> None:
    claimant = await _user(sql_repos)
    for _ in range(3):
        owner = await _user(sql_repos)
        found = await _item(sql_repos, ItemKind.found, user_id=owner)
        await sql_repos.claims.create_claim(
            NewClaim(item_id=found, claimant_id=claimant, owner_id=owner)
        )

    since = datetime.now(UTC) - timedelta(hours=1)
    assert await sql_repos.claims.count_claims_since(claimant, since) == 3
    later = datetime.now(UTC) + timedelta(hours=1)
    assert await sql_repos.claims.count_claims_since(claimant, later) == 0


@pytest.mark.asyncio
async def test_matching_and_claim_flow_on_sql(sql_services: Services) -> None:
    """End to end on the SQL store: match, notify once, claim, approve."""
    repos = sql_services.repos
    finder = await _user(repos)
    loser = await _user(repos)
    found = await _item(repos, ItemKind.found, base_vector(DIMS), user_id=finder)
    lost = await _item(repos, ItemKind.lost, vector_at(0.9, DIMS), user_id=loser)

    first = await sql_services.matching.run_matching(found, ItemKind.found)
    again = await sql_services.matching.run_matching(lost, ItemKind.lost)

    assert first.notified == 1
    assert again.notified == 0
    assert len(await repos.notifications.list_notifications(loser)) == 1

    claim = await sql_services.claims.submit_verification_claim(found, loser, "my answer")
    approved = await sql_services.claims.resolve_claim(claim.id, finder, ClaimDecision.approve)

    assert approved.status == ClaimStatus.approved
    status = await sql_services.claims.get_claim_status(claim.id, loser)
    assert status.title == "found item"


@pytest.mark.asyncio
async def test_set_embedding_and_status(sql_repos: Repositories) -> None:
    """Re-embedding makes an item searchable; deactivating hides it again."""
    lost = await _item(sql_repos, ItemKind.lost, base_vector(DIMS))
    found = await _item(sql_repos, ItemKind.found, None)

    await sql_repos.items.set_embedding(found, vector_at(0.9, DIMS))
    hits = await sql_repos.items.nearest_candidates(
        lost, ItemKind.found, base_vector(DIMS), threshold=0.8, limit=5
    )
    assert [h.item_id for h in hits] == [found]

    await sql_repos.items.set_status(found, ItemStatus.expired)
    hits = await sql_repos.items.nearest_candidates(
        lost, ItemKind.found, base_vector(DIMS), threshold=0.8, limit=5
    )
    assert hits == []

    with pytest.raises(NotFoundError):
        await sql_repos.items.set_embedding(uuid.uuid4(), base_vector(DIMS))


@pytest.mark.asyncio
async def test_set_status_respects_expected(sql_repos: Repositories) -> None:
    item = await _item(sql_repos, ItemKind.lost)

    assert await sql_repos.items.set_status(item, ItemStatus.resolved, expected=ItemStatus.active)
    assert not await sql_repos.items.set_status(
        item, ItemStatus.expired, expected=ItemStatus.active
    )

    loaded = await sql_repos.items.get_item(item)
    assert loaded is not None and loaded.status == ItemStatus.resolved


@pytest.mark.asyncio
async def test_list_feed_filters_and_counts(sql_repos: Repositories) -> None:
    gym = [
        await _item(sql_repos, ItemKind.found, category="Clothing", location="North Gym lobby")
        for _ in range(3)
    ]
    await _item(sql_repos, ItemKind.found, category="Clothing", location="Library")
    await _item(sql_repos, ItemKind.lost, category="Clothing", location="North Gym lobby")
    hidden = await _item(sql_repos, ItemKind.found, category="Clothing", location="gym")
    await sql_repos.items.set_status(hidden, ItemStatus.expired)

    page = await sql_repos.items.list_feed(
        kind=ItemKind.found, category="Clothing", location="GYM", limit=2
    )
    rest = await sql_repos.items.list_feed(
        kind=ItemKind.found, category="Clothing", location="GYM", limit=2, offset=2
    )
    expired = await sql_repos.items.list_feed(status=ItemStatus.expired)

    assert page.total == rest.total == 3
    assert len(page.items) == 2
    assert {i.id for i in page.items + rest.items} == set(gym)
    assert [i.id for i in expired.items] == [hidden]


@pytest.mark.asyncio
async def test_search_by_embedding_scan(sql_repos: Repositories) -> None:
    close = await _item(sql_repos, ItemKind.found, vector_at(0.9, DIMS))
    closest = await _item(sql_repos, ItemKind.lost, vector_at(0.99, DIMS))
    await _item(sql_repos, ItemKind.found, None)
    retired = await _item(sql_repos, ItemKind.found, base_vector(DIMS))
    await sql_repos.items.set_status(retired, ItemStatus.resolved)

    hits = await sql_repos.items.search_by_embedding(base_vector(DIMS), limit=5)
    found_only = await sql_repos.items.search_by_embedding(
        base_vector(DIMS), kind=ItemKind.found
    )

    assert [h.item.id for h in hits] == [closest, close]
    assert hits[0].similarity == pytest.approx(0.99)
    assert [h.item.id for h in found_only] == [close]


@pytest.mark.asyncio
async def test_unread_count_and_mark_read(sql_repos: Repositories) -> None:
    user = await _user(sql_repos)
    first = await sql_repos.notifications.add_notification(
        user, NotificationKind.claim_submitted, "New Claim Submitted", "body"
    )
    await sql_repos.notifications.add_notification(
        user, NotificationKind.claim_approved, "Claim Approved", "body"
    )

    assert await sql_repos.notifications.count_unread(user) == 2
    assert not await sql_repos.notifications.mark_read(first.id, uuid.uuid4())
    assert await sql_repos.notifications.mark_read(first.id, user)
    assert await sql_repos.notifications.count_unread(user) == 1
