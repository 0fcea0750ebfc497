"""Unit tests for the claim lifecycle (eligibility, both flows, migration)."""

import asyncio
import dataclasses
import uuid

import pytest

from backend.app.claims.lifecycle import ClaimLifecycleManager
from backend.app.claims.verification import verify_answer
from backend.app.config import Settings
from backend.app.db.inmemory import InMemoryClaimRepository, InMemoryDatabase
from backend.app.db.repositories import ClaimedItemRecord, ClaimRecord, NewClaim, Repositories
from backend.app.errors import (
    ConflictError,
    InvalidStateError,
    MigrationFailureError,
    NotFoundError,
    RateLimitedError,
)
from backend.app.models.common import (
    ClaimDecision,
    ClaimStatus,
    FoundMode,
    ItemKind,
    ItemStatus,
    NotificationKind,
    PreviewWarning,
)
from backend.app.notifications.notifier import NotificationPayload
from backend.app.services import Services, build_services
from tests.helpers import (
    ItemFactory,
    RecordingEmailSender,
    base_vector,
    no_sleep,
    vector_at,
)


class ExplodingClaimRepository(InMemoryClaimRepository):
    """Fails every migration after the snapshot is staged."""

    def _before_item_delete(self, snapshot: ClaimedItemRecord) -> None:
        raise ConnectionResetError("connection lost mid-transaction")


class DeadNotifier:
    async def notify(
        self, user_id: uuid.UUID, kind: NotificationKind, payload: NotificationPayload
    ) -> None:
        raise ConnectionError("all channels down")


@pytest.fixture
def faulty_services(
    settings: Settings, db: InMemoryDatabase, repos: Repositories, email_sender: RecordingEmailSender
) -> Services:
    """Services whose claim migrations always fail."""
    faulty = dataclasses.replace(repos, claims=ExplodingClaimRepository(db))
    return build_services(settings, faulty, email_sender=email_sender, sleep_fn=no_sleep)


async def _notification_kinds(services: Services, user_id: uuid.UUID) -> list[NotificationKind]:
    return [n.kind for n in await services.repos.notifications.list_notifications(user_id)]


# ----------------------------------------------------------------------
# Eligibility gate
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_gate_unknown_item(services: Services) -> None:
    with pytest.raises(NotFoundError, match="Item not found"):
        await services.claims.check_eligibility(uuid.uuid4(), uuid.uuid4())


@pytest.mark.asyncio
async def test_gate_rejects_lost_items(services: Services, item_factory: ItemFactory) -> None:
    lost = await item_factory(ItemKind.lost)

    with pytest.raises(InvalidStateError, match="claims only on found items"):
        await services.claims.check_eligibility(lost.id, uuid.uuid4())


@pytest.mark.asyncio
async def test_gate_rejects_inactive_items(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found)
    await services.repos.items.set_status(found.id, ItemStatus.expired)  # type: ignore[attr-defined]

    with pytest.raises(InvalidStateError, match="item no longer active"):
        await services.claims.check_eligibility(found.id, uuid.uuid4())


@pytest.mark.asyncio
async def test_gate_rejects_own_item(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found)

    with pytest.raises(InvalidStateError, match="cannot claim own item"):
        await services.claims.check_eligibility(found.id, found.user_id)


@pytest.mark.asyncio
async def test_gate_rejects_duplicate_claim(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found)
    claimant = uuid.uuid4()
    await services.claims.submit_verification_claim(found.id, claimant, "a scratch")

    with pytest.raises(ConflictError):
        await services.claims.submit_verification_claim(found.id, claimant, "a scratch")
    with pytest.raises(ConflictError):
        await services.claims.submit_instant_claim(found.id, claimant)


@pytest.mark.asyncio
async def test_gate_enforces_rolling_quota(services: Services, item_factory: ItemFactory) -> None:
    """The sixth claim inside 24 hours is rate limited, across both flows."""
    claimant = uuid.uuid4()
    for i in range(5):
        found = await item_factory(ItemKind.found, title=f"Item {i}")
        await services.claims.submit_verification_claim(found.id, claimant, "answer")

    sixth = await item_factory(ItemKind.found)
    with pytest.raises(RateLimitedError) as exc_info:
        await services.claims.submit_instant_claim(sixth.id, claimant)

    assert exc_info.value.retry_after_seconds == 24 * 3600
    # Nothing was written for the rejected attempt
    assert await services.repos.claims.find_claim(sixth.id, claimant) is None
    assert await services.repos.items.get_item(sixth.id) is not None


# ----------------------------------------------------------------------
# Verification flow
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_submit_verification_claim(
    services: Services, item_factory: ItemFactory, email_sender: RecordingEmailSender
) -> None:
    """Claim is pending, answer stored hashed, finder notified in-app and by email."""
    found = await item_factory(ItemKind.found, title="Black wallet")
    claimant = uuid.uuid4()

    claim = await services.claims.submit_verification_claim(
        found.id, claimant, "Initials JD inside", notes="Lost it Tuesday"
    )

    assert claim.status == ClaimStatus.pending
    assert claim.owner_id == found.user_id
    assert claim.verification_question == "What is engraved on the back?"
    assert claim.verification_answer_hash is not None
    assert "JD" not in claim.verification_answer_hash
    assert verify_answer("initials jd inside", claim.verification_answer_hash, "test-pepper")

    assert await _notification_kinds(services, found.user_id) == [NotificationKind.claim_submitted]
    assert len(email_sender.sent) == 1
    assert "Black wallet" in email_sender.sent[0][1]


@pytest.mark.asyncio
async def test_approve_migrates_item(services: Services, item_factory: ItemFactory) -> None:
    """Approval: snapshot written, live item deleted, claim approved with no item."""
    found = await item_factory(
        ItemKind.found, title="Silver ring", found_mode=FoundMode.keeping, contact_email="f@campus.edu"
    )
    claimant = uuid.uuid4()
    claim = await services.claims.submit_verification_claim(found.id, claimant, "engraving")

    approved = await services.claims.resolve_claim(claim.id, found.user_id, ClaimDecision.approve)

    assert approved.status == ClaimStatus.approved
    assert approved.item_id is None
    assert await services.repos.items.get_item(found.id) is None

    snapshot = await services.repos.claims.get_snapshot_for_claim(claim.id)
    assert snapshot is not None
    assert snapshot.original_item_id == found.id
    assert snapshot.title == "Silver ring"
    assert snapshot.item_created_at == found.created_at

    assert NotificationKind.claim_approved in await _notification_kinds(services, claimant)


@pytest.mark.asyncio
async def test_approve_keeps_matches_of_migrated_item(
    services: Services, item_factory: ItemFactory
) -> None:
    found = await item_factory(ItemKind.found, embedding=base_vector())
    lost = await item_factory(ItemKind.lost, embedding=vector_at(0.9))
    await services.matching.run_matching(found.id, ItemKind.found)
    assert len(await services.repos.matches.list_matches_for_item(lost.id, 5)) == 1

    claim = await services.claims.submit_verification_claim(found.id, lost.user_id, "yes")
    await services.claims.resolve_claim(claim.id, found.user_id, ClaimDecision.approve)

    [match] = await services.repos.matches.list_matches_for_item(lost.id, 5)
    assert match.found_item_id == found.id


@pytest.mark.asyncio
async def test_approval_rejects_competing_claims(
    services: Services, item_factory: ItemFactory
) -> None:
    """Other pending claims on a migrated item are closed, notified and still readable."""
    found = await item_factory(ItemKind.found, title="Blue scarf")
    winner, loser = uuid.uuid4(), uuid.uuid4()
    winning = await services.claims.submit_verification_claim(found.id, winner, "wool")
    losing = await services.claims.submit_verification_claim(found.id, loser, "silk")

    await services.claims.resolve_claim(winning.id, found.user_id, ClaimDecision.approve)

    stored = await services.repos.claims.get_claim(losing.id)
    assert stored is not None
    assert stored.status == ClaimStatus.rejected
    assert stored.item_id is None
    assert stored.original_item_id == found.id
    assert await _notification_kinds(services, loser) == [NotificationKind.claim_rejected]

    view = await services.claims.get_claim_status(losing.id, loser)
    assert view.status == ClaimStatus.rejected
    assert view.title == "Blue scarf"
    assert view.contact_email is None

    with pytest.raises(InvalidStateError, match="already resolved"):
        await services.claims.resolve_claim(losing.id, found.user_id, ClaimDecision.approve)


@pytest.mark.asyncio
async def test_instant_claim_rejects_pending_claims(
    services: Services, item_factory: ItemFactory
) -> None:
    found = await item_factory(ItemKind.found)
    waiting = uuid.uuid4()
    pending = await services.claims.submit_verification_claim(found.id, waiting, "x")

    await services.claims.submit_instant_claim(found.id, uuid.uuid4())

    stored = await services.repos.claims.get_claim(pending.id)
    assert stored is not None
    assert stored.status == ClaimStatus.rejected
    assert NotificationKind.claim_rejected in await _notification_kinds(services, waiting)


@pytest.mark.asyncio
async def test_reject_leaves_item_active(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found)
    claimant = uuid.uuid4()
    claim = await services.claims.submit_verification_claim(found.id, claimant, "guess")

    rejected = await services.claims.resolve_claim(claim.id, found.user_id, ClaimDecision.reject)

    assert rejected.status == ClaimStatus.rejected
    assert rejected.item_id == found.id
    item = await services.repos.items.get_item(found.id)
    assert item is not None
    assert item.status == ItemStatus.active
    assert await services.repos.claims.get_snapshot_for_claim(claim.id) is None
    assert NotificationKind.claim_rejected in await _notification_kinds(services, claimant)


@pytest.mark.asyncio
async def test_resolved_claims_are_terminal(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found)
    claim = await services.claims.submit_verification_claim(found.id, uuid.uuid4(), "x")
    await services.claims.resolve_claim(claim.id, found.user_id, ClaimDecision.reject)

    for decision in ClaimDecision:
        with pytest.raises(InvalidStateError, match="already resolved"):
            await services.claims.resolve_claim(claim.id, found.user_id, decision)


@pytest.mark.asyncio
async def test_only_owner_may_resolve(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found)
    claimant = uuid.uuid4()
    claim = await services.claims.submit_verification_claim(found.id, claimant, "x")

    with pytest.raises(InvalidStateError, match="not authorized"):
        await services.claims.resolve_claim(claim.id, claimant, ClaimDecision.approve)

    stored = await services.repos.claims.get_claim(claim.id)
    assert stored is not None
    assert stored.status == ClaimStatus.pending


@pytest.mark.asyncio
async def test_resolve_unknown_claim(services: Services) -> None:
    with pytest.raises(NotFoundError):
        await services.claims.resolve_claim(uuid.uuid4(), uuid.uuid4(), ClaimDecision.approve)


@pytest.mark.asyncio
async def test_concurrent_approvals_migrate_once(
    services: Services, item_factory: ItemFactory
) -> None:
    """Two owners' tabs approving at once: one wins, one sees a client error."""
    found = await item_factory(ItemKind.found)
    claim = await services.claims.submit_verification_claim(found.id, uuid.uuid4(), "x")

    results = await asyncio.gather(
        services.claims.resolve_claim(claim.id, found.user_id, ClaimDecision.approve),
        services.claims.resolve_claim(claim.id, found.user_id, ClaimDecision.approve),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidStateError | NotFoundError)
    assert len(services.repos.claims._db.snapshots) == 1  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_failed_migration_changes_nothing(
    faulty_services: Services, item_factory: ItemFactory
) -> None:
    """A migration that dies mid-way leaves item, claim and snapshots untouched."""
    found = await item_factory(ItemKind.found)
    claim = await faulty_services.claims.submit_verification_claim(found.id, uuid.uuid4(), "x")

    with pytest.raises(MigrationFailureError) as exc_info:
        await faulty_services.claims.resolve_claim(claim.id, found.user_id, ClaimDecision.approve)

    assert exc_info.value.claim_id == claim.id
    assert exc_info.value.item_id == found.id
    assert await faulty_services.repos.items.get_item(found.id) is not None
    stored = await faulty_services.repos.claims.get_claim(claim.id)
    assert stored is not None
    assert stored.status == ClaimStatus.pending
    assert stored.item_id == found.id
    assert await faulty_services.repos.claims.get_snapshot_for_claim(claim.id) is None


@pytest.mark.asyncio
async def test_claim_survives_notification_failure(
    services: Services, item_factory: ItemFactory
) -> None:
    """A committed claim is returned even when every notification channel fails."""
    manager = ClaimLifecycleManager(
        services.repos.items,
        services.repos.claims,
        services.deps.store,
        DeadNotifier(),
        answer_pepper="p",
    )
    found = await item_factory(ItemKind.found)

    claim = await manager.submit_verification_claim(found.id, uuid.uuid4(), "x")

    assert claim.status == ClaimStatus.pending
    assert await services.repos.claims.get_claim(claim.id) is not None


# ----------------------------------------------------------------------
# Instant flow
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_preview_without_lost_reports(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found, embedding=base_vector())

    preview = await services.claims.preview_claim(found.id, uuid.uuid4())

    assert preview.eligible is True
    assert preview.best_match is None
    assert preview.warning == PreviewWarning.no_report


@pytest.mark.asyncio
async def test_preview_picks_best_report(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found, embedding=base_vector())
    claimant = uuid.uuid4()
    await item_factory(ItemKind.lost, user_id=claimant, embedding=vector_at(0.7), title="Old")
    best = await item_factory(ItemKind.lost, user_id=claimant, embedding=vector_at(0.93), title="Keys")

    preview = await services.claims.preview_claim(found.id, claimant)

    assert preview.best_match is not None
    assert preview.best_match.item_id == best.id
    assert preview.best_match.similarity_score == pytest.approx(0.93)
    assert preview.warning is None
    # Read-only
    assert await services.repos.claims.find_claim(found.id, claimant) is None


@pytest.mark.asyncio
async def test_preview_warns_on_low_similarity(
    services: Services, item_factory: ItemFactory
) -> None:
    found = await item_factory(ItemKind.found, embedding=base_vector())
    claimant = uuid.uuid4()
    await item_factory(ItemKind.lost, user_id=claimant, embedding=vector_at(0.3))

    preview = await services.claims.preview_claim(found.id, claimant)

    assert preview.best_match is not None
    assert preview.warning == PreviewWarning.low_similarity


@pytest.mark.asyncio
async def test_preview_runs_the_gate(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found)

    with pytest.raises(InvalidStateError, match="cannot claim own item"):
        await services.claims.preview_claim(found.id, found.user_id)


@pytest.mark.asyncio
async def test_instant_claim_approves_and_migrates(
    services: Services, item_factory: ItemFactory
) -> None:
    found = await item_factory(ItemKind.found, embedding=base_vector(), title="Umbrella")
    claimant = uuid.uuid4()
    await item_factory(ItemKind.lost, user_id=claimant, embedding=vector_at(0.9))

    claim = await services.claims.submit_instant_claim(found.id, claimant)

    assert claim.status == ClaimStatus.approved
    assert claim.item_id is None
    assert claim.deleted_at is not None
    assert claim.similarity_score == pytest.approx(0.9)
    assert await services.repos.items.get_item(found.id) is None

    snapshot = await services.repos.claims.get_snapshot_by_original_item(found.id)
    assert snapshot is not None
    assert snapshot.claim_id == claim.id

    assert await _notification_kinds(services, found.user_id) == [NotificationKind.item_resolved]
    assert await _notification_kinds(services, claimant) == [NotificationKind.claim_approved]


@pytest.mark.asyncio
async def test_failed_instant_claim_leaves_no_claim(
    faulty_services: Services, item_factory: ItemFactory
) -> None:
    found = await item_factory(ItemKind.found)
    claimant = uuid.uuid4()

    with pytest.raises(MigrationFailureError):
        await faulty_services.claims.submit_instant_claim(found.id, claimant)

    assert await faulty_services.repos.claims.find_claim(found.id, claimant) is None
    assert await faulty_services.repos.items.get_item(found.id) is not None
    assert await faulty_services.repos.claims.get_snapshot_by_original_item(found.id) is None


@pytest.mark.asyncio
async def test_matches_survive_instant_claim(
    services: Services, item_factory: ItemFactory
) -> None:
    """The migrated found item's match history stays visible to the loser."""
    claimant = uuid.uuid4()
    lost = await item_factory(ItemKind.lost, user_id=claimant, embedding=base_vector())
    found = await item_factory(ItemKind.found, embedding=vector_at(0.95))
    await services.matching.run_matching(lost.id, ItemKind.lost)

    await services.claims.submit_instant_claim(found.id, claimant)

    [match] = await services.repos.matches.list_matches_for_item(lost.id, 5)
    assert match.found_item_id == found.id
    views = await services.matching.list_matches_for_item(lost.id, claimant)
    assert len(views) == 1
    assert views[0].matched_item is None


class DroppedAckClaimRepository(InMemoryClaimRepository):
    """Commits the claim, then loses the connection before acknowledging it."""

    def __init__(self, db: InMemoryDatabase) -> None:
        super().__init__(db)
        self.create_calls = 0

    async def create_claim(self, claim: NewClaim) -> ClaimRecord:
        self.create_calls += 1
        await super().create_claim(claim)
        raise ConnectionResetError("connection lost before commit ack")


@pytest.mark.asyncio
async def test_claim_insert_is_attempted_once(
    settings: Settings,
    db: InMemoryDatabase,
    repos: Repositories,
    email_sender: RecordingEmailSender,
    item_factory: ItemFactory,
) -> None:
    """A lost ack surfaces the transport error instead of a retried ConflictError."""
    claims = DroppedAckClaimRepository(db)
    services = build_services(
        settings,
        dataclasses.replace(repos, claims=claims),
        email_sender=email_sender,
        sleep_fn=no_sleep,
    )
    found = await item_factory(ItemKind.found)
    claimant = uuid.uuid4()

    with pytest.raises(ConnectionResetError):
        await services.claims.submit_verification_claim(found.id, claimant, "a scratch")

    assert claims.create_calls == 1
    assert await services.repos.claims.find_claim(found.id, claimant) is not None


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_claims_is_owner_only(services: Services, item_factory: ItemFactory) -> None:
    found = await item_factory(ItemKind.found)
    claimants = [uuid.uuid4(), uuid.uuid4()]
    for claimant in claimants:
        await services.claims.submit_verification_claim(found.id, claimant, "x")

    claims = await services.claims.list_claims_for_item(found.id, found.user_id)
    assert [c.claimant_id for c in claims] == claimants

    with pytest.raises(InvalidStateError):
        await services.claims.list_claims_for_item(found.id, claimants[0])


@pytest.mark.asyncio
async def test_status_uses_snapshot_after_migration(
    services: Services, item_factory: ItemFactory
) -> None:
    """Approved claim status resolves the title from the snapshot and shows contact info."""
    found = await item_factory(
        ItemKind.found,
        title="Laptop charger",
        found_mode=FoundMode.keeping,
        contact_email="finder@campus.edu",
    )
    claimant = uuid.uuid4()
    claim = await services.claims.submit_verification_claim(found.id, claimant, "x")

    pending = await services.claims.get_claim_status(claim.id, claimant)
    assert pending.title == "Laptop charger"
    assert pending.contact_email is None

    await services.claims.resolve_claim(claim.id, found.user_id, ClaimDecision.approve)

    approved = await services.claims.get_claim_status(claim.id, claimant)
    assert approved.status == ClaimStatus.approved
    assert approved.title == "Laptop charger"
    assert approved.contact_email == "finder@campus.edu"
    assert "Contact the finder" in approved.message

    owner_view = await services.claims.get_claim_status(claim.id, found.user_id)
    assert owner_view.contact_email is None

    with pytest.raises(InvalidStateError):
        await services.claims.get_claim_status(claim.id, uuid.uuid4())
