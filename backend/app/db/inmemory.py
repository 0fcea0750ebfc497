"""In-memory implementations of repository interfaces.

Used by unit tests and local runs without PostgreSQL. Uniqueness constraints and
foreign-key side effects (claims set to NULL when an item is deleted) are
reproduced so the engine behaves the same as against the database.
"""

import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from backend.app.db.repositories import (
    CandidateRecord,
    ClaimedItemRecord,
    ClaimRecord,
    FeedPage,
    ItemRecord,
    MatchRecord,
    MigrationResult,
    NewClaim,
    NewItem,
    NotificationRecord,
    Repositories,
    ScoredItemRecord,
    UserRecord,
)
from backend.app.errors import ConflictError, InvalidStateError, NotFoundError
from backend.app.matching.similarity import cosine_similarity
from backend.app.models.common import (
    ClaimStatus,
    ItemKind,
    ItemStatus,
    MatchStatus,
    NotificationKind,
)


def _now() -> datetime:
    return datetime.now(UTC)


class InMemoryDatabase:
    """Shared tables for the in-memory repositories."""

    def __init__(self) -> None:
        self.users: dict[uuid.UUID, UserRecord] = {}
        self.items: dict[uuid.UUID, ItemRecord] = {}
        self.matches: dict[uuid.UUID, MatchRecord] = {}
        self.claims: dict[uuid.UUID, ClaimRecord] = {}
        self.snapshots: dict[uuid.UUID, ClaimedItemRecord] = {}
        self.notifications: dict[uuid.UUID, NotificationRecord] = {}

    def delete_item(self, item_id: uuid.UUID) -> None:
        """Delete an item with the same side effects as the SQL foreign keys."""
        self.items.pop(item_id, None)
        for claim_id, claim in list(self.claims.items()):
            if claim.item_id == item_id:
                self.claims[claim_id] = replace(claim, item_id=None)


class InMemoryUserRepository:
    """In-memory implementation of UserRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None:
        """Get user by ID."""
        return self._db.users.get(user_id)

    async def ensure_user(
        self, user_id: uuid.UUID, email: str, display_name: str | None = None
    ) -> UserRecord:
        """Create the user if absent and return it."""
        existing = self._db.users.get(user_id)
        if existing is not None:
            return existing
        if any(user.email == email for user in self._db.users.values()):
            raise ConflictError("Email is already registered to another user")
        record = UserRecord(id=user_id, email=email, display_name=display_name)
        self._db.users[user_id] = record
        return record


class InMemoryItemRepository:
    """In-memory implementation of ItemRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def create_item(self, item: NewItem) -> ItemRecord:
        """Insert a new active item."""
        now = _now()
        record = ItemRecord(
            id=uuid.uuid4(),
            user_id=item.user_id,
            kind=item.kind,
            status=ItemStatus.active,
            title=item.title,
            description=item.description,
            category=item.category,
            location=item.location,
            date_occurred=item.date_occurred,
            image_url=item.image_url,
            found_mode=item.found_mode,
            contact_email=item.contact_email,
            is_anonymous=item.is_anonymous,
            metadata=item.metadata,
            embedding=list(item.embedding) if item.embedding is not None else None,
            created_at=now,
            updated_at=now,
        )
        self._db.items[record.id] = record
        return record

    async def get_item(self, item_id: uuid.UUID) -> ItemRecord | None:
        """Get item by ID."""
        return self._db.items.get(item_id)

    async def set_embedding(self, item_id: uuid.UUID, embedding: list[float]) -> None:
        """Store an item's embedding vector."""
        record = self._db.items.get(item_id)
        if record is None:
            raise NotFoundError(f"Item {item_id} not found")
        self._db.items[item_id] = replace(record, embedding=list(embedding), updated_at=_now())

    async def set_status(
        self, item_id: uuid.UUID, status: ItemStatus, *, expected: ItemStatus | None = None
    ) -> bool:
        """Change an item's status, optionally only if it currently is `expected`."""
        record = self._db.items.get(item_id)
        if record is None or (expected is not None and record.status != expected):
            return False
        self._db.items[item_id] = replace(record, status=status, updated_at=_now())
        return True

    async def list_feed(
        self,
        *,
        status: ItemStatus = ItemStatus.active,
        kind: ItemKind | None = None,
        category: str | None = None,
        location: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> FeedPage:
        """Items with the given status and filters, newest first."""
        needle = location.lower() if location else None
        results = [
            r
            for r in self._db.items.values()
            if r.status == status
            and (kind is None or r.kind == kind)
            and (category is None or r.category == category)
            and (needle is None or (r.location is not None and needle in r.location.lower()))
        ]
        results.sort(key=lambda r: r.created_at, reverse=True)
        return FeedPage(items=results[offset : offset + limit], total=len(results))

    async def search_by_embedding(
        self, embedding: list[float], *, kind: ItemKind | None = None, limit: int = 20
    ) -> list[ScoredItemRecord]:
        """Brute-force cosine search over active items."""
        hits = [
            ScoredItemRecord(item=r, similarity=cosine_similarity(embedding, r.embedding))
            for r in self._db.items.values()
            if r.status == ItemStatus.active
            and r.embedding is not None
            and (kind is None or r.kind == kind)
        ]
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:limit]

    async def nearest_candidates(
        self,
        item_id: uuid.UUID,
        kind: ItemKind,
        embedding: list[float],
        *,
        threshold: float,
        limit: int,
    ) -> list[CandidateRecord]:
        """Brute-force cosine search over active items of `kind`."""
        hits: list[CandidateRecord] = []
        for record in self._db.items.values():
            if record.id == item_id or record.kind != kind:
                continue
            if record.status != ItemStatus.active or record.embedding is None:
                continue
            similarity = cosine_similarity(embedding, record.embedding)
            if similarity >= threshold:
                hits.append(
                    CandidateRecord(
                        item_id=record.id,
                        user_id=record.user_id,
                        kind=record.kind,
                        title=record.title,
                        similarity=similarity,
                    )
                )
        hits.sort(key=lambda c: c.similarity, reverse=True)
        return hits[:limit]

    async def list_user_items(
        self, user_id: uuid.UUID, kind: ItemKind, status: ItemStatus = ItemStatus.active
    ) -> list[ItemRecord]:
        """List a user's items of one kind and status, newest first."""
        results = [
            r
            for r in self._db.items.values()
            if r.user_id == user_id and r.kind == kind and r.status == status
        ]
        results.sort(key=lambda r: r.created_at, reverse=True)
        return results


class InMemoryMatchRepository:
    """In-memory implementation of MatchRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def upsert_match(
        self, lost_item_id: uuid.UUID, found_item_id: uuid.UUID, similarity_score: float
    ) -> MatchRecord:
        """Insert the pair or refresh its score."""
        now = _now()
        for match_id, match in self._db.matches.items():
            if match.lost_item_id == lost_item_id and match.found_item_id == found_item_id:
                updated = replace(match, similarity_score=similarity_score, updated_at=now)
                self._db.matches[match_id] = updated
                return updated

        record = MatchRecord(
            id=uuid.uuid4(),
            lost_item_id=lost_item_id,
            found_item_id=found_item_id,
            similarity_score=similarity_score,
            status=MatchStatus.pending,
            notified_at=None,
            created_at=now,
            updated_at=now,
        )
        self._db.matches[record.id] = record
        return record

    async def claim_notification(self, match_id: uuid.UUID, notified_at: datetime) -> bool:
        """Stamp notified_at only if it is still NULL."""
        record = self._db.matches.get(match_id)
        if record is None or record.notified_at is not None:
            return False
        self._db.matches[match_id] = replace(record, notified_at=notified_at)
        return True

    async def clear_notification(self, match_id: uuid.UUID) -> None:
        """Reset notified_at to NULL so the next run notifies again."""
        record = self._db.matches.get(match_id)
        if record is not None:
            self._db.matches[match_id] = replace(record, notified_at=None)

    async def list_matches_for_item(self, item_id: uuid.UUID, limit: int) -> list[MatchRecord]:
        """List matches where the item is on either side, best score first."""
        results = [
            m
            for m in self._db.matches.values()
            if item_id in (m.lost_item_id, m.found_item_id)
        ]
        results.sort(key=lambda m: m.similarity_score, reverse=True)
        return results[:limit]


class InMemoryClaimRepository:
    """In-memory implementation of ClaimRepository.

    Migrations stage every write and apply them only after the last step has
    succeeded, so a failure part-way leaves all tables untouched.
    """

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def _check_unique(self, item_id: uuid.UUID, claimant_id: uuid.UUID) -> None:
        for claim in self._db.claims.values():
            if claim.item_id == item_id and claim.claimant_id == claimant_id:
                raise ConflictError("You have already submitted a claim for this item")

    def _new_record(
        self, claim: NewClaim, status: ClaimStatus, deleted_at: datetime | None = None
    ) -> ClaimRecord:
        now = _now()
        return ClaimRecord(
            id=uuid.uuid4(),
            item_id=claim.item_id,
            original_item_id=claim.item_id,
            claimant_id=claim.claimant_id,
            owner_id=claim.owner_id,
            verification_question=claim.verification_question,
            verification_answer_hash=claim.verification_answer_hash,
            similarity_score=claim.similarity_score,
            status=status,
            notes=claim.notes,
            deleted_at=deleted_at,
            created_at=now,
            updated_at=now,
        )

    def _snapshot_of(self, item: ItemRecord, claim_id: uuid.UUID) -> ClaimedItemRecord:
        return ClaimedItemRecord(
            id=uuid.uuid4(),
            claim_id=claim_id,
            original_item_id=item.id,
            owner_id=item.user_id,
            kind=item.kind,
            title=item.title,
            description=item.description,
            category=item.category,
            location=item.location,
            date_occurred=item.date_occurred,
            image_url=item.image_url,
            found_mode=item.found_mode,
            contact_email=item.contact_email,
            is_anonymous=item.is_anonymous,
            metadata=item.metadata,
            item_created_at=item.created_at,
            created_at=_now(),
        )

    def _before_item_delete(self, snapshot: ClaimedItemRecord) -> None:
        """Runs after the snapshot is staged and before the item is deleted."""
        pass

    def _migrate(self, claim: ClaimRecord, item_id: uuid.UUID) -> MigrationResult:
        item = self._db.items.get(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")

        snapshot = self._snapshot_of(item, claim.id)
        now = _now()
        others = [
            replace(other, status=ClaimStatus.rejected, updated_at=now)
            for other in self._db.claims.values()
            if other.item_id == item_id
            and other.id != claim.id
            and other.status == ClaimStatus.pending
        ]
        self._before_item_delete(snapshot)
        approved = replace(claim, status=ClaimStatus.approved, updated_at=now)

        # Apply staged writes
        self._db.snapshots[snapshot.id] = snapshot
        self._db.claims[approved.id] = approved
        for other in others:
            self._db.claims[other.id] = other
        self._db.delete_item(item_id)
        return MigrationResult(
            claim=self._db.claims[approved.id],
            snapshot=snapshot,
            rejected_claims=[self._db.claims[other.id] for other in others],
        )

    async def create_claim(self, claim: NewClaim) -> ClaimRecord:
        """Insert a pending claim."""
        self._check_unique(claim.item_id, claim.claimant_id)
        record = self._new_record(claim, ClaimStatus.pending)
        self._db.claims[record.id] = record
        return record

    async def get_claim(self, claim_id: uuid.UUID) -> ClaimRecord | None:
        """Get claim by ID."""
        return self._db.claims.get(claim_id)

    async def find_claim(self, item_id: uuid.UUID, claimant_id: uuid.UUID) -> ClaimRecord | None:
        """Get the claim for an (item, claimant) pair."""
        for claim in self._db.claims.values():
            if claim.item_id == item_id and claim.claimant_id == claimant_id:
                return claim
        return None

    async def count_claims_since(self, claimant_id: uuid.UUID, since: datetime) -> int:
        """Count claims created by a claimant at or after `since`."""
        return sum(
            1
            for c in self._db.claims.values()
            if c.claimant_id == claimant_id and c.created_at >= since
        )

    async def list_claims_for_item(self, item_id: uuid.UUID) -> list[ClaimRecord]:
        """List claims on an item, oldest first."""
        results = [c for c in self._db.claims.values() if c.item_id == item_id]
        results.sort(key=lambda c: c.created_at)
        return results

    async def reject_claim(self, claim_id: uuid.UUID) -> ClaimRecord | None:
        """Move a pending claim to rejected."""
        claim = self._db.claims.get(claim_id)
        if claim is None or claim.status != ClaimStatus.pending:
            return None
        updated = replace(claim, status=ClaimStatus.rejected, updated_at=_now())
        self._db.claims[claim_id] = updated
        return updated

    async def approve_with_migration(self, claim_id: uuid.UUID) -> MigrationResult:
        """Approve a pending claim and retire its item atomically."""
        claim = self._db.claims.get(claim_id)
        if claim is None:
            raise NotFoundError(f"Claim {claim_id} not found")
        if claim.status != ClaimStatus.pending:
            raise InvalidStateError("claim is not pending")
        if claim.item_id is None:
            raise NotFoundError(f"Item for claim {claim_id} no longer exists")
        return self._migrate(claim, claim.item_id)

    async def create_approved_with_migration(
        self, claim: NewClaim, deleted_at: datetime
    ) -> MigrationResult:
        """Create an already-approved claim and retire its item atomically."""
        self._check_unique(claim.item_id, claim.claimant_id)
        record = self._new_record(claim, ClaimStatus.pending, deleted_at=deleted_at)
        return self._migrate(record, claim.item_id)

    async def get_snapshot_for_claim(self, claim_id: uuid.UUID) -> ClaimedItemRecord | None:
        """Get the snapshot written for a claim."""
        for snapshot in self._db.snapshots.values():
            if snapshot.claim_id == claim_id:
                return snapshot
        return None

    async def get_snapshot_by_original_item(
        self, item_id: uuid.UUID
    ) -> ClaimedItemRecord | None:
        """Get a snapshot by the ID of the item it replaced."""
        for snapshot in self._db.snapshots.values():
            if snapshot.original_item_id == item_id:
                return snapshot
        return None

    async def purge_deleted_claims(self, before: datetime) -> int:
        """Hard-delete claims soft-deleted before `before`."""
        doomed = [
            c.id
            for c in self._db.claims.values()
            if c.deleted_at is not None and c.deleted_at < before
        ]
        for claim_id in doomed:
            del self._db.claims[claim_id]
            # claimed_items.claim_id cascades
            for snapshot_id, snapshot in list(self._db.snapshots.items()):
                if snapshot.claim_id == claim_id:
                    del self._db.snapshots[snapshot_id]
        return len(doomed)


class InMemoryNotificationRepository:
    """In-memory implementation of NotificationRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def add_notification(
        self,
        user_id: uuid.UUID,
        kind: NotificationKind,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> NotificationRecord:
        """Insert a notification."""
        record = NotificationRecord(
            id=uuid.uuid4(),
            user_id=user_id,
            kind=kind,
            title=title,
            body=body,
            data=data,
            read=False,
            created_at=_now(),
        )
        self._db.notifications[record.id] = record
        return record

    async def list_notifications(
        self, user_id: uuid.UUID, limit: int = 50
    ) -> list[NotificationRecord]:
        """List a user's notifications, newest first."""
        results = [n for n in self._db.notifications.values() if n.user_id == user_id]
        results.sort(key=lambda n: n.created_at, reverse=True)
        return results[:limit]

    async def count_unread(self, user_id: uuid.UUID) -> int:
        """Number of a user's unread notifications."""
        return sum(
            1 for n in self._db.notifications.values() if n.user_id == user_id and not n.read
        )

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Mark one of the user's notifications read."""
        record = self._db.notifications.get(notification_id)
        if record is None or record.user_id != user_id:
            return False
        self._db.notifications[notification_id] = replace(record, read=True)
        return True


def build_inmemory_repositories(db: InMemoryDatabase | None = None) -> Repositories:
    """Create in-memory repositories over one shared database."""
    db = db or InMemoryDatabase()
    return Repositories(
        users=InMemoryUserRepository(db),
        items=InMemoryItemRepository(db),
        matches=InMemoryMatchRepository(db),
        claims=InMemoryClaimRepository(db),
        notifications=InMemoryNotificationRepository(db),
    )
