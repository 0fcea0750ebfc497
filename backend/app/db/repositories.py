"""Repository protocol interfaces for data access.

All repository methods are coroutines. Callers in the engine run them through
the store's GuardedDependency, so implementations raise plainly and never
retry on their own.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol
from uuid import UUID

from backend.app.models.common import (
    ClaimStatus,
    FoundMode,
    ItemKind,
    ItemStatus,
    MatchStatus,
    NotificationKind,
)
from backend.app.models.items import ItemMetadataV1


@dataclass
class UserRecord:
    """User data record."""

    id: UUID
    email: str
    display_name: str | None = None


@dataclass
class NewItem:
    """Fields supplied when an item is reported."""

    user_id: UUID
    kind: ItemKind
    title: str
    description: str | None = None
    category: str | None = None
    location: str | None = None
    date_occurred: date | None = None
    image_url: str | None = None
    found_mode: FoundMode | None = None
    contact_email: str | None = None
    is_anonymous: bool = False
    metadata: ItemMetadataV1 = field(default_factory=ItemMetadataV1)
    embedding: list[float] | None = None


@dataclass
class ItemRecord:
    """Item data record."""

    id: UUID
    user_id: UUID
    kind: ItemKind
    status: ItemStatus
    title: str
    description: str | None
    category: str | None
    location: str | None
    date_occurred: date | None
    image_url: str | None
    found_mode: FoundMode | None
    contact_email: str | None
    is_anonymous: bool
    metadata: ItemMetadataV1
    embedding: list[float] | None
    created_at: datetime
    updated_at: datetime


@dataclass
class ScoredItemRecord:
    """Semantic search hit: an active item and its similarity to the query."""

    item: ItemRecord
    similarity: float


@dataclass
class FeedPage:
    """One page of the item feed and the total matching the filters."""

    items: list[ItemRecord]
    total: int


@dataclass
class CandidateRecord:
    """Nearest-neighbour hit: an opposite-kind active item and its similarity."""

    item_id: UUID
    user_id: UUID
    kind: ItemKind
    title: str
    similarity: float


@dataclass
class MatchRecord:
    """Match data record."""

    id: UUID
    lost_item_id: UUID
    found_item_id: UUID
    similarity_score: float
    status: MatchStatus
    notified_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass
class NewClaim:
    """Fields supplied when a claim is created."""

    item_id: UUID
    claimant_id: UUID
    owner_id: UUID
    verification_question: str | None = None
    verification_answer_hash: str | None = None
    similarity_score: float | None = None
    notes: str | None = None


@dataclass
class ClaimRecord:
    """Claim data record."""

    id: UUID
    item_id: UUID | None
    original_item_id: UUID | None
    claimant_id: UUID
    owner_id: UUID | None
    verification_question: str | None
    verification_answer_hash: str | None
    similarity_score: float | None
    status: ClaimStatus
    notes: str | None
    deleted_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass
class ClaimedItemRecord:
    """Snapshot of an item written when its claim was approved."""

    id: UUID
    claim_id: UUID
    original_item_id: UUID
    owner_id: UUID | None
    kind: ItemKind
    title: str
    description: str | None
    category: str | None
    location: str | None
    date_occurred: date | None
    image_url: str | None
    found_mode: FoundMode | None
    contact_email: str | None
    is_anonymous: bool
    metadata: ItemMetadataV1
    item_created_at: datetime | None
    created_at: datetime


@dataclass
class MigrationResult:
    """Outcome of an approved-claim migration."""

    claim: ClaimRecord
    snapshot: ClaimedItemRecord
    # Other pending claims on the item, rejected in the same transaction
    rejected_claims: list[ClaimRecord] = field(default_factory=list)


@dataclass
class NotificationRecord:
    """In-app notification record."""

    id: UUID
    user_id: UUID
    kind: NotificationKind
    title: str
    body: str
    data: dict[str, Any] | None
    read: bool
    created_at: datetime


class UserRepository(Protocol):
    """Repository for user lookups."""

    async def get_user(self, user_id: UUID) -> UserRecord | None:
        """Get user by ID."""
        ...

    async def ensure_user(self, user_id: UUID, email: str, display_name: str | None = None) -> UserRecord:
        """Create the user if absent and return it."""
        ...


class ItemRepository(Protocol):
    """Repository for item operations, including nearest-neighbour search."""

    async def create_item(self, item: NewItem) -> ItemRecord:
        """Insert a new active item.

        Args:
            item: Reported fields (embedding optional)

        Returns:
            Stored item record
        """
        ...

    async def get_item(self, item_id: UUID) -> ItemRecord | None:
        """Get item by ID.

        Args:
            item_id: Item ID

        Returns:
            Item record or None if not found (including after migration)
        """
        ...

    async def set_embedding(self, item_id: UUID, embedding: list[float]) -> None:
        """Store an item's embedding vector."""
        ...

    async def set_status(
        self, item_id: UUID, status: ItemStatus, *, expected: ItemStatus | None = None
    ) -> bool:
        """Change an item's status, optionally only if it currently is `expected`.

        Returns:
            True if the row was updated
        """
        ...

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
        """Items with the given status and filters, newest first.

        `location` is a case-insensitive substring match.
        """
        ...

    async def search_by_embedding(
        self, embedding: list[float], *, kind: ItemKind | None = None, limit: int = 20
    ) -> list[ScoredItemRecord]:
        """Active items closest to a query vector, most similar first."""
        ...

    async def nearest_candidates(
        self,
        item_id: UUID,
        kind: ItemKind,
        embedding: list[float],
        *,
        threshold: float,
        limit: int,
    ) -> list[CandidateRecord]:
        """Find active items of the given kind closest to `embedding`.

        Args:
            item_id: Item to exclude from results
            kind: Kind of the candidates (the opposite of the source item)
            embedding: Query vector
            threshold: Minimum similarity (inclusive)
            limit: Maximum number of candidates

        Returns:
            Candidates ordered by similarity descending
        """
        ...

    async def list_user_items(
        self, user_id: UUID, kind: ItemKind, status: ItemStatus = ItemStatus.active
    ) -> list[ItemRecord]:
        """List a user's items of one kind and status, newest first."""
        ...


class MatchRepository(Protocol):
    """Repository for match operations."""

    async def upsert_match(
        self, lost_item_id: UUID, found_item_id: UUID, similarity_score: float
    ) -> MatchRecord:
        """Insert the pair or refresh its score, in one statement.

        Only `similarity_score` and `updated_at` change on conflict; `status`
        and `notified_at` are left as they are.

        Returns:
            The match row after the upsert
        """
        ...

    async def claim_notification(self, match_id: UUID, notified_at: datetime) -> bool:
        """Stamp notified_at only if it is still NULL, in one conditional update.

        Returns:
            True if this caller set the stamp and so owns the notification
        """
        ...

    async def clear_notification(self, match_id: UUID) -> None:
        """Reset notified_at to NULL so the next run notifies again."""
        ...

    async def list_matches_for_item(self, item_id: UUID, limit: int) -> list[MatchRecord]:
        """List matches where the item is on either side, best score first."""
        ...


class ClaimRepository(Protocol):
    """Repository for claim operations and approved-claim migration."""

    async def create_claim(self, claim: NewClaim) -> ClaimRecord:
        """Insert a pending claim.

        Raises:
            ConflictError: A claim for (item_id, claimant_id) already exists
        """
        ...

    async def get_claim(self, claim_id: UUID) -> ClaimRecord | None:
        """Get claim by ID."""
        ...

    async def find_claim(self, item_id: UUID, claimant_id: UUID) -> ClaimRecord | None:
        """Get the claim for an (item, claimant) pair."""
        ...

    async def count_claims_since(self, claimant_id: UUID, since: datetime) -> int:
        """Count claims created by a claimant at or after `since`."""
        ...

    async def list_claims_for_item(self, item_id: UUID) -> list[ClaimRecord]:
        """List claims on an item, oldest first."""
        ...

    async def reject_claim(self, claim_id: UUID) -> ClaimRecord | None:
        """Move a pending claim to rejected.

        Returns:
            Updated claim, or None if the claim was not pending
        """
        ...

    async def approve_with_migration(self, claim_id: UUID) -> MigrationResult:
        """Approve a pending claim and retire its item in one transaction.

        Reads the live item, writes the snapshot, rejects the item's other pending
        claims, deletes the item and marks the claim approved. Either all of it is
        committed or none of it.

        Raises:
            NotFoundError: Claim or item does not exist
            InvalidStateError: Claim is not pending
        """
        ...

    async def create_approved_with_migration(
        self, claim: NewClaim, deleted_at: datetime
    ) -> MigrationResult:
        """Create an already-approved claim and retire its item in one transaction.

        Raises:
            NotFoundError: Item does not exist
            ConflictError: A claim for (item_id, claimant_id) already exists
        """
        ...

    async def get_snapshot_for_claim(self, claim_id: UUID) -> ClaimedItemRecord | None:
        """Get the snapshot written for a claim."""
        ...

    async def get_snapshot_by_original_item(self, item_id: UUID) -> ClaimedItemRecord | None:
        """Get a snapshot by the ID of the item it replaced."""
        ...

    async def purge_deleted_claims(self, before: datetime) -> int:
        """Hard-delete claims soft-deleted before `before`.

        Returns:
            Number of claims removed
        """
        ...


class NotificationRepository(Protocol):
    """Repository for in-app notifications."""

    async def add_notification(
        self,
        user_id: UUID,
        kind: NotificationKind,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> NotificationRecord:
        """Insert a notification."""
        ...

    async def list_notifications(self, user_id: UUID, limit: int = 50) -> list[NotificationRecord]:
        """List a user's notifications, newest first."""
        ...

    async def count_unread(self, user_id: UUID) -> int:
        """Number of a user's unread notifications."""
        ...

    async def mark_read(self, notification_id: UUID, user_id: UUID) -> bool:
        """Mark one of the user's notifications read.

        Returns:
            False if no such notification belongs to the user
        """
        ...


@dataclass
class Repositories:
    """Repositories sharing one backing store."""

    users: UserRepository
    items: ItemRepository
    matches: MatchRepository
    claims: ClaimRepository
    notifications: NotificationRepository
