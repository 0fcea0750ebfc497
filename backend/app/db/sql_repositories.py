"""SQL implementations of repository interfaces.

Every method opens its own session from the factory, so repositories are safe to
share across concurrent requests and background matching tasks. The two claim
migrations run their steps inside a single transaction.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.models import Claim, ClaimedItem, Item, Match, Notification, User
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
from backend.app.models.items import ItemMetadataV1

# Constraint name on PostgreSQL, column list in SQLite's message
_CLAIM_PAIR_MARKERS = ("uq_claims_item_claimant", "claims.item_id, claims.claimant_id")


def _now() -> datetime:
    return datetime.now(UTC)


def _embedding_list(value: Any) -> list[float] | None:
    # pgvector hands back numpy arrays; never test them for truthiness
    if value is None:
        return None
    return [float(x) for x in value]


def _is_claim_pair_violation(error: IntegrityError) -> bool:
    message = str(error.orig)
    return any(marker in message for marker in _CLAIM_PAIR_MARKERS)


def _user_to_record(row: User) -> UserRecord:
    return UserRecord(id=row.id, email=row.email, display_name=row.display_name)


def _item_to_record(row: Item) -> ItemRecord:
    return ItemRecord(
        id=row.id,
        user_id=row.user_id,
        kind=row.kind,
        status=row.status,
        title=row.title,
        description=row.description,
        category=row.category,
        location=row.location,
        date_occurred=row.date_occurred,
        image_url=row.image_url,
        found_mode=row.found_mode,
        contact_email=row.contact_email,
        is_anonymous=row.is_anonymous,
        metadata=ItemMetadataV1.model_validate(row.ai_metadata or {}),
        embedding=_embedding_list(row.embedding),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _match_to_record(row: Match) -> MatchRecord:
    return MatchRecord(
        id=row.id,
        lost_item_id=row.lost_item_id,
        found_item_id=row.found_item_id,
        similarity_score=row.similarity_score,
        status=row.status,
        notified_at=row.notified_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _claim_to_record(row: Claim) -> ClaimRecord:
    return ClaimRecord(
        id=row.id,
        item_id=row.item_id,
        original_item_id=row.original_item_id,
        claimant_id=row.claimant_id,
        owner_id=row.owner_id,
        verification_question=row.verification_question,
        verification_answer_hash=row.verification_answer_hash,
        similarity_score=row.similarity_score,
        status=row.status,
        notes=row.notes,
        deleted_at=row.deleted_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _snapshot_to_record(row: ClaimedItem) -> ClaimedItemRecord:
    return ClaimedItemRecord(
        id=row.id,
        claim_id=row.claim_id,
        original_item_id=row.original_item_id,
        owner_id=row.owner_id,
        kind=row.kind,
        title=row.title,
        description=row.description,
        category=row.category,
        location=row.location,
        date_occurred=row.date_occurred,
        image_url=row.image_url,
        found_mode=row.found_mode,
        contact_email=row.contact_email,
        is_anonymous=row.is_anonymous,
        metadata=ItemMetadataV1.model_validate(row.ai_metadata or {}),
        item_created_at=row.item_created_at,
        created_at=row.created_at,
    )


def _notification_to_record(row: Notification) -> NotificationRecord:
    return NotificationRecord(
        id=row.id,
        user_id=row.user_id,
        kind=row.kind,
        title=row.title,
        body=row.body,
        data=row.data,
        read=row.read,
        created_at=row.created_at,
    )


class SqlUserRepository:
    """SQL implementation of UserRepository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None:
        """Get user by ID."""
        async with self._session_factory() as session:
            row = await session.get(User, user_id)
            return _user_to_record(row) if row is not None else None

    async def ensure_user(
        self, user_id: uuid.UUID, email: str, display_name: str | None = None
    ) -> UserRecord:
        """Create the user if absent and return it.

        Raises:
            ConflictError: Another user already holds `email`
        """
        try:
            async with self._session_factory() as session, session.begin():
                row = await session.get(User, user_id)
                if row is None:
                    row = User(id=user_id, email=email, display_name=display_name)
                    session.add(row)
                    await session.flush()
                return _user_to_record(row)
        except IntegrityError as e:
            raise ConflictError("Email is already registered to another user") from e


class SqlItemRepository:
    """SQL implementation of ItemRepository.

    On PostgreSQL the nearest-neighbour query runs in the database with the
    pgvector cosine operator (served by the HNSW index). Other dialects fall
    back to scoring the filtered rows in Python.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_item(self, item: NewItem) -> ItemRecord:
        """Insert a new active item."""
        now = _now()
        row = Item(
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
            ai_metadata=item.metadata.model_dump(mode="json"),
            embedding=item.embedding,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session, session.begin():
            session.add(row)
        return _item_to_record(row)

    async def get_item(self, item_id: uuid.UUID) -> ItemRecord | None:
        """Get item by ID."""
        async with self._session_factory() as session:
            row = await session.get(Item, item_id)
            return _item_to_record(row) if row is not None else None

    async def set_embedding(self, item_id: uuid.UUID, embedding: list[float]) -> None:
        """Store an item's embedding vector."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(Item)
                .where(Item.id == item_id)
                .values(embedding=embedding, updated_at=_now())
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Item {item_id} not found")

    async def set_status(
        self, item_id: uuid.UUID, status: ItemStatus, *, expected: ItemStatus | None = None
    ) -> bool:
        """Change an item's status, optionally only if it currently is `expected`."""
        stmt = update(Item).where(Item.id == item_id)
        if expected is not None:
            stmt = stmt.where(Item.status == expected)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt.values(status=status, updated_at=_now()))
            return result.rowcount == 1

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
        conditions = [Item.status == status]
        if kind is not None:
            conditions.append(Item.kind == kind)
        if category is not None:
            conditions.append(Item.category == category)
        if location:
            conditions.append(Item.location.ilike(f"%{location}%"))

        async with self._session_factory() as session:
            rows = await session.execute(
                select(Item)
                .where(*conditions)
                .order_by(Item.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            items = [_item_to_record(row) for row in rows.scalars()]
            total = await session.execute(select(func.count()).select_from(Item).where(*conditions))
            return FeedPage(items=items, total=int(total.scalar_one()))

    async def search_by_embedding(
        self, embedding: list[float], *, kind: ItemKind | None = None, limit: int = 20
    ) -> list[ScoredItemRecord]:
        """Active items closest to a query vector, most similar first."""
        conditions = [Item.status == ItemStatus.active, Item.embedding.is_not(None)]
        if kind is not None:
            conditions.append(Item.kind == kind)

        async with self._session_factory() as session:
            if session.bind.dialect.name == "postgresql":
                distance = Item.embedding.cosine_distance(embedding)
                result = await session.execute(
                    select(Item, (1 - distance).label("similarity"))
                    .where(*conditions)
                    .order_by(distance)
                    .limit(limit)
                )
                return [
                    ScoredItemRecord(item=_item_to_record(row), similarity=float(score))
                    for row, score in result
                ]

            result = await session.execute(select(Item).where(*conditions))
            hits = [
                ScoredItemRecord(
                    item=_item_to_record(row),
                    similarity=cosine_similarity(embedding, _embedding_list(row.embedding) or []),
                )
                for row in result.scalars()
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
        """Find active items of `kind` closest to `embedding`."""
        async with self._session_factory() as session:
            if session.bind.dialect.name == "postgresql":
                return await self._nearest_pgvector(
                    session, item_id, kind, embedding, threshold, limit
                )
            return await self._nearest_scan(session, item_id, kind, embedding, threshold, limit)

    async def _nearest_pgvector(
        self,
        session: AsyncSession,
        item_id: uuid.UUID,
        kind: ItemKind,
        embedding: list[float],
        threshold: float,
        limit: int,
    ) -> list[CandidateRecord]:
        distance = Item.embedding.cosine_distance(embedding)
        similarity = (1 - distance).label("similarity")
        stmt = (
            select(Item.id, Item.user_id, Item.kind, Item.title, similarity)
            .where(
                Item.status == ItemStatus.active,
                Item.kind == kind,
                Item.id != item_id,
                Item.embedding.is_not(None),
                (1 - distance) >= threshold,
            )
            .order_by(distance)
            .limit(limit)
        )
        result = await session.execute(stmt)
        return [
            CandidateRecord(
                item_id=row.id,
                user_id=row.user_id,
                kind=row.kind,
                title=row.title,
                similarity=float(row.similarity),
            )
            for row in result
        ]

    async def _nearest_scan(
        self,
        session: AsyncSession,
        item_id: uuid.UUID,
        kind: ItemKind,
        embedding: list[float],
        threshold: float,
        limit: int,
    ) -> list[CandidateRecord]:
        result = await session.execute(
            select(Item).where(
                Item.status == ItemStatus.active,
                Item.kind == kind,
                Item.id != item_id,
                Item.embedding.is_not(None),
            )
        )
        hits: list[CandidateRecord] = []
        for row in result.scalars():
            score = cosine_similarity(embedding, _embedding_list(row.embedding) or [])
            if score >= threshold:
                hits.append(
                    CandidateRecord(
                        item_id=row.id,
                        user_id=row.user_id,
                        kind=row.kind,
                        title=row.title,
                        similarity=score,
                    )
                )
        hits.sort(key=lambda c: c.similarity, reverse=True)
        return hits[:limit]

    async def list_user_items(
        self, user_id: uuid.UUID, kind: ItemKind, status: ItemStatus = ItemStatus.active
    ) -> list[ItemRecord]:
        """List a user's items of one kind and status, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Item)
                .where(Item.user_id == user_id, Item.kind == kind, Item.status == status)
                .order_by(Item.created_at.desc())
            )
            return [_item_to_record(row) for row in result.scalars()]


class SqlMatchRepository:
    """SQL implementation of MatchRepository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert_match(
        self, lost_item_id: uuid.UUID, found_item_id: uuid.UUID, similarity_score: float
    ) -> MatchRecord:
        """INSERT ... ON CONFLICT (lost_item_id, found_item_id) DO UPDATE."""
        now = _now()
        async with self._session_factory() as session, session.begin():
            insert = pg_insert if session.bind.dialect.name == "postgresql" else sqlite_insert
            stmt = insert(Match).values(
                id=uuid.uuid4(),
                lost_item_id=lost_item_id,
                found_item_id=found_item_id,
                similarity_score=similarity_score,
                status=MatchStatus.pending,
                notified_at=None,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["lost_item_id", "found_item_id"],
                set_={
                    "similarity_score": stmt.excluded.similarity_score,
                    "updated_at": stmt.excluded.updated_at,
                },
            ).returning(Match)
            result = await session.scalars(stmt, execution_options={"populate_existing": True})
            return _match_to_record(result.one())

    async def claim_notification(self, match_id: uuid.UUID, notified_at: datetime) -> bool:
        """Stamp notified_at only if it is still NULL."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(Match)
                .where(Match.id == match_id, Match.notified_at.is_(None))
                .values(notified_at=notified_at)
            )
            return result.rowcount == 1

    async def clear_notification(self, match_id: uuid.UUID) -> None:
        """Reset notified_at to NULL so the next run notifies again."""
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(Match).where(Match.id == match_id).values(notified_at=None)
            )

    async def list_matches_for_item(self, item_id: uuid.UUID, limit: int) -> list[MatchRecord]:
        """List matches where the item is on either side, best score first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Match)
                .where(or_(Match.lost_item_id == item_id, Match.found_item_id == item_id))
                .order_by(Match.similarity_score.desc())
                .limit(limit)
            )
            return [_match_to_record(row) for row in result.scalars()]


class SqlClaimRepository:
    """SQL implementation of ClaimRepository.

    The migration steps are separate methods so that each runs on the caller's
    session inside the surrounding transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _insert_snapshot(
        self, session: AsyncSession, claim_id: uuid.UUID, item: Item
    ) -> ClaimedItem:
        snapshot = ClaimedItem(
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
            ai_metadata=item.ai_metadata,
            item_created_at=item.created_at,
            created_at=_now(),
        )
        session.add(snapshot)
        await session.flush()
        return snapshot

    async def _reject_other_claims(
        self, session: AsyncSession, claim_id: uuid.UUID, item_id: uuid.UUID
    ) -> list[Claim]:
        result = await session.execute(
            select(Claim)
            .where(
                Claim.item_id == item_id,
                Claim.id != claim_id,
                Claim.status == ClaimStatus.pending,
            )
            .with_for_update()
        )
        others = list(result.scalars())
        now = _now()
        for other in others:
            other.status = ClaimStatus.rejected
            other.updated_at = now
        return others

    async def _delete_item(self, session: AsyncSession, item_id: uuid.UUID) -> None:
        # claims.item_id is SET NULL by its foreign key; matches keep their ids
        await session.execute(delete(Item).where(Item.id == item_id))

    async def _migrate(self, session: AsyncSession, claim: Claim, item: Item) -> MigrationResult:
        snapshot = await self._insert_snapshot(session, claim.id, item)
        others = await self._reject_other_claims(session, claim.id, item.id)
        await session.flush()
        await self._delete_item(session, item.id)
        claim.status = ClaimStatus.approved
        claim.item_id = None
        claim.updated_at = _now()
        for other in others:
            # Mirror the SET NULL the delete applied in the database
            other.item_id = None
        await session.flush()
        return MigrationResult(
            claim=_claim_to_record(claim),
            snapshot=_snapshot_to_record(snapshot),
            rejected_claims=[_claim_to_record(other) for other in others],
        )

    async def create_claim(self, claim: NewClaim) -> ClaimRecord:
        """Insert a pending claim."""
        now = _now()
        row = Claim(
            id=uuid.uuid4(),
            item_id=claim.item_id,
            original_item_id=claim.item_id,
            claimant_id=claim.claimant_id,
            owner_id=claim.owner_id,
            verification_question=claim.verification_question,
            verification_answer_hash=claim.verification_answer_hash,
            similarity_score=claim.similarity_score,
            status=ClaimStatus.pending,
            notes=claim.notes,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory() as session, session.begin():
                session.add(row)
        except IntegrityError as e:
            if _is_claim_pair_violation(e):
                raise ConflictError("You have already submitted a claim for this item") from e
            raise
        return _claim_to_record(row)

    async def get_claim(self, claim_id: uuid.UUID) -> ClaimRecord | None:
        """Get claim by ID."""
        async with self._session_factory() as session:
            row = await session.get(Claim, claim_id)
            return _claim_to_record(row) if row is not None else None

    async def find_claim(self, item_id: uuid.UUID, claimant_id: uuid.UUID) -> ClaimRecord | None:
        """Get the claim for an (item, claimant) pair."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Claim).where(Claim.item_id == item_id, Claim.claimant_id == claimant_id)
            )
            row = result.scalar_one_or_none()
            return _claim_to_record(row) if row is not None else None

    async def count_claims_since(self, claimant_id: uuid.UUID, since: datetime) -> int:
        """Count claims created by a claimant at or after `since`."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(Claim)
                .where(Claim.claimant_id == claimant_id, Claim.created_at >= since)
            )
            return int(result.scalar_one())

    async def list_claims_for_item(self, item_id: uuid.UUID) -> list[ClaimRecord]:
        """List claims on an item, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Claim).where(Claim.item_id == item_id).order_by(Claim.created_at)
            )
            return [_claim_to_record(row) for row in result.scalars()]

    async def reject_claim(self, claim_id: uuid.UUID) -> ClaimRecord | None:
        """Move a pending claim to rejected (conditional on status)."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(Claim)
                .where(Claim.id == claim_id, Claim.status == ClaimStatus.pending)
                .values(status=ClaimStatus.rejected, updated_at=_now())
            )
            if result.rowcount == 0:
                return None
            row = await session.get(Claim, claim_id, populate_existing=True)
            return _claim_to_record(row) if row is not None else None

    async def approve_with_migration(self, claim_id: uuid.UUID) -> MigrationResult:
        """Approve a pending claim and retire its item in one transaction."""
        async with self._session_factory() as session, session.begin():
            claim = await session.get(Claim, claim_id, with_for_update=True)
            if claim is None:
                raise NotFoundError(f"Claim {claim_id} not found")
            if claim.status != ClaimStatus.pending:
                raise InvalidStateError("claim is not pending")
            item = (
                await session.get(Item, claim.item_id, with_for_update=True)
                if claim.item_id is not None
                else None
            )
            if item is None:
                raise NotFoundError(f"Item for claim {claim_id} no longer exists")
            return await self._migrate(session, claim, item)

    async def create_approved_with_migration(
        self, claim: NewClaim, deleted_at: datetime
    ) -> MigrationResult:
        """Create an already-approved claim and retire its item in one transaction."""
        now = _now()
        try:
            async with self._session_factory() as session, session.begin():
                item = await session.get(Item, claim.item_id, with_for_update=True)
                if item is None:
                    raise NotFoundError(f"Item {claim.item_id} not found")
                row = Claim(
                    id=uuid.uuid4(),
                    item_id=claim.item_id,
                    original_item_id=claim.item_id,
                    claimant_id=claim.claimant_id,
                    owner_id=claim.owner_id,
                    similarity_score=claim.similarity_score,
                    status=ClaimStatus.pending,
                    notes=claim.notes,
                    deleted_at=deleted_at,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                await session.flush()
                return await self._migrate(session, row, item)
        except IntegrityError as e:
            if _is_claim_pair_violation(e):
                raise ConflictError("You have already submitted a claim for this item") from e
            raise

    async def get_snapshot_for_claim(self, claim_id: uuid.UUID) -> ClaimedItemRecord | None:
        """Get the snapshot written for a claim."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ClaimedItem).where(ClaimedItem.claim_id == claim_id)
            )
            row = result.scalar_one_or_none()
            return _snapshot_to_record(row) if row is not None else None

    async def get_snapshot_by_original_item(
        self, item_id: uuid.UUID
    ) -> ClaimedItemRecord | None:
        """Get a snapshot by the ID of the item it replaced."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ClaimedItem).where(ClaimedItem.original_item_id == item_id).limit(1)
            )
            row = result.scalar_one_or_none()
            return _snapshot_to_record(row) if row is not None else None

    async def purge_deleted_claims(self, before: datetime) -> int:
        """Hard-delete claims soft-deleted before `before`."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(Claim).where(Claim.deleted_at.is_not(None), Claim.deleted_at < before)
            )
            return int(result.rowcount or 0)


class SqlNotificationRepository:
    """SQL implementation of NotificationRepository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add_notification(
        self,
        user_id: uuid.UUID,
        kind: NotificationKind,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> NotificationRecord:
        """Insert a notification."""
        row = Notification(
            id=uuid.uuid4(),
            user_id=user_id,
            kind=kind,
            title=title,
            body=body,
            data=data,
            read=False,
            created_at=_now(),
        )
        async with self._session_factory() as session, session.begin():
            session.add(row)
        return _notification_to_record(row)

    async def list_notifications(
        self, user_id: uuid.UUID, limit: int = 50
    ) -> list[NotificationRecord]:
        """List a user's notifications, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Notification)
                .where(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc())
                .limit(limit)
            )
            return [_notification_to_record(row) for row in result.scalars()]

    async def count_unread(self, user_id: uuid.UUID) -> int:
        """Number of a user's unread notifications."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(Notification)
                .where(Notification.user_id == user_id, Notification.read.is_(False))
            )
            return int(result.scalar_one())

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Mark one of the user's notifications read."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(Notification)
                .where(Notification.id == notification_id, Notification.user_id == user_id)
                .values(read=True)
            )
            return result.rowcount == 1


def build_sql_repositories(session_factory: async_sessionmaker[AsyncSession]) -> Repositories:
    """Create SQL repositories sharing one session factory."""
    return Repositories(
        users=SqlUserRepository(session_factory),
        items=SqlItemRepository(session_factory),
        matches=SqlMatchRepository(session_factory),
        claims=SqlClaimRepository(session_factory),
        notifications=SqlNotificationRepository(session_factory),
    )
