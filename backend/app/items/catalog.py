"""Item reads and owner status changes: feed, semantic search, snapshots."""

import logging
from uuid import UUID

from backend.app.ai.client import AIClient
from backend.app.db.repositories import (
    ClaimedItemRecord,
    ClaimRepository,
    FeedPage,
    ItemRecord,
    ItemRepository,
    ScoredItemRecord,
)
from backend.app.errors import InvalidStateError, NotFoundError
from backend.app.models.common import ItemKind, ItemStatus
from backend.app.resilience.guard import GuardedDependency

logger = logging.getLogger(__name__)

# Statuses an owner may move an active item to
OWNER_STATUSES = frozenset({ItemStatus.resolved, ItemStatus.expired})


class ItemCatalogService:
    """Read side of items plus the owner's active -> resolved/expired transition."""

    def __init__(
        self,
        items: ItemRepository,
        claims: ClaimRepository,
        ai_client: AIClient,
        ai: GuardedDependency,
        store: GuardedDependency,
    ) -> None:
        self._items = items
        self._claims = claims
        self._ai_client = ai_client
        self._ai = ai
        self._store = store

    async def get_item(self, item_id: UUID) -> ItemRecord:
        record = await self._store.call(lambda: self._items.get_item(item_id), operation="get_item")
        if record is None:
            raise NotFoundError("Item not found")
        return record

    async def get_snapshot(self, item_id: UUID) -> ClaimedItemRecord:
        """Snapshot of a migrated item, looked up by the item's original ID.

        Raises:
            NotFoundError: The item was never migrated
        """
        snapshot = await self._store.call(
            lambda: self._claims.get_snapshot_by_original_item(item_id),
            operation="get_snapshot",
        )
        if snapshot is None:
            raise NotFoundError("No claimed item for this ID")
        return snapshot

    async def feed(
        self,
        *,
        status: ItemStatus = ItemStatus.active,
        kind: ItemKind | None = None,
        category: str | None = None,
        location: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> FeedPage:
        return await self._store.call(
            lambda: self._items.list_feed(
                status=status,
                kind=kind,
                category=category,
                location=location,
                limit=limit,
                offset=offset,
            ),
            operation="list_feed",
        )

    async def search(
        self, query: str, *, kind: ItemKind | None = None, limit: int = 20
    ) -> list[ScoredItemRecord]:
        """Embed a free-text query and return the closest active items.

        Unlike ingestion there is no degraded path: without an embedding there is
        nothing to search with, so AI failures reach the caller.
        """
        embedding = await self._ai.call(lambda: self._ai_client.embed(query), operation="embed")
        return await self._store.call(
            lambda: self._items.search_by_embedding(embedding, kind=kind, limit=limit),
            operation="search_items",
        )

    async def update_status(
        self, item_id: UUID, requester_id: UUID, status: ItemStatus
    ) -> ItemRecord:
        """Move the requester's active item to resolved or expired.

        Raises:
            NotFoundError: Item does not exist
            InvalidStateError: Not the owner, target not allowed, or item not active
        """
        item = await self.get_item(item_id)
        if item.user_id != requester_id:
            raise InvalidStateError("Not authorized to update this item")
        if status not in OWNER_STATUSES:
            raise InvalidStateError(f"cannot move an item to {status.value}")

        updated = await self._store.call(
            lambda: self._items.set_status(item_id, status, expected=ItemStatus.active),
            operation="set_status",
        )
        if not updated:
            raise InvalidStateError("item no longer active")

        logger.info(
            f"Item {item_id} marked {status.value}",
            extra={"structured": {"item_id": str(item_id), "status": status.value}},
        )
        return await self.get_item(item_id)
