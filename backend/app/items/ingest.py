"""Item ingestion: AI metadata, embedding, persistence, background matching."""

import logging
from uuid import UUID

from backend.app.ai.client import AIClient, compose_embedding_text
from backend.app.db.repositories import ItemRecord, ItemRepository, NewItem
from backend.app.matching.service import MatchingService
from backend.app.models.items import ItemCreateRequest, ItemMetadataV1
from backend.app.resilience.guard import GuardedDependency

logger = logging.getLogger(__name__)


class ItemIngestionService:
    """Creates items. AI failures degrade; they never block creation."""

    def __init__(
        self,
        items: ItemRepository,
        ai_client: AIClient,
        ai: GuardedDependency,
        store: GuardedDependency,
        matching: MatchingService,
    ) -> None:
        self._items = items
        self._ai_client = ai_client
        self._ai = ai
        self._store = store
        self._matching = matching

    async def _describe(self, request: ItemCreateRequest) -> ItemMetadataV1:
        try:
            return await self._ai.call(
                lambda: self._ai_client.describe(
                    image_url=request.image_url,
                    title=request.title,
                    description=request.description,
                ),
                operation="describe",
            )
        except Exception as e:
            logger.warning(
                f"Vision analysis failed, using empty metadata: {e}",
                extra={"structured": {"error": type(e).__name__}},
            )
            return ItemMetadataV1.empty()

    async def _embed(self, text: str) -> list[float] | None:
        try:
            return await self._ai.call(lambda: self._ai_client.embed(text), operation="embed")
        except Exception as e:
            # No embedding means no matching until the item is re-processed
            logger.error(
                f"Embedding generation failed: {e}",
                extra={"structured": {"error": type(e).__name__}},
            )
            return None

    async def create_item(self, user_id: UUID, request: ItemCreateRequest) -> ItemRecord:
        """Create a lost or found item and schedule matching for it.

        Args:
            user_id: Reporting user
            request: Validated report

        Returns:
            Stored item (matching runs in the background)
        """
        metadata = await self._describe(request)
        category = request.category or metadata.category
        text = compose_embedding_text(
            title=request.title,
            description=request.description,
            category=category,
            location=request.location,
            metadata=metadata,
        )
        embedding = await self._embed(text)

        new_item = NewItem(
            user_id=user_id,
            kind=request.kind,
            title=request.title,
            description=request.description,
            category=category,
            location=request.location,
            date_occurred=request.date_occurred,
            image_url=request.image_url,
            found_mode=request.found_mode,
            contact_email=request.contact_email,
            is_anonymous=request.is_anonymous,
            metadata=metadata,
            embedding=embedding,
        )
        record = await self._store.call(
            lambda: self._items.create_item(new_item), operation="create_item"
        )

        logger.info(
            f"Item created: {record.id}",
            extra={
                "structured": {
                    "item_id": str(record.id),
                    "kind": record.kind.value,
                    "has_embedding": embedding is not None,
                }
            },
        )

        if record.embedding is not None:
            self._matching.schedule_matching(record.id, record.kind)
        return record
