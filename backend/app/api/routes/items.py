"""Item endpoints - report, browse, search and retire lost/found items.

Static paths are declared before /{item_id} so they are never captured by it.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from backend.app.api.auth import enforce_rate_limit, get_current_context, get_services
from backend.app.db.context import RequestContext
from backend.app.db.repositories import ClaimedItemRecord, ItemRecord
from backend.app.models.common import ItemKind, ItemStatus
from backend.app.models.items import (
    ClaimedItemResponse,
    ItemCreateRequest,
    ItemFeedResponse,
    ItemResponse,
    ItemSearchHit,
    ItemStatusUpdateRequest,
)
from backend.app.services import Services

router = APIRouter(prefix="/items", tags=["items"])


def to_item_response(record: ItemRecord) -> ItemResponse:
    return ItemResponse(
        id=record.id,
        user_id=None if record.is_anonymous else record.user_id,
        kind=record.kind,
        status=record.status,
        title=record.title,
        description=record.description,
        category=record.category,
        location=record.location,
        date_occurred=record.date_occurred,
        image_url=record.image_url,
        found_mode=record.found_mode,
        is_anonymous=record.is_anonymous,
        metadata=record.metadata,
        has_embedding=record.embedding is not None,
        created_at=record.created_at,
    )


def to_claimed_item_response(record: ClaimedItemRecord) -> ClaimedItemResponse:
    return ClaimedItemResponse(
        id=record.id,
        claim_id=record.claim_id,
        original_item_id=record.original_item_id,
        kind=record.kind,
        title=record.title,
        description=record.description,
        category=record.category,
        location=record.location,
        date_occurred=record.date_occurred,
        image_url=record.image_url,
        found_mode=record.found_mode,
        metadata=record.metadata,
        item_created_at=record.item_created_at,
        claimed_at=record.created_at,
    )


@router.post("", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(
    request: ItemCreateRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> ItemResponse:
    """Report a lost or found item.

    Vision metadata and the embedding are derived before the item is stored.
    Matching against the opposite kind runs in the background.
    """
    record = await services.ingestion.create_item(ctx.user_id, request)
    return to_item_response(record)


@router.get("", response_model=ItemFeedResponse)
async def item_feed(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
    kind: ItemKind | None = None,
    category: str | None = None,
    location: Annotated[str | None, Query(max_length=255)] = None,
    item_status: Annotated[ItemStatus, Query(alias="status")] = ItemStatus.active,
    limit: Annotated[int, Query(ge=1, le=50)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ItemFeedResponse:
    """Browse items, newest first."""
    page = await services.catalog.feed(
        status=item_status,
        kind=kind,
        category=category,
        location=location,
        limit=limit,
        offset=offset,
    )
    return ItemFeedResponse(
        items=[to_item_response(item) for item in page.items],
        total=page.total,
        limit=limit,
        offset=offset,
    )


@router.get("/search", response_model=list[ItemSearchHit])
async def search_items(
    ctx: Annotated[RequestContext, Depends(enforce_rate_limit)],
    services: Annotated[Services, Depends(get_services)],
    q: Annotated[str, Query(min_length=1, max_length=500)],
    kind: ItemKind | None = None,
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
) -> list[ItemSearchHit]:
    """Semantic search over active items by free-text description."""
    hits = await services.catalog.search(q, kind=kind, limit=limit)
    return [
        ItemSearchHit(**to_item_response(hit.item).model_dump(), similarity=hit.similarity)
        for hit in hits
    ]


@router.get("/{item_id}", response_model=ItemResponse)
async def get_item(
    item_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> ItemResponse:
    """Fetch a single live item. Migrated items are served by /snapshot."""
    return to_item_response(await services.catalog.get_item(item_id))


@router.get("/{item_id}/snapshot", response_model=ClaimedItemResponse)
async def get_item_snapshot(
    item_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> ClaimedItemResponse:
    """Fetch the claimed-item snapshot that replaced a migrated item."""
    return to_claimed_item_response(await services.catalog.get_snapshot(item_id))


@router.patch("/{item_id}/status", response_model=ItemResponse)
async def update_item_status(
    item_id: UUID,
    request: ItemStatusUpdateRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> ItemResponse:
    """Mark one of the caller's active items resolved or expired."""
    record = await services.catalog.update_status(item_id, ctx.user_id, request.status)
    return to_item_response(record)
