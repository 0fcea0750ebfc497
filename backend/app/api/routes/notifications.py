"""In-app notification endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from backend.app.api.auth import get_current_context, get_services
from backend.app.db.context import RequestContext
from backend.app.db.repositories import NotificationRecord
from backend.app.errors import NotFoundError
from backend.app.models.notifications import NotificationListResponse, NotificationView
from backend.app.services import Services

router = APIRouter(prefix="/notifications", tags=["notifications"])


def to_notification_view(record: NotificationRecord) -> NotificationView:
    return NotificationView(
        id=record.id,
        kind=record.kind,
        title=record.title,
        body=record.body,
        data=record.data,
        read=record.read,
        created_at=record.created_at,
    )


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> NotificationListResponse:
    """The caller's newest notifications and their unread count."""
    notifications = services.repos.notifications
    store = services.deps.store
    records = await store.call(
        lambda: notifications.list_notifications(ctx.user_id, limit=limit),
        operation="list_notifications",
    )
    unread = await store.call(
        lambda: notifications.count_unread(ctx.user_id), operation="count_unread"
    )
    return NotificationListResponse(
        notifications=[to_notification_view(r) for r in records], unread_count=unread
    )


@router.patch("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_notification_read(
    notification_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> None:
    """Mark one of the caller's notifications read."""
    notifications = services.repos.notifications
    updated = await services.deps.store.call(
        lambda: notifications.mark_read(notification_id, ctx.user_id), operation="mark_read"
    )
    if not updated:
        raise NotFoundError("Notification not found")
