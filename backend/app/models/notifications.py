"""Notification models."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from backend.app.models.common import NotificationKind


class NotificationView(BaseModel):
    """In-app notification as shown in the user's inbox."""

    id: UUID
    kind: NotificationKind
    title: str
    body: str
    data: dict[str, Any] | None
    read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    """Newest notifications plus the unread badge count."""

    notifications: list[NotificationView]
    unread_count: int
