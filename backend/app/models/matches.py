"""Match models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from backend.app.models.common import ItemKind, MatchStatus


class MatchedItemSummary(BaseModel):
    """The other side of a match, as shown to the requesting user."""

    id: UUID
    kind: ItemKind
    title: str
    location: str | None
    image_url: str | None


class MatchView(BaseModel):
    """Match with a human-readable confidence label."""

    id: UUID
    lost_item_id: UUID
    found_item_id: UUID
    similarity_score: float = Field(..., ge=0, le=1)
    confidence: str
    status: MatchStatus
    notified_at: datetime | None
    matched_item: MatchedItemSummary | None = None
    created_at: datetime
    updated_at: datetime
