"""Item models - report payloads and AI-derived metadata."""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from backend.app.models.common import FoundMode, ItemKind, ItemStatus


class ItemMetadataV1(BaseModel):
    """Vision model output for an item photo.

    Every field is optional so that a failed or partial inference degrades to
    an empty metadata object instead of blocking item creation.
    """

    version: Literal["v1"] = "v1"
    detected_objects: list[str] = Field(default_factory=list)
    colors: list[str] = Field(default_factory=list)
    brand: str | None = None
    condition: str | None = None
    distinctive_features: list[str] = Field(default_factory=list)
    category: str | None = None
    verification_question: str | None = None
    confidence: float | None = Field(default=None, ge=0, le=1)

    @classmethod
    def empty(cls) -> "ItemMetadataV1":
        return cls()

    @property
    def is_empty(self) -> bool:
        return self == ItemMetadataV1()


class ItemCreateRequest(BaseModel):
    """Lost or found report submitted by a user."""

    kind: ItemKind
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    category: str | None = None
    location: str | None = None
    date_occurred: date | None = None
    image_url: str | None = None
    found_mode: FoundMode | None = None
    contact_email: str | None = None
    is_anonymous: bool = False

    @model_validator(mode="after")
    def validate_found_mode(self) -> "ItemCreateRequest":
        """found_mode applies to found items only; keeping needs a contact address."""
        if self.found_mode is not None and self.kind != ItemKind.found:
            raise ValueError("found_mode is only valid for found items")
        if self.found_mode == FoundMode.keeping and not self.contact_email:
            raise ValueError("contact_email is required when found_mode is 'keeping'")
        return self


class ItemResponse(BaseModel):
    """Item as returned to clients (embedding omitted)."""

    id: UUID
    user_id: UUID | None
    kind: ItemKind
    status: ItemStatus
    title: str
    description: str | None
    category: str | None
    location: str | None
    date_occurred: date | None
    image_url: str | None
    found_mode: FoundMode | None
    is_anonymous: bool
    metadata: ItemMetadataV1
    has_embedding: bool
    created_at: datetime


class ItemStatusUpdateRequest(BaseModel):
    """Owner's status change for an active item."""

    status: ItemStatus


class ItemFeedResponse(BaseModel):
    """One page of the item feed."""

    items: list[ItemResponse]
    total: int
    limit: int
    offset: int


class ItemSearchHit(ItemResponse):
    """Semantic search result."""

    similarity: float


class ClaimedItemResponse(BaseModel):
    """Snapshot of an item taken when its claim was approved."""

    id: UUID
    claim_id: UUID
    original_item_id: UUID
    kind: ItemKind
    title: str
    description: str | None
    category: str | None
    location: str | None
    date_occurred: date | None
    image_url: str | None
    found_mode: FoundMode | None
    metadata: ItemMetadataV1
    item_created_at: datetime | None
    claimed_at: datetime
