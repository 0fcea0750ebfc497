"""Claim models - request bodies and views for both claim flows."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from backend.app.models.common import ClaimDecision, ClaimStatus, PreviewWarning


class ClaimCreateRequest(BaseModel):
    """Verification-flow claim submission."""

    item_id: UUID
    verification_answer: str = Field(..., min_length=1, max_length=1000)
    notes: str | None = Field(default=None, max_length=2000)


class ClaimVerifyRequest(BaseModel):
    """Owner decision on a pending claim."""

    claim_id: UUID
    action: ClaimDecision


class ClaimView(BaseModel):
    """Claim as returned to clients. The answer hash is never exposed."""

    id: UUID
    item_id: UUID | None
    claimant_id: UUID
    owner_id: UUID | None
    status: ClaimStatus
    verification_question: str | None
    similarity_score: float | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class BestMatchPreview(BaseModel):
    """Claimant's closest active lost report for the item being claimed."""

    item_id: UUID
    title: str
    image_url: str | None
    similarity_score: float


class ClaimPreview(BaseModel):
    """Read-only result of the eligibility gate plus best lost-report match."""

    item_id: UUID
    item_title: str
    eligible: bool = True
    best_match: BestMatchPreview | None = None
    warning: PreviewWarning | None = None


class ClaimStatusView(BaseModel):
    """Claim status with the item title resolved from the live row or its snapshot."""

    id: UUID
    status: ClaimStatus
    title: str | None
    message: str
    contact_email: str | None = None
