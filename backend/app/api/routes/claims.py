"""Claim endpoints - verification and instant claim flows.

Static paths are declared before /{item_id} so they are never captured by it.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from backend.app.api.auth import enforce_rate_limit, get_current_context, get_services
from backend.app.db.context import RequestContext
from backend.app.db.repositories import ClaimRecord
from backend.app.models.claims import (
    ClaimCreateRequest,
    ClaimPreview,
    ClaimStatusView,
    ClaimVerifyRequest,
    ClaimView,
)
from backend.app.services import Services

router = APIRouter(prefix="/claims", tags=["claims"])


def to_claim_view(record: ClaimRecord) -> ClaimView:
    return ClaimView(
        id=record.id,
        item_id=record.item_id,
        claimant_id=record.claimant_id,
        owner_id=record.owner_id,
        status=record.status,
        verification_question=record.verification_question,
        similarity_score=record.similarity_score,
        notes=record.notes,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.post("/create", response_model=ClaimView, status_code=status.HTTP_201_CREATED)
async def create_claim(
    request: ClaimCreateRequest,
    ctx: Annotated[RequestContext, Depends(enforce_rate_limit)],
    services: Annotated[Services, Depends(get_services)],
) -> ClaimView:
    """Submit a verification claim on a found item (finder reviews it)."""
    record = await services.claims.submit_verification_claim(
        request.item_id, ctx.user_id, request.verification_answer, request.notes
    )
    return to_claim_view(record)


@router.post("/verify", response_model=ClaimView)
async def verify_claim(
    request: ClaimVerifyRequest,
    ctx: Annotated[RequestContext, Depends(enforce_rate_limit)],
    services: Annotated[Services, Depends(get_services)],
) -> ClaimView:
    """Approve or reject a pending claim on one of the caller's items.

    Approval migrates the item out of the active set in the same transaction.
    """
    record = await services.claims.resolve_claim(request.claim_id, ctx.user_id, request.action)
    return to_claim_view(record)


@router.get("/item/{item_id}", response_model=list[ClaimView])
async def list_item_claims(
    item_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> list[ClaimView]:
    """List claims on one of the caller's items, oldest first."""
    records = await services.claims.list_claims_for_item(item_id, ctx.user_id)
    return [to_claim_view(r) for r in records]


@router.get("/status/{claim_id}", response_model=ClaimStatusView)
async def claim_status(
    claim_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> ClaimStatusView:
    """Status of a claim, visible to its claimant and the item owner."""
    return await services.claims.get_claim_status(claim_id, ctx.user_id)


@router.get("/{item_id}/preview", response_model=ClaimPreview)
async def preview_claim(
    item_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> ClaimPreview:
    """Dry-run the eligibility gate and show the caller's closest lost report."""
    return await services.claims.preview_claim(item_id, ctx.user_id)


@router.post("/{item_id}", response_model=ClaimView, status_code=status.HTTP_201_CREATED)
async def instant_claim(
    item_id: UUID,
    ctx: Annotated[RequestContext, Depends(enforce_rate_limit)],
    services: Annotated[Services, Depends(get_services)],
    notes: str | None = None,
) -> ClaimView:
    """Claim a found item immediately, without finder review."""
    record = await services.claims.submit_instant_claim(item_id, ctx.user_id, notes)
    return to_claim_view(record)
