"""Match endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from backend.app.api.auth import get_current_context, get_services
from backend.app.db.context import RequestContext
from backend.app.models.matches import MatchView
from backend.app.services import Services

router = APIRouter(prefix="/matches", tags=["matches"])


@router.get("/{item_id}", response_model=list[MatchView])
async def list_matches(
    item_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> list[MatchView]:
    """List stored matches for one of the caller's items, best first."""
    return await services.matching.list_matches_for_item(item_id, ctx.user_id)
