"""Models package - re-exports for convenience."""

from backend.app.models.claims import (
    BestMatchPreview,
    ClaimCreateRequest,
    ClaimPreview,
    ClaimStatusView,
    ClaimVerifyRequest,
    ClaimView,
)
from backend.app.models.common import (
    ClaimDecision,
    ClaimMode,
    ClaimStatus,
    FoundMode,
    ItemKind,
    ItemStatus,
    MatchStatus,
    NotificationKind,
    PreviewWarning,
)
from backend.app.models.items import (
    ClaimedItemResponse,
    ItemCreateRequest,
    ItemFeedResponse,
    ItemMetadataV1,
    ItemResponse,
    ItemSearchHit,
    ItemStatusUpdateRequest,
)
from backend.app.models.matches import MatchedItemSummary, MatchView
from backend.app.models.notifications import NotificationListResponse, NotificationView

__all__ = [
    # Common
    "ItemKind",
    "ItemStatus",
    "FoundMode",
    "MatchStatus",
    "ClaimStatus",
    "ClaimDecision",
    "ClaimMode",
    "NotificationKind",
    "PreviewWarning",
    # Items
    "ItemMetadataV1",
    "ItemCreateRequest",
    "ItemResponse",
    "ItemStatusUpdateRequest",
    "ItemFeedResponse",
    "ItemSearchHit",
    "ClaimedItemResponse",
    # Matches
    "MatchView",
    "MatchedItemSummary",
    # Claims
    "ClaimCreateRequest",
    "ClaimVerifyRequest",
    "ClaimView",
    "ClaimPreview",
    "BestMatchPreview",
    "ClaimStatusView",
    # Notifications
    "NotificationView",
    "NotificationListResponse",
]
