"""Common types and enums shared across all models."""

from enum import Enum


class ItemKind(str, Enum):
    """Whether a report describes something lost or something found."""

    lost = "lost"
    found = "found"

    @property
    def opposite(self) -> "ItemKind":
        return ItemKind.found if self is ItemKind.lost else ItemKind.lost


class ItemStatus(str, Enum):
    """Item lifecycle status."""

    active = "active"
    resolved = "resolved"
    expired = "expired"


class FoundMode(str, Enum):
    """What the finder did with a found item."""

    left_at_location = "left_at_location"
    keeping = "keeping"


class MatchStatus(str, Enum):
    """Human decision on a match."""

    pending = "pending"
    confirmed = "confirmed"
    rejected = "rejected"


class ClaimStatus(str, Enum):
    """Claim state. approved and rejected are terminal."""

    pending = "pending"
    approved = "approved"
    rejected = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not ClaimStatus.pending


class ClaimDecision(str, Enum):
    """Owner decision when resolving a verification claim."""

    approve = "approve"
    reject = "reject"


class ClaimMode(str, Enum):
    """Claim submission flow."""

    verification = "verification"
    instant = "instant"


class NotificationKind(str, Enum):
    """In-app notification type."""

    match_found = "match_found"
    claim_submitted = "claim_submitted"
    claim_approved = "claim_approved"
    claim_rejected = "claim_rejected"
    ucard_found = "ucard_found"
    item_resolved = "item_resolved"


class PreviewWarning(str, Enum):
    """Advisory shown to a claimant before an instant claim."""

    no_report = "no_report"
    low_similarity = "low_similarity"
