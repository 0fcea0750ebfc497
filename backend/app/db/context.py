"""Request context carrying the authenticated user."""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Identity of the caller, passed to engine operations that check ownership."""

    user_id: UUID
    email: str | None = None
