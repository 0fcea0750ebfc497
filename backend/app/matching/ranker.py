"""Candidate retrieval: nearest opposite-kind active items above the match threshold."""

import logging
from uuid import UUID

from backend.app.db.repositories import CandidateRecord, ItemRepository
from backend.app.errors import PreconditionFailedError
from backend.app.models.common import ItemKind
from backend.app.resilience.guard import GuardedDependency

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.8
MAX_MATCHES = 5


class CandidateRanker:
    """Turns an item embedding into an ordered list of match candidates."""

    def __init__(
        self,
        items: ItemRepository,
        store: GuardedDependency,
        threshold: float = MATCH_THRESHOLD,
        max_matches: int = MAX_MATCHES,
    ) -> None:
        """Initialize ranker.

        Args:
            items: Item repository providing the nearest-neighbour query
            store: Guard for store calls
            threshold: Minimum similarity, inclusive
            max_matches: Result cap
        """
        self._items = items
        self._store = store
        self.threshold = threshold
        self.max_matches = max_matches

    async def rank(
        self, item_id: UUID, item_kind: ItemKind, embedding: list[float] | None
    ) -> list[CandidateRecord]:
        """Rank candidates for an item.

        Args:
            item_id: Source item (excluded from results)
            item_kind: Source item kind; candidates are of the opposite kind
            embedding: Source item embedding

        Returns:
            Candidates ordered by similarity descending, at most `max_matches`

        Raises:
            PreconditionFailedError: Item has no embedding
        """
        if embedding is None:
            raise PreconditionFailedError(f"Item {item_id} has no embedding")

        candidates = await self._store.call(
            lambda: self._items.nearest_candidates(
                item_id,
                item_kind.opposite,
                embedding,
                threshold=self.threshold,
                limit=self.max_matches,
            ),
            operation="nearest_candidates",
        )

        if not candidates:
            logger.debug(
                f"No candidates above {self.threshold} for item {item_id}",
                extra={"structured": {"item_id": str(item_id), "kind": item_kind.value}},
            )
        return candidates
