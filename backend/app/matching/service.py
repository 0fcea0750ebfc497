"""Matching entry points: run, schedule (fire-and-forget) and list matches."""

import asyncio
import logging
from uuid import UUID

from backend.app.db.repositories import ItemRepository, MatchRepository
from backend.app.errors import InvalidStateError, NotFoundError
from backend.app.matching.ledger import LedgerOutcome, MatchLedger
from backend.app.matching.ranker import CandidateRanker
from backend.app.matching.similarity import similarity_to_confidence
from backend.app.models.common import ItemKind
from backend.app.models.matches import MatchedItemSummary, MatchView
from backend.app.resilience.guard import GuardedDependency

logger = logging.getLogger(__name__)


class MatchingService:
    """CandidateRanker -> MatchLedger pipeline for one item."""

    def __init__(
        self,
        items: ItemRepository,
        matches: MatchRepository,
        ranker: CandidateRanker,
        ledger: MatchLedger,
        store: GuardedDependency,
    ) -> None:
        self._items = items
        self._matches = matches
        self._ranker = ranker
        self._ledger = ledger
        self._store = store
        self._tasks: set[asyncio.Task[None]] = set()

    async def run_matching(self, item_id: UUID, kind: ItemKind) -> LedgerOutcome:
        """Rank candidates for an item and record matches.

        Items without an embedding are skipped (the embedding provider failed at
        ingestion); the ranker is never called for them.

        Args:
            item_id: Item to match
            kind: Item kind as known by the caller

        Returns:
            LedgerOutcome (all zero when skipped or no candidates)

        Raises:
            NotFoundError: Item does not exist
        """
        item = await self._store.call(lambda: self._items.get_item(item_id), operation="get_item")
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")

        if item.kind != kind:
            logger.warning(
                f"Matching requested as {kind.value} for {item.kind.value} item {item_id}",
                extra={"structured": {"item_id": str(item_id)}},
            )

        if item.embedding is None:
            logger.info(
                f"Item {item_id} has no embedding, skipping matching",
                extra={"structured": {"item_id": str(item_id)}},
            )
            return LedgerOutcome()

        candidates = await self._ranker.rank(item.id, item.kind, item.embedding)
        outcome = await self._ledger.record(item, candidates)

        logger.info(
            f"Matching complete for item {item_id}",
            extra={
                "structured": {
                    "item_id": str(item_id),
                    "candidates": len(candidates),
                    "upserted": outcome.upserted,
                    "notified": outcome.notified,
                    "failed": outcome.failed,
                }
            },
        )
        return outcome

    def schedule_matching(self, item_id: UUID, kind: ItemKind) -> asyncio.Task[None]:
        """Start matching in the background and return immediately.

        Failures of any kind are logged and never reach the caller.
        """
        task = asyncio.create_task(self._run_in_background(item_id, kind))
        # Keep a strong reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_in_background(self, item_id: UUID, kind: ItemKind) -> None:
        try:
            await self.run_matching(item_id, kind)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                f"Background matching failed for item {item_id}",
                extra={"structured": {"item_id": str(item_id), "kind": kind.value}},
            )

    async def drain(self) -> None:
        """Wait for all scheduled matching tasks (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def list_matches_for_item(self, item_id: UUID, requester_id: UUID) -> list[MatchView]:
        """List an item's matches, best first, with the other side's summary.

        Raises:
            NotFoundError: Item does not exist
            InvalidStateError: Requester does not own the item
        """
        item = await self._store.call(lambda: self._items.get_item(item_id), operation="get_item")
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        if item.user_id != requester_id:
            raise InvalidStateError("You can only view matches for your own items")

        records = await self._store.call(
            lambda: self._matches.list_matches_for_item(item_id, self._ranker.max_matches),
            operation="list_matches",
        )

        views: list[MatchView] = []
        for record in records:
            other_id = (
                record.found_item_id if record.lost_item_id == item_id else record.lost_item_id
            )
            other = await self._store.call(
                lambda: self._items.get_item(other_id), operation="get_item"
            )
            views.append(
                MatchView(
                    id=record.id,
                    lost_item_id=record.lost_item_id,
                    found_item_id=record.found_item_id,
                    similarity_score=min(max(record.similarity_score, 0.0), 1.0),
                    confidence=similarity_to_confidence(record.similarity_score),
                    status=record.status,
                    notified_at=record.notified_at,
                    matched_item=(
                        MatchedItemSummary(
                            id=other.id,
                            kind=other.kind,
                            title=other.title,
                            location=other.location,
                            image_url=other.image_url,
                        )
                        if other is not None
                        else None
                    ),
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                )
            )
        return views
