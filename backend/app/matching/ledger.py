"""Match persistence and exactly-once owner notification.

`notified_at` is the idempotency boundary. A run may notify only after it wins a
conditional update that stamps `notified_at` while it is still NULL, so
concurrent runs finding the same pair send one notification between them. A
failed delivery clears the stamp and the next run retries it.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from backend.app.db.repositories import CandidateRecord, ItemRecord, MatchRecord, MatchRepository
from backend.app.matching.similarity import normalize_pair, similarity_to_confidence
from backend.app.models.common import ItemKind, NotificationKind
from backend.app.notifications.email import render_email
from backend.app.notifications.notifier import NotificationPayload, Notifier
from backend.app.resilience.guard import GuardedDependency
from backend.app.utils.metrics import match_notifications_total, matches_upserted_total

logger = logging.getLogger(__name__)


@dataclass
class LedgerOutcome:
    """Per-run counters."""

    upserted: int = 0
    notified: int = 0
    failed: int = 0


class MatchLedger:
    """Upserts match rows and notifies owners at most once per match."""

    def __init__(
        self,
        matches: MatchRepository,
        store: GuardedDependency,
        notifier: Notifier,
        frontend_url: str = "http://localhost:3000",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._matches = matches
        self._store = store
        self._notifier = notifier
        self._frontend_url = frontend_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(UTC))

    async def record(self, item: ItemRecord, candidates: list[CandidateRecord]) -> LedgerOutcome:
        """Persist and notify each candidate. Failures are isolated per candidate.

        Args:
            item: Source item matching was run for
            candidates: Ranked candidates

        Returns:
            LedgerOutcome counters
        """
        outcome = LedgerOutcome()

        for candidate in candidates:
            lost_id, found_id = normalize_pair(item.kind, item.id, candidate.item_id)

            try:
                match = await self._store.call(
                    lambda: self._matches.upsert_match(lost_id, found_id, candidate.similarity),
                    operation="upsert_match",
                )
            except Exception:
                outcome.failed += 1
                logger.exception(
                    f"Failed to upsert match {lost_id}/{found_id}",
                    extra={
                        "structured": {"lost_item_id": str(lost_id), "found_item_id": str(found_id)}
                    },
                )
                continue

            outcome.upserted += 1
            matches_upserted_total.inc()

            if match.notified_at is not None:
                match_notifications_total.labels(outcome="skipped").inc()
                continue

            notified = await self._notify(match, item, candidate)
            if notified is None:
                match_notifications_total.labels(outcome="skipped").inc()
            elif notified:
                outcome.notified += 1
            else:
                outcome.failed += 1

        return outcome

    async def _notify(
        self, match: MatchRecord, item: ItemRecord, candidate: CandidateRecord
    ) -> bool | None:
        """Claim the match's notification and deliver it.

        Returns:
            True if sent, False if it failed, None if another run owns it
        """
        if item.kind == ItemKind.lost:
            owner_id, lost_title, found_title = item.user_id, item.title, candidate.title
        else:
            owner_id, lost_title, found_title = candidate.user_id, candidate.title, item.title

        log_data = {
            "match_id": str(match.id),
            "lost_item_id": str(match.lost_item_id),
            "found_item_id": str(match.found_item_id),
        }

        try:
            claimed = await self._store.call(
                lambda: self._matches.claim_notification(match.id, self._clock()),
                operation="claim_notification",
            )
        except Exception:
            logger.exception("Could not claim match notification", extra={"structured": log_data})
            return False
        if not claimed:
            return None

        payload = self._build_payload(match, lost_title, found_title)
        try:
            await self._notifier.notify(owner_id, NotificationKind.match_found, payload)
        except Exception as e:
            match_notifications_total.labels(outcome="error").inc()
            logger.warning(
                f"Match notification failed: {e}", extra={"structured": log_data}
            )
            await self._release(match, log_data)
            return False

        match_notifications_total.labels(outcome="sent").inc()
        return True

    async def _release(self, match: MatchRecord, log_data: dict[str, str]) -> None:
        # Hand the notification back so the next run retries it
        try:
            await self._store.call(
                lambda: self._matches.clear_notification(match.id),
                operation="clear_notification",
            )
        except Exception:
            logger.exception(
                "Match notification failed and its stamp could not be cleared",
                extra={"structured": log_data},
            )

    def _build_payload(
        self, match: MatchRecord, lost_title: str, found_title: str
    ) -> NotificationPayload:
        score = match.similarity_score
        url = f"{self._frontend_url}/matches/{match.lost_item_id}"
        return NotificationPayload(
            title="Potential Match Found!",
            body=f'We found a potential match for your lost "{lost_title}".',
            data={
                "match_id": str(match.id),
                "lost_item_id": str(match.lost_item_id),
                "found_item_id": str(match.found_item_id),
                "similarity": score,
            },
            email_subject=f'FoundU: Potential match for "{lost_title}"',
            email_html=render_email(
                "We may have found your item!",
                [
                    f"Your lost item: {lost_title}",
                    f"Potential match: {found_title}",
                    f"Match confidence: {round(score * 100)}% ({similarity_to_confidence(score)})",
                ],
                "View Match",
                url,
            ),
        )
