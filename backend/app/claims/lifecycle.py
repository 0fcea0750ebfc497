"""Claim lifecycle: eligibility gate, both submission flows, resolution and migration.

Claim states: pending -> approved | rejected (both terminal).

Two submission flows share one eligibility gate:

* verification flow: the claimant answers the item's verification question, the
  claim is stored pending, and the item owner approves or rejects it later.
* instant flow: the claimant previews their best matching lost report, then the
  claim is created approved and the item is migrated in the same call.

Approval always migrates the item (snapshot written, the item's other pending
claims rejected, live row deleted, claim approved) in a single store
transaction. If that transaction cannot be committed, nothing changes and
MigrationFailureError is raised for operators.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

from backend.app.claims.verification import hash_answer
from backend.app.db.repositories import (
    ClaimRecord,
    ClaimRepository,
    ItemRecord,
    ItemRepository,
    MigrationResult,
    NewClaim,
)
from backend.app.errors import (
    CLIENT_ERRORS,
    ConflictError,
    DependencyUnavailableError,
    InvalidStateError,
    MigrationFailureError,
    NotFoundError,
    RateLimitedError,
)
from backend.app.matching.similarity import cosine_similarity
from backend.app.models.claims import BestMatchPreview, ClaimPreview, ClaimStatusView
from backend.app.models.common import (
    ClaimDecision,
    ClaimMode,
    ClaimStatus,
    FoundMode,
    ItemKind,
    ItemStatus,
    NotificationKind,
    PreviewWarning,
)
from backend.app.notifications.email import render_email
from backend.app.notifications.notifier import NotificationPayload, Notifier
from backend.app.resilience.guard import GuardedDependency
from backend.app.resilience.retry import RetryPolicy
from backend.app.utils.metrics import claim_migration_failures_total, claims_total

logger = logging.getLogger(__name__)

CLAIM_RATE_LIMIT = 5
CLAIM_RATE_WINDOW_SEC = 24 * 3600
LOW_SIMILARITY_THRESHOLD = 0.65

# Claim inserts are not idempotent; a retry after a lost ack would report a conflict
SINGLE_ATTEMPT = RetryPolicy(max_attempts=1)


class ClaimLifecycleManager:
    """Owns every claim state transition."""

    def __init__(
        self,
        items: ItemRepository,
        claims: ClaimRepository,
        store: GuardedDependency,
        notifier: Notifier,
        answer_pepper: str,
        rate_limit: int = CLAIM_RATE_LIMIT,
        rate_window_sec: int = CLAIM_RATE_WINDOW_SEC,
        low_similarity_threshold: float = LOW_SIMILARITY_THRESHOLD,
        frontend_url: str = "http://localhost:3000",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize manager.

        Args:
            items: Item repository
            claims: Claim repository (owns the migration transaction)
            store: Guard for store calls
            notifier: Delivery for owner/claimant notifications
            answer_pepper: Secret mixed into verification answer hashes
            rate_limit: Max claims per claimant per rolling window
            rate_window_sec: Rolling window length
            low_similarity_threshold: Below this a preview warns the claimant
            frontend_url: Base URL for links in emails
            clock: UTC clock, injectable for tests
        """
        self._items = items
        self._claims = claims
        self._store = store
        self._notifier = notifier
        self._pepper = answer_pepper
        self.rate_limit = rate_limit
        self.rate_window_sec = rate_window_sec
        self.low_similarity_threshold = low_similarity_threshold
        self._frontend_url = frontend_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Eligibility gate
    # ------------------------------------------------------------------

    async def _get_item(self, item_id: UUID) -> ItemRecord | None:
        return await self._store.call(lambda: self._items.get_item(item_id), operation="get_item")

    async def check_eligibility(self, item_id: UUID, claimant_id: UUID) -> ItemRecord:
        """Run the eligibility gate shared by both flows. Read-only.

        Checks, in order: item exists, is a found item, is active, is not the
        claimant's own item, has no prior claim by this claimant, and the
        claimant is under the rolling claim quota.

        Returns:
            The claimable item

        Raises:
            NotFoundError: Item does not exist
            InvalidStateError: Wrong kind, inactive, or own item
            ConflictError: Claimant already claimed this item
            RateLimitedError: Claimant hit the rolling quota
        """
        item = await self._get_item(item_id)
        if item is None:
            raise NotFoundError("Item not found")
        if item.kind != ItemKind.found:
            raise InvalidStateError("claims only on found items")
        if item.status != ItemStatus.active:
            raise InvalidStateError("item no longer active")
        if item.user_id == claimant_id:
            raise InvalidStateError("cannot claim own item")

        existing = await self._store.call(
            lambda: self._claims.find_claim(item_id, claimant_id), operation="find_claim"
        )
        if existing is not None:
            raise ConflictError("You have already submitted a claim for this item")

        since = self._clock() - timedelta(seconds=self.rate_window_sec)
        recent = await self._store.call(
            lambda: self._claims.count_claims_since(claimant_id, since),
            operation="count_claims",
        )
        if recent >= self.rate_limit:
            raise RateLimitedError(
                f"Claim limit reached: at most {self.rate_limit} claims per 24 hours",
                retry_after_seconds=self.rate_window_sec,
            )

        return item

    # ------------------------------------------------------------------
    # Verification flow
    # ------------------------------------------------------------------

    async def submit_verification_claim(
        self, item_id: UUID, claimant_id: UUID, answer: str, notes: str | None = None
    ) -> ClaimRecord:
        """Create a pending claim answered against the item's verification question.

        Args:
            item_id: Found item being claimed
            claimant_id: Claiming user
            answer: Free-text answer (stored hashed only)
            notes: Optional message to the finder

        Returns:
            Pending claim
        """
        try:
            item = await self.check_eligibility(item_id, claimant_id)
        except CLIENT_ERRORS as e:
            claims_total.labels(mode=ClaimMode.verification.value, outcome=e.code).inc()
            raise

        # scrypt is CPU-bound
        answer_hash = await asyncio.to_thread(hash_answer, answer, self._pepper)
        new_claim = NewClaim(
            item_id=item.id,
            claimant_id=claimant_id,
            owner_id=item.user_id,
            verification_question=item.metadata.verification_question,
            verification_answer_hash=answer_hash,
            notes=notes,
        )
        claim = await self._store.call(
            lambda: self._claims.create_claim(new_claim),
            operation="create_claim",
            policy=SINGLE_ATTEMPT,
        )
        claims_total.labels(mode=ClaimMode.verification.value, outcome="submitted").inc()

        logger.info(
            "Claim created",
            extra={"structured": {"claim_id": str(claim.id), "item_id": str(item.id)}},
        )

        question = claim.verification_question or "No verification question set"
        await self._notify_quietly(
            item.user_id,
            NotificationKind.claim_submitted,
            NotificationPayload(
                title="New Claim Submitted",
                body=f'Someone has submitted a claim for "{item.title}".',
                data={"claim_id": str(claim.id), "item_id": str(item.id)},
                email_subject=f'FoundU: New claim on "{item.title}"',
                email_html=render_email(
                    "Someone claimed an item you found",
                    [f"Item: {item.title}", f"Verification question: {question}"],
                    "Review Claim",
                    f"{self._frontend_url}/claims/{claim.id}",
                ),
            ),
        )
        return claim

    async def resolve_claim(
        self, claim_id: UUID, resolver_id: UUID, decision: ClaimDecision
    ) -> ClaimRecord:
        """Approve or reject a pending claim. Only the item owner may resolve.

        Approval migrates the item atomically with the status change; rejection
        leaves the item active and writes no snapshot. The claimant is notified
        either way.

        Raises:
            NotFoundError: Claim or its item does not exist
            InvalidStateError: Resolver is not the owner, or claim is not pending
            MigrationFailureError: Approval could not be committed
        """
        claim = await self._store.call(
            lambda: self._claims.get_claim(claim_id), operation="get_claim"
        )
        if claim is None:
            raise NotFoundError("Claim not found")
        if claim.status.is_terminal:
            raise InvalidStateError("claim already resolved")
        if claim.item_id is None:
            raise NotFoundError("Item not found")

        item_id = claim.item_id
        item = await self._get_item(item_id)
        if item is None:
            raise NotFoundError("Item not found")
        if item.user_id != resolver_id:
            raise InvalidStateError("not authorized to resolve this claim")

        if decision == ClaimDecision.reject:
            rejected = await self._store.call(
                lambda: self._claims.reject_claim(claim_id), operation="reject_claim"
            )
            if rejected is None:
                raise InvalidStateError("claim already resolved")
            claims_total.labels(mode=ClaimMode.verification.value, outcome="rejected").inc()
            logger.info(
                "Claim rejected",
                extra={"structured": {"claim_id": str(claim_id), "item_id": str(item_id)}},
            )
            await self._notify_quietly(
                claim.claimant_id,
                NotificationKind.claim_rejected,
                NotificationPayload(
                    title="Claim Rejected",
                    body=f'Your claim for "{item.title}" was not approved.',
                    data={"claim_id": str(claim_id), "item_id": str(item_id)},
                ),
            )
            return rejected

        result = await self._migrate(
            lambda: self._claims.approve_with_migration(claim_id), claim_id, item_id
        )
        claims_total.labels(mode=ClaimMode.verification.value, outcome="approved").inc()
        await self._notify_superseded(result, item)
        logger.info(
            "Claim approved",
            extra={"structured": {"claim_id": str(claim_id), "item_id": str(item_id)}},
        )
        await self._notify_quietly(
            claim.claimant_id,
            NotificationKind.claim_approved,
            NotificationPayload(
                title="Claim Approved!",
                body=(
                    f'Your claim for "{item.title}" has been approved. '
                    "Contact the finder to arrange pickup."
                ),
                data={"claim_id": str(claim_id), "item_id": str(item_id)},
            ),
        )
        return result.claim

    # ------------------------------------------------------------------
    # Instant flow
    # ------------------------------------------------------------------

    async def _best_lost_report(
        self, item: ItemRecord, claimant_id: UUID
    ) -> tuple[BestMatchPreview | None, bool]:
        """Best active lost report of the claimant against a found item.

        Returns:
            (best match or None, whether the claimant has any active lost report)
        """
        reports = await self._store.call(
            lambda: self._items.list_user_items(claimant_id, ItemKind.lost, ItemStatus.active),
            operation="list_user_items",
        )
        if not reports:
            return None, False
        if item.embedding is None:
            return None, True

        best: BestMatchPreview | None = None
        for report in reports:
            if report.embedding is None:
                continue
            score = cosine_similarity(item.embedding, report.embedding)
            if best is None or score > best.similarity_score:
                best = BestMatchPreview(
                    item_id=report.id,
                    title=report.title,
                    image_url=report.image_url,
                    similarity_score=score,
                )
        return best, True

    async def preview_claim(self, item_id: UUID, claimant_id: UUID) -> ClaimPreview:
        """Re-run the eligibility gate and show the claimant's closest lost report.

        No side effects. Gate failures raise exactly as on submission.
        """
        item = await self.check_eligibility(item_id, claimant_id)
        best, has_reports = await self._best_lost_report(item, claimant_id)

        warning: PreviewWarning | None = None
        if not has_reports:
            warning = PreviewWarning.no_report
        elif best is None or best.similarity_score < self.low_similarity_threshold:
            warning = PreviewWarning.low_similarity

        return ClaimPreview(
            item_id=item.id,
            item_title=item.title,
            best_match=best,
            warning=warning,
        )

    async def submit_instant_claim(
        self, item_id: UUID, claimant_id: UUID, notes: str | None = None
    ) -> ClaimRecord:
        """Create an approved claim and migrate the item synchronously.

        The claim is stamped `deleted_at` so the retention job can purge it.

        Raises:
            Gate errors as in check_eligibility
            MigrationFailureError: Nothing was committed; the claim does not exist
        """
        try:
            item = await self.check_eligibility(item_id, claimant_id)
        except CLIENT_ERRORS as e:
            claims_total.labels(mode=ClaimMode.instant.value, outcome=e.code).inc()
            raise

        best, _ = await self._best_lost_report(item, claimant_id)
        new_claim = NewClaim(
            item_id=item.id,
            claimant_id=claimant_id,
            owner_id=item.user_id,
            similarity_score=best.similarity_score if best is not None else None,
            notes=notes,
        )
        now = self._clock()
        result = await self._migrate(
            lambda: self._claims.create_approved_with_migration(new_claim, deleted_at=now),
            None,
            item.id,
            policy=SINGLE_ATTEMPT,
        )
        claim = result.claim
        claims_total.labels(mode=ClaimMode.instant.value, outcome="approved").inc()
        await self._notify_superseded(result, item)
        logger.info(
            "Instant claim approved",
            extra={"structured": {"claim_id": str(claim.id), "item_id": str(item.id)}},
        )

        data = {"claim_id": str(claim.id), "item_id": str(item.id)}
        await self._notify_quietly(
            item.user_id,
            NotificationKind.item_resolved,
            NotificationPayload(
                title="Your Found Item Was Claimed",
                body=f'"{item.title}" has been claimed by its owner. Thank you!',
                data=data,
            ),
        )
        await self._notify_quietly(
            claimant_id,
            NotificationKind.claim_approved,
            NotificationPayload(
                title="Claim Approved!",
                body=self._status_message(ClaimStatus.approved, item.found_mode, item.location),
                data=data,
            ),
        )
        return claim

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    async def _migrate(
        self,
        operation: Callable[[], Awaitable[MigrationResult]],
        claim_id: UUID | None,
        item_id: UUID,
        policy: RetryPolicy | None = None,
    ) -> MigrationResult:
        """Run a migration transaction under the store guard.

        Client errors (e.g. a concurrent resolution) and an open circuit pass
        through unchanged; nothing was written in either case. Any other failure
        after retries becomes MigrationFailureError.
        """
        try:
            return await self._store.call(operation, operation="claim_migration", policy=policy)
        except (*CLIENT_ERRORS, DependencyUnavailableError):
            raise
        except Exception as e:
            claim_migration_failures_total.inc()
            logger.critical(
                f"Claim migration failed for item {item_id}: {e}",
                extra={
                    "structured": {
                        "claim_id": str(claim_id) if claim_id else None,
                        "item_id": str(item_id),
                        "error": type(e).__name__,
                    }
                },
            )
            raise MigrationFailureError(
                claim_id, item_id, "Claim approval could not be completed; no changes were made"
            ) from e

    async def _notify_superseded(self, result: MigrationResult, item: ItemRecord) -> None:
        """Tell claimants whose pending claims lost to the approved one."""
        for rejected in result.rejected_claims:
            claims_total.labels(mode=ClaimMode.verification.value, outcome="superseded").inc()
            await self._notify_quietly(
                rejected.claimant_id,
                NotificationKind.claim_rejected,
                NotificationPayload(
                    title="Claim Rejected",
                    body=f'"{item.title}" was returned to another claimant.',
                    data={"claim_id": str(rejected.id), "item_id": str(item.id)},
                ),
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_claims_for_item(self, item_id: UUID, requester_id: UUID) -> list[ClaimRecord]:
        """List claims on an item. Owner only.

        Raises:
            NotFoundError: Item does not exist
            InvalidStateError: Requester does not own the item
        """
        item = await self._get_item(item_id)
        if item is None:
            raise NotFoundError("Item not found")
        if item.user_id != requester_id:
            raise InvalidStateError("Not authorized to view these claims")
        return await self._store.call(
            lambda: self._claims.list_claims_for_item(item_id), operation="list_claims"
        )

    async def get_claim_status(self, claim_id: UUID, requester_id: UUID) -> ClaimStatusView:
        """Claim status for the claimant or the item owner.

        The item title comes from the live item, or from the snapshot once the
        item has been migrated. The finder's contact email is only shown to the
        claimant of an approved claim.
        """
        claim = await self._store.call(
            lambda: self._claims.get_claim(claim_id), operation="get_claim"
        )
        if claim is None:
            raise NotFoundError("Claim not found")
        if requester_id not in (claim.claimant_id, claim.owner_id):
            raise InvalidStateError("Not authorized to view this claim")

        title: str | None = None
        found_mode: FoundMode | None = None
        location: str | None = None
        contact_email: str | None = None

        if claim.item_id is not None:
            item = await self._get_item(claim.item_id)
            if item is not None:
                title, found_mode, location = item.title, item.found_mode, item.location
                contact_email = item.contact_email
        else:
            snapshot = await self._store.call(
                lambda: self._claims.get_snapshot_for_claim(claim_id), operation="get_snapshot"
            )
            if snapshot is None and claim.original_item_id is not None:
                # Claims rejected by another claim's migration have no snapshot of their own
                original_item_id = claim.original_item_id
                snapshot = await self._store.call(
                    lambda: self._claims.get_snapshot_by_original_item(original_item_id),
                    operation="get_snapshot",
                )
            if snapshot is not None:
                title, found_mode, location = snapshot.title, snapshot.found_mode, snapshot.location
                contact_email = snapshot.contact_email

        show_contact = claim.status == ClaimStatus.approved and requester_id == claim.claimant_id
        return ClaimStatusView(
            id=claim.id,
            status=claim.status,
            title=title,
            message=self._status_message(claim.status, found_mode, location),
            contact_email=contact_email if show_contact else None,
        )

    @staticmethod
    def _status_message(
        status: ClaimStatus, found_mode: FoundMode | None, location: str | None
    ) -> str:
        if status == ClaimStatus.pending:
            return "Your claim is waiting for the finder to review it."
        if status == ClaimStatus.rejected:
            return "Your claim was not approved."
        if found_mode == FoundMode.keeping:
            return "Your claim was approved. Contact the finder to arrange pickup."
        if location:
            return f"Your claim was approved. The item was left at {location}."
        return "Your claim was approved."

    async def _notify_quietly(
        self, user_id: UUID, kind: NotificationKind, payload: NotificationPayload
    ) -> None:
        # The claim is already committed; a lost notification must not undo it
        try:
            await self._notifier.notify(user_id, kind, payload)
        except Exception as e:
            logger.warning(
                f"Failed to send {kind.value} notification: {e}",
                extra={"structured": {"user_id": str(user_id), "kind": kind.value}},
            )
