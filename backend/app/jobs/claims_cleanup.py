"""Retention job: hard-delete claims soft-deleted more than N days ago."""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from backend.app.db.repositories import ClaimRepository
from backend.app.resilience.guard import GuardedDependency

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SEC = 24 * 3600


async def run_claims_cleanup(
    claims: ClaimRepository,
    store: GuardedDependency,
    retention_days: int = 90,
    now: datetime | None = None,
) -> int:
    """Delete claims whose deleted_at is older than the retention period.

    Args:
        claims: Claim repository
        store: Guard for store calls
        retention_days: Days a soft-deleted claim is kept
        now: Reference time (defaults to current UTC time)

    Returns:
        Number of claims deleted
    """
    cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
    count = await store.call(
        lambda: claims.purge_deleted_claims(cutoff), operation="purge_deleted_claims"
    )
    if count > 0:
        logger.info(
            f"Claims cleanup: hard-deleted {count} old claims",
            extra={"structured": {"count": count, "cutoff": cutoff.isoformat()}},
        )
    return count


async def claims_cleanup_loop(
    claims: ClaimRepository,
    store: GuardedDependency,
    retention_days: int = 90,
    interval_sec: float = CLEANUP_INTERVAL_SEC,
) -> None:
    """Run the cleanup at startup and then every `interval_sec` until cancelled."""
    while True:
        try:
            await run_claims_cleanup(claims, store, retention_days)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Claims cleanup failed")
        await asyncio.sleep(interval_sec)
