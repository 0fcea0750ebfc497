"""Structured logging for guarded dependency calls."""

import logging
from typing import Any

from backend.app.resilience.guard import DependencyLogger

logger = logging.getLogger(__name__)


class StructuredDependencyLogger(DependencyLogger):
    """Structured logger for guarded dependency calls."""

    def log_attempt(
        self,
        dependency: str,
        operation: str,
        attempt: int,
        outcome: str,
        error_reason: str | None = None,
    ) -> None:
        """Log a failed attempt that will be retried."""
        log_data: dict[str, Any] = {
            "dependency": dependency,
            "operation": operation,
            "attempt": attempt,
            "outcome": outcome,
        }
        if error_reason:
            log_data["error_reason"] = error_reason

        logger.warning(
            f"Dependency attempt failed: {dependency}.{operation} (attempt {attempt})",
            extra={"structured": log_data},
        )

    def log_call(
        self,
        dependency: str,
        operation: str,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log the final outcome of a guarded call with structured data."""
        log_data: dict[str, Any] = {
            "dependency": dependency,
            "operation": operation,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }

        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"Dependency call: {dependency}.{operation} - {outcome}"

        if outcome in ("success", "rejected"):
            logger.debug(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
