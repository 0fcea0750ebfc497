"""Service container: wires repositories, guards and engine components."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.ai.client import AIClient, get_ai_client
from backend.app.claims.lifecycle import ClaimLifecycleManager
from backend.app.config import Settings
from backend.app.db.repositories import Repositories
from backend.app.items.catalog import ItemCatalogService
from backend.app.items.ingest import ItemIngestionService
from backend.app.matching.ledger import MatchLedger
from backend.app.matching.ranker import CandidateRanker
from backend.app.matching.service import MatchingService
from backend.app.middleware.ratelimit import RateLimitMiddleware, build_rate_limit_middleware
from backend.app.notifications.email import EmailSender, get_email_sender
from backend.app.notifications.notifier import (
    CompositeNotifier,
    EmailNotifier,
    InAppNotifier,
    Notifier,
)
from backend.app.resilience.guard import (
    Dependencies,
    DependencyLogger,
    DependencyMetrics,
    build_dependencies,
)
from backend.app.utils.logging import StructuredDependencyLogger
from backend.app.utils.metrics import PrometheusDependencyMetrics


@dataclass
class Services:
    """Everything a request handler or background job needs."""

    settings: Settings
    repos: Repositories
    deps: Dependencies
    notifier: Notifier
    matching: MatchingService
    claims: ClaimLifecycleManager
    ingestion: ItemIngestionService
    catalog: ItemCatalogService
    rate_limits: RateLimitMiddleware
    engine: AsyncEngine | None = None


def build_services(
    settings: Settings,
    repos: Repositories,
    *,
    engine: AsyncEngine | None = None,
    ai_client: AIClient | None = None,
    email_sender: EmailSender | None = None,
    rate_limits: RateLimitMiddleware | None = None,
    metrics: DependencyMetrics | None = None,
    dep_logger: DependencyLogger | None = None,
    sleep_fn: Callable[[float], Awaitable[None]] | None = None,
) -> Services:
    """Build the service graph from settings and a repository set.

    Args:
        settings: Application settings
        repos: SQL or in-memory repositories
        engine: Async engine backing `repos`, if any (used by health checks)
        ai_client: AI client override (defaults from settings)
        email_sender: Mail sender override (defaults from settings)
        rate_limits: Gateway limiter override (defaults from settings)
        metrics: Dependency metrics (defaults to Prometheus)
        dep_logger: Dependency logger (defaults to structured logging)
        sleep_fn: Injectable sleep for retry backoff (tests)

    Returns:
        Services container
    """
    deps = build_dependencies(
        settings,
        metrics=metrics or PrometheusDependencyMetrics(),
        dep_logger=dep_logger or StructuredDependencyLogger(),
        sleep_fn=sleep_fn,
    )

    notifier = CompositeNotifier(
        [
            InAppNotifier(repos.notifications, deps.store),
            EmailNotifier(
                repos.users,
                email_sender or get_email_sender(settings),
                deps.store,
                deps.mail,
            ),
        ]
    )

    ranker = CandidateRanker(
        repos.items,
        deps.store,
        threshold=settings.match_threshold,
        max_matches=settings.max_matches,
    )
    ledger = MatchLedger(repos.matches, deps.store, notifier, frontend_url=settings.frontend_url)
    matching = MatchingService(repos.items, repos.matches, ranker, ledger, deps.store)

    claims = ClaimLifecycleManager(
        repos.items,
        repos.claims,
        deps.store,
        notifier,
        answer_pepper=settings.answer_pepper.get_secret_value(),
        rate_limit=settings.claim_rate_limit,
        rate_window_sec=settings.claim_rate_window_sec,
        low_similarity_threshold=settings.low_similarity_threshold,
        frontend_url=settings.frontend_url,
    )

    ai_client = ai_client or get_ai_client(settings)
    ingestion = ItemIngestionService(repos.items, ai_client, deps.ai, deps.store, matching)
    catalog = ItemCatalogService(repos.items, repos.claims, ai_client, deps.ai, deps.store)

    return Services(
        settings=settings,
        repos=repos,
        deps=deps,
        notifier=notifier,
        matching=matching,
        claims=claims,
        ingestion=ingestion,
        catalog=catalog,
        rate_limits=rate_limits or build_rate_limit_middleware(settings),
        engine=engine,
    )
