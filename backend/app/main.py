"""FastAPI application - lost & found matching and claims."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI

from backend.app.api.errors import register_error_handlers
from backend.app.api.routes.claims import router as claims_router
from backend.app.api.routes.health import router as health_router
from backend.app.api.routes.items import router as items_router
from backend.app.api.routes.matches import router as matches_router
from backend.app.api.routes.metrics import router as metrics_router
from backend.app.api.routes.notifications import router as notifications_router
from backend.app.config import Settings, get_settings
from backend.app.db.engine import create_async_engine_for_url, create_session_factory
from backend.app.db.inmemory import build_inmemory_repositories
from backend.app.db.models import Base
from backend.app.db.sql_repositories import build_sql_repositories
from backend.app.jobs.claims_cleanup import claims_cleanup_loop
from backend.app.services import Services, build_services

logger = logging.getLogger(__name__)


async def build_services_from_settings(settings: Settings) -> Services:
    """SQL-backed services when DATABASE_URL is set, in-memory otherwise.

    SQLite databases get their tables created on startup; Postgres schemas are
    managed by Alembic.
    """
    if not settings.database_url:
        logger.warning("DATABASE_URL not set, using in-memory store")
        return build_services(settings, build_inmemory_repositories())

    engine = create_async_engine_for_url(settings.database_url)
    if engine.dialect.name == "sqlite":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    repos = build_sql_repositories(create_session_factory(engine))
    return build_services(settings, repos, engine=engine)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    services: Services | None = getattr(app.state, "services", None)
    if services is None:
        services = await build_services_from_settings(get_settings())
        app.state.services = services

    cleanup = asyncio.create_task(
        claims_cleanup_loop(
            services.repos.claims,
            services.deps.store,
            retention_days=services.settings.claims_retention_days,
        )
    )
    try:
        yield
    finally:
        cleanup.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cleanup
        await services.matching.drain()
        if services.engine is not None:
            await services.engine.dispose()


def create_app(services: Services | None = None) -> FastAPI:
    """Create the application.

    Args:
        services: Prebuilt service container (tests); built from settings on startup otherwise
    """
    app = FastAPI(title="Lost & Found API", version="0.1.0", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    register_error_handlers(app)

    # Register routes
    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(items_router)
    app.include_router(matches_router)
    app.include_router(claims_router)
    app.include_router(notifications_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Lost & Found API", "version": "0.1.0"}

    return app


app = create_app()
