"""Health check endpoints.

- /health: liveness, always 200 while the process runs
- /healthz: store and Redis connectivity plus circuit breaker states
"""

from typing import Annotated, Any

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text

from backend.app.api.auth import get_services
from backend.app.services import Services

router = APIRouter()


async def check_db(services: Services) -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    if services.engine is None:
        return (True, "in_memory")

    try:
        async with services.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


async def check_redis(services: Services) -> tuple[bool, str]:
    """Check Redis connectivity.

    Returns:
        (is_ok, status_message)
    """
    redis_url = services.settings.redis_url
    if not redis_url:
        return (True, "not_configured")

    client = redis.from_url(redis_url, decode_responses=True)
    try:
        await client.ping()
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")
    finally:
        await client.aclose()


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz(
    services: Annotated[Services, Depends(get_services)],
) -> dict[str, Any] | JSONResponse:
    """Component health check.

    Returns:
        200 with component status if core systems ok
        503 if the store or Redis is unreachable
    """
    db_ok, db_status = await check_db(services)
    redis_ok, redis_status = await check_redis(services)

    core_ok = db_ok and redis_ok

    response_body = {
        "status": "ok" if core_ok else "degraded",
        "components": {
            "db": db_status,
            "redis": redis_status,
        },
        "breakers": [guard.breaker.stats() for guard in services.deps.all()],
    }

    if not core_ok:
        return JSONResponse(content=response_body, status_code=503)

    return response_body
