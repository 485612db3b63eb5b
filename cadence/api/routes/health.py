"""GET /v1/health — Health check with real service probes."""

import logging

from fastapi import APIRouter, Request
from sqlalchemy import text

from cadence.api.schemas import HealthResponse
from cadence.version import __version__

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Check health of the database and the task queue."""
    services: dict[str, bool] = {"api": True, "database": False, "task_queue": False}

    try:
        async_session = request.app.state.async_session
        async with async_session() as session:
            await session.execute(text("SELECT 1"))
        services["database"] = True
    except Exception as exc:
        logger.warning("[health] DB check failed: %s", exc)

    arq_pool = getattr(request.app.state, "arq_pool", None)
    if arq_pool is None:
        # inline mode has no queue to probe
        services["task_queue"] = getattr(request.app.state, "dispatcher", None) is not None
    else:
        try:
            services["task_queue"] = bool(await arq_pool.ping())
        except Exception as exc:
            logger.warning("[health] Task queue check failed: %s", exc)

    overall = "ok" if all(services.values()) else "degraded"
    return HealthResponse(status=overall, version=__version__, services=services)
