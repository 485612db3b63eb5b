"""FastAPI application factory with lifespan management."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from cadence.config import config
from cadence.version import __version__


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # ── Startup ──
    logger.info("cadence v%s starting...", __version__)

    # 1. Database
    from cadence.db.database import async_session, init_db
    from cadence.db.repository import ScopedRepository
    await init_db()
    app.state.async_session = async_session

    # 2. Collaborators: sending service and platform directory
    from cadence.adapters import build_directory, build_email_sender
    email_sender = build_email_sender(config)
    directory = build_directory(config)
    app.state.email_sender = email_sender
    app.state.directory = directory

    # 3. Manager, engine and matcher around a session-per-call repository
    from cadence.engine.runner import build_engine
    from cadence.triggers.event_bus import EventBus
    repository = ScopedRepository(async_session)
    event_bus = EventBus()
    workflow_manager, engine, matcher = build_engine(
        repository, config, email_sender, directory, event_bus=event_bus
    )
    app.state.event_bus = event_bus
    app.state.workflow_manager = workflow_manager
    app.state.run_store = repository
    app.state.engine = engine
    app.state.matcher = matcher

    # 4. ARQ pool + EventDispatcher
    from arq import create_pool
    from arq.connections import RedisSettings
    from cadence.workers.dispatcher import EventDispatcher

    arq_pool = None
    if not config.inline_event_processing:
        try:
            arq_pool = await create_pool(RedisSettings.from_dsn(config.task_queue_url))
            logger.info("ARQ pool connected — background event processing enabled")
        except (OSError, RedisError) as exc:
            logger.warning("Task queue unavailable (%s) — processing events inline", exc)
    app.state.arq_pool = arq_pool
    app.state.dispatcher = EventDispatcher(
        matcher, engine, redis_pool=arq_pool, inline=config.inline_event_processing
    )

    logger.info("cadence v%s ready", __version__)

    yield

    # ── Shutdown ──
    logger.info("cadence shutting down...")
    if app.state.arq_pool is not None:
        await app.state.arq_pool.close()
    for closable in (email_sender, directory):
        close = getattr(closable, "close", None)
        if close is not None:
            await close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="cadence",
        description="Marketing automation workflows: triggers, delays, branches and emails.",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    # Routes
    from cadence.api.routes import events, health, variables, workflows
    app.include_router(workflows.router, prefix="/v1")
    app.include_router(variables.router, prefix="/v1")
    app.include_router(events.router, prefix="/v1")
    app.include_router(health.router, prefix="/v1")

    return app


app = create_app()
