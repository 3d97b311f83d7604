"""Releaseboard API: FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import Settings, get_settings
from src.middleware.rate_limit import RateLimitMiddleware
from src.middleware.security import SecurityHeadersMiddleware
from src.routers import apps, e2e, health, sync
from src.tracker.backends import create_backend
from src.tracker.base import PersistenceBackend
from src.tracker.sync.session import SyncSession

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("releaseboard")


# ---------- App factory ----------

def create_app(
    settings: Settings | None = None,
    backend_factory: Callable[[Settings], PersistenceBackend] = create_backend,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Startup / shutdown hooks."""
        logger.info(
            "Starting Releaseboard API v%s [%s, backend=%s]",
            settings.app_version,
            settings.environment,
            settings.storage_backend,
        )
        session = SyncSession(
            backend_factory(settings),
            quiescence_seconds=settings.sync_quiescence_seconds,
        )
        loaded = await session.start()
        logger.info("Loaded %d apps", loaded)
        app.state.sync_session = session
        yield
        app.state.sync_session = None
        await session.close(flush=True)
        logger.info("Releaseboard API shut down")

    app = FastAPI(
        title="Releaseboard API",
        description=(
            "Release readiness tracking for a portfolio of mobile apps: "
            "QA checks, release intent, notes, and e2e results."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sync_session = None

    # ---------- Middleware (the last one added runs outermost) ----------

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RateLimitMiddleware, settings=settings)

    # CORS is added last so it wraps the others and answers preflight
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(apps.router, prefix=v1_prefix)
    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(e2e.router, prefix=v1_prefix)

    return app


app = create_app()
