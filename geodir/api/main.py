"""
geodir API - FastAPI Application

Provides:
- Directory entries with optimistic versioning
- Ratings with per-entry aggregates
- Bounding-box subscriptions and email confirmation
- Operational view of the notification dispatch queue
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from geodir import __version__
from geodir.api.middleware import RequestIDMiddleware, SecurityHeadersMiddleware, get_cors_origins
from geodir.api.routes import confirmation, dispatches, entries, health, ratings, subscriptions
from geodir.config import get_settings
from geodir.container import build_services
from geodir.db.client import close_db, close_db_pool, get_db_pool, init_db
from geodir.jobs.worker import PipelineWorker
from geodir.kernel.http.errors import register_exception_handlers
from geodir.kernel.logging import configure_logging
from geodir.monitoring.metrics import get_metrics
from geodir.notifications.resend import ResendNotifier

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup and shutdown."""
    settings = get_settings()
    logger.info("Starting geodir API", version=__version__, environment=settings.environment)
    get_metrics().set_build_info(__version__)

    await init_db()
    pool = await get_db_pool()
    notifier = ResendNotifier(settings=settings)
    services = build_services(pool=pool, notifier=notifier, mailer=notifier, settings=settings)
    app.state.services = services

    worker: PipelineWorker | None = None
    if settings.environment == "test":
        logger.info("Skipping notification pipeline in test environment")
    elif settings.pipeline_run_in_api:
        worker = PipelineWorker(services)
        await worker.start()
    else:
        # Reads still use the index (GET /ready); matching happens in the worker process.
        await services.registry.load()
        logger.info("Notification pipeline disabled in API process")

    yield

    logger.info("Shutting down geodir API")
    if worker is not None:
        await worker.stop()
    await close_db_pool()
    await close_db()


app = FastAPI(
    title="geodir API",
    description="Geographic directory with bounding-box subscriptions and rating aggregation",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

register_exception_handlers(app)

# Middleware order matters - first added = last executed
app.add_middleware(RequestIDMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

app.include_router(health.router, tags=["Health"])
app.include_router(entries.router, prefix="/api/v1")
app.include_router(ratings.router, prefix="/api/v1")
app.include_router(subscriptions.router, prefix="/api/v1")
app.include_router(confirmation.router, prefix="/api/v1")
app.include_router(dispatches.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "geodir API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
