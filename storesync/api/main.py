"""
StoreSync - FastAPI Application

Internal HTTP surface of the sync service:
- sync status and ETL job history per brand
- manual sync and backfill triggers
- Prometheus metrics
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from storesync.api.errors import register_exception_handlers
from storesync.api.routes import backfill, health, sync
from storesync.config import get_settings
from storesync.db.client import close_db, close_db_pool, init_db
from storesync.kernel.logging import configure_logging
from storesync.services import Services, build_services

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup and shutdown."""
    if getattr(app.state, "services", None) is not None:
        yield
        return

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Starting StoreSync API", version="0.1.0")

    await init_db()
    app.state.services = build_services(settings)

    yield

    logger.info("Shutting down StoreSync API")
    await app.state.services.aclose()
    await close_db_pool()
    await close_db()


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(
        title="StoreSync API",
        description="Commerce bulk-export sync status and operator triggers",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    register_exception_handlers(app)

    app.mount("/metrics", make_asgi_app())

    app.include_router(health.router, tags=["Health"])
    app.include_router(sync.router)
    app.include_router(backfill.router)
    return app


app = create_app()
