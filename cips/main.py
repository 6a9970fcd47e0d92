"""CIPS FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cips.api.admin import router as admin_router
from cips.api.events import router as events_router
from cips.api.health import router as health_router
from cips.config import settings
from cips.engine.pipeline import Pipeline

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(pipeline: Pipeline | None = None, start_services: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.pipeline = pipeline or Pipeline.from_settings()
        if start_services:
            app.state.pipeline.start()
        logger.info("Pipeline started for %d account(s)", len(app.state.pipeline.accounts))
        try:
            yield
        finally:
            await app.state.pipeline.aclose()
            logger.info("Pipeline stopped")

    app = FastAPI(
        title="CIPS - Chat Ingestion & Persistence Service",
        description="Persists messaging-platform events, attachments, extracted text and org directory snapshots",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.include_router(health_router, tags=["Health"])
    app.include_router(events_router, prefix="/v1", tags=["Events"])
    app.include_router(admin_router, prefix="/v1/admin", tags=["Admin"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"service": "CIPS", "version": "0.1.0", "docs": "/docs"}

    return app


app = create_app()
