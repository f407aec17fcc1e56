# Main application entry point

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from memorygrove.api.middleware import RequestTrackingMiddleware
from memorygrove.api.routes import router
from memorygrove.catalog.database import (
    check_database_connection,
    create_db_engine,
    create_session_factory,
    init_db,
)
from memorygrove.common.logging_config import setup_logging
from memorygrove.common.metrics import get_metrics, get_metrics_content_type
from memorygrove.config.settings import Settings, get_settings
from memorygrove.media.service import MediaIngestService
from memorygrove.queue import create_job_queue
from memorygrove.queue.processors import MediaJobProcessor
from memorygrove.storage import FilesystemStorage

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API application; the lifespan owns the job queue."""
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan - startup and shutdown."""
        engine = create_db_engine(settings=settings)
        init_db(engine)
        session_factory = create_session_factory(engine)

        service = MediaIngestService.from_settings(
            session_factory,
            FilesystemStorage(settings.media_path),
            settings=settings,
        )
        job_queue = create_job_queue(MediaJobProcessor(service), settings)
        job_queue.start()

        app.state.engine = engine
        app.state.job_queue = job_queue
        logger.info(f"Job queue started with concurrency {job_queue.concurrency}")

        yield

        logger.info("Stopping job queue...")
        job_queue.stop()
        if service.geocoder is not None:
            service.geocoder.close()
        app.state.job_queue = None
        engine.dispose()
        logger.info("Job queue stopped")

    app = FastAPI(
        title="MemoryGrove Media Pipeline",
        description="Background ingestion of photos into memories",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(RequestTrackingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    def health():
        """Health check with database connectivity."""
        engine = getattr(app.state, "engine", None)
        db_healthy = engine is not None and check_database_connection(engine)
        return {
            "status": "healthy" if db_healthy else "degraded",
            "database": "connected" if db_healthy else "disconnected",
        }

    @app.get("/live")
    def liveness():
        """Liveness check endpoint"""
        return {"status": "alive"}

    if settings.metrics_enabled:
        @app.get("/metrics")
        def metrics():
            """Prometheus scrape endpoint"""
            return Response(content=get_metrics(), media_type=get_metrics_content_type())

    return app


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.app_host,
        port=settings.app_port,
    )
