"""
Main FastAPI application entry point.
Runs the PostgreSQL cluster reconciler and exposes health and metrics endpoints.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from pgcluster.api.v1 import health
from pgcluster.config.logging import configure_logging, get_logger
from pgcluster.config.settings import settings
from pgcluster.services.kubernetes_service import KubernetesService
from pgcluster.services.status_prober import StatusProber
from pgcluster.workers.reconciliation_worker import ReconciliationWorker

# Configure logging
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.
    Starts the reconciliation worker on startup and stops it on shutdown.
    """
    logger.info(
        "application_starting",
        version=settings.app_version,
        environment=settings.environment,
    )

    kubernetes = KubernetesService()
    await kubernetes.initialize()

    worker = ReconciliationWorker.from_settings(kubernetes, StatusProber())
    app.state.worker = worker
    worker_task = asyncio.create_task(worker.start())
    logger.info("application_started")

    try:
        yield
    finally:
        logger.info("application_shutting_down")
        await worker.stop()
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
        await kubernetes.close()
        logger.info("application_stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/health", tags=["health"])

Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("pgcluster.main:app", host="0.0.0.0", port=8000)
