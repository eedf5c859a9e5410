"""
Health check endpoints for monitoring and orchestration.
Provides liveness and readiness probes for the operator pod.
"""
from datetime import datetime

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from pgcluster.config.settings import settings

router = APIRouter()


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    Returns current status and version.
    """
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.
    Indicates whether the operator should be restarted.
    """
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}


@router.get("/ready")
async def readiness(request: Request):
    """
    Kubernetes readiness probe.
    The operator is ready once its reconciliation worker completed a pass.
    """
    worker = getattr(request.app.state, "worker", None)

    if worker is None or not worker.is_ready:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "reconciler": "running" if worker is not None and worker.running else "stopped",
                "last_pass": None,
                "timestamp": datetime.utcnow().isoformat(),
            },
        )

    return {
        "status": "ready",
        "reconciler": "running" if worker.running else "stopped",
        "last_pass": worker.last_pass_completed_at.isoformat(),
        "timestamp": datetime.utcnow().isoformat(),
    }
