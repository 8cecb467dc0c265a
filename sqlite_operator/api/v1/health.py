"""
Health check endpoints for the operator pod.
Provides liveness, readiness, and startup probes.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from sqlite_operator.config.settings import settings

router = APIRouter()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dispatcher_running(request: Request) -> bool:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return bool(dispatcher and dispatcher.running)


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
        "timestamp": _timestamp(),
    }


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.
    Indicates whether the operator should be restarted.
    """
    return {"status": "alive", "timestamp": _timestamp()}


@router.get("/ready")
async def readiness(request: Request):
    """
    Kubernetes readiness probe.
    Ready once the dispatcher is watching and reconciling.
    """
    if not _dispatcher_running(request):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "dispatcher": "stopped",
                "timestamp": _timestamp(),
            },
        )

    return {
        "status": "ready",
        "dispatcher": "running",
        "timestamp": _timestamp(),
    }


@router.get("/startup")
async def startup(request: Request):
    """
    Kubernetes startup probe.
    Indicates whether the operator has started successfully.
    """
    if not _dispatcher_running(request):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "starting", "timestamp": _timestamp()},
        )
    return {"status": "started", "timestamp": _timestamp()}
