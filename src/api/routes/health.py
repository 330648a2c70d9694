"""
Health Check Endpoints.

Provides health status for the API and its dependencies.
"""
import time
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..models import HealthStatus
from ..deps import Services, get_services
from ... import __version__

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])
status_router = APIRouter(tags=["Health"])


def collect_service_status(services: Services) -> tuple[bool, dict]:
    """Check the database and Redis. Returns (healthy, per-service status)."""
    statuses = {}
    healthy = True

    # Check database
    try:
        start = time.time()
        services.db.ping()
        latency = (time.time() - start) * 1000
        statuses["database"] = f"healthy ({latency:.1f}ms)"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        statuses["database"] = "unhealthy"
        healthy = False

    # Check Redis
    try:
        if services.redis_client is not None:
            start = time.time()
            services.redis_client.ping()
            latency = (time.time() - start) * 1000
            statuses["redis"] = f"healthy ({latency:.1f}ms)"
        else:
            statuses["redis"] = "fallback_mode (in-memory)"
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        statuses["redis"] = "unhealthy"
        # Redis failure is not critical - we have in-memory fallback

    return healthy, statuses


@router.get("", response_model=HealthStatus)
def health_check(services: Services = Depends(get_services)):
    """
    Basic health check endpoint.

    Returns overall system status.
    """
    healthy, statuses = collect_service_status(services)
    return HealthStatus(
        status="healthy" if healthy else "unhealthy",
        version=__version__,
        services=statuses,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the service is running.
    """
    return {"status": "alive"}


@router.get("/ready")
def readiness(services: Services = Depends(get_services)):
    """
    Kubernetes readiness probe.

    Returns 200 if the database is reachable, 503 otherwise.
    """
    try:
        services.db.ping()
        return {"status": "ready"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready"})


@status_router.get("/status")
async def public_status():
    """Public API status."""
    return {"status": "ok", "version": __version__}
