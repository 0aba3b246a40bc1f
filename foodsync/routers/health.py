# foodsync/routers/health.py
# Health check endpoints for monitoring and load balancers
# Provides liveness and readiness probes

import time
import asyncio
import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from foodsync.db.base import AsyncSessionFactory, ping

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


class HealthStatus(BaseModel):
    """Health check response model."""
    status: str  # "healthy", "unhealthy"
    timestamp: float
    version: str = "1.0.0"
    checks: Dict[str, Dict[str, Any]] = {}


class ComponentHealth(BaseModel):
    """Individual component health."""
    status: str
    latency_ms: float = 0.0
    message: str = ""


def get_session_factory():
    return AsyncSessionFactory


async def check_database_health(session_factory) -> ComponentHealth:
    """Probe the snapshot store with a trivial query."""
    start = time.time()

    try:
        if not await ping(session_factory):
            return ComponentHealth(
                status="unhealthy",
                latency_ms=(time.time() - start) * 1000,
                message="Database query returned unexpected result"
            )

        return ComponentHealth(
            status="healthy",
            latency_ms=(time.time() - start) * 1000,
            message="Snapshot store reachable"
        )

    except asyncio.TimeoutError:
        return ComponentHealth(
            status="unhealthy",
            latency_ms=(time.time() - start) * 1000,
            message="Database connection timeout"
        )
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return ComponentHealth(
            status="unhealthy",
            latency_ms=(time.time() - start) * 1000,
            message=f"Database error: {type(e).__name__}"
        )


@router.get("/health", response_model=HealthStatus)
async def health_check(response: Response, session_factory=Depends(get_session_factory)):
    """
    Full health check endpoint.
    Returns status of all components.
    """
    checks = {}

    db_health = await check_database_health(session_factory)
    checks["database"] = {
        "status": db_health.status,
        "latency_ms": round(db_health.latency_ms, 2),
        "message": db_health.message
    }

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        overall_status = "healthy"
        response.status_code = status.HTTP_200_OK

    return HealthStatus(
        status=overall_status,
        timestamp=time.time(),
        checks=checks
    )


@router.get("/health/live")
async def liveness_probe():
    """
    Liveness probe.
    Returns 200 if the application is running.
    Does NOT check external dependencies.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_probe(response: Response, session_factory=Depends(get_session_factory)):
    """
    Readiness probe.
    Returns 200 only if the snapshot store answers.
    """
    db_health = await check_database_health(session_factory)

    if db_health.status == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not_ready",
            "reason": db_health.message
        }

    return {"status": "ready"}
