# storage_gateway/api/admin/health.py
"""
Health endpoints for shallow and deep readiness checks.
"""
from fastapi import APIRouter, Depends
from starlette.status import HTTP_200_OK

from storage_gateway import __version__
from storage_gateway.api.deps import get_health_service
from storage_gateway.monitoring.health import HealthCheckService

router = APIRouter(prefix="/admin", tags=["health"])


@router.get("/health", status_code=HTTP_200_OK)
async def health() -> dict:
    """Shallow health endpoint."""
    return {"status": "ok", "version": __version__}


@router.get("/health/deep", status_code=HTTP_200_OK)
async def health_deep(service: HealthCheckService = Depends(get_health_service)) -> dict:
    """
    Deep health endpoint.

    Checks database latency, memory, uptime, a live listing on every
    registered provider and the recent performance metrics. Answers 503 with
    the full report when any check errors.
    """
    return await service.check_health()


@router.get("/ready", status_code=HTTP_200_OK)
async def ready(service: HealthCheckService = Depends(get_health_service)) -> dict:
    """Database-only readiness for deployment probes."""
    return await service.check_readiness()
