"""storage_gateway/api/admin/monitoring.py
Admin monitoring endpoints for performance metrics.
"""
from typing import Optional
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Query, HTTPException

from storage_gateway.api.deps import get_metrics
from storage_gateway.monitoring.metrics import PerformanceMetricsCollector

router = APIRouter(prefix="/admin/monitoring", tags=["admin", "monitoring"])


def _parse_iso_date(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    try:
        parsed = datetime.fromisoformat(s)
    except Exception:
        raise ValueError("Invalid ISO date format; use YYYY-MM-DD or full ISO timestamp")
    # metrics are stamped in UTC
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@router.get("/system")
async def system_metrics(metrics: PerformanceMetricsCollector = Depends(get_metrics)):
    """Totals over the last 24 hours plus memory and uptime."""
    return {"status": "success", "data": metrics.system_metrics()}


@router.get("/providers")
async def provider_performance(metrics: PerformanceMetricsCollector = Depends(get_metrics)):
    return {"status": "success", "data": metrics.provider_performance()}


@router.get("/hourly")
async def hourly_activity(metrics: PerformanceMetricsCollector = Depends(get_metrics)):
    return {"status": "success", "data": metrics.hourly_activity_summary()}


@router.get("/metrics")
async def list_metrics(
    start_date: Optional[str] = Query(None, description="ISO start date/time filter (inclusive)"),
    end_date: Optional[str] = Query(None, description="ISO end date/time filter (inclusive)"),
    operation: Optional[str] = Query(None),
    provider: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    metrics: PerformanceMetricsCollector = Depends(get_metrics),
):
    """Return raw metrics, newest first, optionally filtered by date range, operation or provider."""
    try:
        sdt = _parse_iso_date(start_date)
        edt = _parse_iso_date(end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    rows = metrics.get_metrics(start=sdt, end=edt, operation=operation, provider=provider)
    rows = sorted(rows, key=lambda m: m.timestamp, reverse=True)[:limit]
    return {"status": "success", "data": [m.to_dict() for m in rows]}
