# storage_gateway/monitoring/metrics.py
"""
In-process performance metrics.

A bounded ring of recent operation timings (oldest entries are evicted)
shared by request handlers and the health checks. Writers append under a
lock; readers take a snapshot under the same lock before iterating, so a
reader never sees a half-evicted buffer.
"""
import threading
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import psutil

from storage_gateway.monitoring.logger import log

DEFAULT_MAX_ENTRIES = 10000
SLOW_OPERATION_MS = 5000
WINDOW = timedelta(hours=24)
HOURLY_OPERATIONS = ("upload", "download", "delete", "list", "bulk-upload", "bulk-delete")

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PerformanceMetric:
    operation: str
    duration_ms: float
    success: bool
    provider: Optional[str] = None
    file_size: Optional[int] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


def classify(success_rate: float, mean_ms: float, total: int) -> str:
    """Health verdict for a provider's recent operations.

    Zero operations count as healthy.
    """
    if total == 0:
        return HEALTHY
    if success_rate < 50 or mean_ms > 10000:
        return UNHEALTHY
    if success_rate >= 80 and mean_ms < 5000:
        return HEALTHY
    return DEGRADED


def summarize(metrics: List[PerformanceMetric]) -> Dict[str, Any]:
    """Unrounded totals; callers round only what they display."""
    total = len(metrics)
    if not total:
        return {"total": 0, "mean_ms": 0.0, "success_rate": 0.0}
    successful = sum(1 for m in metrics if m.success)
    return {
        "total": total,
        "mean_ms": sum(m.duration_ms for m in metrics) / total,
        "success_rate": successful / total * 100,
    }


class PerformanceMetricsCollector:
    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, providers: Optional[Iterable[str]] = None):
        self._metrics: deque = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._providers = list(providers) if providers is not None else None
        self.started_at = time.monotonic()

    @property
    def max_entries(self) -> int:
        return self._metrics.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    def set_providers(self, providers: Iterable[str]) -> None:
        self._providers = list(providers)

    def _provider_names(self) -> List[str]:
        if self._providers is not None:
            return self._providers
        from storage_gateway.providers.registry import list_providers

        return list_providers()

    def record(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        provider: Optional[str] = None,
        file_size: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        """Append one measurement. Never raises."""
        try:
            metric = PerformanceMetric(
                operation=operation,
                duration_ms=float(duration_ms),
                success=bool(success),
                provider=provider,
                file_size=file_size,
                error=error,
            )
            with self._lock:
                self._metrics.append(metric)
            if metric.duration_ms > SLOW_OPERATION_MS:
                log(
                    "WARNING",
                    f"Slow operation detected: {operation} took {round(metric.duration_ms)}ms",
                    module="metrics",
                    provider=provider,
                    operation=operation,
                    duration_ms=metric.duration_ms,
                )
        except Exception as exc:
            log("ERROR", f"Failed to record metric: {exc}", module="metrics")

    def add(self, metric: PerformanceMetric) -> None:
        with self._lock:
            self._metrics.append(metric)

    @asynccontextmanager
    async def track(self, operation: str, provider: Optional[str] = None, file_size: Optional[int] = None):
        """Time the wrapped block and record it, whether it succeeds or raises."""
        started = time.perf_counter()
        try:
            yield
        except BaseException as exc:
            self.record(operation, (time.perf_counter() - started) * 1000, False, provider, file_size, str(exc))
            raise
        self.record(operation, (time.perf_counter() - started) * 1000, True, provider, file_size)

    def snapshot(self) -> List[PerformanceMetric]:
        with self._lock:
            return list(self._metrics)

    def get_metrics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        operation: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> List[PerformanceMetric]:
        metrics = self.snapshot()
        if start:
            metrics = [m for m in metrics if m.timestamp >= start]
        if end:
            metrics = [m for m in metrics if m.timestamp <= end]
        if operation:
            metrics = [m for m in metrics if m.operation == operation]
        if provider:
            metrics = [m for m in metrics if m.provider == provider]
        return metrics

    def provider_performance(self) -> List[Dict[str, Any]]:
        since = _now() - WINDOW
        recent = self.get_metrics(start=since)
        performance = []
        for provider in self._provider_names():
            summary = summarize([m for m in recent if m.provider == provider])
            performance.append(
                {
                    "provider": provider,
                    "average_response_time_ms": round(summary["mean_ms"]),
                    "success_rate": round(summary["success_rate"], 2),
                    "total_operations": summary["total"],
                    "last_checked": _now().isoformat(),
                    "status": classify(summary["success_rate"], summary["mean_ms"], summary["total"]),
                }
            )
        return performance

    def system_metrics(self) -> Dict[str, Any]:
        summary = summarize(self.get_metrics(start=_now() - WINDOW))
        return {
            "total_requests": summary["total"],
            "average_response_time_ms": round(summary["mean_ms"]),
            "success_rate": round(summary["success_rate"], 2),
            "memory": memory_snapshot(),
            "uptime_seconds": int(time.monotonic() - self.started_at),
            "timestamp": _now().isoformat(),
        }

    def hourly_activity_summary(self) -> Dict[str, Any]:
        hourly = self.get_metrics(start=_now() - timedelta(hours=1))
        operations = []
        for name in HOURLY_OPERATIONS:
            summary = summarize([m for m in hourly if name in m.operation])
            operations.append(
                {
                    "operation": name,
                    "count": summary["total"],
                    "average_time_ms": round(summary["mean_ms"]),
                    "success_rate": round(summary["success_rate"], 2),
                }
            )
        return {
            "period": "last_hour",
            "timestamp": _now().isoformat(),
            "operations": operations,
            "total_operations": len(hourly),
        }

    def clear_old_metrics(self, older_than_days: int = 7) -> int:
        cutoff = _now() - timedelta(days=older_than_days)
        with self._lock:
            kept = [m for m in self._metrics if m.timestamp >= cutoff]
            removed = len(self._metrics) - len(kept)
            self._metrics.clear()
            self._metrics.extend(kept)
        if removed:
            log("INFO", f"Cleaned up {removed} metrics older than {older_than_days} days", module="metrics")
        return removed


def memory_snapshot(limit_mb: Optional[float] = None) -> Dict[str, Any]:
    """Process RSS against `limit_mb`, or against total system memory."""
    rss_mb = psutil.Process().memory_info().rss / 1024 / 1024
    total_mb = limit_mb or psutil.virtual_memory().total / 1024 / 1024
    return {
        "used_mb": round(rss_mb, 2),
        "total_mb": round(total_mb, 2),
        "percentage": round(rss_mb / total_mb * 100, 2) if total_mb else 0.0,
    }


_collector: Optional[PerformanceMetricsCollector] = None


def get_metrics_collector() -> PerformanceMetricsCollector:
    """Process-wide collector shared by the service, health checks and jobs."""
    global _collector
    if _collector is None:
        from storage_gateway.config import settings

        _collector = PerformanceMetricsCollector(max_entries=settings.METRICS_MAX_ENTRIES)
    return _collector
