# storage_gateway/monitoring/health.py
"""
Deep health aggregation.

Runs the database, memory, uptime, provider and performance checks
concurrently and folds them into one verdict: `error` if any check errored,
else `warning` if any warned, else `ok`. An `error` verdict is raised as
`ServiceUnavailableError` so the HTTP layer answers 503.
"""
import asyncio
import socket
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from storage_gateway.errors import ServiceUnavailableError
from storage_gateway.monitoring.logger import log
from storage_gateway.monitoring.metrics import (
    DEGRADED,
    UNHEALTHY,
    WINDOW,
    PerformanceMetricsCollector,
    get_metrics_collector,
    memory_snapshot,
    summarize,
)

OK = "ok"
WARNING = "warning"
ERROR = "error"

DB_WARNING_MS = 500
PROVIDER_WARNING_MS = 3000
PERFORMANCE_WARNING_MS = 3000
MEMORY_THRESHOLD = 0.8


async def _default_db_probe() -> None:
    from storage_gateway.db.session import ping_database

    await ping_database()


def _elapsed_ms(started: float) -> int:
    return round((time.perf_counter() - started) * 1000)


class HealthCheckService:
    def __init__(
        self,
        registry=None,
        metrics: Optional[PerformanceMetricsCollector] = None,
        db_probe: Optional[Callable[[], Awaitable[None]]] = None,
        memory_probe: Optional[Callable[[], Dict[str, Any]]] = None,
        memory_limit_mb: Optional[float] = None,
        environment: Optional[str] = None,
    ):
        if registry is None:
            from storage_gateway.providers.registry import default_registry

            registry = default_registry
        self.registry = registry
        self.metrics = metrics if metrics is not None else get_metrics_collector()
        self.db_probe = db_probe if db_probe is not None else _default_db_probe
        self.memory_limit_mb = memory_limit_mb
        self.memory_probe = memory_probe or (lambda: memory_snapshot(self.memory_limit_mb))
        self.environment = environment
        self.started_at = time.monotonic()

    async def check_database(self) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            await self.db_probe()
        except Exception as exc:
            log("ERROR", f"Database health check failed: {exc}", module="health")
            return {"status": ERROR, "error": str(exc)}
        response_ms = _elapsed_ms(started)
        return {"status": OK if response_ms <= DB_WARNING_MS else WARNING, "response_time_ms": response_ms}

    async def check_memory(self) -> Dict[str, Any]:
        try:
            snapshot = self.memory_probe()
        except Exception as exc:
            log("ERROR", f"Memory health check failed: {exc}", module="health")
            return {"status": ERROR, "error": str(exc)}
        threshold = snapshot["total_mb"] * MEMORY_THRESHOLD
        return {
            "status": OK if snapshot["used_mb"] < threshold else WARNING,
            "used_mb": snapshot["used_mb"],
            "threshold_mb": round(threshold, 2),
            "total_mb": snapshot["total_mb"],
            "percent_used": snapshot.get("percentage"),
        }

    async def check_uptime(self) -> Dict[str, Any]:
        return {"status": OK, "value": int(time.monotonic() - self.started_at)}

    async def _probe_provider(self, name: str) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            provider = self.registry.resolve(name)
            await provider.list_files()
        except Exception as exc:
            return {"provider": name, "status": ERROR, "error": str(exc)}
        response_ms = _elapsed_ms(started)
        return {
            "provider": name,
            "status": OK if response_ms <= PROVIDER_WARNING_MS else WARNING,
            "response_time_ms": response_ms,
        }

    async def check_providers(self) -> Dict[str, Any]:
        names = self.registry.names()
        results = await asyncio.gather(*(self._probe_provider(n) for n in names))
        healthy = sum(1 for r in results if r["status"] == OK)
        errored = sum(1 for r in results if r["status"] == ERROR)
        if healthy == len(results):
            status = OK
        elif errored > len(results) / 2:
            status = ERROR
        else:
            status = WARNING
        return {"status": status, "healthy": healthy, "total": len(results), "providers": list(results)}

    async def check_performance(self) -> Dict[str, Any]:
        system = self.metrics.system_metrics()
        performance = self.metrics.provider_performance()
        unhealthy = [p["provider"] for p in performance if p["status"] == UNHEALTHY]
        degraded = [p["provider"] for p in performance if p["status"] == DEGRADED]
        # thresholds apply to unrounded figures
        totals = summarize(self.metrics.get_metrics(start=datetime.now(timezone.utc) - WINDOW))
        has_traffic = totals["total"] > 0

        status = OK
        if unhealthy or (has_traffic and totals["success_rate"] < 80):
            status = ERROR
        elif degraded or totals["mean_ms"] > PERFORMANCE_WARNING_MS:
            status = WARNING
        return {
            "status": status,
            "system_metrics": {
                "average_response_time_ms": system["average_response_time_ms"],
                "success_rate": system["success_rate"],
                "total_requests": system["total_requests"],
            },
            "provider_summary": {
                "total": len(performance),
                "unhealthy": unhealthy,
                "degraded": degraded,
            },
        }

    async def check_health(self) -> Dict[str, Any]:
        database, memory, uptime, providers, performance = await asyncio.gather(
            self.check_database(),
            self.check_memory(),
            self.check_uptime(),
            self.check_providers(),
            self.check_performance(),
        )
        checks = {
            "database": database,
            "memory": memory,
            "uptime": uptime,
            "providers": providers,
            "performance": performance,
        }
        statuses = [c["status"] for c in checks.values()]
        overall = ERROR if ERROR in statuses else WARNING if WARNING in statuses else OK
        payload = {
            "status": overall,
            "info": checks,
            "error": {name: c.get("error", c["status"]) for name, c in checks.items() if c["status"] == ERROR},
            "details": {
                "environment": self.environment,
                "hostname": socket.gethostname(),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
        if overall == ERROR:
            log("ERROR", "Deep health check failed", module="health", failed=list(payload["error"]))
            raise ServiceUnavailableError(payload)
        return payload

    async def check_readiness(self) -> Dict[str, Any]:
        database = await self.check_database()
        if database["status"] == ERROR:
            raise ServiceUnavailableError({"status": ERROR, "error": {"database": database.get("error")}})
        return {
            "status": OK,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": int(time.monotonic() - self.started_at),
        }
