# storage_gateway/api/deps.py
"""
FastAPI dependencies for the core services. Tests override these.
"""
from typing import Optional

from storage_gateway.config import settings
from storage_gateway.core.storage_service import StorageService
from storage_gateway.monitoring.health import HealthCheckService
from storage_gateway.monitoring.metrics import PerformanceMetricsCollector, get_metrics_collector

_health_service: Optional[HealthCheckService] = None


def get_storage_service() -> StorageService:
    return StorageService(max_upload_size=settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024)


def get_health_service() -> HealthCheckService:
    # one instance so uptime counts from the first request
    global _health_service
    if _health_service is None:
        _health_service = HealthCheckService(
            memory_limit_mb=settings.MEMORY_LIMIT_MB,
            environment=settings.ENVIRONMENT,
        )
    return _health_service


def get_metrics() -> PerformanceMetricsCollector:
    return get_metrics_collector()
