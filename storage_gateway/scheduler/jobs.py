# storage_gateway/scheduler/jobs.py
"""
Background jobs for the storage gateway.
Prunes the metrics ring and purges expired catalog files.
"""
from storage_gateway.config import Settings
from storage_gateway.core.storage_service import StorageService
from storage_gateway.monitoring.logger import log
from storage_gateway.monitoring.metrics import get_metrics_collector
from storage_gateway.monitoring.slack_alerts import send_slack_alert
import traceback


async def prune_old_metrics(retention_days: int = None) -> int:
    if retention_days is None:
        retention_days = Settings().METRICS_RETENTION_DAYS
    try:
        removed = get_metrics_collector().clear_old_metrics(retention_days)
        log("INFO", f"Metrics pruning done, {removed} removed", module="jobs")
        return removed
    except Exception as exc:
        tb = traceback.format_exc()
        log("ERROR", f"Metrics pruning error: {exc}", module="jobs")
        await send_slack_alert(f"Metrics pruning error: {exc}", context={"traceback": tb}, severity="CRITICAL", module="jobs")
        return 0


async def purge_expired_files(service: StorageService = None):
    if service is None:
        service = StorageService()
    try:
        result = await service.purge_expired_files()
    except Exception as exc:
        tb = traceback.format_exc()
        log("ERROR", f"Expired file purge error: {exc}", module="jobs")
        await send_slack_alert(f"Expired file purge error: {exc}", context={"traceback": tb}, severity="CRITICAL", module="jobs")
        return None
    if result.total:
        log("INFO", f"Expired files purged: {result.successful} deleted, {result.failed} failed", module="jobs")
    if result.failed:
        failures = [r.file_id for r in result.results if not r.success]
        await send_slack_alert(
            f"Failed to purge {result.failed} expired file(s)",
            context={"file_ids": failures},
            severity="WARNING",
            module="jobs",
        )
    return result
