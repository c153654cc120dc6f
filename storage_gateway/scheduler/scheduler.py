# storage_gateway/scheduler/scheduler.py
"""
APScheduler wiring for the storage gateway background jobs.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from storage_gateway.config import settings
from storage_gateway.monitoring.logger import log
from storage_gateway.scheduler.jobs import prune_old_metrics, purge_expired_files

scheduler: AsyncIOScheduler = None


def build_scheduler() -> AsyncIOScheduler:
    engine = AsyncIOScheduler()
    engine.add_job(prune_old_metrics, "cron", hour=settings.METRICS_PRUNE_HOUR, id="prune_old_metrics")
    engine.add_job(
        purge_expired_files,
        "interval",
        minutes=settings.EXPIRED_FILE_PURGE_MINUTES,
        id="purge_expired_files",
        max_instances=1,
        coalesce=True,
    )
    return engine


async def start_scheduler(app):
    global scheduler
    scheduler = build_scheduler()
    scheduler.start()
    app.state.scheduler = scheduler
    log("INFO", "Scheduler started", module="scheduler", jobs=[job.id for job in scheduler.get_jobs()])


async def shutdown_scheduler(app):
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None
        log("INFO", "Scheduler shutdown", module="scheduler")
