"""
Background Task Scheduler

Runs the expired-region refresh on an interval (plus once shortly after
start) and a daily housekeeping sweep of expired regions.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..core.config import settings
from .place_refresh import PlaceRefreshJob, run_region_cleanup

logger = logging.getLogger(__name__)

scheduler: Optional[AsyncIOScheduler] = None
refresh_job: Optional[PlaceRefreshJob] = None


def start_scheduler(job: PlaceRefreshJob) -> Optional[AsyncIOScheduler]:
    """Start the background scheduler. Must be called from a running event loop."""
    global scheduler, refresh_job

    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled, not starting")
        return None

    if scheduler is not None and scheduler.running:
        logger.info("Scheduler already started, skipping")
        return scheduler

    logger.info("Starting background task scheduler")
    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    refresh_job = job

    # Refresh expired regions every few hours
    scheduler.add_job(
        job.refresh_expired_regions,
        trigger=IntervalTrigger(hours=settings.REFRESH_INTERVAL_HOURS),
        id="place_refresh",
        name="Refresh expired place regions",
        replace_existing=True,
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
    )

    # And once shortly after start
    scheduler.add_job(
        job.refresh_expired_regions,
        trigger=DateTrigger(
            run_date=datetime.now(timezone.utc) + timedelta(seconds=settings.REFRESH_STARTUP_DELAY_SECONDS)
        ),
        id="place_refresh_startup",
        name="Startup place refresh",
        replace_existing=True,
    )

    # Daily housekeeping sweep
    scheduler.add_job(
        run_region_cleanup,
        trigger=CronTrigger(hour=settings.CLEANUP_CRON_HOUR, minute=0, timezone=timezone.utc),
        kwargs={"session_factory": job.session_factory},
        id="region_cleanup_daily",
        name="Mark expired place regions",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    logger.info("Background scheduler started successfully")
    return scheduler


def stop_scheduler():
    """Stop the background task scheduler"""
    global scheduler
    if scheduler is None or not scheduler.running:
        return

    logger.info("Stopping background task scheduler")
    scheduler.shutdown(wait=False)
    scheduler = None


def trigger_refresh():
    """Queue an immediate refresh cycle (skipped if one is already running)"""
    if scheduler is None or refresh_job is None:
        raise RuntimeError("Scheduler is not running")

    logger.info("Manually triggering place refresh")
    scheduler.add_job(
        refresh_job.refresh_expired_regions,
        id="place_refresh_manual",
        name="Manual place refresh",
        replace_existing=True,
    )
