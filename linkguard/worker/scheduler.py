"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from linkguard.config import settings
from linkguard.worker.tasks import task_runner

logger = logging.getLogger(__name__)


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Verification cache sweep every settings.cache_sweep_interval_minutes
    - Link guard re-verification every settings.link_guard_interval_hours

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()
    sweep_interval = max(1, int(settings.cache_sweep_interval_minutes))
    guard_interval = max(1, int(settings.link_guard_interval_hours))

    scheduler.add_job(
        task_runner.sweep_cache,
        IntervalTrigger(minutes=sweep_interval),
        id="cache_sweep",
        name="Delete expired verification cache entries",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        task_runner.run_link_guard,
        IntervalTrigger(hours=guard_interval),
        id="link_guard",
        name="Re-verify most recently checked links",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: cache sweep every %d minutes, link guard every %d hours (batch of %d)",
        sweep_interval,
        guard_interval,
        settings.link_guard_batch_size,
    )

    return scheduler
