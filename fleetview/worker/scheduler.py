"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from fleetview.config import settings
from fleetview.worker.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


def setup_scheduler(orchestrator: Orchestrator, interval_minutes: int | None = None) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    The background refresh re-fetches both feeds on a fixed interval. Runs
    never overlap, and missed runs collapse into one.

    Returns:
        Configured scheduler instance (not started)
    """
    scheduler = AsyncIOScheduler()
    interval = max(1, int(interval_minutes or settings.refresh_interval_minutes))

    scheduler.add_job(
        orchestrator.refresh,
        IntervalTrigger(minutes=interval),
        id="fleet_refresh",
        name="Refresh node list and status table",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
        replace_existing=True,
    )

    logger.info(f"Scheduled fleet refresh every {interval} minutes")
    return scheduler
