"""
APScheduler jobs for background sync.

All times are in the market timezone (America/New_York by default):

  snapshot_sync     hourly 10:00-16:00, Mon-Fri (intraday prices)
  daily_sync        16:30 Mon-Fri, after the close (bars + indicators)
  <fundamentals>    nightly, staggered 15 minutes apart from 02:00
  news_sync         every 15 minutes

Every instance in the fleet runs the same schedule; the per-job lease
lock makes all but one of them return "skipped".
"""
import logging
from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from screener.config import get_settings
from screener.models.sync import utcnow
from screener.sync.orchestrator import SyncResult

logger = logging.getLogger(__name__)

FUNDAMENTAL_JOBS = ("financials", "ratios", "dividends", "splits", "details")
FUNDAMENTALS_STAGGER_MINUTES = 15
INITIAL_SYNC_MAX_AGE = timedelta(hours=1)


def build_scheduler(orchestrator) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        orchestrator: SyncOrchestrator the jobs call into.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler(timezone=settings.sync_timezone)

    scheduler.add_job(
        _run_job,
        trigger="cron",
        day_of_week="mon-fri",
        hour="10-16",
        minute=0,
        id="snapshot_sync",
        replace_existing=True,
        kwargs={"orchestrator": orchestrator, "job_type": "snapshot"},
    )
    scheduler.add_job(
        _run_job,
        trigger="cron",
        day_of_week="mon-fri",
        hour=settings.daily_sync_hour,
        minute=settings.daily_sync_minute,
        id="daily_sync",
        replace_existing=True,
        kwargs={"orchestrator": orchestrator, "job_type": "daily"},
    )
    for i, job_type in enumerate(FUNDAMENTAL_JOBS):
        offset = i * FUNDAMENTALS_STAGGER_MINUTES
        scheduler.add_job(
            _run_job,
            trigger="cron",
            hour=(settings.fundamentals_sync_hour + offset // 60) % 24,
            minute=offset % 60,
            id=f"{job_type}_sync",
            replace_existing=True,
            kwargs={"orchestrator": orchestrator, "job_type": job_type},
        )
    scheduler.add_job(
        _run_job,
        trigger="interval",
        minutes=settings.news_interval_minutes,
        id="news_sync",
        replace_existing=True,
        kwargs={"orchestrator": orchestrator, "job_type": "news"},
    )

    return scheduler


async def _run_job(orchestrator, job_type: str) -> None:
    """Scheduled job body. Never raises, so the scheduler stays alive."""
    try:
        result = await orchestrator.run(job_type)
    except Exception as exc:
        logger.error("Scheduled %s sync crashed: %s", job_type, exc)
        return
    if result.status == "failed":
        logger.error("Scheduled %s sync failed: %s", job_type, result.reason)
    else:
        logger.info("Scheduled %s sync %s: %s", job_type, result.status, result.as_dict())


async def initial_sync(orchestrator, max_age: timedelta = INITIAL_SYNC_MAX_AGE) -> Optional[SyncResult]:
    """
    Startup check: run a snapshot sync if the last completed one is
    missing or older than max_age. Returns the SyncResult, or None if
    the data was fresh.
    """
    try:
        last = orchestrator.last_sync_time("snapshot")
        if last is not None and utcnow() - last < max_age:
            logger.info("Snapshot data is fresh (last sync %s); skipping initial sync", last.isoformat())
            return None
        logger.info("Snapshot data is stale or missing; running initial sync")
        return await orchestrator.sync_snapshot()
    except Exception as exc:
        logger.error("Initial sync failed: %s", exc)
        return None
