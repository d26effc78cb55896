"""APScheduler integration for the weekly digest job.

Start and stop functions are designed to be called from the FastAPI lifespan.
"""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from roledigest.config import get_settings
from roledigest.repositories.factory import get_repository
from roledigest.services.search import ProviderGateway
from roledigest.services.weekly import run_weekly_digests

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def start_scheduler() -> AsyncIOScheduler:
    """Start the APScheduler with the weekly digest job.

    Returns:
        The running scheduler instance.
    """
    global _scheduler  # noqa: PLW0603

    settings = get_settings()
    schedule = settings.schedule
    tz = ZoneInfo(schedule.timezone)
    _scheduler = AsyncIOScheduler(timezone=tz)

    _scheduler.add_job(
        run_weekly_digest_job,
        trigger="cron",
        day_of_week=schedule.day_of_week,
        hour=schedule.hour,
        minute=schedule.minute,
        timezone=tz,
        id="weekly_digest",
        name="Weekly role model digest",
        replace_existing=True,
    )
    logger.info(
        "Scheduled weekly digest on %s at %02d:%02d (%s)",
        schedule.day_of_week,
        schedule.hour,
        schedule.minute,
        schedule.timezone,
    )

    _scheduler.start()
    logger.info("Scheduler started")
    return _scheduler


def stop_scheduler() -> None:
    """Stop the running scheduler gracefully."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
        _scheduler = None


async def run_weekly_digest_job() -> None:
    """Execute the weekly digest run as a scheduled job."""
    logger.info("Scheduled weekly digest triggered")
    try:
        settings = get_settings()
        result = await run_weekly_digests(
            get_repository(), ProviderGateway(settings), settings
        )
        logger.info("Scheduled weekly digest complete: %s", result)
    except Exception:
        logger.exception("Scheduled weekly digest failed")
