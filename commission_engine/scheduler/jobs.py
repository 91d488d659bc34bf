"""
Background job definitions using APScheduler.

Jobs:
- Monthly tier rollover (first day of the month, 00:00 UTC)
- Notification outbox delivery
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from commission_engine.config import settings
from commission_engine.db import get_db_context, get_session_factory
from commission_engine.services.money import utcnow
from commission_engine.services.notifier import dispatch_pending
from commission_engine.services.tiers import TierProgressionTracker

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone="UTC")


async def tier_rollover_job():
    """Close the finished period for every agent progression."""
    logger.debug("Running tier rollover job")
    try:
        async with get_db_context() as db:
            rolled = await TierProgressionTracker().rollover_periods(db, utcnow())
        if rolled:
            logger.info(f"Tier rollover job: rolled {rolled} progressions")
    except Exception as e:
        logger.error(f"Tier rollover job error: {e}")


async def outbox_job():
    """Deliver pending notifications to the webhook."""
    try:
        sent = await dispatch_pending(get_session_factory())
        if sent:
            logger.info(f"Outbox job: delivered {sent} notifications")
    except Exception as e:
        logger.error(f"Outbox job error: {e}")


def setup_scheduler():
    """
    Configure and add all scheduled jobs.

    Called during application startup.
    """
    scheduler.add_job(
        tier_rollover_job,
        trigger=CronTrigger(day=1, hour=0, minute=0, timezone="UTC"),
        id="tier_rollover",
        name="Monthly tier rollover",
        replace_existing=True,
    )

    scheduler.add_job(
        outbox_job,
        trigger=IntervalTrigger(seconds=settings.outbox_interval_seconds),
        id="notification_outbox",
        name="Deliver notification outbox",
        replace_existing=True,
    )

    logger.info("Scheduler configured with jobs")
