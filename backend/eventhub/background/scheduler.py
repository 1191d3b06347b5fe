"""
Background scheduler for reminder delivery.

Uses APScheduler to poll for due reminders on a fixed interval and hand them to
the notification dispatcher.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from eventhub.config import get_settings
from eventhub.core.dependencies import get_event_engine

logger = logging.getLogger(__name__)

REMINDER_JOB_ID = "due_reminders_job"

# Singleton scheduler instance
scheduler = AsyncIOScheduler(timezone="UTC")


async def run_due_reminders():
    """Callback for the APScheduler reminder job."""
    try:
        engine = get_event_engine()
        await engine.reminders.process_due_reminders()
    except Exception as e:
        logger.error(f"❌ Reminder poll failed: {e}", exc_info=True)


def init_scheduler():
    """Register the reminder poll and start the scheduler.

    Called during FastAPI lifespan startup.
    """
    settings = get_settings()
    scheduler.add_job(
        func=run_due_reminders,
        trigger=IntervalTrigger(seconds=settings.REMINDER_POLL_INTERVAL_SECONDS),
        id=REMINDER_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()

    for job in scheduler.get_jobs():
        logger.info(f"📅 Scheduler started: {job.id} next run at {job.next_run_time}")


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("📅 Scheduler shut down.")
