"""
Scheduler module: APScheduler setup for background cron jobs
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from gymmaster.tasks.jobs import (
    job_auto_close_visits,
    job_cleanup,
    job_expire_memberships,
    job_send_expiry_reminders,
)

logger = logging.getLogger(__name__)


def build_scheduler(database) -> BackgroundScheduler:
    """Register all cron jobs on a new scheduler bound to `database`"""
    scheduler = BackgroundScheduler()

    # Every hour on the hour
    scheduler.add_job(
        job_auto_close_visits,
        trigger=CronTrigger(minute=0),
        args=[database],
        id="auto_close_visits",
        name="Close stale visits",
        replace_existing=True,
    )

    scheduler.add_job(
        job_expire_memberships,
        trigger=CronTrigger(hour=0, minute=5),
        args=[database],
        id="expire_memberships",
        name="Expire ended memberships",
        replace_existing=True,
    )

    scheduler.add_job(
        job_send_expiry_reminders,
        trigger=CronTrigger(hour=8, minute=0),
        args=[database],
        id="send_expiry_reminders",
        name="Send membership expiry reminders",
        replace_existing=True,
    )

    scheduler.add_job(
        job_cleanup,
        trigger=CronTrigger(hour=3, minute=0),
        args=[database],
        id="cleanup",
        name="Audit retention and OTP cleanup",
        replace_existing=True,
    )

    return scheduler


def start_scheduler(database) -> BackgroundScheduler:
    scheduler = build_scheduler(database)
    scheduler.start()
    logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler) -> None:
    """Shutdown the scheduler gracefully."""
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
