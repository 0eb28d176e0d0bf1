"""
Background scheduler for the ledger
Handles:
- Daily rollover at local midnight
- Retrying snapshot saves that failed
"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from timebank.services.ledger_service import TimeBankLedger

logger = logging.getLogger("timebank.scheduler")

# Create scheduler instance
scheduler = BackgroundScheduler()


def run_daily_rollover(ledger: TimeBankLedger) -> None:
    """Job: reset daily counters once the local date changes"""
    try:
        if ledger.rollover_if_needed():
            logger.info(f"Scheduled rollover done, new day {ledger.last_reset_date}")
    except Exception as e:
        logger.error(f"Scheduler Error (Rollover): {e}")


def run_persistence_retry(ledger: TimeBankLedger) -> None:
    """Job: save the snapshot again if the last save failed"""
    if not ledger.has_pending_save:
        return
    try:
        if ledger.flush():
            logger.info("Pending ledger snapshot saved")
        else:
            logger.warning(f"Ledger snapshot still not saved: {ledger.last_persistence_error}")
    except Exception as e:
        logger.error(f"Scheduler Error (Persistence retry): {e}")


def start_scheduler(ledger: TimeBankLedger, timezone: Optional[str] = None) -> None:
    """Start the background scheduler"""
    if scheduler.running:
        return

    # Midnight in the ledger's day-boundary zone (host local time if None)
    scheduler.add_job(
        run_daily_rollover,
        _midnight(timezone),
        args=[ledger],
        id='daily_rollover',
        replace_existing=True,
        misfire_grace_time=3600
    )

    # Check for failed saves every minute
    scheduler.add_job(
        run_persistence_retry,
        CronTrigger(minute='*'),
        args=[ledger],
        id='persistence_retry',
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduled jobs: {[job.id for job in scheduler.get_jobs()]}")


def stop_scheduler() -> None:
    """Stop the background scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped")


def reschedule_rollover(timezone: Optional[str] = None) -> None:
    """Move the rollover job to midnight in a new day-boundary zone"""
    if scheduler.get_job('daily_rollover') is None:
        return
    scheduler.reschedule_job('daily_rollover', trigger=_midnight(timezone))
    logger.info(f"Daily rollover rescheduled to midnight in {timezone or 'host local time'}")


def _midnight(timezone: Optional[str]) -> CronTrigger:
    return CronTrigger(hour=0, minute=0, timezone=timezone)
