"""
Scheduled Jobs Service
Background reconciliation sweep and daily usage-period rollover
"""
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import config

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """
    Get or create the background scheduler instance

    Returns:
        BackgroundScheduler instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Only one instance at a time
                'misfire_grace_time': 3600  # 1 hour grace period
            }
        )

    return _scheduler


def start_scheduler():
    """
    Start the background scheduler and register all jobs
    """
    scheduler = get_scheduler()

    if not scheduler.running:
        scheduler.add_job(
            func=run_reconciliation_job,
            trigger=IntervalTrigger(minutes=config.RECONCILIATION_INTERVAL_MINUTES),
            id='reconciliation_sweep',
            name='Subscriber reconciliation sweep',
            replace_existing=True
        )
        logger.info(f"Registered reconciliation sweep (every {config.RECONCILIATION_INTERVAL_MINUTES} minutes)")

        scheduler.add_job(
            func=run_usage_rollover_job,
            trigger=CronTrigger(hour=config.USAGE_ROLLOVER_HOUR, minute=0),
            id='usage_period_rollover',
            name='Usage period rollover',
            replace_existing=True
        )
        logger.info(f"Registered usage period rollover (daily at {config.USAGE_ROLLOVER_HOUR:02d}:00)")

        scheduler.start()
        logger.info("Background scheduler started")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """
    Stop the background scheduler
    """
    scheduler = get_scheduler()

    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")


def run_reconciliation_job(session_factory=None, gateway=None):
    """
    Reconciliation job - re-derives every subscribed account from the provider
    """
    from ..db.engine import SessionLocal
    from .billing_gateway import get_billing_gateway
    from .reconciliation import ReconciliationSweeper

    logger.info("=" * 60)
    logger.info("Starting scheduled reconciliation sweep")
    logger.info("=" * 60)

    db = (session_factory or SessionLocal)()
    try:
        report = ReconciliationSweeper(db, gateway or get_billing_gateway()).run()
        logger.info(
            f"Reconciliation complete: {report.checked} checked, {report.updated} updated, "
            f"{report.failed} failed"
        )
        return report
    except Exception as e:
        logger.error(f"Reconciliation job failed: {e}", exc_info=True)
        raise
    finally:
        db.close()


def run_usage_rollover_job(session_factory=None, gateway=None, now=None):
    """
    Usage rollover job - advances accounts whose next reset date has passed

    Trial windows roll forward locally; subscribed accounts are re-synced
    so their new period comes from the provider.
    """
    from ..db.base import utcnow
    from ..db.engine import SessionLocal
    from ..db.models import SubscriberRecord
    from ..logging_config import redact_email
    from .billing_gateway import get_billing_gateway
    from .billing_sync import BillingSyncService
    from .usage_service import UsageService

    logger.info("=" * 60)
    logger.info("Starting scheduled usage period rollover")
    logger.info("=" * 60)

    now = now or utcnow()
    db = (session_factory or SessionLocal)()
    stats = {"rolled": 0, "synced": 0, "errors": 0}

    try:
        due = db.query(SubscriberRecord).filter(
            SubscriberRecord.next_reset_date != None,  # noqa: E711
            SubscriberRecord.next_reset_date <= now
        ).all()
        logger.info(f"Found {len(due)} accounts past their reset date")

        usage = UsageService(db)
        sync = None
        for record in due:
            email = record.email
            try:
                if record.subscribed:
                    if sync is None:
                        sync = BillingSyncService(db, gateway or get_billing_gateway())
                    sync.sync_account(email)
                    stats["synced"] += 1
                elif usage.roll_forward(record, now=now):
                    stats["rolled"] += 1
                # Open the new period's counter; the record reloads after commit
                usage.current_counter(record)
            except Exception as e:
                db.rollback()
                stats["errors"] += 1
                logger.error(f"Usage rollover failed for {redact_email(email)}: {e}")

        logger.info("=" * 60)
        logger.info("Usage rollover complete")
        logger.info(f"  Trial windows rolled: {stats['rolled']}")
        logger.info(f"  Subscriptions synced: {stats['synced']}")
        logger.info(f"  Errors: {stats['errors']}")
        logger.info("=" * 60)
        return stats
    finally:
        db.close()
