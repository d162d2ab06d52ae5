#!/usr/bin/env python
"""
Reconciliation Script - Subscriber Drift Repair
Re-derives subscriber records from the billing provider and fixes drift

Usage:
    python scripts/reconcile_subscriptions.py [--email user@example.com] [--dry-run]

Schedule:
    The API runs the same sweep in-process when ENABLE_SCHEDULER=true.
    Without it, run hourly via cron:
    0 * * * * cd /app && python scripts/reconcile_subscriptions.py >> /var/log/reconcile.log 2>&1
"""
import sys
import logging

from grading_billing.db.engine import SessionLocal
from grading_billing.logging_config import redact_email
from grading_billing.services.billing_gateway import get_billing_gateway
from grading_billing.services.reconciliation import ReconciliationSweeper

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def reconcile(email: str = None, dry_run: bool = False):
    """
    Run one sweep

    Args:
        email: Limit the sweep to one account
        dry_run: If True, only report drift

    Returns:
        SweepReport
    """
    db = SessionLocal()
    try:
        sweeper = ReconciliationSweeper(db, get_billing_gateway(), dry_run=dry_run)
        return sweeper.run(email)
    finally:
        db.close()


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Reconcile subscriber records with the billing provider")
    parser.add_argument(
        '--email',
        help='Reconcile a single account instead of every subscribed account'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Dry run mode (report drift, no writes)'
    )

    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("SUBSCRIBER RECONCILIATION")
    logger.info("=" * 60)

    report = reconcile(email=args.email, dry_run=args.dry_run)

    logger.info("=" * 60)
    logger.info("RECONCILIATION SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")
    logger.info(f"Accounts checked: {report.checked}")
    logger.info(f"Accounts updated: {report.updated}")
    logger.info(f"Accounts unchanged: {report.unchanged}")
    logger.info(f"Accounts failed: {report.failed}")

    for email, fields in report.changes.items():
        logger.info(f"  ~ {redact_email(email)}: {', '.join(fields)}")
    for email, error in report.errors.items():
        logger.error(f"  - {redact_email(email)}: {error}")

    logger.info("=" * 60)

    sys.exit(1 if report.failed else 0)


if __name__ == "__main__":
    main()
