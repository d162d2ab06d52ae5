"""
Reconciliation Sweeper
Re-derives subscribed accounts from the provider and repairs drift left by
missed or failed webhooks
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..db.models import SubscriberRecord
from ..logging_config import redact_email
from .billing_gateway import BillingGateway
from .billing_sync import BillingSyncService
from .retry import RequestContext, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    checked: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    changes: Dict[str, List[str]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "changes": self.changes,
            "errors": self.errors,
        }


class ReconciliationSweeper:
    """Compare-then-write sweep over subscriber records"""

    def __init__(
        self,
        db: Session,
        gateway: BillingGateway,
        policy: Optional[RetryPolicy] = None,
        dry_run: bool = False,
    ):
        self.db = db
        self.sync = BillingSyncService(db, gateway)
        self.policy = policy or RetryPolicy.from_config()
        self.dry_run = dry_run

    def targets(self, email: Optional[str] = None) -> List[str]:
        query = self.db.query(SubscriberRecord.email)
        if email:
            query = query.filter(SubscriberRecord.email == email)
        else:
            query = query.filter(SubscriberRecord.subscribed.is_(True))
        return [row.email for row in query.order_by(SubscriberRecord.id).all()]

    def run(self, email: Optional[str] = None) -> SweepReport:
        """
        Sweep one account, or every subscribed account

        Each account is independent: a failure is logged and counted, and
        the sweep moves on.
        """
        report = SweepReport()
        for target in self.targets(email):
            report.checked += 1
            try:
                changed = self._reconcile(target)
            except Exception as e:
                self.db.rollback()
                report.failed += 1
                report.errors[target] = str(e)
                logger.error(f"Reconciliation failed for {redact_email(target)}: {e}", exc_info=True)
                continue

            if changed:
                report.updated += 1
                report.changes[target] = changed
            else:
                report.unchanged += 1

        logger.info(
            f"Reconciliation sweep: checked={report.checked} updated={report.updated} "
            f"unchanged={report.unchanged} failed={report.failed}"
            + (" (dry run)" if self.dry_run else "")
        )
        return report

    def _reconcile(self, email: str) -> List[str]:
        record = self.sync.get_record(email)
        context = RequestContext()
        state = call_with_retry(
            lambda: self.sync.derive_state(email, record=record),
            self.policy,
            context,
            description=f"reconcile {redact_email(email)}",
        )

        changed = state.changed_fields(record)
        if not changed:
            return []

        logger.info(f"Drift for {redact_email(email)}: {', '.join(changed)}")
        if not self.dry_run:
            self.sync.write_state(state)
        return changed
