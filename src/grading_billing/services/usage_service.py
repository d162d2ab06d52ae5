"""
Usage Service
Per-period submission counters, period rollover and check-before-spend
"""
import logging
from datetime import datetime
from typing import Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.base import utcnow
from ..db.models import SubscriberRecord, UsageCounter
from ..errors import AccountNotFoundError, AccountPausedError, PlanLimitExceededError
from ..logging_config import redact_email
from .purchase_service import PurchaseService
from .quota import UsageSummary, calculate_usage
from .tier_resolver import TierResolver, get_tier_resolver

logger = logging.getLogger(__name__)


def trial_window(anchor: datetime, now: datetime) -> Tuple[datetime, datetime]:
    """
    Monthly window containing `now`, anchored on `anchor`

    Windows are computed from the anchor each time (anchor + k months) so
    month-end anchors do not drift. Returns (start, end) with start <= now < end.
    """
    if now < anchor:
        return anchor, anchor + relativedelta(months=1)

    months = (now.year - anchor.year) * 12 + (now.month - anchor.month)
    start = anchor + relativedelta(months=months)
    if start > now:
        months -= 1
        start = anchor + relativedelta(months=months)
    end = anchor + relativedelta(months=months + 1)
    if end <= now:
        start, end = end, anchor + relativedelta(months=months + 2)
    return start, end


def period_label(period_start: datetime) -> str:
    """Counter key for a billing period: ISO date of its start"""
    return period_start.date().isoformat()


class UsageService:
    """Usage counters keyed by (email, billing period)"""

    def __init__(self, db: Session, resolver: Optional[TierResolver] = None):
        self.db = db
        self.resolver = resolver or get_tier_resolver()

    def get_record(self, email: str) -> SubscriberRecord:
        record = self.db.query(SubscriberRecord).filter(SubscriberRecord.email == email).first()
        if not record:
            raise AccountNotFoundError(f"No subscriber record for {redact_email(email)}")
        return record

    def current_period(self, record: SubscriberRecord) -> Tuple[datetime, Optional[datetime]]:
        start = record.period_start or record.created_at
        end = record.period_end or record.next_reset_date
        return start, end

    def current_counter(self, record: SubscriberRecord) -> UsageCounter:
        """Get or open the counter for the record's current period"""
        start, end = self.current_period(record)
        label = period_label(start)
        counter = self.db.query(UsageCounter).filter(
            UsageCounter.email == record.email,
            UsageCounter.billing_period == label
        ).first()
        if counter:
            return counter

        counter = UsageCounter(
            email=record.email,
            billing_period=label,
            period_start=start,
            period_end=end,
            submissions_used=0,
        )
        self.db.add(counter)
        try:
            self.db.commit()
        except IntegrityError:
            # Opened concurrently by another request
            self.db.rollback()
            counter = self.db.query(UsageCounter).filter(
                UsageCounter.email == record.email,
                UsageCounter.billing_period == label
            ).one()
        else:
            logger.info(
                f"Opened usage counter {label} for {redact_email(record.email)}",
                extra={"billing_period": label}
            )
        return counter

    def total_purchased(self, email: str) -> int:
        return PurchaseService(self.db).total_purchased(email)

    def summarize(self, record: SubscriberRecord, used: Optional[int] = None) -> UsageSummary:
        """Usage summary for the record's current period"""
        if used is None:
            used = self.current_counter(record).submissions_used
        return calculate_usage(
            used=used,
            base_limit=self.resolver.base_limit(record.plan_tier),
            purchased=self.total_purchased(record.email),
            unlimited_override=record.unlimited_override,
        )

    def summarize_cached(self, record: SubscriberRecord) -> UsageSummary:
        """
        Best-effort summary that never writes

        Used on the degraded read path, where opening a counter is not
        worth failing the response over.
        """
        start, _ = self.current_period(record)
        counter = self.db.query(UsageCounter).filter(
            UsageCounter.email == record.email,
            UsageCounter.billing_period == period_label(start)
        ).first()
        return calculate_usage(
            used=counter.submissions_used if counter else 0,
            base_limit=self.resolver.base_limit(record.plan_tier),
            purchased=self.total_purchased(record.email),
            unlimited_override=record.unlimited_override,
        )

    def roll_forward(self, record: SubscriberRecord, now: Optional[datetime] = None) -> bool:
        """
        Advance an unsubscribed record's trial window past `now`

        Subscribed records take their periods from the provider and are left
        alone. Only period_start and next_reset_date change; an unsubscribed
        record has no provider period to overwrite them. Returns True when
        the window moved.
        """
        now = now or utcnow()
        if record.subscribed or not record.next_reset_date or record.next_reset_date > now:
            return False

        start, end = trial_window(record.created_at, now)
        record.period_start = start
        record.next_reset_date = end
        self.db.commit()
        logger.info(
            f"Rolled trial window for {redact_email(record.email)} to {period_label(start)}",
            extra={"billing_period": period_label(start)}
        )
        return True

    def record_submission(self, email: str) -> UsageSummary:
        """
        Check-before-spend: count one submission if the quota allows it

        Raises:
            AccountNotFoundError: No subscriber record
            AccountPausedError: Account paused by an admin
            PlanLimitExceededError: Current usage already at the limit
        """
        record = self.get_record(email)
        if record.is_paused:
            raise AccountPausedError("Account is paused")

        self.roll_forward(record)
        counter = self.current_counter(record)
        summary = self.summarize(record, used=counter.submissions_used)
        if summary.is_at_limit:
            raise self._limit_exceeded(record, summary)

        # The limit is re-checked in the UPDATE itself so concurrent requests
        # can neither lose a count nor spend past the limit
        stmt = update(UsageCounter).where(UsageCounter.id == counter.id)
        if not summary.is_unlimited:
            stmt = stmt.where(UsageCounter.submissions_used < summary.total_limit)
        result = self.db.execute(
            stmt.values(submissions_used=UsageCounter.submissions_used + 1, updated_at=utcnow())
        )
        self.db.commit()
        self.db.refresh(counter)
        if result.rowcount == 0:
            logger.info(
                f"Submission for {redact_email(email)} lost the race for the last slot",
                extra={"billing_period": counter.billing_period}
            )
            raise self._limit_exceeded(record, self.summarize(record, used=counter.submissions_used))
        return self.summarize(record, used=counter.submissions_used)

    def _limit_exceeded(self, record: SubscriberRecord, summary: UsageSummary) -> PlanLimitExceededError:
        return PlanLimitExceededError(
            "Submission limit reached for the current billing period",
            details={
                "used": summary.used,
                "limit": summary.total_limit,
                "plan": record.tier,
            }
        )

    def reset_usage(self, email: str) -> int:
        """Zero the current-period counter, returns the previous value"""
        record = self.get_record(email)
        counter = self.current_counter(record)
        previous = counter.submissions_used
        counter.submissions_used = 0
        self.db.commit()
        logger.info(f"Reset usage for {redact_email(email)} (was {previous})")
        return previous
