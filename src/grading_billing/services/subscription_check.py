"""
Subscription Check Service
On-demand read path: sync from the provider with bounded retry, falling
back to the last persisted subscriber record when the provider (or the
caller's auth session) is unavailable
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..db.models import PlanTier, AccountStatus, SubscriberRecord
from ..errors import TransientError
from ..logging_config import redact_email
from .billing_gateway import BillingGateway
from .billing_sync import BillingSyncService
from .quota import UsageSummary, calculate_usage
from .retry import RequestContext, RetryPolicy, call_with_retry
from .tier_resolver import TierResolver, get_tier_resolver
from .usage_service import UsageService

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionCheckResult:
    email: str
    subscribed: bool
    tier: str
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    next_reset_date: Optional[datetime]
    account_status: str
    unlimited_override: bool
    usage: UsageSummary
    degraded: bool = False
    degraded_reason: Optional[str] = None
    stale_as_of: Optional[datetime] = None
    attempts: int = field(default=0)


class SubscriptionCheckService:
    """Service for the authenticated subscription check"""

    def __init__(
        self,
        db: Session,
        gateway: BillingGateway,
        policy: Optional[RetryPolicy] = None,
        resolver: Optional[TierResolver] = None,
    ):
        self.db = db
        self.resolver = resolver or get_tier_resolver()
        self.sync = BillingSyncService(db, gateway, resolver=self.resolver)
        self.usage = UsageService(db, resolver=self.resolver)
        self.policy = policy or RetryPolicy.from_config()

    def check(self, email: str, context: RequestContext) -> SubscriptionCheckResult:
        """
        Sync the account and return its current tier and usage

        Transient failures are retried per the policy; if they persist the
        cached record is returned with degraded=True instead of an error.
        """
        try:
            call_with_retry(
                lambda: self.sync.sync_account(email),
                self.policy,
                context,
                description=f"subscription sync for {redact_email(email)}",
            )
        except TransientError as e:
            logger.warning(
                f"Serving cached subscription for {redact_email(email)}: {e}",
                extra={"request_id": context.request_id, "error_code": e.code}
            )
            return self.cached(email, reason=e.code, attempts=context.attempts)

        record = self.sync.get_record(email)
        self.usage.roll_forward(record)
        return self._result(record, self.usage.summarize(record), attempts=context.attempts)

    def cached(self, email: str, reason: str, attempts: int = 0) -> SubscriptionCheckResult:
        """Best-effort result from the last persisted record, never calls the provider"""
        record = self.sync.get_record(email)
        if record is None:
            usage = calculate_usage(used=0, base_limit=self.resolver.base_limit(PlanTier.FREE_TRIAL))
            return SubscriptionCheckResult(
                email=email,
                subscribed=False,
                tier=PlanTier.FREE_TRIAL.value,
                period_start=None,
                period_end=None,
                next_reset_date=None,
                account_status=AccountStatus.ACTIVE.value,
                unlimited_override=False,
                usage=usage,
                degraded=True,
                degraded_reason=reason,
                attempts=attempts,
            )

        result = self._result(record, self.usage.summarize_cached(record), attempts=attempts)
        result.degraded = True
        result.degraded_reason = reason
        result.stale_as_of = record.last_synced_at
        return result

    def _result(self, record: SubscriberRecord, usage: UsageSummary, attempts: int) -> SubscriptionCheckResult:
        return SubscriptionCheckResult(
            email=record.email,
            subscribed=record.subscribed,
            tier=record.tier,
            period_start=record.period_start,
            period_end=record.period_end,
            next_reset_date=record.next_reset_date,
            account_status=record.account_status,
            unlimited_override=record.unlimited_override,
            usage=usage,
            attempts=attempts,
        )
