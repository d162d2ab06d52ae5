"""
Subscriber record model - local mirror of provider billing state
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint
import enum

from ..base import Base, utcnow


class PlanTier(str, enum.Enum):
    """Plan tiers, declared lowest to highest"""
    FREE_TRIAL = "Free Trial"
    LITE = "Lite Plan"
    CORE = "Core Plan"
    FULL_TIME = "Full-Time Plan"
    SUPER = "Super Plan"

    @property
    def rank(self) -> int:
        return list(PlanTier).index(self)


class AccountStatus(str, enum.Enum):
    """Account status; only admin operations write it"""
    ACTIVE = "active"
    PAUSED = "paused"


class SubscriberRecord(Base):
    """
    One row per account email

    Provider-derived columns (subscribed, tier, periods, customer id) are
    written by the billing sync procedure only. The one exception is an
    unsubscribed record's trial window: the provider has no period for it,
    so usage rollover advances period_start and next_reset_date in place.
    account_status, the pause metadata and unlimited_override belong to the
    admin surface.
    """
    __tablename__ = "subscribers"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    external_customer_id = Column(String, nullable=True, index=True)

    # Provider-derived
    subscribed = Column(Boolean, default=False, nullable=False, index=True)
    tier = Column(String, default=PlanTier.FREE_TRIAL.value, nullable=False)
    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)
    next_reset_date = Column(DateTime, nullable=True, index=True)
    last_event_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)

    # Admin-owned
    account_status = Column(String, default=AccountStatus.ACTIVE.value, nullable=False)
    unlimited_override = Column(Boolean, default=False, nullable=False)
    paused_at = Column(DateTime, nullable=True)
    paused_by = Column(String, nullable=True)
    pause_reason = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "period_start IS NULL OR period_end IS NULL OR period_start < period_end",
            name="ck_subscribers_period_order",
        ),
    )

    @property
    def plan_tier(self) -> PlanTier:
        return PlanTier(self.tier)

    @property
    def is_paused(self) -> bool:
        return self.account_status == AccountStatus.PAUSED.value
