"""
Webhook event and purchased credit models
"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
import enum

from ..base import Base, JSONType, utcnow


class WebhookEvent(Base):
    """
    Processed provider events, write-once

    The unique constraint on provider_event_id is the deduplication
    mechanism: the insert happens before dispatch and a conflict means the
    event was already handled.
    """
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    provider_event_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)
    event_created_at = Column(DateTime, nullable=True)  # Provider's own event timestamp
    received_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    payload = Column(JSONType, nullable=False)

    __table_args__ = (
        UniqueConstraint("provider_event_id", name="uq_webhook_events_provider_event_id"),
    )


class PurchaseStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class PurchasedCredit(Base):
    """One-off submission pack bought through a checkout session"""
    __tablename__ = "purchased_credits"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, index=True)
    submissions_purchased = Column(Integer, nullable=False, default=0)
    provider_session_id = Column(String, nullable=False)
    amount_total = Column(Integer, nullable=True)  # minor currency units
    status = Column(String, nullable=False, default=PurchaseStatus.PENDING.value, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider_session_id", name="uq_purchased_credits_provider_session_id"),
    )
