"""
Usage counter model
"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint

from ..base import Base, utcnow


class UsageCounter(Base):
    """
    Submissions used in one billing period

    billing_period is the ISO date of the period start. A new row is opened
    when next_reset_date is crossed; older rows are kept as history.
    """
    __tablename__ = "usage_counters"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, index=True)
    billing_period = Column(String, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=True)
    submissions_used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("email", "billing_period", name="uq_usage_counters_email_period"),
    )
