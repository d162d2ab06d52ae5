"""
Admin action log model
"""
from sqlalchemy import Column, Integer, String, DateTime, Text

from ..base import Base, JSONType, utcnow


class AdminAction(Base):
    """Append-only record of every admin override"""
    __tablename__ = "admin_actions"

    id = Column(Integer, primary_key=True, index=True)
    actor_email = Column(String, nullable=False, index=True)
    target_email = Column(String, nullable=False, index=True)
    action_type = Column(String, nullable=False, index=True)
    reason = Column(Text, nullable=True)
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
