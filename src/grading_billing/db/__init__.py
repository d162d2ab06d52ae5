"""
Database module for the billing reconciliation service
"""
from .engine import engine, SessionLocal, get_db, init_db
from .base import Base
from .models import (
    User,
    UserSession,
    SubscriberRecord,
    PlanTier,
    AccountStatus,
    WebhookEvent,
    PurchasedCredit,
    PurchaseStatus,
    UsageCounter,
    AdminAction,
    Rubric,
    CustomGPT,
    CustomGPTFile,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
    "Base",
    "User",
    "UserSession",
    "SubscriberRecord",
    "PlanTier",
    "AccountStatus",
    "WebhookEvent",
    "PurchasedCredit",
    "PurchaseStatus",
    "UsageCounter",
    "AdminAction",
    "Rubric",
    "CustomGPT",
    "CustomGPTFile",
]
