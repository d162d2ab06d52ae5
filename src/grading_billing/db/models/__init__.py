"""
Database models for the billing reconciliation service
"""
from .user import User, UserSession
from .subscriber import SubscriberRecord, PlanTier, AccountStatus
from .billing import WebhookEvent, PurchasedCredit, PurchaseStatus
from .usage import UsageCounter
from .admin import AdminAction
from .content import Rubric, CustomGPT, CustomGPTFile

__all__ = [
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
