"""
Request/response models for the billing and admin APIs
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class UsageResponse(BaseModel):
    """Usage summary for the current billing period"""
    used: int
    base_limit: int
    purchased: int
    total_limit: Optional[int] = Field(None, description="None when unlimited")
    percentage: float
    is_unlimited: bool
    is_at_limit: bool
    is_over_limit: bool
    remaining: Optional[int] = None


class SubscriptionResponse(BaseModel):
    """On-demand subscription check result"""
    email: str
    subscribed: bool
    tier: str
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    next_reset_date: Optional[datetime] = None
    account_status: str
    unlimited_override: bool
    usage: UsageResponse
    degraded: bool = Field(False, description="True when served from cached data")
    degraded_reason: Optional[str] = None
    stale_as_of: Optional[datetime] = None


class VerifyPurchaseRequest(BaseModel):
    """Request to verify a checkout session"""
    session_id: str = Field(..., min_length=1, description="Provider checkout session id")


class VerifyPurchaseResponse(BaseModel):
    success: bool
    message: str
    submissions_added: int
    total_purchased_submissions: int
    already_completed: bool


class AdminReasonRequest(BaseModel):
    """Body for admin operations that only need a reason"""
    reason: Optional[str] = Field(None, max_length=1000)


class UnlimitedOverrideRequest(BaseModel):
    enabled: bool
    reason: Optional[str] = Field(None, max_length=1000)


class ReconcileRequest(BaseModel):
    email: Optional[str] = Field(None, description="Single account; all subscribed accounts when omitted")
    reason: Optional[str] = Field(None, max_length=1000)


class SweepResponse(BaseModel):
    checked: int
    updated: int
    unchanged: int
    failed: int
    changes: Dict[str, List[str]] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)


class DeletionStepResponse(BaseModel):
    name: str
    success: bool
    deleted: int = 0
    error: Optional[str] = None


class DeletionResponse(BaseModel):
    email: str
    success: bool
    failed_count: int
    succeeded: List[str]
    failed: List[str]
    steps: List[DeletionStepResponse]


class AdminActionResponse(BaseModel):
    id: int
    actor_email: str
    target_email: str
    action_type: str
    reason: Optional[str]
    details: Optional[Dict[str, Any]]
    created_at: datetime

    class Config:
        from_attributes = True
