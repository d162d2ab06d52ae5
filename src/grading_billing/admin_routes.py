"""
Admin routes for billing overrides
Every mutating endpoint is recorded in the admin action log with the
acting admin, the target account and the supplied reason
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Dict, Any, List, Optional
import logging

from .auth import get_current_user
from .db.engine import get_db
from .db.models import User
from .errors import AuthorizationError
from .logging_config import redact_email
from .schemas import (
    AdminActionResponse,
    AdminReasonRequest,
    DeletionResponse,
    ReconcileRequest,
    SweepResponse,
    UnlimitedOverrideRequest,
)
from .services.admin_service import AdminService
from .services.audit_log_service import AuditLogService
from .services.billing_gateway import BillingGateway, get_billing_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["Admin"])


# ============================================================================
# Admin Guard Dependency
# ============================================================================

async def require_admin(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> User:
    """
    Require user to be an admin

    Args:
        current_user: Current authenticated user
        db: Database session

    Returns:
        User if admin

    Raises:
        AuthorizationError: If user is not admin
    """
    # Refresh user from database to ensure we have latest is_admin value
    db.refresh(current_user)

    if not current_user.is_admin:
        logger.warning(f"Non-admin user {current_user.id} attempted to access admin endpoint")
        raise AuthorizationError("Admin access required")

    return current_user


def get_admin_service(
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> AdminService:
    return AdminService(db, gateway, actor=admin_user)


# ============================================================================
# Account Overrides
# ============================================================================

@router.post("/accounts/{email}/resync")
async def force_resync(
    email: str,
    request: Optional[AdminReasonRequest] = None,
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    """
    Force a provider re-sync of one account (admin only)

    **Admin Access Required**
    """
    reason = request.reason if request else None
    state = service.force_resync(email, reason=reason)
    return {
        "status": "success",
        "email": state.email,
        "subscribed": state.subscribed,
        "tier": state.tier.value,
        "period_start": state.period_start,
        "period_end": state.period_end,
    }


@router.post("/accounts/{email}/pause")
async def pause_account(
    email: str,
    request: Optional[AdminReasonRequest] = None,
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    """
    Pause an account and collection on its active subscriptions (admin only)

    409 CONFLICT when the account is already paused.
    """
    details = service.pause_account(email, reason=request.reason if request else None)
    return {"status": "success", "email": email, **details}


@router.post("/accounts/{email}/resume")
async def resume_account(
    email: str,
    request: Optional[AdminReasonRequest] = None,
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    """
    Resume a paused account (admin only)

    409 CONFLICT when the account is not paused.
    """
    details = service.resume_account(email, reason=request.reason if request else None)
    return {"status": "success", "email": email, **details}


@router.post("/accounts/{email}/unlimited-override")
async def set_unlimited_override(
    email: str,
    request: UnlimitedOverrideRequest,
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    """Grant or revoke unlimited usage regardless of tier (admin only)"""
    details = service.set_unlimited_override(email, request.enabled, reason=request.reason)
    return {"status": "success", "email": email, **details}


@router.post("/accounts/{email}/reset-usage")
async def reset_usage(
    email: str,
    request: Optional[AdminReasonRequest] = None,
    service: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    """Zero the current-period submission counter (admin only)"""
    details = service.reset_usage(email, reason=request.reason if request else None)
    return {"status": "success", "email": email, **details}


@router.delete("/accounts/{email}", response_model=DeletionResponse)
async def delete_account(
    email: str,
    reason: Optional[str] = Query(None, max_length=1000),
    service: AdminService = Depends(get_admin_service),
):
    """
    Delete an account and everything it owns (admin only)

    Active subscriptions are cancelled first. Individual step failures do
    not abort the cascade; they are listed in the response and
    `failed_count` is non-zero.
    """
    report = service.delete_account(email, reason=reason)
    logger.info(
        f"Account deletion for {redact_email(email)}: "
        f"{len(report.succeeded)} steps succeeded, {len(report.failed)} failed"
    )
    return report.to_dict()


# ============================================================================
# Reconciliation & Audit
# ============================================================================

@router.post("/reconcile", response_model=SweepResponse)
async def reconcile(
    request: Optional[ReconcileRequest] = None,
    service: AdminService = Depends(get_admin_service),
):
    """Run the reconciliation sweep now, for one account or all (admin only)"""
    request = request or ReconcileRequest()
    report = service.reconcile(email=request.email, reason=request.reason)
    return report.to_dict()


@router.get("/actions", response_model=List[AdminActionResponse])
async def list_admin_actions(
    target_email: Optional[str] = None,
    action_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """List admin actions, newest first (admin only)"""
    return AuditLogService(db).list_actions(target_email=target_email, action_type=action_type, limit=limit)
