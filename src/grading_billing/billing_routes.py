"""
Billing API routes - webhooks, subscription check, usage and purchase verification
"""
from dataclasses import asdict
import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from .auth import Identity, get_current_user, get_identity
from .config import config
from .db.engine import get_db
from .db.models import User
from .errors import SessionExpiredError, WebhookRejectedError
from .logging_config import get_request_id
from .schemas import (
    SubscriptionResponse,
    UsageResponse,
    VerifyPurchaseRequest,
    VerifyPurchaseResponse,
)
from .services.billing_gateway import BillingGateway, get_billing_gateway
from .services.purchase_service import PurchaseService
from .services.retry import RequestContext
from .services.subscription_check import SubscriptionCheckResult, SubscriptionCheckService
from .services.usage_service import UsageService
from .services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/billing", tags=["billing"])


def get_request_context() -> RequestContext:
    """Per-request retry context bounded by the request deadline"""
    return RequestContext.with_timeout(config.REQUEST_DEADLINE_SECONDS, request_id=get_request_id())


def _subscription_response(result: SubscriptionCheckResult) -> SubscriptionResponse:
    data = asdict(result)
    data.pop("attempts", None)
    return SubscriptionResponse(**data)


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_billing_gateway),
):
    """
    Stripe webhook endpoint with signature verification and replay protection

    The raw body is passed through untouched; signature verification needs
    the exact bytes the provider signed.
    """
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise WebhookRejectedError("Missing stripe-signature header")

    body = await request.body()
    outcome = WebhookService(db, gateway).handle(body, signature)
    return outcome.to_response()


@router.get("/subscription", response_model=SubscriptionResponse)
def check_subscription(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_billing_gateway),
    context: RequestContext = Depends(get_request_context),
):
    """
    Sync and return the caller's subscription and usage

    Never fails because the provider is down: the last known state is
    returned with `degraded: true` instead.
    """
    service = SubscriptionCheckService(db, gateway)
    if not identity.session_valid:
        result = service.cached(identity.email, reason=SessionExpiredError.code)
    else:
        result = service.check(identity.email, context)
    return _subscription_response(result)


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Current-period usage without a provider round-trip"""
    usage = UsageService(db)
    record = usage.get_record(current_user.email)
    usage.roll_forward(record)
    return UsageResponse(**usage.summarize(record).to_dict())


@router.post("/usage/submissions", response_model=UsageResponse, status_code=status.HTTP_201_CREATED)
async def record_submission(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Count one graded submission against the caller's quota

    402 PLAN_LIMIT_EXCEEDED when the period allotment is used up.
    """
    summary = UsageService(db).record_submission(current_user.email)
    return UsageResponse(**summary.to_dict())


@router.post("/purchases/verify", response_model=VerifyPurchaseResponse)
async def verify_purchase(
    request: VerifyPurchaseRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_billing_gateway),
):
    """Verify a submission-pack checkout session (idempotent by session id)"""
    verification = PurchaseService(db, gateway).verify_purchase(request.session_id, current_user.email)
    return VerifyPurchaseResponse(
        success=verification.success,
        message=verification.message,
        submissions_added=verification.submissions_added,
        total_purchased_submissions=verification.total_purchased,
        already_completed=verification.already_completed,
    )
