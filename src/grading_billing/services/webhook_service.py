"""
Webhook Ingestion Gateway
Signature verification, write-ahead deduplication and dispatch of provider
events to the billing sync and purchase handlers

Per request: received -> signature_verified -> deduplicated -> dispatched ->
acknowledged, short-circuiting to rejected (bad signature) or
already_processed (duplicate event id).
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import config
from ..db.models import WebhookEvent
from ..errors import FatalStoreError, InconsistentProviderDataError, TransientError
from ..logging_config import redact_email
from .billing_gateway import BillingGateway, ProviderEvent
from .billing_sync import BillingSyncService
from .purchase_service import PurchaseService, PAID_STATUSES, session_email, session_submissions

logger = logging.getLogger(__name__)


class WebhookStatus(str, Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"
    STALE = "stale"
    DEFERRED = "deferred"  # handler hit a transient failure; the sweeper repairs it


@dataclass
class WebhookOutcome:
    event_id: str
    event_type: str
    status: WebhookStatus

    def to_response(self) -> dict:
        return {"received": True, "status": self.status.value, "event_id": self.event_id}


@dataclass
class WebhookContext:
    """Collaborators handed to every event handler"""
    db: Session
    gateway: BillingGateway
    sync: BillingSyncService
    purchases: PurchaseService
    enforce_ordering: bool = True


Handler = Callable[[WebhookContext, ProviderEvent], WebhookStatus]


# ============================================================================
# Event handlers
# ============================================================================

def handle_checkout_completed(ctx: WebhookContext, event: ProviderEvent) -> WebhookStatus:
    """Payment checkouts complete a purchase; subscription checkouts trigger a sync"""
    session = event.data_object
    mode = session.get("mode")

    if mode == "payment":
        session_id = session.get("id")
        if not session_id:
            logger.warning(f"Payment checkout in event {event.id} has no session id")
            return WebhookStatus.IGNORED
        payment_status = session.get("payment_status")
        if payment_status is not None and payment_status not in PAID_STATUSES:
            logger.info(f"Checkout {session_id} completed unpaid ({payment_status}), waiting")
            return WebhookStatus.IGNORED
        ctx.purchases.complete_by_session(
            session_id,
            email=session_email(session),
            submissions=session_submissions(session),
        )
        return WebhookStatus.PROCESSED

    if mode == "subscription":
        customer_id = session.get("customer")
        if customer_id:
            ctx.sync.sync_customer(customer_id, event_at=event.created)
        else:
            email = session_email(session)
            if not email:
                logger.warning(f"Subscription checkout {session.get('id')} has no customer or email")
                return WebhookStatus.IGNORED
            ctx.sync.sync_account(email, event_at=event.created)
        return WebhookStatus.PROCESSED

    logger.info(f"Checkout {session.get('id')} with mode {mode} needs no action")
    return WebhookStatus.IGNORED


def handle_subscription_changed(ctx: WebhookContext, event: ProviderEvent) -> WebhookStatus:
    """Created/updated subscriptions: re-derive from the provider"""
    customer_id = event.data_object.get("customer")
    if not customer_id:
        logger.warning(f"Subscription event {event.id} has no customer")
        return WebhookStatus.IGNORED
    state = ctx.sync.sync_customer(customer_id, event_at=event.created)
    return WebhookStatus.PROCESSED if state else WebhookStatus.IGNORED


def handle_subscription_deleted(ctx: WebhookContext, event: ProviderEvent) -> WebhookStatus:
    """Force the account to unsubscribed Free Trial"""
    customer_id = event.data_object.get("customer")
    if not customer_id:
        logger.warning(f"Subscription deletion {event.id} has no customer")
        return WebhookStatus.IGNORED

    record = ctx.sync.get_record_by_customer(customer_id)
    if record is None:
        customer = ctx.gateway.retrieve_customer(customer_id)
        email = customer.get("email") if customer else None
        if not email:
            logger.warning(f"No account found for customer {customer_id}, skipping deletion")
            return WebhookStatus.IGNORED
    else:
        email = record.email
        if ctx.enforce_ordering and record.last_event_at and event.created and event.created < record.last_event_at:
            logger.info(
                f"Stale subscription deletion {event.id} for {redact_email(email)} "
                f"(event {event.created} < last applied {record.last_event_at}), skipping"
            )
            return WebhookStatus.STALE
        if not record.subscribed:
            logger.info(f"Subscription deletion {event.id}: {redact_email(email)} already unsubscribed")
            return WebhookStatus.STALE

    ctx.sync.force_unsubscribed(email, customer_id=customer_id, event_at=event.created)
    return WebhookStatus.PROCESSED


def handle_invoice_paid(ctx: WebhookContext, event: ProviderEvent) -> WebhookStatus:
    invoice = event.data_object
    # Newer API versions nest the subscription under parent.subscription_details
    subscription_id = invoice.get("subscription") or (
        ((invoice.get("parent") or {}).get("subscription_details") or {}).get("subscription")
    )
    if not subscription_id or not invoice.get("customer"):
        logger.info(f"Invoice {invoice.get('id')} is not for a subscription, nothing to sync")
        return WebhookStatus.IGNORED
    ctx.sync.sync_customer(invoice["customer"], event_at=event.created)
    return WebhookStatus.PROCESSED


def handle_invoice_payment_failed(ctx: WebhookContext, event: ProviderEvent) -> WebhookStatus:
    # No automatic downgrade; the provider's own dunning decides the outcome
    invoice = event.data_object
    logger.warning(
        f"Invoice payment failed for customer {invoice.get('customer')}",
        extra={"invoice_id": invoice.get("id"), "attempt_count": invoice.get("attempt_count")}
    )
    return WebhookStatus.PROCESSED


EVENT_HANDLERS: Dict[str, Handler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


# ============================================================================
# Gateway
# ============================================================================

class WebhookService:
    """Service for inbound provider webhooks"""

    def __init__(
        self,
        db: Session,
        gateway: BillingGateway,
        sync: Optional[BillingSyncService] = None,
        handlers: Optional[Dict[str, Handler]] = None,
        enforce_ordering: Optional[bool] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.handlers = handlers if handlers is not None else EVENT_HANDLERS
        self.context = WebhookContext(
            db=db,
            gateway=gateway,
            sync=sync or BillingSyncService(db, gateway),
            purchases=PurchaseService(db, gateway),
            enforce_ordering=config.WEBHOOK_ENFORCE_EVENT_ORDERING if enforce_ordering is None else enforce_ordering,
        )

    def handle(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Process one webhook delivery

        Raises:
            WebhookRejectedError: Missing or invalid signature; nothing is read or written
            FatalStoreError: Store rejected a write for a reason other than dedup
        """
        event = self.gateway.construct_event(payload, signature)

        if not self._record_event(event):
            logger.info(f"Webhook event {event.id} ({event.type}) already processed")
            return WebhookOutcome(event.id, event.type, WebhookStatus.ALREADY_PROCESSED)

        handler = self.handlers.get(event.type)
        if handler is None:
            logger.info(f"Unhandled webhook event type {event.type} ({event.id}), acknowledging")
            return WebhookOutcome(event.id, event.type, WebhookStatus.IGNORED)

        try:
            status = handler(self.context, event)
        except (TransientError, InconsistentProviderDataError) as e:
            # The event is already recorded, so redelivery will not retry it
            self.db.rollback()
            logger.error(
                f"Webhook event {event.id} ({event.type}) deferred to reconciliation: {e}",
                extra={"event_id": event.id, "event_type": event.type}
            )
            return WebhookOutcome(event.id, event.type, WebhookStatus.DEFERRED)

        # Handlers already log their own skip reasons
        log = logger.info if status == WebhookStatus.PROCESSED else logger.debug
        log(
            f"Webhook event {event.id} ({event.type}) {status.value}",
            extra={"event_id": event.id, "event_type": event.type}
        )
        return WebhookOutcome(event.id, event.type, status)

    def _record_event(self, event: ProviderEvent) -> bool:
        """
        Write-ahead dedup insert, committed before dispatch

        Returns False when the unique constraint reports the event id as seen.
        """
        self.db.add(WebhookEvent(
            provider_event_id=event.id,
            event_type=event.type,
            event_created_at=event.created,
            payload=event.payload,
        ))
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            exists = self.db.query(WebhookEvent.id).filter(
                WebhookEvent.provider_event_id == event.id
            ).first()
            if exists is None:
                logger.error(f"Webhook event {event.id} could not be recorded: {e}")
                raise FatalStoreError("Could not record webhook event") from e
            return False
        return True
