"""
Purchase Service
Lifecycle of one-off submission packs: pending -> completed, exactly once
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.base import utcnow
from ..db.models import PurchasedCredit, PurchaseStatus, SubscriberRecord
from ..errors import AuthorizationError, PurchaseNotFoundError
from ..logging_config import redact_email
from .billing_gateway import BillingGateway

logger = logging.getLogger(__name__)

PAID_STATUSES = ("paid", "no_payment_required")


@dataclass
class PurchaseVerification:
    success: bool
    message: str
    submissions_added: int = 0
    total_purchased: int = 0
    already_completed: bool = False


def session_email(session: Dict[str, Any]) -> Optional[str]:
    """Buyer email on a checkout session"""
    return session.get("customer_email") or (session.get("customer_details") or {}).get("email")


def session_submissions(session: Dict[str, Any]) -> Optional[int]:
    """Submission count carried in the checkout session metadata"""
    value = (session.get("metadata") or {}).get("submissions")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class PurchaseService:
    """Service for purchased submission credits"""

    def __init__(self, db: Session, gateway: Optional[BillingGateway] = None):
        self.db = db
        self.gateway = gateway

    def get_by_session(self, session_id: str) -> Optional[PurchasedCredit]:
        return self.db.query(PurchasedCredit).filter(
            PurchasedCredit.provider_session_id == session_id
        ).first()

    def record_pending(
        self,
        email: str,
        session_id: str,
        submissions: int,
        amount_total: Optional[int] = None,
    ) -> PurchasedCredit:
        """Record a checkout session as a pending purchase (idempotent)"""
        existing = self.get_by_session(session_id)
        if existing:
            return existing

        purchase = PurchasedCredit(
            email=email,
            submissions_purchased=submissions,
            provider_session_id=session_id,
            amount_total=amount_total,
            status=PurchaseStatus.PENDING.value,
        )
        self.db.add(purchase)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return self.get_by_session(session_id)
        self.db.refresh(purchase)
        return purchase

    def complete_by_session(
        self,
        session_id: str,
        email: Optional[str] = None,
        submissions: Optional[int] = None,
    ) -> bool:
        """
        Mark the purchase for a checkout session completed

        Conditional on status='pending', so concurrent or repeated callers
        (webhook redelivery, client verification) complete it exactly once.
        A session with no pending row is recorded as completed directly when
        the buyer and pack size are known.

        Returns:
            True if this call performed the transition
        """
        result = self.db.execute(
            update(PurchasedCredit)
            .where(PurchasedCredit.provider_session_id == session_id)
            .where(PurchasedCredit.status == PurchaseStatus.PENDING.value)
            .values(status=PurchaseStatus.COMPLETED.value, completed_at=utcnow())
        )
        if result.rowcount == 1:
            self.db.commit()
            logger.info(f"Completed purchase for session {session_id}")
            return True

        if self.get_by_session(session_id) is not None:
            logger.info(f"Purchase for session {session_id} already completed")
            return False

        if not email or not submissions:
            logger.warning(f"No purchase recorded for session {session_id} and session lacks details")
            return False

        self.db.add(PurchasedCredit(
            email=email,
            submissions_purchased=submissions,
            provider_session_id=session_id,
            status=PurchaseStatus.COMPLETED.value,
            completed_at=utcnow(),
        ))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        logger.info(f"Recorded completed purchase of {submissions} for {redact_email(email)}")
        return True

    def total_purchased(self, email: str) -> int:
        total = self.db.query(func.coalesce(func.sum(PurchasedCredit.submissions_purchased), 0)).filter(
            PurchasedCredit.email == email,
            PurchasedCredit.status == PurchaseStatus.COMPLETED.value
        ).scalar()
        return int(total or 0)

    def verify_purchase(self, session_id: str, email: str) -> PurchaseVerification:
        """
        Client-initiated verification of a checkout session

        Raises:
            PurchaseNotFoundError: Unknown session
            AuthorizationError: Session belongs to another account
        """
        session = self.gateway.retrieve_checkout_session(session_id)
        if session is None:
            raise PurchaseNotFoundError("Checkout session not found")

        if not self._owns_session(session, email):
            logger.warning(f"Session {session_id} does not belong to {redact_email(email)}")
            raise AuthorizationError("Checkout session does not belong to this account")

        if session.get("payment_status") not in PAID_STATUSES:
            return PurchaseVerification(
                success=False,
                message="Payment not completed yet",
                total_purchased=self.total_purchased(email),
            )

        completed_now = self.complete_by_session(
            session_id,
            email=email,
            submissions=session_submissions(session),
        )
        purchase = self.get_by_session(session_id)
        return PurchaseVerification(
            success=purchase is not None,
            message="Purchase verified" if purchase else "No purchase recorded for this session",
            submissions_added=purchase.submissions_purchased if purchase and completed_now else 0,
            total_purchased=self.total_purchased(email),
            already_completed=not completed_now,
        )

    def _owns_session(self, session: Dict[str, Any], email: str) -> bool:
        buyer = session_email(session)
        if buyer and buyer.lower() == email.lower():
            return True
        customer_id = session.get("customer")
        if not customer_id:
            return False
        record = self.db.query(SubscriberRecord).filter(SubscriberRecord.email == email).first()
        return bool(record and record.external_customer_id == customer_id)
