"""
Admin Override Service
Privileged account operations; every call is written to the admin action log
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..db.base import utcnow
from ..db.models import (
    AccountStatus,
    CustomGPT,
    CustomGPTFile,
    PurchasedCredit,
    Rubric,
    SubscriberRecord,
    UsageCounter,
    User,
    UserSession,
)
from ..errors import AccountNotFoundError, BillingError, InvalidAdminOperationError
from ..logging_config import redact_email
from .audit_log_service import AuditAction, AuditLogService
from .billing_gateway import BillingGateway
from .billing_sync import BillingSyncService, SubscriberState
from .reconciliation import ReconciliationSweeper, SweepReport
from .retry import RequestContext, RetryPolicy, call_with_retry
from .usage_service import UsageService

logger = logging.getLogger(__name__)


@dataclass
class DeletionStep:
    name: str
    success: bool
    deleted: int = 0
    error: Optional[str] = None


@dataclass
class DeletionReport:
    email: str
    steps: List[DeletionStep] = field(default_factory=list)

    @property
    def succeeded(self) -> List[str]:
        return [step.name for step in self.steps if step.success]

    @property
    def failed(self) -> List[str]:
        return [step.name for step in self.steps if not step.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "success": not self.failed,
            "failed_count": len(self.failed),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "steps": [step.__dict__ for step in self.steps],
        }


class AdminService:
    """Admin overrides on behalf of an authenticated admin user"""

    def __init__(
        self,
        db: Session,
        gateway: BillingGateway,
        actor: User,
        policy: Optional[RetryPolicy] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.actor = actor
        self.policy = policy or RetryPolicy.from_config()
        self.sync = BillingSyncService(db, gateway)
        self.audit = AuditLogService(db)

    def _record(self, email: str) -> SubscriberRecord:
        record = self.sync.get_record(email)
        if record is None:
            raise AccountNotFoundError(f"No subscriber record for {redact_email(email)}")
        return record

    def _audited(self, action_type: str, email: str, reason: Optional[str], operation: Callable[[], Dict[str, Any]]):
        """Run an operation and log its outcome, success or failure"""
        try:
            details = operation()
        except BillingError as e:
            self.db.rollback()
            self.audit.log(self.actor.email, email, action_type, reason, {"success": False, "error": e.code})
            raise
        self.audit.log(self.actor.email, email, action_type, reason, {"success": True, **details})
        return details

    def _customer_id(self, email: str, record: Optional[SubscriberRecord]) -> Optional[str]:
        if record is not None and record.external_customer_id:
            return record.external_customer_id
        customer = self.gateway.find_customer_by_email(email)
        return customer["id"] if customer else None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def force_resync(self, email: str, reason: Optional[str] = None) -> SubscriberState:
        result: Dict[str, SubscriberState] = {}

        def operation():
            state = call_with_retry(
                lambda: self.sync.sync_account(email),
                self.policy,
                RequestContext(),
                description=f"admin resync for {redact_email(email)}",
            )
            result["state"] = state
            return {"subscribed": state.subscribed, "tier": state.tier.value}

        self._audited(AuditAction.FORCE_RESYNC, email, reason, operation)
        return result["state"]

    def pause_account(self, email: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Pause collection on active subscriptions and mark the account paused"""
        def operation():
            record = self._record(email)
            if record.is_paused:
                raise InvalidAdminOperationError("Account is already paused")

            paused = 0
            customer_id = self._customer_id(email, record)
            if customer_id:
                for subscription in self.gateway.list_active_subscriptions(customer_id):
                    self.gateway.pause_collection(subscription["id"])
                    paused += 1

            record.account_status = AccountStatus.PAUSED.value
            record.paused_at = utcnow()
            record.paused_by = self.actor.email
            record.pause_reason = reason
            self.db.commit()
            return {"paused_subscriptions": paused}

        return self._audited(AuditAction.PAUSE_ACCOUNT, email, reason, operation)

    def resume_account(self, email: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Resume collection and clear the pause; the account must be paused"""
        def operation():
            record = self._record(email)
            if not record.is_paused:
                raise InvalidAdminOperationError("Account is not paused")

            resumed = 0
            customer_id = self._customer_id(email, record)
            if customer_id:
                for subscription in self.gateway.list_active_subscriptions(customer_id):
                    self.gateway.resume_collection(subscription["id"])
                    resumed += 1

            record.account_status = AccountStatus.ACTIVE.value
            record.paused_at = None
            record.paused_by = None
            record.pause_reason = None
            self.db.commit()
            return {"resumed_subscriptions": resumed}

        return self._audited(AuditAction.RESUME_ACCOUNT, email, reason, operation)

    def set_unlimited_override(self, email: str, enabled: bool, reason: Optional[str] = None) -> Dict[str, Any]:
        def operation():
            record = self._record(email)
            previous = record.unlimited_override
            record.unlimited_override = enabled
            self.db.commit()
            return {"enabled": enabled, "previous": previous}

        action = AuditAction.UNLIMITED_OVERRIDE_ENABLED if enabled else AuditAction.UNLIMITED_OVERRIDE_DISABLED
        return self._audited(action, email, reason, operation)

    def reset_usage(self, email: str, reason: Optional[str] = None) -> Dict[str, Any]:
        def operation():
            previous = UsageService(self.db).reset_usage(email)
            return {"previous_used": previous}

        return self._audited(AuditAction.RESET_USAGE, email, reason, operation)

    def reconcile(self, email: Optional[str] = None, reason: Optional[str] = None) -> SweepReport:
        report = ReconciliationSweeper(self.db, self.gateway, policy=self.policy).run(email)
        self.audit.log(
            self.actor.email,
            email or "*",
            AuditAction.RECONCILE,
            reason,
            {"checked": report.checked, "updated": report.updated, "failed": report.failed},
        )
        return report

    def delete_account(self, email: str, reason: Optional[str] = None) -> DeletionReport:
        """
        Erase an account and everything it owns

        Active provider subscriptions are cancelled first. Each deletion step
        commits on its own; a failed step is recorded and the cascade
        continues.
        """
        record = self.sync.get_record(email)
        user = self.db.query(User).filter(User.email == email).first()
        if record is None and user is None:
            raise AccountNotFoundError(f"No account for {redact_email(email)}")

        report = DeletionReport(email=email)
        report.steps.append(self._cancel_subscriptions(email, record))

        gpt_ids = select(CustomGPT.id).where(CustomGPT.owner_email == email)
        steps: List[tuple] = [
            ("custom_gpt_files", self.db.query(CustomGPTFile).filter(CustomGPTFile.custom_gpt_id.in_(gpt_ids))),
            ("custom_gpts", self.db.query(CustomGPT).filter(CustomGPT.owner_email == email)),
            ("rubrics", self.db.query(Rubric).filter(Rubric.owner_email == email)),
            ("usage_counters", self.db.query(UsageCounter).filter(UsageCounter.email == email)),
            ("purchased_credits", self.db.query(PurchasedCredit).filter(PurchasedCredit.email == email)),
            ("subscriber_record", self.db.query(SubscriberRecord).filter(SubscriberRecord.email == email)),
        ]
        if user is not None:
            steps.append(("user_sessions", self.db.query(UserSession).filter(UserSession.user_id == user.id)))
            steps.append(("user", self.db.query(User).filter(User.id == user.id)))

        for name, query in steps:
            report.steps.append(self._delete_step(name, query))

        self.audit.log(
            self.actor.email,
            email,
            AuditAction.DELETE_ACCOUNT,
            reason,
            {
                "success": not report.failed,
                "failed_count": len(report.failed),
                "succeeded": report.succeeded,
                "failed": report.failed,
            },
        )
        if report.failed:
            logger.error(f"Account deletion for {redact_email(email)} incomplete: {', '.join(report.failed)}")
        return report

    def _cancel_subscriptions(self, email: str, record: Optional[SubscriberRecord]) -> DeletionStep:
        try:
            cancelled = 0
            customer_id = self._customer_id(email, record)
            if customer_id:
                for subscription in self.gateway.list_active_subscriptions(customer_id):
                    self.gateway.cancel_subscription(subscription["id"])
                    cancelled += 1
            return DeletionStep(name="cancel_subscriptions", success=True, deleted=cancelled)
        except BillingError as e:
            logger.error(f"Cancelling subscriptions for {redact_email(email)} failed: {e}")
            return DeletionStep(name="cancel_subscriptions", success=False, error=e.code)

    def _delete_step(self, name: str, query: Query) -> DeletionStep:
        try:
            deleted = query.delete(synchronize_session=False)
            self.db.commit()
            return DeletionStep(name=name, success=True, deleted=deleted)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Deletion step {name} failed: {e}")
            return DeletionStep(name=name, success=False, error=type(e).__name__)
