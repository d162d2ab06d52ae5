"""
Audit Log Service
Append-only record of admin overrides: actor, target account, reason
"""
import logging
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from ..db.models import AdminAction
from ..logging_config import redact_email

logger = logging.getLogger(__name__)


class AuditAction:
    """Admin action types (enum-like constants)"""
    FORCE_RESYNC = "FORCE_RESYNC"
    PAUSE_ACCOUNT = "PAUSE_ACCOUNT"
    RESUME_ACCOUNT = "RESUME_ACCOUNT"
    UNLIMITED_OVERRIDE_ENABLED = "UNLIMITED_OVERRIDE_ENABLED"
    UNLIMITED_OVERRIDE_DISABLED = "UNLIMITED_OVERRIDE_DISABLED"
    RESET_USAGE = "RESET_USAGE"
    DELETE_ACCOUNT = "DELETE_ACCOUNT"
    RECONCILE = "RECONCILE"


class AuditLogService:
    """Service for writing and reading the admin action log"""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        actor_email: str,
        target_email: str,
        action_type: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AdminAction:
        """
        Append an admin action

        Args:
            actor_email: Admin performing the action
            target_email: Account affected ("*" for sweeps over all accounts)
            action_type: AuditAction constant
            reason: Free-text reason supplied by the admin
            details: Outcome details (counts, flags, error codes)

        Returns:
            Created AdminAction
        """
        try:
            entry = AdminAction(
                actor_email=actor_email,
                target_email=target_email,
                action_type=action_type,
                reason=reason,
                details=details or {},
            )
            self.db.add(entry)
            self.db.commit()
            self.db.refresh(entry)

            logger.info(
                f"Admin action {action_type} on {redact_email(target_email)} by {redact_email(actor_email)}",
                extra={"action_type": action_type}
            )
            return entry
        except Exception as e:
            logger.error(f"Failed to write admin action log: {e}", exc_info=True)
            self.db.rollback()
            raise

    def list_actions(
        self,
        target_email: Optional[str] = None,
        action_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[AdminAction]:
        query = self.db.query(AdminAction)
        if target_email:
            query = query.filter(AdminAction.target_email == target_email)
        if action_type:
            query = query.filter(AdminAction.action_type == action_type)
        return query.order_by(AdminAction.created_at.desc(), AdminAction.id.desc()).limit(limit).all()
