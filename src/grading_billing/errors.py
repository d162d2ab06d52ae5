"""
Billing error taxonomy

Every error the reconciliation engine raises derives from BillingError and
carries an error code plus the HTTP status the API layer renders it with.
Retry decisions are made on the class: only TransientError subclasses are
ever retried.
"""
from typing import Optional, Dict, Any


class BillingError(Exception):
    """Base class for billing reconciliation errors"""

    code = "BILLING_ERROR"
    status_code = 500

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(BillingError):
    """Invalid static configuration (tier table, ladder)"""

    code = "CONFIGURATION_ERROR"


# ============================================================================
# Rejected: bad input, never retried
# ============================================================================

class RejectedError(BillingError):
    code = "BAD_REQUEST"
    status_code = 400


class WebhookRejectedError(RejectedError):
    """Signature missing or invalid; nothing was read or written"""

    code = "INVALID_SIGNATURE"
    status_code = 400


class AuthenticationError(RejectedError):
    code = "AUTH_ERROR"
    status_code = 401


class AuthorizationError(RejectedError):
    code = "FORBIDDEN"
    status_code = 403


class AccountNotFoundError(RejectedError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidAdminOperationError(RejectedError):
    code = "CONFLICT"
    status_code = 409


class PurchaseVerificationError(RejectedError):
    code = "PURCHASE_VERIFICATION_FAILED"
    status_code = 400


class PurchaseNotFoundError(PurchaseVerificationError):
    code = "NOT_FOUND"
    status_code = 404


class PlanLimitExceededError(RejectedError):
    code = "PLAN_LIMIT_EXCEEDED"
    status_code = 402


class AccountPausedError(RejectedError):
    code = "ACCOUNT_PAUSED"
    status_code = 403


# ============================================================================
# Transient: retry with backoff, then degrade
# ============================================================================

class TransientError(BillingError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class ProviderUnavailableError(TransientError):
    """Billing provider timed out, refused, or rate limited the call"""

    code = "PROVIDER_UNAVAILABLE"


class SessionExpiredError(TransientError):
    """Auth session behind a valid token no longer exists or has expired"""

    code = "SESSION_EXPIRED"
    status_code = 401


class StoreUnavailableError(TransientError):
    code = "STORE_UNAVAILABLE"


# ============================================================================
# Provider data / storage faults
# ============================================================================

class InconsistentProviderDataError(BillingError):
    """Provider returned a subscription that cannot be mapped to a state"""

    code = "INCONSISTENT_PROVIDER_DATA"


class FatalStoreError(BillingError):
    code = "STORE_ERROR"
    status_code = 500
