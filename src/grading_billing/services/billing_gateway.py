"""
Billing Gateway - Abstract interface for the billing provider
Stripe is the only provider; the interface keeps the sync, webhook and admin
code testable against an in-memory double
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import json
import logging

import stripe

from ..config import config
from ..errors import (
    BillingError,
    ConfigurationError,
    ProviderUnavailableError,
    RejectedError,
    WebhookRejectedError,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderEvent:
    """Signature-verified provider event"""
    id: str
    type: str
    created: Optional[datetime]
    data_object: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)


def from_unix(value: Optional[int]) -> Optional[datetime]:
    """Unix seconds to naive UTC datetime"""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def to_plain(obj: Any) -> Any:
    """Recursively convert provider objects into plain dicts and lists"""
    if isinstance(obj, dict):
        return {k: to_plain(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [to_plain(v) for v in obj]
    return obj


class BillingGateway(ABC):
    """Abstract base class for the billing provider"""

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        """Verify the webhook signature and parse the event"""
        pass

    @abstractmethod
    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Look up a customer by email, None if the provider has none"""
        pass

    @abstractmethod
    def retrieve_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """Retrieve a customer, None if missing or deleted"""
        pass

    @abstractmethod
    def list_active_subscriptions(self, customer_id: str) -> List[Dict[str, Any]]:
        """List the customer's active subscriptions"""
        pass

    @abstractmethod
    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        """Retrieve a price"""
        pass

    @abstractmethod
    def retrieve_checkout_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Retrieve a checkout session, None if unknown"""
        pass

    @abstractmethod
    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Cancel a subscription immediately"""
        pass

    @abstractmethod
    def pause_collection(self, subscription_id: str) -> Dict[str, Any]:
        """Stop collecting payment on a subscription"""
        pass

    @abstractmethod
    def resume_collection(self, subscription_id: str) -> Dict[str, Any]:
        """Resume collecting payment on a subscription"""
        pass


@contextmanager
def _provider_call(operation: str):
    """
    Translate Stripe SDK errors into the billing error taxonomy

    Connection failures, timeouts, rate limits and provider 5xx become
    ProviderUnavailableError (retryable). Credential problems become
    ConfigurationError. Anything else the provider refuses is RejectedError.
    """
    try:
        yield
    except (stripe.APIConnectionError, stripe.RateLimitError) as e:
        logger.warning(f"Stripe {operation} unavailable: {e}")
        raise ProviderUnavailableError(f"Billing provider unavailable during {operation}") from e
    except (stripe.AuthenticationError, stripe.PermissionError) as e:
        logger.error(f"Stripe {operation} rejected credentials: {e}")
        raise ConfigurationError(f"Billing provider credentials rejected during {operation}") from e
    except stripe.InvalidRequestError as e:
        logger.error(f"Stripe {operation} failed: {e}")
        raise RejectedError(f"Billing provider rejected {operation}", details={"provider_code": e.code}) from e
    except stripe.StripeError as e:
        status = getattr(e, "http_status", None)
        if status is None or status >= 500:
            logger.warning(f"Stripe {operation} server error: {e}")
            raise ProviderUnavailableError(f"Billing provider error during {operation}") from e
        logger.error(f"Stripe {operation} failed: {e}")
        raise BillingError(f"Billing provider error during {operation}") from e


class StripeGateway(BillingGateway):
    """Stripe billing gateway"""

    def __init__(self, api_key: str, webhook_secret: str, timeout: float, is_test: bool = False):
        """
        Initialize Stripe gateway

        Args:
            api_key: Stripe API key (test or live)
            webhook_secret: Stripe webhook signing secret
            timeout: Per-call network timeout in seconds
            is_test: Whether using test mode
        """
        self.stripe = stripe
        self.stripe.api_key = api_key
        # Retries are owned by the caller's retry policy, not the SDK
        self.stripe.max_network_retries = 0
        self.stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        self.webhook_secret = webhook_secret
        self.is_test = is_test

    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        """Verify signature with the webhook secret and parse the event"""
        if not signature or not self.webhook_secret:
            raise WebhookRejectedError("Missing webhook signature")
        try:
            event = self.stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe webhook signature verification failed: {e}")
            raise WebhookRejectedError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning(f"Stripe webhook payload could not be parsed: {e}")
            raise WebhookRejectedError("Invalid webhook payload") from e

        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        raw = json.loads(payload)
        return ProviderEvent(
            id=event["id"],
            type=event["type"],
            created=from_unix(event.get("created")),
            data_object=(raw.get("data") or {}).get("object") or {},
            payload=raw,
        )

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with _provider_call("customer lookup"):
            customers = self.stripe.Customer.list(email=email, limit=1)
        data = to_plain(customers.data)
        return data[0] if data else None

    def retrieve_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        try:
            with _provider_call("customer retrieve"):
                customer = to_plain(self.stripe.Customer.retrieve(customer_id))
        except RejectedError:
            return None
        if customer.get("deleted"):
            return None
        return customer

    def list_active_subscriptions(self, customer_id: str) -> List[Dict[str, Any]]:
        with _provider_call("subscription list"):
            subscriptions = self.stripe.Subscription.list(customer=customer_id, status="active", limit=10)
        return to_plain(subscriptions.data)

    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        with _provider_call("price retrieve"):
            return to_plain(self.stripe.Price.retrieve(price_id))

    def retrieve_checkout_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        try:
            with _provider_call("checkout session retrieve"):
                return to_plain(self.stripe.checkout.Session.retrieve(session_id))
        except RejectedError:
            return None

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        with _provider_call("subscription cancel"):
            subscription = self.stripe.Subscription.cancel(subscription_id)
        logger.info(f"Cancelled Stripe subscription {subscription_id}")
        return to_plain(subscription)

    def pause_collection(self, subscription_id: str) -> Dict[str, Any]:
        with _provider_call("subscription pause"):
            subscription = self.stripe.Subscription.modify(
                subscription_id,
                pause_collection={"behavior": "void"},
            )
        return to_plain(subscription)

    def resume_collection(self, subscription_id: str) -> Dict[str, Any]:
        # An empty value unsets pause_collection
        with _provider_call("subscription resume"):
            subscription = self.stripe.Subscription.modify(subscription_id, pause_collection="")
        return to_plain(subscription)


def get_billing_gateway() -> BillingGateway:
    """
    Factory function to get the configured billing gateway

    Uses test keys in every environment except prod.
    """
    api_key = config.stripe_secret_key
    if not api_key:
        raise ConfigurationError("Stripe API key not configured")
    return StripeGateway(
        api_key=api_key,
        webhook_secret=config.stripe_webhook_secret or "",
        timeout=config.PROVIDER_TIMEOUT_SECONDS,
        is_test=not config.is_prod,
    )
