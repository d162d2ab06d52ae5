"""
Tests for the Stripe gateway: webhook signatures and SDK error mapping
"""
import hashlib
import hmac
import json
import time
import pytest
from unittest.mock import Mock, patch

import stripe

from grading_billing.errors import (
    ConfigurationError,
    ProviderUnavailableError,
    RejectedError,
    WebhookRejectedError,
)
from grading_billing.services.billing_gateway import StripeGateway, from_unix, get_billing_gateway

WEBHOOK_SECRET = "whsec_gateway_tests"


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Stripe-Signature header for a payload"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def stripe_gateway():
    return StripeGateway(api_key="sk_test_gateway", webhook_secret=WEBHOOK_SECRET, timeout=5)


class TestConstructEvent:
    """Test webhook signature verification"""

    def test_valid_signature(self, stripe_gateway):
        payload = json.dumps({
            "id": "evt_123",
            "object": "event",
            "type": "customer.subscription.updated",
            "created": 1772366400,
            "data": {"object": {"id": "sub_1", "customer": "cus_1"}},
        })

        event = stripe_gateway.construct_event(payload.encode("utf-8"), sign(payload))

        assert event.id == "evt_123"
        assert event.type == "customer.subscription.updated"
        assert event.created == from_unix(1772366400)
        assert event.data_object == {"id": "sub_1", "customer": "cus_1"}

    def test_wrong_secret_rejected(self, stripe_gateway):
        payload = json.dumps({"id": "evt_1", "object": "event", "type": "invoice.paid", "data": {"object": {}}})

        with pytest.raises(WebhookRejectedError):
            stripe_gateway.construct_event(payload.encode("utf-8"), sign(payload, secret="whsec_other"))

    def test_tampered_payload_rejected(self, stripe_gateway):
        payload = json.dumps({"id": "evt_1", "object": "event", "type": "invoice.paid", "data": {"object": {}}})
        header = sign(payload)

        with pytest.raises(WebhookRejectedError):
            stripe_gateway.construct_event(payload.replace("evt_1", "evt_2").encode("utf-8"), header)

    def test_invalid_json_rejected(self, stripe_gateway):
        payload = "not json"

        with pytest.raises(WebhookRejectedError):
            stripe_gateway.construct_event(payload.encode("utf-8"), sign(payload))

    def test_missing_signature_rejected(self, stripe_gateway):
        with pytest.raises(WebhookRejectedError):
            stripe_gateway.construct_event(b"{}", "")


class TestErrorMapping:
    """Test SDK errors map onto the billing error taxonomy"""

    @pytest.mark.parametrize("error,expected", [
        (stripe.APIConnectionError("connection reset"), ProviderUnavailableError),
        (stripe.RateLimitError("too many requests"), ProviderUnavailableError),
        (stripe.APIError("server error", http_status=500), ProviderUnavailableError),
        (stripe.AuthenticationError("bad key"), ConfigurationError),
        (stripe.InvalidRequestError("No such customer", "customer"), RejectedError),
    ])
    def test_subscription_list_errors(self, stripe_gateway, error, expected):
        with patch("stripe.Subscription.list", side_effect=error):
            with pytest.raises(expected):
                stripe_gateway.list_active_subscriptions("cus_1")

    def test_list_active_subscriptions(self, stripe_gateway):
        listing = Mock(data=[{"id": "sub_1", "status": "active"}])
        with patch("stripe.Subscription.list", return_value=listing) as mock_list:
            assert stripe_gateway.list_active_subscriptions("cus_1") == [{"id": "sub_1", "status": "active"}]

        mock_list.assert_called_once_with(customer="cus_1", status="active", limit=10)

    def test_find_customer_by_email(self, stripe_gateway):
        with patch("stripe.Customer.list", return_value=Mock(data=[{"id": "cus_1", "email": "a@example.com"}])):
            assert stripe_gateway.find_customer_by_email("a@example.com")["id"] == "cus_1"

        with patch("stripe.Customer.list", return_value=Mock(data=[])):
            assert stripe_gateway.find_customer_by_email("b@example.com") is None

    def test_deleted_customer_is_none(self, stripe_gateway):
        with patch("stripe.Customer.retrieve", return_value={"id": "cus_1", "deleted": True}):
            assert stripe_gateway.retrieve_customer("cus_1") is None

    def test_unknown_checkout_session_is_none(self, stripe_gateway):
        error = stripe.InvalidRequestError("No such checkout.session", "id")
        with patch("stripe.checkout.Session.retrieve", side_effect=error):
            assert stripe_gateway.retrieve_checkout_session("cs_missing") is None

    def test_checkout_session_outage_propagates(self, stripe_gateway):
        with patch("stripe.checkout.Session.retrieve", side_effect=stripe.APIConnectionError("timeout")):
            with pytest.raises(ProviderUnavailableError):
                stripe_gateway.retrieve_checkout_session("cs_1")

    def test_pause_and_resume_collection(self, stripe_gateway):
        with patch("stripe.Subscription.modify", return_value={"id": "sub_1"}) as mock_modify:
            stripe_gateway.pause_collection("sub_1")
            stripe_gateway.resume_collection("sub_1")

        assert mock_modify.call_args_list[0].args == ("sub_1",)
        assert mock_modify.call_args_list[0].kwargs == {"pause_collection": {"behavior": "void"}}
        assert mock_modify.call_args_list[1].kwargs == {"pause_collection": ""}

    def test_cancel_subscription(self, stripe_gateway):
        with patch("stripe.Subscription.cancel", return_value={"id": "sub_1", "status": "canceled"}) as mock_cancel:
            assert stripe_gateway.cancel_subscription("sub_1")["status"] == "canceled"

        mock_cancel.assert_called_once_with("sub_1")


class TestGatewayFactory:

    def test_uses_test_keys_outside_prod(self):
        gateway = get_billing_gateway()

        assert isinstance(gateway, StripeGateway)
        assert gateway.is_test is True
        assert gateway.webhook_secret == "whsec_test_billing"
        assert stripe.api_key == "sk_test_billing"
