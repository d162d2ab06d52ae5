"""
Tests for submission pack purchases
"""
import pytest

from grading_billing.db.models import PurchasedCredit, PurchaseStatus
from grading_billing.errors import AuthorizationError, PurchaseNotFoundError
from grading_billing.services.purchase_service import PurchaseService, session_submissions

from conftest import make_subscriber

EMAIL = "teacher@example.com"


def checkout_session(session_id, email=EMAIL, payment_status="paid", submissions="100", customer=None):
    return {
        "id": session_id,
        "mode": "payment",
        "customer": customer,
        "customer_email": email,
        "payment_status": payment_status,
        "amount_total": 1999,
        "metadata": {"submissions": submissions} if submissions is not None else {},
    }


class TestPurchaseService:
    """Test the pending -> completed lifecycle"""

    @pytest.fixture
    def service(self, db_session, gateway):
        return PurchaseService(db_session, gateway)

    def test_verify_completes_pending_purchase(self, service, gateway):
        service.record_pending(EMAIL, "cs_1", 100, amount_total=1999)
        gateway.checkout_sessions["cs_1"] = checkout_session("cs_1")

        result = service.verify_purchase("cs_1", EMAIL)

        assert result.success is True
        assert result.already_completed is False
        assert result.submissions_added == 100
        assert result.total_purchased == 100

    def test_verify_twice_counts_once(self, service, gateway):
        service.record_pending(EMAIL, "cs_1", 100)
        gateway.checkout_sessions["cs_1"] = checkout_session("cs_1")

        service.verify_purchase("cs_1", EMAIL)
        second = service.verify_purchase("cs_1", EMAIL)

        assert second.success is True
        assert second.already_completed is True
        assert second.submissions_added == 0
        assert second.total_purchased == 100

    def test_verify_without_pending_row_uses_metadata(self, service, db_session, gateway):
        gateway.checkout_sessions["cs_2"] = checkout_session("cs_2", submissions="50")

        result = service.verify_purchase("cs_2", EMAIL)

        assert result.success is True
        assert result.total_purchased == 50
        purchase = db_session.query(PurchasedCredit).filter(PurchasedCredit.provider_session_id == "cs_2").one()
        assert purchase.status == PurchaseStatus.COMPLETED.value

    def test_unpaid_session_not_completed(self, service, db_session, gateway):
        service.record_pending(EMAIL, "cs_3", 100)
        gateway.checkout_sessions["cs_3"] = checkout_session("cs_3", payment_status="unpaid")

        result = service.verify_purchase("cs_3", EMAIL)

        assert result.success is False
        assert result.total_purchased == 0
        assert service.get_by_session("cs_3").status == PurchaseStatus.PENDING.value

    def test_other_accounts_session_forbidden(self, service, gateway):
        gateway.checkout_sessions["cs_4"] = checkout_session("cs_4", email="someone@example.com")

        with pytest.raises(AuthorizationError):
            service.verify_purchase("cs_4", EMAIL)

    def test_unknown_session(self, service):
        with pytest.raises(PurchaseNotFoundError):
            service.verify_purchase("cs_missing", EMAIL)

    def test_ownership_via_customer_id(self, service, db_session, gateway):
        make_subscriber(db_session, EMAIL, external_customer_id="cus_owner")
        gateway.checkout_sessions["cs_5"] = checkout_session("cs_5", email=None, customer="cus_owner")

        assert service.verify_purchase("cs_5", EMAIL).success is True

    def test_pending_purchases_excluded_from_total(self, service):
        service.record_pending(EMAIL, "cs_a", 100)
        service.record_pending(EMAIL, "cs_b", 25)
        service.complete_by_session("cs_b")

        assert service.total_purchased(EMAIL) == 25

    def test_record_pending_is_idempotent(self, service, db_session):
        first = service.record_pending(EMAIL, "cs_1", 100)
        second = service.record_pending(EMAIL, "cs_1", 100)

        assert first.id == second.id
        assert db_session.query(PurchasedCredit).count() == 1

    def test_complete_without_details_records_nothing(self, service, db_session):
        assert service.complete_by_session("cs_unknown") is False
        assert db_session.query(PurchasedCredit).count() == 0

    @pytest.mark.parametrize("metadata,expected", [
        ({"submissions": "100"}, 100),
        ({"submissions": 25}, 25),
        ({"submissions": "lots"}, None),
        ({}, None),
    ])
    def test_session_submissions(self, metadata, expected):
        assert session_submissions({"metadata": metadata}) == expected


class TestVerifyPurchaseEndpoint:

    def test_verify(self, client, db_session, auth_headers, gateway):
        PurchaseService(db_session).record_pending(EMAIL, "cs_http", 100)
        gateway.checkout_sessions["cs_http"] = checkout_session("cs_http")

        response = client.post("/v1/billing/purchases/verify", json={"session_id": "cs_http"}, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["total_purchased_submissions"] == 100

    def test_other_accounts_session_is_403(self, client, auth_headers, gateway):
        gateway.checkout_sessions["cs_other"] = checkout_session("cs_other", email="other@example.com")

        response = client.post("/v1/billing/purchases/verify", json={"session_id": "cs_other"}, headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_unknown_session_is_404(self, client, auth_headers):
        response = client.post("/v1/billing/purchases/verify", json={"session_id": "cs_nope"}, headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_empty_session_id_rejected(self, client, auth_headers):
        response = client.post("/v1/billing/purchases/verify", json={"session_id": ""}, headers=auth_headers)
        assert response.status_code == 422
