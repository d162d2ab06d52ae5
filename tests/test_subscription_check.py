"""
Tests for the on-demand subscription check and its degraded fallback
"""
import pytest
from datetime import datetime, timedelta
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.dml import Insert

from grading_billing.db.base import utcnow
from grading_billing.db.models import UserSession
from grading_billing.errors import ProviderUnavailableError
from grading_billing.services.retry import RequestContext, RetryPolicy
from grading_billing.services.subscription_check import SubscriptionCheckService

from conftest import CORE_PRICE, LITE_PRICE, make_subscriber, whole_seconds

EMAIL = "teacher@example.com"
PERIOD_START = datetime(2026, 3, 1, 12, 0, 0)
PERIOD_END = datetime(2026, 4, 1, 12, 0, 0)


def cached_core(db_session, email=EMAIL, synced_at=None):
    return make_subscriber(
        db_session, email,
        subscribed=True,
        tier="Core Plan",
        external_customer_id="cus_core",
        period_start=PERIOD_START,
        period_end=PERIOD_END,
        next_reset_date=PERIOD_END,
        last_synced_at=synced_at or whole_seconds(utcnow() - timedelta(hours=3)),
    )


class TestSubscriptionCheckService:
    """Test sync-with-fallback"""

    @pytest.fixture
    def service(self, db_session, gateway):
        return SubscriptionCheckService(db_session, gateway, policy=RetryPolicy(max_attempts=3, sleep=lambda _: None))

    def test_fresh_check(self, service, gateway):
        customer_id = gateway.add_customer(EMAIL)
        gateway.add_subscription(customer_id, LITE_PRICE, 2495, PERIOD_START, PERIOD_END)

        result = service.check(EMAIL, RequestContext())

        assert result.degraded is False
        assert result.tier == "Lite Plan"
        assert result.subscribed is True
        assert result.usage.base_limit == 250
        assert result.usage.used == 0

    def test_provider_timeout_serves_cached_tier(self, service, db_session, gateway):
        """Provider timeout on a cached Core account: Core, flagged degraded, no error"""
        record = cached_core(db_session)
        synced_at = record.last_synced_at
        gateway.fail("list_active_subscriptions", ProviderUnavailableError("timed out"))

        result = service.check(EMAIL, RequestContext())

        assert result.tier == "Core Plan"
        assert result.degraded is True
        assert result.degraded_reason == "PROVIDER_UNAVAILABLE"
        assert result.stale_as_of == synced_at
        assert result.attempts == 3
        assert result.usage.base_limit == 750

    def test_store_timeout_serves_cached_tier(self, service, db_session, gateway, monkeypatch):
        """Store timeout while writing the synced row: cached Core, flagged degraded"""
        cached_core(db_session)
        gateway.subscriptions["cus_core"] = []
        gateway.add_subscription("cus_core", CORE_PRICE, 7495, PERIOD_START, PERIOD_END)
        execute = db_session.execute

        def timing_out(statement, *args, **kwargs):
            if isinstance(statement, Insert) and statement.table.name == "subscribers":
                raise OperationalError("INSERT INTO subscribers", {}, Exception("statement timeout"))
            return execute(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "execute", timing_out)

        result = service.check(EMAIL, RequestContext())

        assert result.tier == "Core Plan"
        assert result.degraded is True
        assert result.degraded_reason == "STORE_UNAVAILABLE"
        assert result.attempts == 3

    def test_transient_failure_recovers_within_retry(self, service, db_session, gateway):
        cached_core(db_session)
        gateway.subscriptions["cus_core"] = []
        gateway.add_subscription("cus_core", CORE_PRICE, 7495, PERIOD_START, PERIOD_END)
        gateway.fail("list_active_subscriptions", ProviderUnavailableError("blip"), times=1)

        result = service.check(EMAIL, RequestContext())

        assert result.degraded is False
        assert result.tier == "Core Plan"
        assert result.attempts == 2

    def test_no_cached_record_falls_back_to_free_trial(self, service, db_session, gateway):
        gateway.fail("find_customer_by_email", ProviderUnavailableError("down"))

        result = service.check("new@example.com", RequestContext())

        assert result.degraded is True
        assert result.tier == "Free Trial"
        assert result.subscribed is False
        assert result.usage.base_limit == 10
        assert result.stale_as_of is None

    def test_cached_read_does_not_open_counters(self, service, db_session):
        from grading_billing.db.models import UsageCounter

        cached_core(db_session)
        service.cached(EMAIL, reason="PROVIDER_UNAVAILABLE")

        assert db_session.query(UsageCounter).count() == 0


class TestSubscriptionEndpoint:
    """Test GET /v1/billing/subscription"""

    def test_requires_token(self, client):
        response = client.get("/v1/billing/subscription")
        assert response.status_code == 401

    def test_invalid_token_rejected(self, client):
        response = client.get("/v1/billing/subscription", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_ERROR"

    def test_synced_response(self, client, auth_headers, gateway):
        customer_id = gateway.add_customer(EMAIL)
        gateway.add_subscription(customer_id, CORE_PRICE, 7495, PERIOD_START, PERIOD_END)

        response = client.get("/v1/billing/subscription", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "Core Plan"
        assert data["degraded"] is False
        assert data["usage"]["total_limit"] == 750
        assert "attempts" not in data

    def test_provider_down_returns_degraded_not_error(self, client, db_session, auth_headers, gateway):
        cached_core(db_session)
        gateway.fail("list_active_subscriptions", ProviderUnavailableError("timed out"))

        response = client.get("/v1/billing/subscription", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "Core Plan"
        assert data["degraded"] is True
        assert data["stale_as_of"] is not None

    def test_unrefreshable_session_serves_cached_data(self, client, db_session, auth_headers, test_user, gateway):
        cached_core(db_session)
        session = db_session.query(UserSession).filter(UserSession.user_id == test_user.id).one()
        session.expires_at = utcnow() - timedelta(hours=2)
        session.refresh_expires_at = utcnow() - timedelta(hours=1)
        db_session.commit()

        response = client.get("/v1/billing/subscription", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "Core Plan"
        assert data["degraded"] is True
        assert data["degraded_reason"] == "SESSION_EXPIRED"
        assert gateway.call_count("list_active_subscriptions") == 0

    def test_revoked_session_rejected(self, client, db_session, auth_headers, test_user):
        session = db_session.query(UserSession).filter(UserSession.user_id == test_user.id).one()
        session.revoked_at = utcnow()
        db_session.commit()

        response = client.get("/v1/billing/subscription", headers=auth_headers)

        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_ERROR"
