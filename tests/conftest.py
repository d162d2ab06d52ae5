"""
Pytest configuration and fixtures
"""
import pytest
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-billing-tests-only-min-32-chars"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_TEST_SECRET_KEY"] = "sk_test_billing"
os.environ["STRIPE_TEST_WEBHOOK_SECRET"] = "whsec_test_billing"
os.environ["SYNC_RETRY_BASE_DELAY"] = "0"  # No real sleeping between retries
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests

# Import after setting env vars
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from grading_billing.app import app
from grading_billing.auth import create_session
from grading_billing.db import Base, SessionLocal, engine, get_db
from grading_billing.db.base import utcnow
from grading_billing.db.models import SubscriberRecord, User
from grading_billing.errors import WebhookRejectedError
from grading_billing.services.billing_gateway import BillingGateway, ProviderEvent, from_unix, get_billing_gateway

CORE_PRICE = "price_1RXUq9GG0TRs3C9HyLzQcO5X"
LITE_PRICE = "price_1RXUqTGG0TRs3C9HhMklQ6OX"
SUPER_PRICE = "price_1QbkdOE6GV5VVdXqwLz4vCAW"


def to_unix(value: datetime) -> int:
    """Naive UTC datetime to unix seconds"""
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def whole_seconds(value: datetime) -> datetime:
    return value.replace(microsecond=0)


class FakeBillingGateway(BillingGateway):
    """In-memory billing provider"""

    SIGNATURE = "t=1,v1=fake"

    def __init__(self):
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, List[Dict[str, Any]]] = {}
        self.prices: Dict[str, Dict[str, Any]] = {}
        self.checkout_sessions: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.cancelled: List[str] = []
        self.paused: List[str] = []
        self.resumed: List[str] = []
        self._failures: Dict[str, list] = {}

    # -- test setup helpers --------------------------------------------------

    def fail(self, method: str, error: Exception, times: Optional[int] = None):
        """Make `method` raise `error`, always or for the next `times` calls"""
        self._failures[method] = [error, times]

    def add_customer(self, email: str, customer_id: Optional[str] = None) -> str:
        customer_id = customer_id or f"cus_{len(self.customers) + 1:04d}"
        self.customers[customer_id] = {"id": customer_id, "email": email}
        self.subscriptions.setdefault(customer_id, [])
        return customer_id

    def add_subscription(
        self,
        customer_id: str,
        price_id: str,
        amount: Optional[int],
        period_start: datetime,
        period_end: datetime,
        subscription_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        subscription = {
            "id": subscription_id or f"sub_{sum(len(s) for s in self.subscriptions.values()) + 1:04d}",
            "customer": customer_id,
            "status": "active",
            "start_date": to_unix(period_start),
            "created": to_unix(period_start),
            "current_period_start": to_unix(period_start),
            "current_period_end": to_unix(period_end),
            "items": {"data": [{"price": {"id": price_id, "unit_amount": amount}}]},
        }
        self.subscriptions.setdefault(customer_id, []).append(subscription)
        return subscription

    def _call(self, method: str, *args):
        self.calls.append((method,) + args)
        failure = self._failures.get(method)
        if failure is None:
            return
        error, times = failure
        if times is None:
            raise error
        if times > 0:
            failure[1] = times - 1
            raise error

    def call_count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    # -- BillingGateway ------------------------------------------------------

    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        self._call("construct_event")
        if signature != self.SIGNATURE:
            raise WebhookRejectedError("Invalid webhook signature")
        raw = json.loads(payload)
        return ProviderEvent(
            id=raw["id"],
            type=raw["type"],
            created=from_unix(raw.get("created")),
            data_object=raw["data"]["object"],
            payload=raw,
        )

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        self._call("find_customer_by_email", email)
        for customer in self.customers.values():
            if customer["email"] == email:
                return dict(customer)
        return None

    def retrieve_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        self._call("retrieve_customer", customer_id)
        customer = self.customers.get(customer_id)
        return dict(customer) if customer else None

    def list_active_subscriptions(self, customer_id: str) -> List[Dict[str, Any]]:
        self._call("list_active_subscriptions", customer_id)
        return [s for s in self.subscriptions.get(customer_id, []) if s["status"] == "active"]

    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        self._call("retrieve_price", price_id)
        return self.prices.get(price_id, {"id": price_id, "unit_amount": None})

    def retrieve_checkout_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        self._call("retrieve_checkout_session", session_id)
        return self.checkout_sessions.get(session_id)

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        self._call("cancel_subscription", subscription_id)
        for subscriptions in self.subscriptions.values():
            for subscription in subscriptions:
                if subscription["id"] == subscription_id:
                    subscription["status"] = "canceled"
        self.cancelled.append(subscription_id)
        return {"id": subscription_id, "status": "canceled"}

    def pause_collection(self, subscription_id: str) -> Dict[str, Any]:
        self._call("pause_collection", subscription_id)
        self.paused.append(subscription_id)
        return {"id": subscription_id, "pause_collection": {"behavior": "void"}}

    def resume_collection(self, subscription_id: str) -> Dict[str, Any]:
        self._call("resume_collection", subscription_id)
        self.resumed.append(subscription_id)
        return {"id": subscription_id, "pause_collection": None}


def event_body(event_id: str, event_type: str, data_object: Dict[str, Any], created: Optional[datetime] = None) -> bytes:
    """Serialized provider event as delivered to the webhook endpoint"""
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": to_unix(created or utcnow()),
        "data": {"object": data_object},
    }).encode("utf-8")


@pytest.fixture(scope="function")
def schema():
    """Fresh tables for every test"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(schema) -> Session:
    """Database session shared by the test and the app"""
    session = SessionLocal()

    def override_get_db():
        try:
            yield session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    yield session

    session.close()
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def gateway() -> FakeBillingGateway:
    return FakeBillingGateway()


@pytest.fixture(scope="function")
def client(db_session, gateway):
    """Create test client wired to the fake gateway"""
    app.dependency_overrides[get_billing_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.pop(get_billing_gateway, None)


def make_subscriber(db: Session, email: str, **fields) -> SubscriberRecord:
    """Persist a subscriber record with Free Trial defaults"""
    now = whole_seconds(utcnow())
    values = {
        "email": email,
        "subscribed": False,
        "tier": "Free Trial",
        "period_start": now,
        "period_end": None,
        "next_reset_date": now + timedelta(days=30),
        "created_at": now,
    }
    values.update(fields)
    record = SubscriberRecord(**values)
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    """Create a test user"""
    user = User(email="teacher@example.com", full_name="Test Teacher", is_active=True)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def admin_user(db_session: Session) -> User:
    """Create an admin user"""
    user = User(email="admin@example.com", full_name="Admin", is_active=True, is_admin=True)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def auth_headers(db_session: Session, test_user: User) -> Dict[str, str]:
    token, _ = create_session(db_session, test_user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(db_session: Session, admin_user: User) -> Dict[str, str]:
    token, _ = create_session(db_session, admin_user)
    return {"Authorization": f"Bearer {token}"}
