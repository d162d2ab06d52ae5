"""
Billing Sync Procedure
Re-derives an account's subscriber row from the billing provider and writes
it back as a single whole-row upsert
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.base import utcnow
from ..db.models import SubscriberRecord, PlanTier, AccountStatus
from ..errors import FatalStoreError, InconsistentProviderDataError, StoreUnavailableError
from ..logging_config import redact_email
from .billing_gateway import BillingGateway, from_unix
from .tier_resolver import TierResolver, get_tier_resolver
from .usage_service import trial_window

logger = logging.getLogger(__name__)

# Columns the sync procedure owns; admin columns are never in this set
PROVIDER_FIELDS = (
    "external_customer_id",
    "subscribed",
    "tier",
    "period_start",
    "period_end",
    "next_reset_date",
)


@dataclass(frozen=True)
class SubscriberState:
    """Provider-derived state for one account"""
    email: str
    external_customer_id: Optional[str]
    subscribed: bool
    tier: PlanTier
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    next_reset_date: Optional[datetime]

    def as_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["tier"] = self.tier.value
        return row

    def changed_fields(self, record: Optional[SubscriberRecord]) -> List[str]:
        """Provider fields whose stored value differs from this state"""
        if record is None:
            return list(PROVIDER_FIELDS)
        row = self.as_row()
        return [name for name in PROVIDER_FIELDS if getattr(record, name) != row[name]]


def select_subscription(subscriptions: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Most recently started active subscription wins"""
    if not subscriptions:
        return None
    return max(subscriptions, key=lambda s: (s.get("start_date") or 0, s.get("created") or 0))


class BillingSyncService:
    """Single writer of provider-derived subscriber fields"""

    def __init__(
        self,
        db: Session,
        gateway: BillingGateway,
        resolver: Optional[TierResolver] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.resolver = resolver or get_tier_resolver()
        self.clock = clock

    def get_record(self, email: str) -> Optional[SubscriberRecord]:
        return self.db.query(SubscriberRecord).filter(SubscriberRecord.email == email).first()

    def get_record_by_customer(self, customer_id: str) -> Optional[SubscriberRecord]:
        return self.db.query(SubscriberRecord).filter(
            SubscriberRecord.external_customer_id == customer_id
        ).first()

    # ------------------------------------------------------------------
    # Derivation (provider reads only)
    # ------------------------------------------------------------------

    def unsubscribed_state(
        self,
        email: str,
        customer_id: Optional[str],
        record: Optional[SubscriberRecord] = None,
    ) -> SubscriberState:
        """Free Trial state with a monthly window anchored on account creation"""
        now = self.clock()
        anchor = record.created_at if record is not None and record.created_at else now
        start, end = trial_window(anchor, now)
        return SubscriberState(
            email=email,
            external_customer_id=customer_id,
            subscribed=False,
            tier=PlanTier.FREE_TRIAL,
            period_start=start,
            period_end=None,
            next_reset_date=end,
        )

    def derive_state(
        self,
        email: str,
        customer_id: Optional[str] = None,
        record: Optional[SubscriberRecord] = None,
    ) -> SubscriberState:
        """
        Query the provider and build the full provider-derived row

        Raises:
            ProviderUnavailableError: Provider unreachable (retryable)
        """
        if record is None:
            record = self.get_record(email)

        customer_id = customer_id or (record.external_customer_id if record else None)
        if not customer_id:
            customer = self.gateway.find_customer_by_email(email)
            if not customer:
                logger.info(f"No billing customer for {redact_email(email)}, using Free Trial")
                return self.unsubscribed_state(email, None, record)
            customer_id = customer["id"]

        subscription = select_subscription(self.gateway.list_active_subscriptions(customer_id))
        if subscription is None:
            return self.unsubscribed_state(email, customer_id, record)

        try:
            return self._state_from_subscription(email, customer_id, subscription)
        except InconsistentProviderDataError as e:
            logger.error(
                f"Malformed subscription for {redact_email(email)}, treating as unsubscribed: {e}",
                extra={"customer_id": customer_id, "subscription_id": subscription.get("id")}
            )
            return self.unsubscribed_state(email, customer_id, record)

    def _state_from_subscription(
        self,
        email: str,
        customer_id: str,
        subscription: Dict[str, Any],
    ) -> SubscriberState:
        items = (subscription.get("items") or {}).get("data") or []
        if not items:
            raise InconsistentProviderDataError("subscription has no line items")
        item = items[0]

        price = item.get("price") or {}
        price_id = price.get("id")
        if not price_id:
            raise InconsistentProviderDataError("subscription item has no price")

        amount = price.get("unit_amount")
        if amount is None:
            amount = self.gateway.retrieve_price(price_id).get("unit_amount")

        # Newer API versions carry the period on the item
        period_start = from_unix(subscription.get("current_period_start") or item.get("current_period_start"))
        period_end = from_unix(subscription.get("current_period_end") or item.get("current_period_end"))
        if period_start is None or period_end is None:
            raise InconsistentProviderDataError("subscription has no current period")
        if period_start >= period_end:
            raise InconsistentProviderDataError(
                f"subscription period is inverted ({period_start} >= {period_end})"
            )

        return SubscriberState(
            email=email,
            external_customer_id=customer_id,
            subscribed=True,
            tier=self.resolver.resolve(price_id, amount),
            period_start=period_start,
            period_end=period_end,
            next_reset_date=period_end,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_state(self, state: SubscriberState, event_at: Optional[datetime] = None) -> None:
        """
        Upsert the whole provider-derived row (last write wins)

        Admin-owned columns are set on insert only.
        """
        now = self.clock()
        row = state.as_row()
        row["last_synced_at"] = now
        row["updated_at"] = now

        # A new unsubscribed row's trial window was anchored at derivation time
        created_at = now
        if not state.subscribed and state.period_start is not None:
            created_at = min(state.period_start, now)

        dialect = self.db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(SubscriberRecord).values(
            **row,
            created_at=created_at,
            account_status=AccountStatus.ACTIVE.value,
            unlimited_override=False,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SubscriberRecord.email],
            set_={name: stmt.excluded[name] for name in row if name != "email"},
        )

        try:
            self.db.execute(stmt)
            if event_at is not None:
                self._advance_last_event_at(state.email, event_at)
            self.db.commit()
        except (OperationalError, DisconnectionError) as e:
            # Timeouts and dropped connections are transient
            self.db.rollback()
            logger.warning(f"Subscriber upsert for {redact_email(state.email)} hit an unavailable store: {e}")
            raise StoreUnavailableError("Subscriber store unavailable") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Subscriber upsert failed for {redact_email(state.email)}: {e}")
            raise FatalStoreError("Could not write subscriber record") from e

        logger.info(
            f"Synced {redact_email(state.email)}: subscribed={state.subscribed} tier={state.tier.value}",
            extra={"customer_id": state.external_customer_id, "tier": state.tier.value}
        )

    def _advance_last_event_at(self, email: str, event_at: datetime) -> None:
        # Only ever moves forward
        self.db.execute(
            update(SubscriberRecord)
            .where(SubscriberRecord.email == email)
            .where(or_(SubscriberRecord.last_event_at.is_(None), SubscriberRecord.last_event_at < event_at))
            .values(last_event_at=event_at)
        )

    def sync_account(self, email: str, event_at: Optional[datetime] = None) -> SubscriberState:
        """Derive and write one account's state (exactly one upsert)"""
        state = self.derive_state(email)
        self.write_state(state, event_at=event_at)
        return state

    def sync_customer(self, customer_id: str, event_at: Optional[datetime] = None) -> Optional[SubscriberState]:
        """
        Sync the account behind a provider customer id

        The email comes from the local record when one exists, otherwise
        from the provider's customer object. Returns None when neither knows
        the customer.
        """
        record = self.get_record_by_customer(customer_id)
        if record is not None:
            email = record.email
        else:
            customer = self.gateway.retrieve_customer(customer_id)
            email = customer.get("email") if customer else None
        if not email:
            logger.warning(f"No account found for customer {customer_id}, skipping sync")
            return None

        state = self.derive_state(email, customer_id=customer_id, record=record)
        self.write_state(state, event_at=event_at)
        return state

    def force_unsubscribed(
        self,
        email: str,
        customer_id: Optional[str] = None,
        event_at: Optional[datetime] = None,
    ) -> SubscriberState:
        """Write Free Trial state without a provider round-trip"""
        record = self.get_record(email)
        if customer_id is None and record is not None:
            customer_id = record.external_customer_id
        state = self.unsubscribed_state(email, customer_id, record)
        self.write_state(state, event_at=event_at)
        return state
