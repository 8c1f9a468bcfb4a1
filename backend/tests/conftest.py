"""Shared in-memory fakes for the waitlist and billing tests."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import pytest

from backend.app.billing import (
    BillingAuditEvent,
    BillingProfile,
    BillingService,
    BillingWebhookEvent,
    PaymentFailure,
    ProviderSubscription,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from backend.app.billing.service import (
    BillingEventLogger,
    BillingNotifier,
    BillingRepository,
    PaymentProvider,
    PaymentProviderError,
)
from backend.app.waitlist import (
    BusinessHours,
    Reservation,
    WaitlistChanges,
    WaitlistEntry,
    WaitlistFilters,
    WaitlistService,
    WaitlistStatus,
    WaitlistUpdateResult,
)
from backend.app.waitlist.service import WaitlistNotifier, WaitlistRepository

NOW = datetime(2024, 6, 3, 12, 0)  # a Monday
TOMORROW = date(2024, 6, 4)
BILLING_NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


class InMemoryWaitlistRepository(WaitlistRepository):
    def __init__(self) -> None:
        self.entries: Dict[int, WaitlistEntry] = {}
        self.reservations: List[Reservation] = []
        self.hours: Dict[int, BusinessHours] = {
            day: BusinessHours(day_of_week=day, open_time="11:00", close_time="22:00") for day in range(7)
        }
        self.fail_reservation_insert = False
        self._next_id = 1

    def add(self, **overrides) -> WaitlistEntry:
        fields = {
            "entry_id": self._next_id,
            "customer_name": "Ada",
            "customer_phone": "555-0100",
            "customer_email": "ada@example.com",
            "party_size": 2,
            "date": TOMORROW,
            "time": "19:00",
        }
        fields.update(overrides)
        entry = WaitlistEntry(**fields)
        self.entries[entry.entry_id] = entry
        self._next_id = max(self._next_id, entry.entry_id) + 1
        return entry

    def create_entry(self, **kwargs) -> WaitlistEntry:
        return self.add(**kwargs)

    def get_entry(self, entry_id: int) -> Optional[WaitlistEntry]:
        return self.entries.get(entry_id)

    def list_entries(self, filters: WaitlistFilters) -> Sequence[WaitlistEntry]:
        entries = list(self.entries.values())
        if filters.date is not None:
            entries = [entry for entry in entries if entry.date == filters.date]
        if filters.status is not None:
            entries = [entry for entry in entries if entry.status == filters.status]
        return entries

    def list_waiting_by_phone(self, phone: str, *, from_date: date) -> Sequence[WaitlistEntry]:
        return [
            entry
            for entry in self.entries.values()
            if entry.customer_phone == phone and entry.status == WaitlistStatus.WAITING and entry.date >= from_date
        ]

    def count_waiting(self, *, date: date, time: str, before_entry_id: Optional[int] = None) -> int:
        return sum(
            1
            for entry in self.entries.values()
            if entry.date == date
            and entry.time == time
            and entry.status == WaitlistStatus.WAITING
            and (before_entry_id is None or entry.entry_id < before_entry_id)
        )

    def update_entry(self, entry_id: int, changes: WaitlistChanges) -> Optional[WaitlistEntry]:
        entry = self.entries.get(entry_id)
        if entry is None:
            return None
        updated = changes.apply_to(entry)
        self.entries[entry_id] = updated
        return updated

    def promote_to_reservation(self, entry_id: int, changes: WaitlistChanges) -> Optional[WaitlistUpdateResult]:
        entry = self.entries.get(entry_id)
        if entry is None or entry.is_seated:
            return None
        updated = changes.apply_to(entry)
        if self.fail_reservation_insert:
            # Nothing is written when the transaction fails
            raise RuntimeError("Failed to persist reservation")
        reservation = Reservation(
            reservation_id=len(self.reservations) + 1,
            name=updated.customer_name,
            email=updated.customer_email,
            phone_number=updated.customer_phone,
            party_size=updated.party_size,
            date=updated.date,
            time=updated.time,
            special_instructions=updated.special_requests,
            source_waitlist_entry_id=entry_id,
        )
        self.entries[entry_id] = updated
        self.reservations.append(reservation)
        return WaitlistUpdateResult(entry=updated, reservation=reservation)

    def delete_entry(self, entry_id: int) -> bool:
        return self.entries.pop(entry_id, None) is not None

    def get_business_hours(self, day_of_week: int) -> Optional[BusinessHours]:
        return self.hours.get(day_of_week)


class RecordingNotifier(WaitlistNotifier):
    def __init__(self) -> None:
        self.notified: List[Tuple[int, int]] = []

    def notify_table_ready(self, entry: WaitlistEntry, position: int) -> None:
        self.notified.append((entry.entry_id, position))


@pytest.fixture
def waitlist_components():
    repository = InMemoryWaitlistRepository()
    notifier = RecordingNotifier()
    service = WaitlistService(repository=repository, notifier=notifier, clock=lambda: NOW)
    return service, repository, notifier


PRO_PLAN = SubscriptionPlan(
    plan_id=1,
    name="Pro",
    price=29.0,
    features=["basic_reservations", "waitlist", "menu_management", "analytics"],
    feature_limits={"menu_items": 100, "staff_accounts": {"maximum": 5, "unit": "users"}, "locations": -1},
    trial_days=14,
    provider_product_id="prod_pro",
    provider_price_id="price_pro",
)
ENTERPRISE_PLAN = SubscriptionPlan(
    plan_id=2,
    name="Enterprise",
    price=99.0,
    features=["basic_reservations", "waitlist", "menu_management", "analytics", "api_access"],
    provider_product_id="prod_enterprise",
    provider_price_id="price_enterprise",
)
RETIRED_PLAN = SubscriptionPlan(plan_id=3, name="Legacy", price=9.0, provider_price_id="price_legacy", is_active=False)


class InMemoryBillingRepository(BillingRepository):
    def __init__(self) -> None:
        self.plans: Dict[int, SubscriptionPlan] = {
            plan.plan_id: plan for plan in (PRO_PLAN, ENTERPRISE_PLAN, RETIRED_PLAN)
        }
        self.profiles: Dict[int, BillingProfile] = {1: BillingProfile(user_id=1, email="owner@example.com")}
        self.subscriptions: List[Subscription] = []
        self.usage: Dict[int, Dict[str, int]] = {}
        self.webhook_events: Dict[str, BillingWebhookEvent] = {}
        self.rollbacks = 0
        self.profile_updates: List[Tuple[int, SubscriptionStatus, Optional[int]]] = []

    def add_subscription(self, **overrides) -> Subscription:
        fields = {
            "user_id": 1,
            "plan_id": PRO_PLAN.plan_id,
            "provider_subscription_id": "sub_existing",
            "provider_customer_id": "cus_existing",
            "status": SubscriptionStatus.ACTIVE,
            "current_period_start": BILLING_NOW - timedelta(days=10),
            "current_period_end": BILLING_NOW + timedelta(days=20),
            "created_at": BILLING_NOW - timedelta(days=10),
        }
        fields.update(overrides)
        profile = self.profiles.get(fields["user_id"])
        if profile is not None and profile.provider_customer_id is None:
            self.profiles[profile.user_id] = profile.model_copy(
                update={"provider_customer_id": fields["provider_customer_id"]}
            )
        return self.save_subscription(Subscription(**fields))

    def list_plans(self) -> Sequence[SubscriptionPlan]:
        return list(self.plans.values())

    def get_plan(self, plan_id: int) -> Optional[SubscriptionPlan]:
        return self.plans.get(plan_id)

    def get_plan_by_price_id(self, price_id: str) -> Optional[SubscriptionPlan]:
        return next((plan for plan in self.plans.values() if plan.provider_price_id == price_id), None)

    def get_billing_profile(self, user_id: int) -> Optional[BillingProfile]:
        return self.profiles.get(user_id)

    def set_provider_customer_id(self, user_id: int, customer_id: str) -> None:
        self.profiles[user_id] = self.profiles[user_id].model_copy(update={"provider_customer_id": customer_id})

    def update_billing_profile(
        self,
        user_id: int,
        *,
        status: SubscriptionStatus,
        plan_id: Optional[int],
        period_end: Optional[datetime],
        provider_customer_id: Optional[str] = None,
    ) -> None:
        profile = self.profiles.get(user_id) or BillingProfile(user_id=user_id)
        update = {
            "subscription_status": status,
            "subscription_plan_id": plan_id,
            "subscription_period_end": period_end,
        }
        if provider_customer_id:
            update["provider_customer_id"] = provider_customer_id
        self.profiles[user_id] = profile.model_copy(update=update)
        self.profile_updates.append((user_id, status, plan_id))

    def get_latest_subscription(self, user_id: int) -> Optional[Subscription]:
        owned = [subscription for subscription in self.subscriptions if subscription.user_id == user_id]
        return max(owned, key=lambda item: (item.created_at, item.subscription_id or 0), default=None)

    def get_subscription_by_provider_id(self, provider_subscription_id: str) -> Optional[Subscription]:
        return next(
            (item for item in self.subscriptions if item.provider_subscription_id == provider_subscription_id),
            None,
        )

    def save_subscription(self, subscription: Subscription) -> Subscription:
        for index, existing in enumerate(self.subscriptions):
            same_row = subscription.subscription_id is not None and existing.subscription_id == subscription.subscription_id
            same_remote = (
                subscription.provider_subscription_id is not None
                and existing.provider_subscription_id == subscription.provider_subscription_id
            )
            if same_row or same_remote:
                stored = subscription.model_copy(update={"subscription_id": existing.subscription_id})
                self.subscriptions[index] = stored
                return stored
        stored = subscription.model_copy(update={"subscription_id": len(self.subscriptions) + 1})
        self.subscriptions.append(stored)
        return stored

    def get_usage(self, user_id: int) -> Dict[str, int]:
        return dict(self.usage.get(user_id, {}))

    def record_webhook_event(self, event: BillingWebhookEvent) -> bool:
        if event.event_id in self.webhook_events:
            return False
        self.webhook_events[event.event_id] = event
        return True

    @contextmanager
    def transaction(self) -> Iterator["InMemoryBillingRepository"]:
        snapshot = (
            list(self.subscriptions),
            dict(self.profiles),
            dict(self.webhook_events),
            list(self.profile_updates),
        )
        try:
            yield self
        except Exception:
            self.subscriptions, self.profiles, self.webhook_events, self.profile_updates = snapshot
            self.rollbacks += 1
            raise


class FakePaymentProvider(PaymentProvider):
    def __init__(self) -> None:
        self.customers: List[Tuple[Optional[str], int]] = []
        self.checkout_sessions: List[Dict[str, object]] = []
        self.portal_sessions: List[Dict[str, object]] = []
        self.canceled: List[Tuple[str, bool]] = []
        self.resumed: List[str] = []
        self.created_subscriptions: List[Tuple[str, str]] = []
        self.plan_changes: List[Tuple[str, str]] = []
        self.remote: Dict[str, ProviderSubscription] = {}
        self.fail_with: Optional[str] = None

    def _check(self) -> None:
        if self.fail_with:
            raise PaymentProviderError(self.fail_with)

    def create_customer(self, *, email: Optional[str], user_id: int) -> str:
        self._check()
        self.customers.append((email, user_id))
        return f"cus_new_{user_id}"

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        trial_period_days: Optional[int] = None,
    ) -> Dict[str, object]:
        self._check()
        session = {
            "id": f"cs_test_{len(self.checkout_sessions) + 1}",
            "url": "https://checkout.example.com/pay",
            "customer": customer_id,
            "price_id": price_id,
            "metadata": dict(metadata),
            "success_url": success_url,
            "cancel_url": cancel_url,
            "trial_period_days": trial_period_days,
        }
        self.checkout_sessions.append(session)
        return session

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, object]:
        self._check()
        session = {"url": "https://billing.example.com/session", "customer": customer_id, "return_url": return_url}
        self.portal_sessions.append(session)
        return session

    def retrieve_subscription(self, provider_subscription_id: str) -> ProviderSubscription:
        self._check()
        return self.remote[provider_subscription_id]

    def cancel_subscription(self, provider_subscription_id: str, *, immediate: bool) -> ProviderSubscription:
        self._check()
        self.canceled.append((provider_subscription_id, immediate))
        return ProviderSubscription(
            subscription_id=provider_subscription_id,
            status="canceled" if immediate else "active",
            cancel_at_period_end=not immediate,
        )

    def resume_subscription(self, provider_subscription_id: str) -> ProviderSubscription:
        self._check()
        self.resumed.append(provider_subscription_id)
        return ProviderSubscription(subscription_id=provider_subscription_id)

    def create_subscription(self, *, customer_id: str, price_id: str) -> ProviderSubscription:
        self._check()
        self.created_subscriptions.append((customer_id, price_id))
        return ProviderSubscription(
            subscription_id=f"sub_renewed_{len(self.created_subscriptions)}",
            customer_id=customer_id,
            current_period_start=BILLING_NOW,
            current_period_end=BILLING_NOW + timedelta(days=30),
            price_id=price_id,
        )

    def change_subscription_plan(self, provider_subscription_id: str, *, price_id: str) -> ProviderSubscription:
        self._check()
        self.plan_changes.append((provider_subscription_id, price_id))
        return ProviderSubscription(subscription_id=provider_subscription_id, price_id=price_id)

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> BillingWebhookEvent:
        raise NotImplementedError


class FakeBillingNotifier(BillingNotifier):
    def __init__(self) -> None:
        self.payment_failures: List[PaymentFailure] = []
        self.cancellations: List[Subscription] = []

    def notify_payment_failure(self, failure: PaymentFailure) -> None:
        self.payment_failures.append(failure)

    def notify_subscription_canceled(self, subscription: Subscription) -> None:
        self.cancellations.append(subscription)


class FakeEventLogger(BillingEventLogger):
    def __init__(self) -> None:
        self.events: List[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)


@pytest.fixture
def billing_components():
    repository = InMemoryBillingRepository()
    provider = FakePaymentProvider()
    notifier = FakeBillingNotifier()
    event_logger = FakeEventLogger()
    service = BillingService(
        repository=repository,
        provider=provider,
        notifier=notifier,
        event_logger=event_logger,
        app_base_url="https://app.example.com/",
        clock=lambda: BILLING_NOW,
    )
    return repository, provider, notifier, event_logger, service
