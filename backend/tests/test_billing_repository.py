"""Transaction boundary tests for the PostgreSQL billing repository."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

import pytest

from backend.app import db
from backend.app.billing import BillingWebhookEvent, Subscription, SubscriptionStatus
from backend.app.billing.repository import PostgresBillingRepository

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


def _subscription_row(**overrides: Any) -> dict:
    row = {
        "id": 4,
        "user_id": 1,
        "subscription_plan_id": 1,
        "stripe_subscription_id": "sub_1",
        "stripe_customer_id": "cus_1",
        "status": "active",
        "current_period_start": NOW,
        "current_period_end": NOW,
        "trial_start": None,
        "trial_end": None,
        "cancel_at_period_end": False,
        "canceled_at": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


class FakeCursor:
    def __init__(self, results: List[Optional[dict]], rowcount: int) -> None:
        self.results = list(results)
        self.rowcount = rowcount
        self.executed: List[str] = []

    def execute(self, query: str, params: Any = None) -> None:
        self.executed.append(" ".join(query.split()))

    def fetchone(self) -> Optional[dict]:
        return self.results.pop(0) if self.results else None

    def close(self) -> None:
        pass


class FakeConnection:
    def __init__(self, results: List[Optional[dict]], rowcount: int = 1) -> None:
        self.cursor_obj = FakeCursor(results, rowcount)
        self.commits = 0
        self.rolled_back = False
        self.closed = False

    def cursor(self, cursor_factory=None) -> FakeCursor:
        return self.cursor_obj

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rolled_back = True

    def close(self) -> None:
        self.closed = True


def _install(monkeypatch, connection: FakeConnection) -> List[FakeConnection]:
    opened: List[FakeConnection] = []

    def get_conn() -> FakeConnection:
        opened.append(connection)
        return connection

    monkeypatch.setattr(db, "get_conn", get_conn)
    return opened


def _event() -> BillingWebhookEvent:
    return BillingWebhookEvent(event_id="evt_1", event_type="checkout.session.completed", payload={"id": "evt_1"})


def _subscription() -> Subscription:
    return Subscription(
        user_id=1,
        plan_id=1,
        provider_subscription_id="sub_1",
        status=SubscriptionStatus.ACTIVE,
        created_at=NOW,
    )


def test_transaction_commits_event_and_effects_on_one_connection(monkeypatch):
    connection = FakeConnection([_subscription_row()])
    opened = _install(monkeypatch, connection)

    with PostgresBillingRepository().transaction() as repository:
        assert repository.record_webhook_event(_event()) is True
        saved = repository.save_subscription(_subscription())

    assert saved.subscription_id == 4
    assert len(opened) == 1
    assert connection.commits == 1 and not connection.rolled_back
    assert connection.closed
    assert connection.cursor_obj.executed[0].startswith("INSERT INTO billing_webhook_events")
    assert connection.cursor_obj.executed[1].startswith("INSERT INTO user_subscriptions")


def test_transaction_rolls_back_recorded_event_when_effects_fail(monkeypatch):
    connection = FakeConnection([None])
    _install(monkeypatch, connection)

    with pytest.raises(RuntimeError, match="persist subscription"):
        with PostgresBillingRepository().transaction() as repository:
            repository.record_webhook_event(_event())
            repository.save_subscription(_subscription())

    assert connection.rolled_back
    assert connection.commits == 0
    assert connection.closed


def test_duplicate_event_is_reported(monkeypatch):
    connection = FakeConnection([], rowcount=0)
    _install(monkeypatch, connection)

    with PostgresBillingRepository().transaction() as repository:
        assert repository.record_webhook_event(_event()) is False


def test_transaction_on_caller_connection_leaves_commit_to_caller(monkeypatch):
    connection = FakeConnection([])
    opened = _install(monkeypatch, connection)
    repository = PostgresBillingRepository(conn=connection)

    with repository.transaction() as bound:
        bound.record_webhook_event(_event())

    assert bound is repository
    assert opened == []
    assert connection.commits == 0 and not connection.closed
