"""Persistence layer for billing domain objects."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..db import managed_connection
from .models import (
    BillingProfile,
    BillingWebhookEvent,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)

_SUBSCRIPTION_FIELDS = (
    "user_id",
    "subscription_plan_id",
    "stripe_subscription_id",
    "stripe_customer_id",
    "status",
    "current_period_start",
    "current_period_end",
    "trial_start",
    "trial_end",
    "cancel_at_period_end",
    "canceled_at",
)


def _row_to_plan(row: dict) -> SubscriptionPlan:
    trial_settings = row.get("trial_settings") or {}
    return SubscriptionPlan(
        plan_id=row["id"],
        name=row["name"],
        description=row.get("description") or "",
        price=float(row.get("price") or 0),
        currency=row.get("currency") or "usd",
        billing_interval=row.get("billing_interval") or "monthly",
        features=row.get("features") or [],
        feature_limits=row.get("feature_limits") or {},
        trial_days=int(trial_settings.get("trial_days") or 0),
        provider_product_id=row.get("stripe_product_id"),
        provider_price_id=row.get("stripe_price_id"),
        is_active=bool(row.get("is_active", True)),
    )


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        subscription_id=row["id"],
        user_id=row["user_id"],
        plan_id=row["subscription_plan_id"],
        provider_subscription_id=row.get("stripe_subscription_id"),
        provider_customer_id=row.get("stripe_customer_id"),
        status=SubscriptionStatus(row["status"]),
        current_period_start=row.get("current_period_start"),
        current_period_end=row.get("current_period_end"),
        trial_start=row.get("trial_start"),
        trial_end=row.get("trial_end"),
        cancel_at_period_end=bool(row.get("cancel_at_period_end")),
        canceled_at=row.get("canceled_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_profile(row: dict) -> BillingProfile:
    status = row.get("subscription_status")
    return BillingProfile(
        user_id=row["id"],
        email=row.get("email"),
        provider_customer_id=row.get("stripe_customer_id"),
        subscription_status=SubscriptionStatus(status) if status else None,
        subscription_plan_id=row.get("subscription_plan_id"),
        subscription_period_end=row.get("subscription_current_period_end"),
    )


def _subscription_params(subscription: Subscription) -> Dict[str, object]:
    return {
        "user_id": subscription.user_id,
        "subscription_plan_id": subscription.plan_id,
        "stripe_subscription_id": subscription.provider_subscription_id,
        "stripe_customer_id": subscription.provider_customer_id,
        "status": subscription.status.value,
        "current_period_start": subscription.current_period_start,
        "current_period_end": subscription.current_period_end,
        "trial_start": subscription.trial_start,
        "trial_end": subscription.trial_end,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "canceled_at": subscription.canceled_at,
        "created_at": subscription.created_at,
    }


class PostgresBillingRepository:
    """Concrete repository persisting billing models in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn) as (connection, _managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()

    # Plans -------------------------------------------------------------
    def list_plans(self) -> List[SubscriptionPlan]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM subscription_plans WHERE is_active = TRUE ORDER BY price, id")
            rows = cursor.fetchall() or []
            return [_row_to_plan(row) for row in rows]

    def get_plan(self, plan_id: int) -> Optional[SubscriptionPlan]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM subscription_plans WHERE id = %s", (plan_id,))
            row = cursor.fetchone()
            return _row_to_plan(row) if row else None

    def get_plan_by_price_id(self, price_id: str) -> Optional[SubscriptionPlan]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM subscription_plans WHERE stripe_price_id = %s LIMIT 1", (price_id,))
            row = cursor.fetchone()
            return _row_to_plan(row) if row else None

    # Users -------------------------------------------------------------
    def get_billing_profile(self, user_id: int) -> Optional[BillingProfile]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, email, stripe_customer_id, subscription_status,
                       subscription_plan_id, subscription_current_period_end
                FROM users
                WHERE id = %s
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_profile(row) if row else None

    def set_provider_customer_id(self, user_id: int, customer_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("UPDATE users SET stripe_customer_id = %s WHERE id = %s", (customer_id, user_id))

    def update_billing_profile(
        self,
        user_id: int,
        *,
        status: SubscriptionStatus,
        plan_id: Optional[int],
        period_end: Optional[datetime],
        provider_customer_id: Optional[str] = None,
    ) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET subscription_status = %s,
                    subscription_plan_id = %s,
                    subscription_current_period_end = %s,
                    stripe_customer_id = COALESCE(%s, stripe_customer_id)
                WHERE id = %s
                """,
                (status.value, plan_id, period_end, provider_customer_id, user_id),
            )

    # Subscriptions -----------------------------------------------------
    def get_latest_subscription(self, user_id: int) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM user_subscriptions
                WHERE user_id = %s
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def get_subscription_by_provider_id(self, provider_subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM user_subscriptions WHERE stripe_subscription_id = %s",
                (provider_subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def save_subscription(self, subscription: Subscription) -> Subscription:
        """Insert or update a subscription keyed on its provider id."""

        params = _subscription_params(subscription)
        with self._cursor() as cursor:
            if subscription.provider_subscription_id is None and subscription.subscription_id is not None:
                assignments = ", ".join(f"{field} = %({field})s" for field in _SUBSCRIPTION_FIELDS)
                cursor.execute(
                    f"""
                    UPDATE user_subscriptions
                    SET {assignments}, updated_at = NOW()
                    WHERE id = %(id)s
                    RETURNING *
                    """,
                    {**params, "id": subscription.subscription_id},
                )
            else:
                updates = ", ".join(
                    f"{field} = EXCLUDED.{field}"
                    for field in _SUBSCRIPTION_FIELDS
                    if field != "stripe_subscription_id"
                )
                cursor.execute(
                    f"""
                    INSERT INTO user_subscriptions ({", ".join(_SUBSCRIPTION_FIELDS)}, created_at, updated_at)
                    VALUES ({", ".join(f"%({field})s" for field in _SUBSCRIPTION_FIELDS)}, %(created_at)s, NOW())
                    ON CONFLICT (stripe_subscription_id) DO UPDATE SET
                        {updates},
                        updated_at = NOW()
                    RETURNING *
                    """,
                    params,
                )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def get_usage(self, user_id: int) -> Dict[str, int]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT feature_key, current_usage FROM subscription_usage WHERE user_id = %s",
                (user_id,),
            )
            rows = cursor.fetchall() or []
            return {row["feature_key"]: int(row["current_usage"] or 0) for row in rows}

    # Webhooks ----------------------------------------------------------
    def record_webhook_event(self, event: BillingWebhookEvent) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_webhook_events (
                    event_id,
                    event_type,
                    payload,
                    received_at,
                    processed_at
                )
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (event_id) DO NOTHING
                """,
                (
                    event.event_id,
                    event.event_type,
                    psycopg2.extras.Json(event.payload),
                    event.received_at,
                ),
            )
            return cursor.rowcount > 0

    @contextmanager
    def transaction(self) -> Iterator["PostgresBillingRepository"]:
        """Bind every call made through the yielded repository to one connection."""

        if self._conn is not None:
            yield self
            return
        with managed_connection() as (connection, _managed):
            yield PostgresBillingRepository(conn=connection)


__all__ = ["PostgresBillingRepository"]
