"""Domain models for subscription billing."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubscriptionStatus(str, Enum):
    """Local subscription lifecycle states."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"


class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BillingWebhookEventType(str, Enum):
    """Webhook event types that the application reacts to."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class FeatureLimitDefinition(BaseModel):
    maximum: int = Field(ge=0)
    unit: str = "count"

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SubscriptionPlan(BaseModel):
    """Read-only catalog entry describing a purchasable plan."""

    plan_id: int
    name: str
    description: str = ""
    price: float = Field(default=0.0, ge=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    billing_interval: BillingInterval = BillingInterval.MONTHLY
    features: List[str] = Field(default_factory=list)
    feature_limits: Dict[str, FeatureLimitDefinition] = Field(default_factory=dict)
    trial_days: int = Field(default=0, ge=0)
    provider_product_id: Optional[str] = None
    provider_price_id: Optional[str] = None
    is_active: bool = True

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()

    @field_validator("feature_limits", mode="before")
    @classmethod
    def _coerce_limits(cls, value: object) -> object:
        # Catalog rows store either a bare maximum or {"maximum": .., "unit": ..};
        # a negative maximum marks the feature as unlimited.
        if isinstance(value, dict):
            limits = {}
            for key, limit in value.items():
                if isinstance(limit, (int, float)):
                    limit = {"maximum": limit}
                if isinstance(limit, dict) and (limit.get("maximum") or 0) < 0:
                    continue
                limits[str(key)] = limit
            return limits
        return value

    @property
    def is_free(self) -> bool:
        return self.price == 0


class Subscription(BaseModel):
    """Local subscription state synchronized from the billing provider."""

    subscription_id: Optional[int] = None
    user_id: int
    plan_id: int
    provider_subscription_id: Optional[str] = None
    provider_customer_id: Optional[str] = None
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_active(self) -> bool:
        return self.status in {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING}

    @property
    def is_past_due(self) -> bool:
        """Return ``True`` when the subscription is in a past-due state."""
        return self.status == SubscriptionStatus.PAST_DUE

    @property
    def is_pending_cancellation(self) -> bool:
        return self.cancel_at_period_end and self.status != SubscriptionStatus.CANCELED

    @property
    def is_billable(self) -> bool:
        """Subscriptions the owner can still cancel or change."""
        return self.is_active or self.is_past_due


class BillingProfile(BaseModel):
    """Billing fields kept on the ``users`` row."""

    user_id: int
    email: Optional[str] = None
    provider_customer_id: Optional[str] = None
    subscription_status: Optional[SubscriptionStatus] = None
    subscription_plan_id: Optional[int] = None
    subscription_period_end: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BillingWebhookEvent(BaseModel):
    """Verified webhook payload stored for idempotency tracking.

    ``event_type`` stays a plain string so unhandled provider events can still
    be recorded and acknowledged.
    """

    event_id: str
    event_type: str
    payload: Dict[str, object]
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def known_type(self) -> Optional[BillingWebhookEventType]:
        try:
            return BillingWebhookEventType(self.event_type)
        except ValueError:
            return None


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    CHECKOUT_STARTED = "checkout_started"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    CANCELLATION_SCHEDULED = "cancellation_scheduled"
    SUBSCRIPTION_REACTIVATED = "subscription_reactivated"
    PLAN_CHANGED = "plan_changed"
    PAYMENT_FAILED = "payment_failed"


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    user_id: Optional[int] = None
    plan_id: Optional[int] = None
    subscription_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentFailure(BaseModel):
    """An unpaid invoice that moved a subscription to past due."""

    user_id: int
    subscription_id: str
    invoice_id: Optional[str] = None
    amount_due: int = 0
    currency: str = "usd"
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CheckoutSession(BaseModel):
    """Return value of a checkout session creation request."""

    session_id: str
    url: str
    plan_id: int
    is_upgrade: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PortalSession(BaseModel):
    url: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingInterval",
    "BillingProfile",
    "BillingWebhookEvent",
    "BillingWebhookEventType",
    "CheckoutSession",
    "FeatureLimitDefinition",
    "PaymentFailure",
    "PortalSession",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
]
