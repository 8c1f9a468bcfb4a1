"""Billing domain package providing models and services for paid plans."""

from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingInterval,
    BillingProfile,
    BillingWebhookEvent,
    BillingWebhookEventType,
    CheckoutSession,
    FeatureLimitDefinition,
    PaymentFailure,
    PortalSession,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from .payloads import ProviderSubscription
from .plans import FREE_PLAN, FREE_PLAN_ID
from .service import (
    BillingEventLogger,
    BillingNotifier,
    BillingRepository,
    BillingService,
    PaymentProvider,
    PaymentProviderError,
    WebhookVerificationError,
)
from .status import BillingInfo, FeatureLimit, SubscriptionSnapshot, TrialInfo

__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingEventLogger",
    "BillingInfo",
    "BillingInterval",
    "BillingNotifier",
    "BillingProfile",
    "BillingRepository",
    "BillingService",
    "BillingWebhookEvent",
    "BillingWebhookEventType",
    "CheckoutSession",
    "FREE_PLAN",
    "FREE_PLAN_ID",
    "FeatureLimit",
    "FeatureLimitDefinition",
    "PaymentFailure",
    "PaymentProvider",
    "PaymentProviderError",
    "PortalSession",
    "ProviderSubscription",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionSnapshot",
    "SubscriptionStatus",
    "TrialInfo",
    "WebhookVerificationError",
]
