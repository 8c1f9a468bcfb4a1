"""Application wiring for the billing service."""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Iterator, Mapping, Optional
from uuid import uuid4

import stripe

from ...config import BillingConfig, load_billing_config
from ..billing import (
    BillingAuditEvent,
    BillingEventLogger,
    BillingNotifier,
    BillingService,
    BillingWebhookEvent,
    PaymentFailure,
    PaymentProvider,
    PaymentProviderError,
    ProviderSubscription,
    Subscription,
    WebhookVerificationError,
)
from ..billing.payloads import provider_subscription_from_payload
from ..billing.repository import PostgresBillingRepository

logger = logging.getLogger("billing")


class LoggingBillingNotifier(BillingNotifier):
    """Notifier that records billing notifications to the application logger."""

    def notify_payment_failure(self, failure: PaymentFailure) -> None:
        logger.warning(
            "Payment failure for user %s subscription=%s invoice=%s amount=%s %s",
            failure.user_id,
            failure.subscription_id,
            failure.invoice_id,
            failure.amount_due,
            failure.currency,
        )

    def notify_subscription_canceled(self, subscription: Subscription) -> None:
        logger.warning(
            "Subscription %s canceled for user %s",
            subscription.provider_subscription_id,
            subscription.user_id,
        )


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s user=%s plan=%s subscription=%s metadata=%s",
            event.event_type.value,
            event.user_id,
            event.plan_id,
            event.subscription_id,
            event.metadata,
        )


def _as_dict(obj: Any) -> Dict[str, Any]:
    """Plain nested dict for an SDK object."""

    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    return json.loads(str(obj))


def _parse_event_body(payload: bytes) -> Dict[str, Any]:
    try:
        body = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise WebhookVerificationError("Invalid webhook payload") from exc
    if not isinstance(body, dict) or not body.get("id") or not body.get("type"):
        raise WebhookVerificationError("Webhook payload is missing id or type")
    return body


def _event_from_body(body: Mapping[str, Any]) -> BillingWebhookEvent:
    return BillingWebhookEvent(
        event_id=str(body["id"]),
        event_type=str(body["type"]),
        payload=dict(body),
    )


class StripePaymentProvider(PaymentProvider):
    """Payment provider backed by the Stripe API."""

    def __init__(self, *, api_key: str, webhook_secret: Optional[str]) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    @contextmanager
    def _call(self, action: str) -> Iterator[None]:
        try:
            yield
        except stripe.StripeError as exc:
            logger.error("Stripe request failed during %s: %s", action, exc)
            raise PaymentProviderError(f"Billing provider error during {action}") from exc

    def create_customer(self, *, email: Optional[str], user_id: int) -> str:
        with self._call("create_customer"):
            customer = stripe.Customer.create(
                email=email,
                metadata={"user_id": str(user_id)},
                api_key=self.api_key,
            )
        logger.info("Created Stripe customer %s for user %s", customer["id"], user_id)
        return str(customer["id"])

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
        subscription_data: Dict[str, Any] = {"metadata": metadata}
        if trial_period_days:
            subscription_data["trial_period_days"] = trial_period_days
        with self._call("create_checkout_session"):
            session = stripe.checkout.Session.create(
                mode="subscription",
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                metadata=metadata,
                subscription_data=subscription_data,
                success_url=success_url,
                cancel_url=cancel_url,
                api_key=self.api_key,
            )
        return {"id": session["id"], "url": session["url"]}

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, object]:
        with self._call("create_billing_portal_session"):
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self.api_key,
            )
        return {"id": session["id"], "url": session["url"]}

    def retrieve_subscription(self, provider_subscription_id: str) -> ProviderSubscription:
        with self._call("retrieve_subscription"):
            subscription = stripe.Subscription.retrieve(provider_subscription_id, api_key=self.api_key)
        return provider_subscription_from_payload(_as_dict(subscription))

    def cancel_subscription(self, provider_subscription_id: str, *, immediate: bool) -> ProviderSubscription:
        with self._call("cancel_subscription"):
            if immediate:
                subscription = stripe.Subscription.cancel(provider_subscription_id, api_key=self.api_key)
            else:
                subscription = stripe.Subscription.modify(
                    provider_subscription_id,
                    cancel_at_period_end=True,
                    api_key=self.api_key,
                )
        return provider_subscription_from_payload(_as_dict(subscription))

    def resume_subscription(self, provider_subscription_id: str) -> ProviderSubscription:
        with self._call("resume_subscription"):
            subscription = stripe.Subscription.modify(
                provider_subscription_id,
                cancel_at_period_end=False,
                api_key=self.api_key,
            )
        return provider_subscription_from_payload(_as_dict(subscription))

    def create_subscription(self, *, customer_id: str, price_id: str) -> ProviderSubscription:
        with self._call("create_subscription"):
            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price_id}],
                api_key=self.api_key,
            )
        return provider_subscription_from_payload(_as_dict(subscription))

    def change_subscription_plan(self, provider_subscription_id: str, *, price_id: str) -> ProviderSubscription:
        with self._call("change_subscription_plan"):
            current = _as_dict(stripe.Subscription.retrieve(provider_subscription_id, api_key=self.api_key))
            items = current.get("items", {}).get("data") or []
            if not items:
                raise PaymentProviderError("Subscription has no items to update")
            subscription = stripe.Subscription.modify(
                provider_subscription_id,
                items=[{"id": items[0]["id"], "price": price_id}],
                proration_behavior="create_prorations",
                api_key=self.api_key,
            )
        return provider_subscription_from_payload(_as_dict(subscription))

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> BillingWebhookEvent:
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing webhook signature")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError("Invalid webhook signature") from exc
        except ValueError as exc:
            raise WebhookVerificationError("Invalid webhook payload") from exc
        return _event_from_body(_parse_event_body(payload))


class LocalSandboxPaymentProvider(PaymentProvider):
    """Minimal provider implementation for local development and tests.

    Webhooks are accepted without a signature, so this provider must never be
    configured where the webhook endpoint is reachable from the internet.
    """

    def __init__(self, *, period_days: int = 30) -> None:
        self.period_days = period_days

    def _subscription(self, subscription_id: str, **changes: Any) -> ProviderSubscription:
        now = datetime.now(timezone.utc)
        fields: Dict[str, Any] = {
            "subscription_id": subscription_id,
            "status": "active",
            "current_period_start": now,
            "current_period_end": now + timedelta(days=self.period_days),
        }
        fields.update(changes)
        return ProviderSubscription(**fields)

    def create_customer(self, *, email: Optional[str], user_id: int) -> str:
        return f"cus_{uuid4().hex[:14]}"

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
        session_id = f"cs_{uuid4().hex}"
        return {
            "id": session_id,
            "url": f"https://billing.local/checkout/{session_id}",
            "metadata": metadata,
        }

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, object]:
        session_id = f"bps_{uuid4().hex}"
        return {"id": session_id, "url": f"https://billing.local/portal/{customer_id}"}

    def retrieve_subscription(self, provider_subscription_id: str) -> ProviderSubscription:
        return self._subscription(provider_subscription_id)

    def cancel_subscription(self, provider_subscription_id: str, *, immediate: bool) -> ProviderSubscription:
        if immediate:
            return self._subscription(
                provider_subscription_id, status="canceled", canceled_at=datetime.now(timezone.utc)
            )
        return self._subscription(provider_subscription_id, cancel_at_period_end=True)

    def resume_subscription(self, provider_subscription_id: str) -> ProviderSubscription:
        return self._subscription(provider_subscription_id)

    def create_subscription(self, *, customer_id: str, price_id: str) -> ProviderSubscription:
        return self._subscription(f"sub_{uuid4().hex[:14]}", customer_id=customer_id, price_id=price_id)

    def change_subscription_plan(self, provider_subscription_id: str, *, price_id: str) -> ProviderSubscription:
        return self._subscription(provider_subscription_id, price_id=price_id)

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> BillingWebhookEvent:
        return _event_from_body(_parse_event_body(payload))


def create_payment_provider(config: BillingConfig) -> PaymentProvider:
    if config.provider_name == "stripe":
        return StripePaymentProvider(
            api_key=config.stripe_secret_key or "",
            webhook_secret=config.stripe_webhook_secret,
        )
    logger.warning("Using sandbox billing provider; webhook signatures are not verified")
    return LocalSandboxPaymentProvider()


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    config = load_billing_config()
    return BillingService(
        repository=PostgresBillingRepository(),
        provider=create_payment_provider(config),
        notifier=LoggingBillingNotifier(),
        event_logger=LoggingBillingEventLogger(),
        app_base_url=config.app_base_url,
    )


__all__ = [
    "LocalSandboxPaymentProvider",
    "LoggingBillingEventLogger",
    "LoggingBillingNotifier",
    "StripePaymentProvider",
    "create_payment_provider",
    "get_billing_service",
]
