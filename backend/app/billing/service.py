"""Core service coordinating subscription flows with the payment provider."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, ContextManager, Dict, Mapping, Optional, Protocol, Sequence

from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingProfile,
    BillingWebhookEvent,
    BillingWebhookEventType,
    CheckoutSession,
    PaymentFailure,
    PortalSession,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from .payloads import (
    ProviderSubscription,
    invoice_period,
    invoice_subscription_id,
    object_id,
    parse_timestamp,
    provider_subscription_from_payload,
    safe_metadata,
)
from .plans import FREE_PLAN, is_top_tier
from .status import SubscriptionSnapshot, build_snapshot

logger = logging.getLogger("billing")


class WebhookVerificationError(ValueError):
    """Raised when a webhook payload fails signature verification."""


class PaymentProviderError(RuntimeError):
    """Raised when the payment provider rejects or fails a request."""


class PaymentProvider(Protocol):
    """External payment processor integration."""

    def create_customer(self, *, email: Optional[str], user_id: int) -> str:
        """Create a provider customer and return its id."""

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
        """Create a hosted checkout session; the result carries ``id`` and ``url``."""

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, object]:
        """Create a provider managed billing portal session."""

    def retrieve_subscription(self, provider_subscription_id: str) -> ProviderSubscription:
        ...

    def cancel_subscription(self, provider_subscription_id: str, *, immediate: bool) -> ProviderSubscription:
        ...

    def resume_subscription(self, provider_subscription_id: str) -> ProviderSubscription:
        ...

    def create_subscription(self, *, customer_id: str, price_id: str) -> ProviderSubscription:
        ...

    def change_subscription_plan(self, provider_subscription_id: str, *, price_id: str) -> ProviderSubscription:
        ...

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> BillingWebhookEvent:
        """Verify ``payload`` and return the event; raises :class:`WebhookVerificationError`."""


class BillingNotifier(Protocol):
    """Dispatches billing related notifications to account owners."""

    def notify_payment_failure(self, failure: PaymentFailure) -> None:
        ...

    def notify_subscription_canceled(self, subscription: Subscription) -> None:
        ...


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


class BillingRepository(Protocol):
    """Persistence operations required by the billing service."""

    def list_plans(self) -> Sequence[SubscriptionPlan]:
        ...

    def get_plan(self, plan_id: int) -> Optional[SubscriptionPlan]:
        ...

    def get_plan_by_price_id(self, price_id: str) -> Optional[SubscriptionPlan]:
        ...

    def get_billing_profile(self, user_id: int) -> Optional[BillingProfile]:
        ...

    def set_provider_customer_id(self, user_id: int, customer_id: str) -> None:
        ...

    def update_billing_profile(
        self,
        user_id: int,
        *,
        status: SubscriptionStatus,
        plan_id: Optional[int],
        period_end: Optional[datetime],
        provider_customer_id: Optional[str] = None,
    ) -> None:
        ...

    def get_latest_subscription(self, user_id: int) -> Optional[Subscription]:
        ...

    def get_subscription_by_provider_id(self, provider_subscription_id: str) -> Optional[Subscription]:
        ...

    def save_subscription(self, subscription: Subscription) -> Subscription:
        """Insert or update keyed on ``provider_subscription_id``."""

    def get_usage(self, user_id: int) -> Dict[str, int]:
        ...

    def record_webhook_event(self, event: BillingWebhookEvent) -> bool:
        """Store ``event``; return ``False`` when its id was already recorded."""

    def transaction(self) -> ContextManager["BillingRepository"]:
        """Yield a repository whose writes commit together or are all discarded."""


# ``slots`` support for ``dataclass`` was added in Python 3.10.
_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}


@dataclass(**_dataclass_kwargs)
class BillingService:
    """Coordinates checkout, provider webhooks and self-service plan changes."""

    repository: BillingRepository
    provider: PaymentProvider
    notifier: BillingNotifier
    event_logger: BillingEventLogger
    app_base_url: str = "http://localhost:3000"
    clock: Optional[Callable[[], datetime]] = None

    def _now(self) -> datetime:
        if self.clock is not None:
            return self.clock()
        return datetime.now(timezone.utc)

    def list_plans(self) -> Sequence[SubscriptionPlan]:
        plans = [plan for plan in self.repository.list_plans() if plan.is_active]
        return sorted(plans, key=lambda plan: plan.price)

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------
    def create_checkout_session(self, *, user_id: int, plan_id: int) -> CheckoutSession:
        plan = self.repository.get_plan(plan_id)
        if plan is None or not plan.is_active:
            raise LookupError("Plan not found")
        if plan.is_free or not plan.provider_price_id:
            raise ValueError("Plan is not available for online checkout")

        profile = self.repository.get_billing_profile(user_id)
        if profile is None:
            raise LookupError("User not found")

        current = self.repository.get_latest_subscription(user_id)
        is_upgrade = current is not None and current.is_billable
        if is_upgrade and current.plan_id == plan_id:
            raise ValueError("Already subscribed to this plan")

        customer_id = profile.provider_customer_id
        if not customer_id:
            customer_id = self.provider.create_customer(email=profile.email, user_id=user_id)
            self.repository.set_provider_customer_id(user_id, customer_id)

        # Trials are only offered on the first subscription an account takes out
        trial_days = plan.trial_days if plan.trial_days and current is None else None
        base = self.app_base_url.rstrip("/")
        session = self.provider.create_checkout_session(
            customer_id=customer_id,
            price_id=plan.provider_price_id,
            metadata={
                "user_id": str(user_id),
                "plan_id": str(plan_id),
                "is_upgrade": str(is_upgrade).lower(),
            },
            success_url=f"{base}/dashboard?session_id={{CHECKOUT_SESSION_ID}}&success=true",
            cancel_url=f"{base}/pricing?canceled=true",
            trial_period_days=trial_days,
        )

        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.CHECKOUT_STARTED,
                user_id=user_id,
                plan_id=plan_id,
                metadata={"is_upgrade": str(is_upgrade).lower()},
            )
        )
        return CheckoutSession(
            session_id=str(session.get("id") or ""),
            url=str(session.get("url") or ""),
            plan_id=plan_id,
            is_upgrade=is_upgrade,
        )

    def create_portal_session(self, *, user_id: int) -> PortalSession:
        profile = self.repository.get_billing_profile(user_id)
        if profile is None:
            raise LookupError("User not found")
        if not profile.provider_customer_id:
            raise ValueError("No billing account found")

        current = self.repository.get_latest_subscription(user_id)
        plan = self._plan_for(current)
        if plan.is_free:
            raise ValueError("Billing portal is not available on the Free plan")

        session = self.provider.create_billing_portal_session(
            customer_id=profile.provider_customer_id,
            return_url=f"{self.app_base_url.rstrip('/')}/dashboard?tab=billing",
        )
        return PortalSession(url=str(session.get("url") or ""))

    def cancel_subscription(self, *, user_id: int, immediate: bool = False) -> Subscription:
        current = self.repository.get_latest_subscription(user_id)
        if current is None or not current.is_billable or self._plan_for(current).is_free:
            raise ValueError("No active subscription to cancel")
        if not current.provider_subscription_id:
            raise ValueError("Subscription is not linked to a billing account")
        if not immediate and current.cancel_at_period_end:
            raise ValueError("Subscription is already scheduled for cancellation")

        self.provider.cancel_subscription(current.provider_subscription_id, immediate=immediate)
        now = self._now()
        if immediate:
            updated = current.model_copy(
                update={
                    "status": SubscriptionStatus.CANCELED,
                    "cancel_at_period_end": False,
                    "canceled_at": now,
                    "updated_at": now,
                }
            )
            audit_type = BillingAuditEventType.SUBSCRIPTION_CANCELED
        else:
            updated = current.model_copy(update={"cancel_at_period_end": True, "updated_at": now})
            audit_type = BillingAuditEventType.CANCELLATION_SCHEDULED

        persisted = self.repository.save_subscription(updated)
        self._sync_profile(persisted)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=audit_type,
                user_id=user_id,
                plan_id=persisted.plan_id,
                subscription_id=persisted.provider_subscription_id,
            )
        )
        return persisted

    def reactivate_subscription(self, *, user_id: int) -> Subscription:
        current = self.repository.get_latest_subscription(user_id)
        if current is None:
            raise LookupError("No subscription found")

        if current.status == SubscriptionStatus.CANCELED:
            persisted = self._resubscribe(current)
        elif current.is_pending_cancellation:
            if not current.provider_subscription_id:
                raise ValueError("Subscription is not linked to a billing account")
            self.provider.resume_subscription(current.provider_subscription_id)
            persisted = self.repository.save_subscription(
                current.model_copy(
                    update={"cancel_at_period_end": False, "canceled_at": None, "updated_at": self._now()}
                )
            )
        else:
            raise ValueError("Subscription is not canceled")

        self._sync_profile(persisted)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.SUBSCRIPTION_REACTIVATED,
                user_id=user_id,
                plan_id=persisted.plan_id,
                subscription_id=persisted.provider_subscription_id,
            )
        )
        return persisted

    def change_plan(self, *, user_id: int, plan_id: int) -> Subscription:
        current = self.repository.get_latest_subscription(user_id)
        if current is None or not current.is_billable:
            raise ValueError("No active subscription to change")
        if current.plan_id == plan_id:
            raise ValueError("Already subscribed to this plan")

        plan = self.repository.get_plan(plan_id)
        if plan is None or not plan.is_active:
            raise LookupError("Plan not found")
        if plan.is_free or not plan.provider_price_id:
            raise ValueError("Plan is not available for online checkout")
        if not current.provider_subscription_id:
            raise ValueError("Subscription is not linked to a billing account")

        remote = self.provider.change_subscription_plan(
            current.provider_subscription_id, price_id=plan.provider_price_id
        )
        updated = current.model_copy(
            update={
                "plan_id": plan_id,
                "current_period_start": remote.current_period_start or current.current_period_start,
                "current_period_end": remote.current_period_end or current.current_period_end,
                "cancel_at_period_end": remote.cancel_at_period_end,
                "updated_at": self._now(),
            }
        )
        persisted = self.repository.save_subscription(updated)
        self._sync_profile(persisted)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.PLAN_CHANGED,
                user_id=user_id,
                plan_id=plan_id,
                subscription_id=persisted.provider_subscription_id,
                metadata={"previous_plan_id": str(current.plan_id)},
            )
        )
        return persisted

    def get_status(self, *, user_id: int) -> SubscriptionSnapshot:
        current = self.repository.get_latest_subscription(user_id)
        plan = self._plan_for(current)
        subscription = current if current is not None and not plan.is_free else None
        catalog = self.repository.list_plans()
        return build_snapshot(
            plan=plan,
            subscription=subscription,
            usage=self.repository.get_usage(user_id),
            now=self._now(),
            upgrade_available=not is_top_tier(plan, catalog),
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------
    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> BillingWebhookEvent:
        return self.provider.parse_webhook_event(payload, signature)

    def handle_webhook(self, event: BillingWebhookEvent) -> bool:
        """Apply ``event`` once; returns ``False`` for an already processed event id."""

        # The event id and its effects commit together; a failure leaves no trace
        # of the event so the provider's retry is applied.
        with self.repository.transaction() as repository:
            if not repository.record_webhook_event(event):
                logger.info("Skipping duplicate webhook event %s", event.event_id)
                return False
            replace(self, repository=repository)._apply_webhook(event)
        return True

    def _apply_webhook(self, event: BillingWebhookEvent) -> None:
        event_type = event.known_type
        payload = _event_object(event)
        if event_type == BillingWebhookEventType.CHECKOUT_COMPLETED:
            self._handle_checkout_completed(payload)
        elif event_type in {
            BillingWebhookEventType.INVOICE_PAID,
            BillingWebhookEventType.INVOICE_PAYMENT_SUCCEEDED,
        }:
            self._handle_payment_succeeded(payload)
        elif event_type == BillingWebhookEventType.INVOICE_PAYMENT_FAILED:
            self._handle_payment_failed(payload)
        elif event_type == BillingWebhookEventType.SUBSCRIPTION_UPDATED:
            self._handle_subscription_updated(payload)
        elif event_type == BillingWebhookEventType.SUBSCRIPTION_DELETED:
            self._handle_subscription_deleted(payload)
        else:
            logger.info("Ignoring unhandled webhook event type %s", event.event_type)

    def _handle_checkout_completed(self, payload: Mapping[str, object]) -> None:
        metadata = safe_metadata(payload.get("metadata"))
        user_id = _metadata_int(metadata, "user_id", "userId")
        plan_id = _metadata_int(metadata, "plan_id", "planId")
        provider_subscription_id = object_id(payload.get("subscription"))
        if not provider_subscription_id:
            raise ValueError("subscription missing from checkout session")
        if self.repository.get_billing_profile(user_id) is None:
            raise ValueError("Unknown user_id in checkout metadata")
        if self.repository.get_plan(plan_id) is None:
            raise ValueError("Unknown plan_id in checkout metadata")

        period_start = parse_timestamp(payload.get("current_period_start"))
        period_end = parse_timestamp(payload.get("current_period_end"))
        trial_start = parse_timestamp(payload.get("trial_start"))
        trial_end = parse_timestamp(payload.get("trial_end"))
        customer_id = object_id(payload.get("customer"))
        if period_start is None or period_end is None:
            remote = self.provider.retrieve_subscription(provider_subscription_id)
            period_start = remote.current_period_start
            period_end = remote.current_period_end
            trial_start = trial_start or remote.trial_start
            trial_end = trial_end or remote.trial_end
            customer_id = customer_id or remote.customer_id

        now = self._now()
        existing = self.repository.get_subscription_by_provider_id(provider_subscription_id)
        subscription = Subscription(
            subscription_id=existing.subscription_id if existing else None,
            user_id=user_id,
            plan_id=plan_id,
            provider_subscription_id=provider_subscription_id,
            provider_customer_id=customer_id,
            status=SubscriptionStatus.ACTIVE,
            current_period_start=period_start,
            current_period_end=period_end,
            trial_start=trial_start,
            trial_end=trial_end,
            cancel_at_period_end=False,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        persisted = self.repository.save_subscription(subscription)
        self._sync_profile(persisted)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.SUBSCRIPTION_ACTIVATED,
                user_id=user_id,
                plan_id=plan_id,
                subscription_id=provider_subscription_id,
            )
        )

    def _handle_payment_succeeded(self, payload: Mapping[str, object]) -> None:
        provider_subscription_id = invoice_subscription_id(payload)
        if not provider_subscription_id:
            logger.info("Ignoring paid invoice %s without a subscription", payload.get("id"))
            return
        subscription = self._require_subscription(provider_subscription_id)

        period_start, period_end = invoice_period(payload)
        updated = subscription.model_copy(
            update={
                "status": SubscriptionStatus.ACTIVE,
                "current_period_start": period_start or subscription.current_period_start,
                "current_period_end": period_end or subscription.current_period_end,
                "updated_at": self._now(),
            }
        )
        persisted = self.repository.save_subscription(updated)
        self._sync_profile(persisted)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.SUBSCRIPTION_RENEWED,
                user_id=persisted.user_id,
                plan_id=persisted.plan_id,
                subscription_id=provider_subscription_id,
                metadata={"invoice_id": str(payload.get("id") or "")},
            )
        )

    def _handle_payment_failed(self, payload: Mapping[str, object]) -> None:
        provider_subscription_id = invoice_subscription_id(payload)
        if not provider_subscription_id:
            logger.info("Ignoring failed invoice %s without a subscription", payload.get("id"))
            return
        subscription = self._require_subscription(provider_subscription_id)

        updated = subscription.model_copy(
            update={"status": SubscriptionStatus.PAST_DUE, "updated_at": self._now()}
        )
        persisted = self.repository.save_subscription(updated)
        self._sync_profile(persisted)

        invoice_id = object_id(payload.get("id"))
        self.notifier.notify_payment_failure(
            PaymentFailure(
                user_id=persisted.user_id,
                subscription_id=provider_subscription_id,
                invoice_id=invoice_id,
                amount_due=int(payload.get("amount_due") or 0),
                currency=str(payload.get("currency") or "usd"),
                occurred_at=self._now(),
            )
        )
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.PAYMENT_FAILED,
                user_id=persisted.user_id,
                plan_id=persisted.plan_id,
                subscription_id=provider_subscription_id,
                metadata={"invoice_id": invoice_id or ""},
            )
        )

    def _handle_subscription_updated(self, payload: Mapping[str, object]) -> None:
        remote = provider_subscription_from_payload(payload)
        subscription = self._require_subscription(remote.subscription_id)

        plan_id = subscription.plan_id
        if remote.price_id:
            plan = self.repository.get_plan_by_price_id(remote.price_id)
            if plan is not None:
                plan_id = plan.plan_id

        updated = subscription.model_copy(
            update={
                "plan_id": plan_id,
                "status": remote.local_status,
                "current_period_start": remote.current_period_start or subscription.current_period_start,
                "current_period_end": remote.current_period_end or subscription.current_period_end,
                "trial_start": remote.trial_start or subscription.trial_start,
                "trial_end": remote.trial_end or subscription.trial_end,
                "cancel_at_period_end": remote.cancel_at_period_end,
                "canceled_at": remote.canceled_at,
                "updated_at": self._now(),
            }
        )
        persisted = self.repository.save_subscription(updated)
        self._sync_profile(persisted)

        if plan_id != subscription.plan_id:
            audit_type = BillingAuditEventType.PLAN_CHANGED
        else:
            audit_type = BillingAuditEventType.SUBSCRIPTION_UPDATED
        self.event_logger.log(
            BillingAuditEvent(
                event_type=audit_type,
                user_id=persisted.user_id,
                plan_id=persisted.plan_id,
                subscription_id=remote.subscription_id,
            )
        )

    def _handle_subscription_deleted(self, payload: Mapping[str, object]) -> None:
        provider_subscription_id = object_id(payload.get("id"))
        if not provider_subscription_id:
            raise ValueError("subscription id missing from webhook payload")
        subscription = self._require_subscription(provider_subscription_id)

        now = self._now()
        updated = subscription.model_copy(
            update={
                "status": SubscriptionStatus.CANCELED,
                "cancel_at_period_end": False,
                "canceled_at": parse_timestamp(payload.get("canceled_at")) or now,
                "updated_at": now,
            }
        )
        persisted = self.repository.save_subscription(updated)
        self._sync_profile(persisted)
        self.notifier.notify_subscription_canceled(persisted)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.SUBSCRIPTION_CANCELED,
                user_id=persisted.user_id,
                plan_id=persisted.plan_id,
                subscription_id=provider_subscription_id,
            )
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _resubscribe(self, current: Subscription) -> Subscription:
        plan = self.repository.get_plan(current.plan_id)
        if plan is None or not plan.is_active or not plan.provider_price_id:
            raise ValueError("Plan is no longer available")

        customer_id = current.provider_customer_id
        if not customer_id:
            profile = self.repository.get_billing_profile(current.user_id)
            customer_id = profile.provider_customer_id if profile else None
        if not customer_id:
            raise ValueError("No billing account found")

        remote = self.provider.create_subscription(customer_id=customer_id, price_id=plan.provider_price_id)
        now = self._now()
        return self.repository.save_subscription(
            Subscription(
                user_id=current.user_id,
                plan_id=plan.plan_id,
                provider_subscription_id=remote.subscription_id,
                provider_customer_id=customer_id,
                status=remote.local_status,
                current_period_start=remote.current_period_start,
                current_period_end=remote.current_period_end,
                cancel_at_period_end=remote.cancel_at_period_end,
                created_at=now,
                updated_at=now,
            )
        )

    def _require_subscription(self, provider_subscription_id: str) -> Subscription:
        subscription = self.repository.get_subscription_by_provider_id(provider_subscription_id)
        if subscription is None:
            raise LookupError(f"Subscription {provider_subscription_id} not found")
        return subscription

    def _plan_for(self, subscription: Optional[Subscription]) -> SubscriptionPlan:
        """Plan whose features ``subscription`` grants; lapsed accounts fall back to Free."""

        if subscription is None or not subscription.is_billable:
            return FREE_PLAN
        plan = self.repository.get_plan(subscription.plan_id)
        if plan is None:
            logger.warning(
                "Subscription %s references missing plan %s",
                subscription.provider_subscription_id,
                subscription.plan_id,
            )
            return FREE_PLAN
        return plan

    def _sync_profile(self, subscription: Subscription) -> None:
        self.repository.update_billing_profile(
            subscription.user_id,
            status=subscription.status,
            plan_id=subscription.plan_id,
            period_end=subscription.current_period_end,
            provider_customer_id=subscription.provider_customer_id,
        )


def _event_object(event: BillingWebhookEvent) -> Mapping[str, object]:
    """Return ``data.object`` from a provider event, or the payload itself when already unwrapped."""

    data = event.payload.get("data")
    if isinstance(data, Mapping):
        inner = data.get("object")
        if isinstance(inner, Mapping):
            return inner
    return event.payload


def _metadata_int(metadata: Mapping[str, str], *keys: str) -> int:
    for key in keys:
        value = metadata.get(key)
        if value:
            try:
                return int(value)
            except ValueError as exc:
                raise ValueError(f"Invalid {keys[0]} in checkout metadata") from exc
    raise ValueError(f"{keys[0]} missing from checkout metadata")


__all__ = [
    "BillingEventLogger",
    "BillingNotifier",
    "BillingRepository",
    "BillingService",
    "PaymentProvider",
    "PaymentProviderError",
    "WebhookVerificationError",
]
