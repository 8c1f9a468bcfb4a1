"""API schemas for subscription endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import (
    CheckoutSession,
    Subscription,
    SubscriptionPlan,
    SubscriptionSnapshot,
    SubscriptionStatus,
)


class PlanOut(BaseModel):
    id: int
    name: str
    description: str = ""
    price: float
    currency: str
    billing_interval: str = Field(alias="billingInterval")
    features: List[str] = Field(default_factory=list)
    feature_limits: Dict[str, int] = Field(alias="featureLimits", default_factory=dict)
    trial_days: int = Field(alias="trialDays", default=0)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: SubscriptionPlan) -> "PlanOut":
        return cls(
            id=plan.plan_id,
            name=plan.name,
            description=plan.description,
            price=plan.price,
            currency=plan.currency,
            billing_interval=plan.billing_interval.value,
            features=list(plan.features),
            feature_limits={key: limit.maximum for key, limit in plan.feature_limits.items()},
            trial_days=plan.trial_days,
        )


class SubscriptionOut(BaseModel):
    id: Optional[int] = None
    plan_id: int = Field(alias="planId")
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = Field(alias="currentPeriodStart", default=None)
    current_period_end: Optional[datetime] = Field(alias="currentPeriodEnd", default=None)
    trial_start: Optional[datetime] = Field(alias="trialStart", default=None)
    trial_end: Optional[datetime] = Field(alias="trialEnd", default=None)
    cancel_at_period_end: bool = Field(alias="cancelAtPeriodEnd", default=False)
    canceled_at: Optional[datetime] = Field(alias="canceledAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionOut":
        return cls(
            id=subscription.subscription_id,
            plan_id=subscription.plan_id,
            status=subscription.status,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            trial_start=subscription.trial_start,
            trial_end=subscription.trial_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            canceled_at=subscription.canceled_at,
        )


class PlanListResponse(BaseModel):
    plans: List[PlanOut]


class CheckoutRequest(BaseModel):
    plan_id: int = Field(alias="planId", ge=1)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutResponse(BaseModel):
    success: bool = True
    url: str
    session_id: str = Field(alias="sessionId")
    is_upgrade: bool = Field(alias="isUpgrade", default=False)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_checkout(cls, session: CheckoutSession) -> "CheckoutResponse":
        return cls(url=session.url, session_id=session.session_id, is_upgrade=session.is_upgrade)


class CancelRequest(BaseModel):
    immediate: bool = False


class ChangePlanRequest(BaseModel):
    plan_id: int = Field(alias="planId", ge=1)

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionActionResponse(BaseModel):
    success: bool = True
    message: str
    subscription: SubscriptionOut
    access_until: Optional[datetime] = Field(alias="accessUntil", default=None)

    model_config = ConfigDict(populate_by_name=True)


class PortalResponse(BaseModel):
    success: bool = True
    url: str


class FeatureLimitOut(BaseModel):
    current: int
    maximum: int
    unit: str
    remaining: int
    is_at_limit: bool = Field(alias="isAtLimit")
    is_near_limit: bool = Field(alias="isNearLimit")

    model_config = ConfigDict(populate_by_name=True)


class TrialOut(BaseModel):
    is_in_trial: bool = Field(alias="isInTrial")
    trial_start: Optional[datetime] = Field(alias="trialStart", default=None)
    trial_end: Optional[datetime] = Field(alias="trialEnd", default=None)
    days_remaining: int = Field(alias="daysRemaining", default=0)
    is_expiring: bool = Field(alias="isExpiring", default=False)
    is_expired: bool = Field(alias="isExpired", default=False)

    model_config = ConfigDict(populate_by_name=True)


class BillingOut(BaseModel):
    current_period_start: Optional[datetime] = Field(alias="currentPeriodStart", default=None)
    current_period_end: Optional[datetime] = Field(alias="currentPeriodEnd", default=None)
    next_billing_date: Optional[datetime] = Field(alias="nextBillingDate", default=None)
    days_until_billing: Optional[int] = Field(alias="daysUntilBilling", default=None)
    amount: float
    currency: str
    status: SubscriptionStatus
    cancel_at_period_end: bool = Field(alias="cancelAtPeriodEnd", default=False)

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionStatusResponse(BaseModel):
    is_active: bool = Field(alias="isActive")
    plan: PlanOut
    subscription: Optional[SubscriptionOut] = None
    features: Dict[str, bool]
    limits: Dict[str, FeatureLimitOut]
    trial: Optional[TrialOut] = None
    billing: BillingOut
    upgrade_available: bool = Field(alias="upgradeAvailable")
    can_upgrade: bool = Field(alias="canUpgrade")
    can_downgrade: bool = Field(alias="canDowngrade")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_snapshot(cls, snapshot: SubscriptionSnapshot) -> "SubscriptionStatusResponse":
        limits = {
            key: FeatureLimitOut(
                current=limit.current,
                maximum=limit.maximum,
                unit=limit.unit,
                remaining=limit.remaining,
                is_at_limit=limit.is_at_limit,
                is_near_limit=limit.is_near_limit(),
            )
            for key, limit in snapshot.limits.items()
        }
        trial = None
        if snapshot.trial is not None:
            trial = TrialOut(
                is_in_trial=snapshot.trial.is_in_trial,
                trial_start=snapshot.trial.trial_start,
                trial_end=snapshot.trial.trial_end,
                days_remaining=snapshot.trial.days_remaining,
                is_expiring=snapshot.is_trial_expiring,
                is_expired=snapshot.is_trial_expired,
            )
        billing = snapshot.billing
        return cls(
            is_active=snapshot.is_active,
            plan=PlanOut.from_plan(snapshot.plan),
            subscription=SubscriptionOut.from_subscription(snapshot.subscription) if snapshot.subscription else None,
            features=dict(snapshot.features),
            limits=limits,
            trial=trial,
            billing=BillingOut(
                current_period_start=billing.current_period_start,
                current_period_end=billing.current_period_end,
                next_billing_date=billing.next_billing_date,
                days_until_billing=snapshot.days_until_billing,
                amount=billing.amount,
                currency=billing.currency,
                status=billing.status,
                cancel_at_period_end=billing.cancel_at_period_end,
            ),
            upgrade_available=snapshot.upgrade_available,
            can_upgrade=snapshot.can_upgrade,
            can_downgrade=snapshot.can_downgrade,
        )


__all__ = [
    "CancelRequest",
    "ChangePlanRequest",
    "CheckoutRequest",
    "CheckoutResponse",
    "PlanListResponse",
    "PlanOut",
    "PortalResponse",
    "SubscriptionActionResponse",
    "SubscriptionOut",
    "SubscriptionStatusResponse",
]
