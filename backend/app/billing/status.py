"""Read model describing a user's current subscription.

The snapshot is rebuilt on every request from the stored subscription, the
plan catalog and usage counters. Derived flags (trial countdown, limit
checks, upgrade eligibility) are computed from the snapshot alone so that
API responses and server-side checks agree.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from .models import Subscription, SubscriptionPlan, SubscriptionStatus

TRIAL_EXPIRING_DAYS = 3
NEAR_LIMIT_RATIO = 0.8
_DAY = timedelta(days=1)


class FeatureLimit(BaseModel):
    current: int
    maximum: int
    unit: str = "count"

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_at_limit(self) -> bool:
        return self.current >= self.maximum

    def is_near_limit(self, ratio: float = NEAR_LIMIT_RATIO) -> bool:
        if self.maximum <= 0:
            return True
        return self.current / self.maximum >= ratio

    @property
    def remaining(self) -> int:
        return max(0, self.maximum - self.current)


class TrialInfo(BaseModel):
    is_in_trial: bool
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    days_remaining: int = 0

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BillingInfo(BaseModel):
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    amount: float = 0.0
    currency: str = "usd"
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    cancel_at_period_end: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SubscriptionSnapshot(BaseModel):
    """Everything the UI needs to render the account's plan state."""

    is_active: bool
    plan: SubscriptionPlan
    subscription: Optional[Subscription] = None
    features: Dict[str, bool]
    limits: Dict[str, FeatureLimit]
    trial: Optional[TrialInfo] = None
    billing: BillingInfo
    upgrade_available: bool = False
    as_of: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def has_feature(self, key: str) -> bool:
        return self.features.get(key, False)

    def get_limit(self, key: str) -> Optional[FeatureLimit]:
        return self.limits.get(key)

    def is_at_limit(self, key: str) -> bool:
        limit = self.limits.get(key)
        return limit.is_at_limit if limit else False

    def is_near_limit(self, key: str, ratio: float = NEAR_LIMIT_RATIO) -> bool:
        limit = self.limits.get(key)
        return limit.is_near_limit(ratio) if limit else False

    def remaining(self, key: str) -> Optional[int]:
        """Units left under ``key``; ``None`` means the plan sets no limit."""

        limit = self.limits.get(key)
        return limit.remaining if limit else None

    @property
    def can_upgrade(self) -> bool:
        return self.upgrade_available

    @property
    def can_downgrade(self) -> bool:
        return not self.plan.is_free

    @property
    def is_trial_expiring(self) -> bool:
        return bool(self.trial and self.trial.is_in_trial and self.trial.days_remaining <= TRIAL_EXPIRING_DAYS)

    @property
    def is_trial_expired(self) -> bool:
        if self.trial is None or self.trial.trial_end is None:
            return False
        return self.trial.trial_end <= self.as_of

    @property
    def days_until_billing(self) -> Optional[int]:
        next_billing = self.billing.next_billing_date
        if next_billing is None or self.billing.cancel_at_period_end:
            return None
        return max(0, math.ceil((next_billing - self.as_of) / _DAY))


def _trial_info(subscription: Subscription, now: datetime) -> Optional[TrialInfo]:
    if subscription.trial_start is None or subscription.trial_end is None:
        return None
    in_trial = subscription.trial_start <= now <= subscription.trial_end
    days_remaining = math.ceil((subscription.trial_end - now) / _DAY) if in_trial else 0
    return TrialInfo(
        is_in_trial=in_trial,
        trial_start=subscription.trial_start,
        trial_end=subscription.trial_end,
        days_remaining=days_remaining,
    )


def build_snapshot(
    *,
    plan: SubscriptionPlan,
    subscription: Optional[Subscription],
    usage: Mapping[str, int],
    now: datetime,
    upgrade_available: bool,
) -> SubscriptionSnapshot:
    """Assemble the snapshot for ``plan``; ``subscription`` is ``None`` on the Free plan."""

    limits = {
        key: FeatureLimit(current=int(usage.get(key, 0)), maximum=definition.maximum, unit=definition.unit)
        for key, definition in plan.feature_limits.items()
    }
    features = {key: True for key in plan.features}

    if subscription is None:
        billing = BillingInfo(amount=0.0, currency=plan.currency)
        return SubscriptionSnapshot(
            is_active=True,
            plan=plan,
            features=features,
            limits=limits,
            billing=billing,
            upgrade_available=upgrade_available,
            as_of=now,
        )

    billing = BillingInfo(
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        next_billing_date=subscription.current_period_end,
        amount=plan.price,
        currency=plan.currency,
        status=subscription.status,
        cancel_at_period_end=subscription.cancel_at_period_end,
    )
    return SubscriptionSnapshot(
        is_active=subscription.is_active,
        plan=plan,
        subscription=subscription,
        features=features,
        limits=limits,
        trial=_trial_info(subscription, now),
        billing=billing,
        upgrade_available=upgrade_available,
        as_of=now,
    )


__all__ = [
    "BillingInfo",
    "FeatureLimit",
    "SubscriptionSnapshot",
    "TrialInfo",
    "build_snapshot",
]
