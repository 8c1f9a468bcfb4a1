"""Built-in plan definitions that do not live in the plan catalog table."""
from __future__ import annotations

from typing import Iterable

from .models import BillingInterval, FeatureLimitDefinition, SubscriptionPlan

FREE_PLAN_ID = 0

FREE_PLAN = SubscriptionPlan(
    plan_id=FREE_PLAN_ID,
    name="Free",
    description="Free tier with limited features",
    price=0,
    billing_interval=BillingInterval.MONTHLY,
    features=["basic_reservations", "waitlist", "menu_management"],
    feature_limits={"menu_items": FeatureLimitDefinition(maximum=25, unit="items")},
)


def is_top_tier(plan: SubscriptionPlan, catalog: Iterable[SubscriptionPlan]) -> bool:
    """Return ``True`` when no active plan in ``catalog`` costs more than ``plan``."""

    return all(other.price <= plan.price for other in catalog if other.is_active)


__all__ = ["FREE_PLAN", "FREE_PLAN_ID", "is_top_tier"]
