"""Helpers turning billing-provider objects into local values.

Provider objects arrive either as webhook JSON or as SDK objects; both are
read through the ``Mapping`` interface only.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .models import SubscriptionStatus

_PROVIDER_STATUS: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INACTIVE,
    "paused": SubscriptionStatus.INACTIVE,
}


class ProviderSubscription(BaseModel):
    """Provider-side view of a subscription."""

    subscription_id: str
    customer_id: Optional[str] = None
    status: str = "active"
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    price_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def local_status(self) -> SubscriptionStatus:
        return map_provider_status(self.status)


def map_provider_status(value: Optional[str]) -> SubscriptionStatus:
    return _PROVIDER_STATUS.get(str(value or "").lower(), SubscriptionStatus.INACTIVE)


def parse_timestamp(value: object) -> Optional[datetime]:
    """Accept epoch seconds, ISO strings or datetimes; always return UTC-aware values."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"Timestamp out of range: {value!r}") from exc
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unsupported datetime value: {value!r}")


def object_id(value: object) -> Optional[str]:
    """Return the id of a provider reference that may be a bare id or an expanded object."""

    if value is None:
        return None
    if isinstance(value, Mapping):
        inner = value.get("id")
        return str(inner) if inner else None
    text = str(value).strip()
    return text or None


def safe_metadata(value: object) -> Dict[str, str]:
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items() if v is not None}
    return {}


def _first_item(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    items = payload.get("items")
    data = items.get("data") if isinstance(items, Mapping) else None
    if isinstance(data, list) and data and isinstance(data[0], Mapping):
        return data[0]
    return {}


def provider_subscription_from_payload(payload: Mapping[str, Any]) -> ProviderSubscription:
    """Normalize a provider subscription object.

    Newer API versions report the billing period on the subscription item
    rather than on the subscription, so both places are consulted.
    """

    subscription_id = object_id(payload.get("id"))
    if not subscription_id:
        raise ValueError("subscription id missing from provider payload")

    item = _first_item(payload)
    price = item.get("price")
    return ProviderSubscription(
        subscription_id=subscription_id,
        customer_id=object_id(payload.get("customer")),
        status=str(payload.get("status") or "active"),
        current_period_start=parse_timestamp(
            payload.get("current_period_start") or item.get("current_period_start")
        ),
        current_period_end=parse_timestamp(
            payload.get("current_period_end") or item.get("current_period_end")
        ),
        trial_start=parse_timestamp(payload.get("trial_start")),
        trial_end=parse_timestamp(payload.get("trial_end")),
        cancel_at_period_end=bool(payload.get("cancel_at_period_end")),
        canceled_at=parse_timestamp(payload.get("canceled_at")),
        price_id=object_id(price) if price is not None else None,
    )


def invoice_period(payload: Mapping[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Return the service period billed by an invoice, preferring its first line."""

    lines = payload.get("lines")
    data = lines.get("data") if isinstance(lines, Mapping) else None
    if isinstance(data, list) and data and isinstance(data[0], Mapping):
        period = data[0].get("period")
        if isinstance(period, Mapping) and period.get("start") and period.get("end"):
            return parse_timestamp(period.get("start")), parse_timestamp(period.get("end"))
    return parse_timestamp(payload.get("period_start")), parse_timestamp(payload.get("period_end"))


def invoice_subscription_id(payload: Mapping[str, Any]) -> Optional[str]:
    direct = object_id(payload.get("subscription"))
    if direct:
        return direct
    # Newer API versions nest the reference under parent.subscription_details
    parent = payload.get("parent")
    if isinstance(parent, Mapping):
        details = parent.get("subscription_details")
        if isinstance(details, Mapping):
            return object_id(details.get("subscription"))
    return None


__all__ = [
    "ProviderSubscription",
    "invoice_period",
    "invoice_subscription_id",
    "map_provider_status",
    "object_id",
    "parse_timestamp",
    "provider_subscription_from_payload",
    "safe_metadata",
]
