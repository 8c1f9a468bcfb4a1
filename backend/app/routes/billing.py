"""API routes for self-service subscription management."""
from __future__ import annotations

from typing import Any, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ..billing import PaymentProviderError, Subscription
from ..schemas.billing import (
    CancelRequest,
    ChangePlanRequest,
    CheckoutRequest,
    CheckoutResponse,
    PlanListResponse,
    PlanOut,
    PortalResponse,
    SubscriptionActionResponse,
    SubscriptionOut,
    SubscriptionStatusResponse,
)
from ..services import billing as billing_services
from .dependencies import get_current_user

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, PaymentProviderError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


def _user_id(current_user: Any) -> int:
    return int(current_user.id)


def _action_response(
    message: str, subscription: Subscription, *, access_until: Optional[Any] = None
) -> SubscriptionActionResponse:
    return SubscriptionActionResponse(
        message=message,
        subscription=SubscriptionOut.from_subscription(subscription),
        access_until=access_until,
    )


@router.get("/plans", response_model=PlanListResponse)
def list_plans() -> PlanListResponse:
    service = billing_services.get_billing_service()
    return PlanListResponse(plans=[PlanOut.from_plan(plan) for plan in service.list_plans()])


@router.get("/status", response_model=SubscriptionStatusResponse)
def get_subscription_status(*, current_user=Depends(get_current_user)) -> SubscriptionStatusResponse:
    service = billing_services.get_billing_service()
    snapshot = service.get_status(user_id=_user_id(current_user))
    return SubscriptionStatusResponse.from_snapshot(snapshot)


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout_session(
    payload: CheckoutRequest,
    *,
    current_user=Depends(get_current_user),
) -> CheckoutResponse:
    service = billing_services.get_billing_service()
    try:
        session = service.create_checkout_session(user_id=_user_id(current_user), plan_id=payload.plan_id)
    except (PaymentProviderError, LookupError, ValueError) as exc:
        _raise_http(exc)
    return CheckoutResponse.from_checkout(session)


@router.post("/cancel", response_model=SubscriptionActionResponse)
def cancel_subscription(
    payload: Optional[CancelRequest] = None,
    *,
    current_user=Depends(get_current_user),
) -> SubscriptionActionResponse:
    immediate = payload.immediate if payload is not None else False
    service = billing_services.get_billing_service()
    try:
        subscription = service.cancel_subscription(user_id=_user_id(current_user), immediate=immediate)
    except (PaymentProviderError, LookupError, ValueError) as exc:
        _raise_http(exc)

    if immediate:
        return _action_response("Subscription canceled", subscription, access_until=subscription.canceled_at)
    return _action_response(
        "Subscription will be canceled at the end of the billing period",
        subscription,
        access_until=subscription.current_period_end,
    )


@router.post("/reactivate", response_model=SubscriptionActionResponse)
def reactivate_subscription(*, current_user=Depends(get_current_user)) -> SubscriptionActionResponse:
    service = billing_services.get_billing_service()
    try:
        subscription = service.reactivate_subscription(user_id=_user_id(current_user))
    except (PaymentProviderError, LookupError, ValueError) as exc:
        _raise_http(exc)
    return _action_response("Subscription reactivated", subscription)


@router.post("/change-plan", response_model=SubscriptionActionResponse)
def change_plan(
    payload: ChangePlanRequest,
    *,
    current_user=Depends(get_current_user),
) -> SubscriptionActionResponse:
    service = billing_services.get_billing_service()
    try:
        subscription = service.change_plan(user_id=_user_id(current_user), plan_id=payload.plan_id)
    except (PaymentProviderError, LookupError, ValueError) as exc:
        _raise_http(exc)
    return _action_response("Subscription plan changed", subscription)


@router.post("/billing-portal", response_model=PortalResponse)
def create_billing_portal_session(*, current_user=Depends(get_current_user)) -> PortalResponse:
    service = billing_services.get_billing_service()
    try:
        session = service.create_portal_session(user_id=_user_id(current_user))
    except (PaymentProviderError, LookupError, ValueError) as exc:
        _raise_http(exc)
    return PortalResponse(url=session.url)
