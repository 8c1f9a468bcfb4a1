"""Inbound payment-provider webhooks."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request, Response, status
from starlette.concurrency import run_in_threadpool

from ..billing import WebhookVerificationError
from ..services import billing as billing_services

logger = logging.getLogger("billing")

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SUPPORTED_PROVIDERS = frozenset({"stripe"})


@router.post("/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def receive_webhook(
    provider: str,
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> Response:
    if provider not in SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown webhook provider")

    # Signature verification needs the exact bytes that were signed
    body = await request.body()
    service = billing_services.get_billing_service()
    # The service blocks on the database and the provider API
    try:
        event = await run_in_threadpool(service.verify_webhook, body, stripe_signature)
    except WebhookVerificationError as exc:
        logger.warning("Rejected %s webhook: %s", provider, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        processed = await run_in_threadpool(service.handle_webhook, event)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info(
        "Webhook %s %s %s",
        event.event_id,
        event.event_type,
        "processed" if processed else "already processed",
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
