"""Stripe webhook receiver plus checkout, portal and subscription endpoints."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from billing_sync.billing.dependencies import (
    BillingServices,
    get_billing_services,
    require_checkout,
    require_identity,
    require_portal,
)
from billing_sync.billing.errors import BillingConfigurationError, BillingError
from billing_sync.billing.identity import bearer_token
from billing_sync.billing.plans import get_plans
from billing_sync.observability.metrics import metrics

logger = logging.getLogger(__name__)
router = APIRouter()


class WebhookResponse(BaseModel):
    received: bool
    status: str


class CheckoutSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: str | None = Field(default=None, alias="priceId")


class SessionUrlResponse(BaseModel):
    url: str


class SubscriptionResponse(BaseModel):
    subscription: dict[str, Any] | None


@router.post("/billing/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    services: BillingServices = Depends(get_billing_services),
):
    """Verify, dispatch and acknowledge a processor event.

    Any failure answers 400 so the processor redelivers; handlers are
    idempotent, which makes redelivery safe.
    """
    if not services.webhook_secret:
        logger.error("billing.webhook.secret_missing")
        metrics.alert(
            "billing.webhook.secret_missing", value=1.0, threshold=0.0, severity="critical"
        )
        raise BillingConfigurationError("Webhook secret not configured")

    body = await request.body()
    try:
        event = services.verifier.verify(
            body,
            stripe_signature,
            services.webhook_secret,
            tolerance=services.webhook_tolerance,
        )
        logger.info("billing.webhook.received", extra={"event_id": event.id, "type": event.type})
        result = await services.dispatcher.dispatch(event)
    except BillingError as exc:
        logger.warning(
            "billing.webhook.rejected",
            extra={"code": exc.code, "error_type": type(exc).__name__, "error": str(exc)},
        )
        metrics.increment("billing.webhook.rejected", tags={"code": exc.code})
        return JSONResponse(status_code=400, content={"error": str(exc)})

    return WebhookResponse(received=True, status=result.status.value)


@router.post("/billing/checkout-session", response_model=SessionUrlResponse)
async def create_checkout_session(
    request: Request,
    authorization: str | None = Header(default=None),
    services: BillingServices = Depends(get_billing_services),
) -> SessionUrlResponse:
    """Start a hosted checkout for the caller.

    The body is read after the bearer token so a malformed request from an
    anonymous caller still answers 401; an unreadable price is treated as
    missing and rejected by the initiator with a 400.
    """
    token = bearer_token(authorization)
    price_id = await _requested_price_id(request)
    session = await require_checkout(services).create_checkout_session(token, price_id)
    return SessionUrlResponse(url=session.url)


async def _requested_price_id(request: Request) -> str | None:
    body = await request.body()
    if not body.strip():
        return None
    try:
        payload = CheckoutSessionRequest.model_validate(json.loads(body))
    except (ValueError, ValidationError) as exc:
        logger.info("billing.checkout.invalid_body", extra={"error": str(exc)})
        return None
    return payload.price_id


@router.post("/billing/portal-session", response_model=SessionUrlResponse)
async def create_portal_session(
    authorization: str | None = Header(default=None),
    services: BillingServices = Depends(get_billing_services),
) -> SessionUrlResponse:
    token = bearer_token(authorization)
    session = await require_portal(services).create_portal_session(token)
    return SessionUrlResponse(url=session.url)


@router.get("/billing/subscription", response_model=SubscriptionResponse)
async def get_current_subscription(
    authorization: str | None = Header(default=None),
    services: BillingServices = Depends(get_billing_services),
) -> SubscriptionResponse:
    """Return the caller's trialing or active subscription, if any."""
    token = bearer_token(authorization)
    caller = await require_identity(services).resolve(token)
    record = await services.store.current_for_user(caller.user_id)
    return SubscriptionResponse(subscription=record.to_public_dict() if record else None)


@router.get("/billing/plans")
async def list_plans() -> list[dict[str, Any]]:
    return [plan.model_dump(by_alias=True) for plan in get_plans()]
