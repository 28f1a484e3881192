"""Payment processor adapter (Stripe)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import stripe

from billing_sync.billing.errors import BillingConfigurationError, UpstreamError
from billing_sync.config import settings
from billing_sync.observability.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostedSession:
    """Reference to a processor-hosted, one-time-use page."""

    id: str | None
    url: str


class PaymentProcessor(Protocol):
    async def create_checkout_session(
        self,
        *,
        customer_email: str | None,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> HostedSession:
        ...

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> HostedSession:
        ...


class StripePaymentProcessor(PaymentProcessor):
    """Calls the Stripe SDK with a per-request API key; SDK calls run off the event loop."""

    def __init__(self, api_key: str, *, api_version: str = "2023-10-16") -> None:
        if not api_key:
            raise BillingConfigurationError("STRIPE_SECRET_KEY is required.")
        self._api_key = api_key
        self._api_version = api_version

    @classmethod
    def from_settings(cls) -> StripePaymentProcessor:
        return cls(settings.stripe_secret_key or "", api_version=settings.stripe_api_version)

    async def create_checkout_session(
        self,
        *,
        customer_email: str | None,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> HostedSession:
        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata),
            "subscription_data": {"metadata": dict(metadata)},
        }
        if customer_email:
            params["customer_email"] = customer_email
        session = await self._call("checkout", stripe.checkout.Session.create, **params)
        return HostedSession(id=session["id"], url=session["url"])

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> HostedSession:
        session = await self._call(
            "portal",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return HostedSession(id=session["id"], url=session["url"])

    async def _call(self, operation: str, method: Any, **params: Any) -> Any:
        try:
            with metrics.timed("billing.processor.latency", tags={"operation": operation}):
                return await asyncio.to_thread(
                    method,
                    api_key=self._api_key,
                    stripe_version=self._api_version,
                    **params,
                )
        except stripe.StripeError as exc:
            message = getattr(exc, "user_message", None) or str(exc) or type(exc).__name__
            logger.warning(
                "billing.processor.failed",
                extra={"operation": operation, "error": type(exc).__name__},
            )
            metrics.increment("billing.processor.failed", tags={"operation": operation})
            raise UpstreamError(message) from exc
