"""Hosted checkout initiation: the synchronous start of the subscription flow."""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass

from billing_sync.billing.errors import BillingValidationError
from billing_sync.billing.identity import IdentityProvider
from billing_sync.billing.processor import PaymentProcessor
from billing_sync.billing.projector import USER_ID_METADATA_KEY
from billing_sync.observability.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    url: str


def _mask_email(email: str | None) -> str:
    if not email:
        return "*"
    domain = email.split("@")[-1] if "@" in email else ""
    return f"*@{domain}" if domain else "*"


class CheckoutSessionInitiator:
    """Creates a processor checkout session linked back to the caller via metadata.

    Nothing is written locally; the subscription record appears once the
    processor delivers the checkout completion event.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        processor: PaymentProcessor,
        *,
        success_url: str,
        cancel_url: str,
        allowed_price_ids: Collection[str] | None = None,
    ) -> None:
        self._identity = identity
        self._processor = processor
        self._success_url = success_url
        self._cancel_url = cancel_url
        self._allowed_price_ids = frozenset(allowed_price_ids) if allowed_price_ids else None

    async def create_checkout_session(self, auth_token: str, price_id: str | None) -> CheckoutSession:
        caller = await self._identity.resolve(auth_token)
        price_id = (price_id or "").strip()
        if not price_id:
            raise BillingValidationError("Price ID is required", BillingValidationError.MISSING_PRICE)
        if self._allowed_price_ids is not None and price_id not in self._allowed_price_ids:
            logger.warning("billing.checkout.unknown_price", extra={"price_id": price_id})
            raise BillingValidationError(
                f"Unknown price: {price_id}", BillingValidationError.UNKNOWN_PRICE
            )

        session = await self._processor.create_checkout_session(
            customer_email=caller.email,
            price_id=price_id,
            success_url=self._success_url,
            cancel_url=self._cancel_url,
            metadata={USER_ID_METADATA_KEY: caller.user_id},
        )
        logger.info(
            "billing.checkout.created",
            extra={
                "user_id": caller.user_id,
                "price_id": price_id,
                "session_id": session.id,
                "email_domain": _mask_email(caller.email),
            },
        )
        metrics.increment("billing.checkout.created", tags={"price_id": price_id})
        return CheckoutSession(url=session.url)
