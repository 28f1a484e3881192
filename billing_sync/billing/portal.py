"""Hosted billing-portal initiation for existing customers."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from billing_sync.billing.errors import NotFoundError
from billing_sync.billing.identity import IdentityProvider
from billing_sync.billing.processor import PaymentProcessor
from billing_sync.billing.store import SubscriptionStore
from billing_sync.observability.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortalSession:
    url: str


class BillingPortalInitiator:
    def __init__(
        self,
        identity: IdentityProvider,
        processor: PaymentProcessor,
        store: SubscriptionStore,
        *,
        return_url: str,
    ) -> None:
        self._identity = identity
        self._processor = processor
        self._store = store
        self._return_url = return_url

    async def create_portal_session(self, auth_token: str) -> PortalSession:
        caller = await self._identity.resolve(auth_token)
        # Any status: canceled customers still reach their invoices.
        record = await self._store.latest_for_user(caller.user_id)
        if record is None:
            logger.info("billing.portal.no_subscription", extra={"user_id": caller.user_id})
            raise NotFoundError(
                "No subscription found for this user", NotFoundError.NO_SUBSCRIPTION
            )

        session = await self._processor.create_portal_session(
            customer_id=record.customer_id, return_url=self._return_url
        )
        logger.info(
            "billing.portal.created",
            extra={"user_id": caller.user_id, "customer_id": record.customer_id},
        )
        metrics.increment("billing.portal.created")
        return PortalSession(url=session.url)
