"""Explicit construction of billing components and their FastAPI accessors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from billing_sync.billing.checkout import CheckoutSessionInitiator
from billing_sync.billing.dispatcher import EventDispatcher
from billing_sync.billing.errors import BillingConfigurationError
from billing_sync.billing.identity import IdentityProvider, SupabaseIdentityProvider
from billing_sync.billing.plans import known_price_ids
from billing_sync.billing.portal import BillingPortalInitiator
from billing_sync.billing.processor import PaymentProcessor, StripePaymentProcessor
from billing_sync.billing.projector import SubscriptionProjector
from billing_sync.billing.signature import SignatureVerifier
from billing_sync.billing.store import InMemorySubscriptionStore, SubscriptionStore
from billing_sync.config import Settings, settings

logger = logging.getLogger(__name__)


@dataclass
class BillingServices:
    store: SubscriptionStore
    verifier: SignatureVerifier
    dispatcher: EventDispatcher
    identity: IdentityProvider | None
    checkout: CheckoutSessionInitiator | None
    portal: BillingPortalInitiator | None
    webhook_secret: str | None
    webhook_tolerance: timedelta | None


def build_billing_services(
    store: SubscriptionStore | None = None,
    *,
    processor: PaymentProcessor | None = None,
    identity: IdentityProvider | None = None,
    verifier: SignatureVerifier | None = None,
    config: Settings | None = None,
) -> BillingServices:
    """Wire the webhook pipeline and initiators around one store.

    Collaborators not passed in are built from settings when configured; the
    initiators stay ``None`` when Stripe or the identity provider is not.
    """
    if config is None:
        config = settings
    if store is None:
        store = InMemorySubscriptionStore()
    if processor is None and config.stripe_secret_key:
        processor = StripePaymentProcessor(
            config.stripe_secret_key, api_version=config.stripe_api_version
        )
    if identity is None and config.supabase_url and config.supabase_anon_key:
        identity = SupabaseIdentityProvider(
            config.supabase_url,
            config.supabase_anon_key,
            timeout=config.identity_timeout_seconds,
        )

    checkout = portal = None
    if processor is not None and identity is not None:
        checkout = CheckoutSessionInitiator(
            identity,
            processor,
            success_url=config.checkout_success_url,
            cancel_url=config.checkout_cancel_url,
            allowed_price_ids=known_price_ids(config)
            if config.billing_enforce_price_catalog
            else None,
        )
        portal = BillingPortalInitiator(
            identity, processor, store, return_url=config.portal_return_url
        )
    else:
        logger.warning(
            "billing.initiators.disabled",
            extra={"processor": processor is not None, "identity": identity is not None},
        )

    tolerance_seconds = config.stripe_webhook_tolerance_seconds
    return BillingServices(
        store=store,
        verifier=verifier if verifier is not None else SignatureVerifier(),
        dispatcher=EventDispatcher(SubscriptionProjector(store)),
        identity=identity,
        checkout=checkout,
        portal=portal,
        webhook_secret=config.stripe_webhook_secret,
        webhook_tolerance=timedelta(seconds=tolerance_seconds) if tolerance_seconds > 0 else None,
    )


_SERVICES: BillingServices | None = None


def configure_billing(services: BillingServices | None) -> None:
    global _SERVICES  # noqa: PLW0603
    _SERVICES = services


def get_billing_services() -> BillingServices:
    """Singleton accessor used by API routes."""
    global _SERVICES  # noqa: PLW0603
    if _SERVICES is None:
        _SERVICES = build_billing_services()
    return _SERVICES


def require_checkout(services: BillingServices) -> CheckoutSessionInitiator:
    if services.checkout is None:
        raise BillingConfigurationError("Checkout is not configured")
    return services.checkout


def require_portal(services: BillingServices) -> BillingPortalInitiator:
    if services.portal is None:
        raise BillingConfigurationError("Billing portal is not configured")
    return services.portal


def require_identity(services: BillingServices) -> IdentityProvider:
    if services.identity is None:
        raise BillingConfigurationError("Identity provider is not configured")
    return services.identity
