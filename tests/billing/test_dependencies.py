from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from billing_sync.billing.dependencies import (
    build_billing_services,
    require_checkout,
    require_identity,
    require_portal,
)
from billing_sync.billing.errors import BillingConfigurationError
from billing_sync.billing.events import CHECKOUT_SESSION_COMPLETED, VerifiedEvent
from billing_sync.billing.signature import SignatureVerifier
from billing_sync.billing.store import InMemorySubscriptionStore
from billing_sync.config import Settings
from tests.helpers.fakes import FakeProcessor, StaticIdentityProvider, checkout_session


def _unconfigured() -> Settings:
    return Settings(
        stripe_secret_key=None,
        stripe_webhook_secret=None,
        supabase_url=None,
        supabase_anon_key=None,
    )


def test_unconfigured_services_refuse_session_requests():
    services = build_billing_services(config=_unconfigured())

    assert isinstance(services.store, InMemorySubscriptionStore)
    assert services.webhook_secret is None
    for accessor in (require_checkout, require_portal, require_identity):
        with pytest.raises(BillingConfigurationError) as excinfo:
            accessor(services)
        assert excinfo.value.status_code == 503


def test_configured_services_build_stripe_and_supabase_adapters():
    config = Settings(
        stripe_secret_key="sk_test_stub",
        stripe_webhook_secret="whsec_test",
        supabase_url="https://project.supabase.co",
        supabase_anon_key="anon-key",
        stripe_webhook_tolerance_seconds=120,
    )

    services = build_billing_services(config=config)

    assert require_checkout(services) is services.checkout
    assert require_portal(services) is services.portal
    assert services.webhook_tolerance == timedelta(seconds=120)


def test_zero_tolerance_disables_timestamp_check():
    config = _unconfigured()
    config.stripe_webhook_tolerance_seconds = 0

    assert build_billing_services(config=config).webhook_tolerance is None


def test_injected_empty_store_is_kept():
    store = InMemorySubscriptionStore()
    verifier = SignatureVerifier()

    services = build_billing_services(
        store,
        processor=FakeProcessor(),
        identity=StaticIdentityProvider(),
        verifier=verifier,
        config=_unconfigured(),
    )

    assert len(store) == 0
    assert services.store is store
    assert services.verifier is verifier

    event = VerifiedEvent(id="evt_1", type=CHECKOUT_SESSION_COMPLETED, data={"object": checkout_session()})
    asyncio.run(services.dispatcher.dispatch(event))
    assert len(store) == 1
