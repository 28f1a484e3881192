from __future__ import annotations

import asyncio

import pytest

from billing_sync.billing import processor as processor_module
from billing_sync.billing.errors import BillingConfigurationError, UpstreamError
from billing_sync.billing.processor import StripePaymentProcessor
from tests.helpers.fakes import FakeStripe
from tests.helpers.metrics_stub import StubMetrics


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(processor_module, "stripe", fake)
    return fake


def _processor() -> StripePaymentProcessor:
    return StripePaymentProcessor("sk_test_stub", api_version="2023-10-16")


def test_requires_secret_key():
    with pytest.raises(BillingConfigurationError):
        StripePaymentProcessor("")


def test_checkout_session_requests_subscription_mode(fake_stripe):
    session = asyncio.run(
        _processor().create_checkout_session(
            customer_email="user42@example.com",
            price_id="price_pro_monthly",
            success_url="http://localhost:3000/subscriptions?success=true",
            cancel_url="http://localhost:3000/subscriptions?canceled=true",
            metadata={"userId": "42"},
        )
    )

    kind, params = fake_stripe.calls[0]
    assert kind == "checkout"
    assert session.id == "cs_test_1"
    assert session.url == "https://stripe.test/checkout/cs_test_1"
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": "price_pro_monthly", "quantity": 1}]
    assert params["metadata"] == {"userId": "42"}
    assert params["subscription_data"] == {"metadata": {"userId": "42"}}
    assert params["customer_email"] == "user42@example.com"
    assert params["api_key"] == "sk_test_stub"
    assert params["stripe_version"] == "2023-10-16"


def test_checkout_session_omits_missing_email(fake_stripe):
    asyncio.run(
        _processor().create_checkout_session(
            customer_email=None,
            price_id="price_basic_monthly",
            success_url="s",
            cancel_url="c",
            metadata={"userId": "42"},
        )
    )

    assert "customer_email" not in fake_stripe.calls[0][1]


def test_portal_session_targets_customer(fake_stripe):
    session = asyncio.run(
        _processor().create_portal_session(
            customer_id="cus_1", return_url="http://localhost:3000/subscriptions"
        )
    )

    kind, params = fake_stripe.calls[0]
    assert kind == "portal"
    assert session.url == "https://stripe.test/portal/bps_test_1"
    assert params["customer"] == "cus_1"
    assert params["return_url"] == "http://localhost:3000/subscriptions"


def test_stripe_errors_become_upstream_errors(fake_stripe):
    fake_stripe.error = fake_stripe.StripeError("No such price: 'price_bogus'")

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(
            _processor().create_checkout_session(
                customer_email=None,
                price_id="price_bogus",
                success_url="s",
                cancel_url="c",
                metadata={"userId": "42"},
            )
        )

    assert "price_bogus" in str(excinfo.value)
    assert excinfo.value.code == "502_UPSTREAM"


def test_processor_latency_is_timed_per_operation(fake_stripe, monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(processor_module, "metrics", stub)
    fake_stripe.error = fake_stripe.StripeError("card_declined")

    with pytest.raises(UpstreamError):
        asyncio.run(_processor().create_portal_session(customer_id="cus_1", return_url="r"))

    assert stub.timing_calls[0]["tags"] == {"operation": "portal", "outcome": "error"}
    assert stub.increment_calls[0]["metric"] == "billing.processor.failed"
