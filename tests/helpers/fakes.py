"""Shared doubles for the billing tests: identity, processor, Stripe SDK and SQL sessions."""

from __future__ import annotations

import hmac
import json
from hashlib import sha256
from types import SimpleNamespace
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from billing_sync.billing.errors import AuthError, UpstreamError
from billing_sync.billing.identity import Identity
from billing_sync.billing.processor import HostedSession
from billing_sync.models import subscription  # noqa: F401 - register table metadata

WEBHOOK_SECRET = "whsec_test_secret"  # noqa: S105 - test fixture value


def sign_payload(secret: str, payload: str | bytes, timestamp: int) -> str:
    body = payload.encode() if isinstance(payload, str) else payload
    signature = hmac.new(
        secret.encode(),
        msg=f"{timestamp}.".encode() + body,
        digestmod=sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def event_body(event_type: str, obj: dict[str, Any], event_id: str = "evt_1") -> str:
    return json.dumps(
        {"id": event_id, "type": event_type, "data": {"object": obj}, "created": 1_700_000_000}
    )


def checkout_session(
    *,
    user_id: str | None = "42",
    subscription_id: str | None = "sub_1",
    customer_id: str | None = "cus_1",
    mode: str | None = "subscription",
) -> dict[str, Any]:
    session: dict[str, Any] = {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": mode,
        "subscription": subscription_id,
        "customer": customer_id,
        "metadata": {"userId": user_id} if user_id is not None else {},
    }
    return session


def subscription_object(
    *,
    subscription_id: str = "sub_1",
    customer_id: str = "cus_1",
    status: str = "active",
    price_id: str = "price_pro_monthly",
    period_start: int = 1_700_000_000,
    period_end: int = 1_702_592_000,
    cancel_at_period_end: bool = False,
    metadata: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "trial_start": None,
        "trial_end": None,
        "metadata": metadata or {},
        "items": {
            "data": [{"id": "si_1", "price": {"id": price_id}, "quantity": 1}],
        },
    }


class StaticIdentityProvider:
    """Resolves a fixed token table; anything else is unauthorized."""

    def __init__(self, tokens: dict[str, Identity] | None = None) -> None:
        self.tokens = tokens or {
            "validtoken-for-user-42": Identity(user_id="42", email="user42@example.com")
        }
        self.resolved: list[str] = []

    async def resolve(self, token: str) -> Identity:
        self.resolved.append(token)
        identity = self.tokens.get(token)
        if identity is None:
            raise AuthError()
        return identity


class FakeProcessor:
    """Records hosted-session requests and answers with predictable urls."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.checkout_calls: list[dict[str, Any]] = []
        self.portal_calls: list[dict[str, Any]] = []

    async def create_checkout_session(self, **params: Any) -> HostedSession:
        self.checkout_calls.append(params)
        if self.fail:
            raise UpstreamError("No such price")
        session_id = f"cs_test_{len(self.checkout_calls)}"
        return HostedSession(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    async def create_portal_session(self, **params: Any) -> HostedSession:
        self.portal_calls.append(params)
        if self.fail:
            raise UpstreamError("No such customer")
        session_id = f"bps_test_{len(self.portal_calls)}"
        return HostedSession(id=session_id, url=f"https://billing.stripe.test/{session_id}")


class FakeStripe:
    """Mimics the slice of the Stripe SDK the processor adapter touches."""

    class StripeError(Exception):
        def __init__(self, message: str = "", user_message: str | None = None) -> None:
            super().__init__(message)
            self.user_message = user_message

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.error: Exception | None = None
        self.checkout = SimpleNamespace(
            Session=SimpleNamespace(create=self._record("checkout", "cs_test_1"))
        )
        self.billing_portal = SimpleNamespace(
            Session=SimpleNamespace(create=self._record("portal", "bps_test_1"))
        )

    def _record(self, kind: str, session_id: str):
        def create(**params: Any) -> dict[str, Any]:
            self.calls.append((kind, params))
            if self.error is not None:
                raise self.error
            return {"id": session_id, "url": f"https://stripe.test/{kind}/{session_id}"}

        return create


class SyncAsyncSession:
    """Async facade over a sync SQLAlchemy session for in-memory SQLite tests."""

    def __init__(self, factory: sessionmaker[Session]) -> None:
        self._session = factory()

    async def __aenter__(self) -> SyncAsyncSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._session.close()

    async def execute(self, stmt):
        return self._session.execute(stmt)

    async def commit(self):
        self._session.commit()

    async def rollback(self):
        self._session.rollback()

    def add(self, obj):
        self._session.add(obj)


def sqlite_session_factory():
    """Return ``(session_factory, engine)`` backed by a fresh in-memory database."""
    engine = create_engine(
        "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    sync_factory = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)
    return (lambda: SyncAsyncSession(sync_factory)), engine
