"""Resolves bearer credentials to internal user identities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from billing_sync.billing.errors import AuthError, BillingConfigurationError, UpstreamError
from billing_sync.config import settings
from billing_sync.observability.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str | None


class IdentityProvider(Protocol):
    async def resolve(self, token: str) -> Identity:
        """Return the identity behind ``token`` or raise ``AuthError``."""
        ...


def bearer_token(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.lower().startswith("bearer "):
        logger.warning("billing.auth.missing_header")
        raise AuthError("Missing or invalid authorization")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        logger.warning("billing.auth.missing_header")
        raise AuthError("Missing or invalid authorization")
    return token


class SupabaseIdentityProvider(IdentityProvider):
    """Looks tokens up against the Supabase Auth ``/auth/v1/user`` endpoint."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url or not anon_key:
            raise BillingConfigurationError("SUPABASE_URL and SUPABASE_ANON_KEY are required.")
        self._user_url = f"{base_url.rstrip('/')}/auth/v1/user"
        self._anon_key = anon_key
        self._timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(cls) -> SupabaseIdentityProvider:
        return cls(
            settings.supabase_url or "",
            settings.supabase_anon_key or "",
            timeout=settings.identity_timeout_seconds,
        )

    async def resolve(self, token: str) -> Identity:
        if not token:
            raise AuthError()
        headers = {"apikey": self._anon_key, "Authorization": f"Bearer {token}"}
        try:
            with metrics.timed("billing.identity.latency"):
                response = await self._get(headers)
        except httpx.HTTPError as exc:
            logger.warning("billing.identity.unreachable", extra={"error": type(exc).__name__})
            metrics.increment("billing.identity.error", tags={"reason": "transport"})
            raise UpstreamError("Identity provider unavailable", provider="supabase") from exc

        if response.status_code in (401, 403):
            metrics.increment("billing.identity.rejected")
            raise AuthError()
        if response.status_code != 200:
            logger.warning(
                "billing.identity.unexpected_status", extra={"status": response.status_code}
            )
            metrics.increment("billing.identity.error", tags={"reason": "status"})
            raise UpstreamError(
                f"Identity provider returned {response.status_code}", provider="supabase"
            )

        payload = response.json()
        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not user_id:
            raise AuthError()
        return Identity(user_id=str(user_id), email=payload.get("email"))

    async def _get(self, headers: dict[str, str]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.get(self._user_url, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.get(self._user_url, headers=headers)
