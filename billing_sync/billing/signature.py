"""Webhook signature verification compatible with Stripe's v1 scheme."""
# ruff: noqa: UP017

from __future__ import annotations

import hmac
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from hashlib import sha256

from pydantic import ValidationError

from billing_sync.billing.errors import (
    EventPayloadError,
    MalformedSignatureError,
    MissingSignatureError,
    SignatureMismatchError,
    StaleSignatureError,
)
from billing_sync.billing.events import VerifiedEvent
from billing_sync.observability.metrics import metrics

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"
DEFAULT_TOLERANCE = timedelta(minutes=5)


@dataclass
class _SignedTimestamp:
    timestamp: int
    signatures: list[str] = field(default_factory=list)


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    """Return the hex HMAC-SHA256 the processor sends for ``payload`` at ``timestamp``."""
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), msg=signed_payload, digestmod=sha256).hexdigest()


def parse_signature_header(header: str) -> list[_SignedTimestamp]:
    """Split ``t=..,v1=..[,v1=..][,t=..,v1=..]`` into timestamp groups.

    A ``v1`` entry belongs to the closest preceding ``t`` entry. Other schemes
    are skipped.
    """
    groups: list[_SignedTimestamp] = []
    for entry in header.split(","):
        key, sep, value = entry.strip().partition("=")
        if not sep or not value:
            raise MalformedSignatureError("Signature header entry is not key=value")
        if key == "t":
            try:
                groups.append(_SignedTimestamp(timestamp=int(value)))
            except ValueError as exc:
                raise MalformedSignatureError("Signature timestamp is not an integer") from exc
        elif key == SIGNATURE_SCHEME:
            if not groups:
                raise MalformedSignatureError("Signature appears before its timestamp")
            groups[-1].signatures.append(value)
    if not groups:
        raise MalformedSignatureError("Signature header has no timestamp")
    if not any(group.signatures for group in groups):
        raise MalformedSignatureError(f"Signature header has no {SIGNATURE_SCHEME} signature")
    return groups


class SignatureVerifier:
    """Authenticates raw webhook bodies before any parsing happens."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def verify(
        self,
        raw_body: bytes,
        signature_header: str | None,
        secret: str,
        tolerance: timedelta | None = DEFAULT_TOLERANCE,
    ) -> VerifiedEvent:
        if not signature_header or not signature_header.strip():
            self._reject("missing")
            raise MissingSignatureError("No signature header on request")
        try:
            groups = parse_signature_header(signature_header)
        except MalformedSignatureError:
            self._reject("malformed")
            raise

        matched = [
            group.timestamp
            for group in groups
            if any(
                hmac.compare_digest(compute_signature(raw_body, secret, group.timestamp), candidate)
                for candidate in group.signatures
            )
        ]
        if not matched:
            self._reject("mismatch")
            raise SignatureMismatchError("No signatures found matching the expected signature")

        if tolerance is not None:
            freshest = max(matched)
            age = self._clock().timestamp() - freshest
            if abs(age) > tolerance.total_seconds():
                self._reject("stale", age_seconds=round(age))
                raise StaleSignatureError("Signature timestamp is outside the tolerance window")

        return parse_event(raw_body)

    def _reject(self, reason: str, **extra: object) -> None:
        logger.warning("billing.webhook.signature_%s", reason, extra={"reason": reason, **extra})
        metrics.increment("billing.webhook.signature_invalid", tags={"reason": reason})


def parse_event(raw_body: bytes) -> VerifiedEvent:
    """Decode an already-verified body into an event envelope."""
    try:
        return VerifiedEvent.model_validate(json.loads(raw_body))
    except (ValueError, ValidationError) as exc:
        logger.warning("billing.webhook.invalid_payload")
        raise EventPayloadError("Webhook body is not a valid event envelope") from exc
