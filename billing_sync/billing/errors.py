"""Error taxonomy shared by the webhook pipeline and the session initiators.

Every error carries a ``code`` whose numeric prefix is the HTTP status the
synchronous routes answer with.
"""

from __future__ import annotations


class BillingError(RuntimeError):
    """Base exception for billing failures."""

    def __init__(self, message: str, code: str = "500_BILLING_ERROR") -> None:
        super().__init__(message)
        self.code = code

    @property
    def status_code(self) -> int:
        prefix = self.code.split("_", 1)[0]
        return int(prefix) if prefix.isdigit() else 500


class BillingConfigurationError(BillingError):
    """Raised when a required secret or endpoint is not configured."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="503_NOT_CONFIGURED")


class VerificationError(BillingError):
    """Inbound event could not be authenticated; nothing was processed."""

    reason = "verification_failed"

    def __init__(self, message: str) -> None:
        super().__init__(message, code=f"400_SIGNATURE_{self.reason.upper()}")


class MissingSignatureError(VerificationError):
    reason = "missing"


class MalformedSignatureError(VerificationError):
    reason = "malformed"


class SignatureMismatchError(VerificationError):
    reason = "mismatch"


class StaleSignatureError(VerificationError):
    reason = "stale"


class EventPayloadError(BillingError):
    """Raised when a verified event envelope or its object cannot be used."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="400_INVALID_PAYLOAD")


class LinkageError(BillingError):
    """Correlation data expected from the checkout flow is missing."""

    MISSING_USER_ID = "MissingUserId"
    MISSING_SUBSCRIPTION_ID = "MissingSubscriptionId"
    MISSING_CUSTOMER_ID = "MissingCustomerId"

    def __init__(self, message: str, kind: str) -> None:
        super().__init__(message, code="400_LINKAGE")
        self.kind = kind


class BillingValidationError(BillingError):
    """Caller supplied unusable input."""

    MISSING_PRICE = "MissingPrice"
    UNKNOWN_PRICE = "UnknownPrice"

    def __init__(self, message: str, kind: str) -> None:
        super().__init__(message, code="400_VALIDATION")
        self.kind = kind


class AuthError(BillingError):
    """Caller credential is absent or rejected by the identity provider."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, code="401_UNAUTHORIZED")


class NotFoundError(BillingError):
    """An expected record does not exist; the caller can act on it."""

    NO_SUBSCRIPTION = "NoSubscription"

    def __init__(self, message: str, kind: str) -> None:
        super().__init__(message, code="400_NOT_FOUND")
        self.kind = kind


class UpstreamError(BillingError):
    """The payment processor or identity provider call failed."""

    def __init__(self, message: str, provider: str = "stripe") -> None:
        super().__init__(message, code="502_UPSTREAM")
        self.provider = provider


class StoreError(BillingError):
    """The subscription store failed to read or write."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="500_STORE")
