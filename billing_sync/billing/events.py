"""Event envelope and dispatch result types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class VerifiedEvent(BaseModel):
    """Event envelope whose signature has been checked against the raw body."""

    id: str | None = None
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    created: int | None = None
    livemode: bool = False

    @property
    def object(self) -> dict[str, Any]:
        obj = self.data.get("object")
        return obj if isinstance(obj, dict) else {}


class ProjectionOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DUPLICATE = "duplicate"
    CANCELED = "canceled"
    MISSING = "missing"
    SKIPPED = "skipped"


class DispatchStatus(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"


@dataclass(frozen=True)
class DispatchResult:
    event_type: str
    status: DispatchStatus
    outcome: ProjectionOutcome | None = None

    @classmethod
    def ignored(cls, event_type: str) -> DispatchResult:
        return cls(event_type=event_type, status=DispatchStatus.IGNORED)

    @property
    def is_ignored(self) -> bool:
        return self.status is DispatchStatus.IGNORED
