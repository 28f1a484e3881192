"""SQLModel mapping for processor-owned subscription records."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStatus(str, Enum):
    """Subscription states reported by the payment processor."""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


CURRENT_STATUSES = frozenset({SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE})

# Fields replaced wholesale by every subscription change event.
BILLING_FIELDS = (
    "status",
    "price_id",
    "quantity",
    "cancel_at_period_end",
    "current_period_start",
    "current_period_end",
    "trial_start",
    "trial_end",
)

# Fields never touched by update(); user_id is only filled through claim_user().
IMMUTABLE_FIELDS = frozenset({"id", "user_id", "customer_id", "created_at"})

RECORD_FIELDS = (
    "id",
    "user_id",
    "customer_id",
    *BILLING_FIELDS,
    "canceled_at",
    "ended_at",
    "created_at",
    "updated_at",
)


class SubscriptionRecord(SQLModel, table=True):
    """Persisted subscription state keyed by the processor subscription id."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        sa.Index("ix_subscriptions_user_id_created_at", "user_id", "created_at"),
        sa.Index("ix_subscriptions_customer_id", "customer_id"),
    )

    id: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    user_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    customer_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    status: SubscriptionStatus = Field(
        sa_column=Column(
            sa.Enum(
                SubscriptionStatus,
                name="subscription_status",
                values_callable=lambda members: [member.value for member in members],
            ),
            nullable=False,
        )
    )
    price_id: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    quantity: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    cancel_at_period_end: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    current_period_start: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    current_period_end: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    trial_start: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    trial_end: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    canceled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    ended_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )

    @property
    def is_current(self) -> bool:
        return self.status in CURRENT_STATUSES

    def clone(self, **changes: object) -> SubscriptionRecord:
        """Return a detached copy with ``changes`` applied."""
        values = {name: getattr(self, name) for name in RECORD_FIELDS}
        values.update(changes)
        return SubscriptionRecord(**values)

    def to_public_dict(self) -> dict[str, object]:
        """Serialise for API responses (datetimes as ISO-8601 strings)."""
        payload: dict[str, object] = {}
        for name in RECORD_FIELDS:
            if name == "updated_at":
                continue
            value = getattr(self, name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, SubscriptionStatus):
                value = value.value
            payload[name] = value
        return payload
