"""Projects processor subscription events onto stored subscription records.

Every handler is idempotent and safe to re-run for the same event:

* checkout completion inserts with insert-if-absent, so duplicates collapse
  onto the first row;
* subscription changes overwrite the billing fields of the row, so the most
  recently delivered event wins;
* deletion soft-terminates the row and re-applying it rewrites the same
  terminal state.
"""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from billing_sync.billing.errors import EventPayloadError, LinkageError
from billing_sync.billing.events import ProjectionOutcome
from billing_sync.billing.store import SubscriptionStore
from billing_sync.models.subscription import SubscriptionRecord, SubscriptionStatus
from billing_sync.observability.metrics import metrics

logger = logging.getLogger(__name__)

USER_ID_METADATA_KEY = "userId"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_unix(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError) as exc:
        raise EventPayloadError(f"Invalid unix timestamp: {value!r}") from exc


def _object_id(value: Any) -> str | None:
    """Processor references arrive either as ids or as expanded objects."""
    if isinstance(value, dict):
        value = value.get("id")
    return value or None


def _metadata_user_id(obj: dict[str, Any]) -> str | None:
    metadata = obj.get("metadata") or {}
    user_id = metadata.get(USER_ID_METADATA_KEY)
    return str(user_id) if user_id else None


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _parse_status(value: Any) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(value)
    except ValueError as exc:
        raise EventPayloadError(f"Unknown subscription status: {value!r}") from exc


def billing_fields(subscription: dict[str, Any]) -> dict[str, Any]:
    """Extract the fields a change event replaces wholesale."""
    item = _first_item(subscription)
    price = item.get("price") or {}
    period_start = subscription.get("current_period_start", item.get("current_period_start"))
    period_end = subscription.get("current_period_end", item.get("current_period_end"))
    return {
        "status": _parse_status(subscription.get("status")),
        "price_id": _object_id(price),
        "quantity": item.get("quantity"),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end", False)),
        "current_period_start": _from_unix(period_start),
        "current_period_end": _from_unix(period_end),
        "trial_start": _from_unix(subscription.get("trial_start")),
        "trial_end": _from_unix(subscription.get("trial_end")),
    }


class SubscriptionProjector:
    """The three mutation handlers sharing one subscription store."""

    def __init__(
        self,
        store: SubscriptionStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or _utcnow

    async def on_checkout_completed(self, session: dict[str, Any]) -> ProjectionOutcome:
        mode = session.get("mode")
        if mode is not None and mode != "subscription":
            logger.info(
                "billing.checkout.skipped_mode",
                extra={"session_id": session.get("id"), "mode": mode},
            )
            return ProjectionOutcome.SKIPPED

        user_id = _metadata_user_id(session)
        subscription_id = _object_id(session.get("subscription"))
        customer_id = _object_id(session.get("customer"))
        if not user_id:
            self._linkage_failure(session, LinkageError.MISSING_USER_ID)
            raise LinkageError(
                "Checkout session has no userId metadata", LinkageError.MISSING_USER_ID
            )
        if not subscription_id:
            self._linkage_failure(session, LinkageError.MISSING_SUBSCRIPTION_ID)
            raise LinkageError(
                "Checkout session has no subscription", LinkageError.MISSING_SUBSCRIPTION_ID
            )
        if not customer_id:
            self._linkage_failure(session, LinkageError.MISSING_CUSTOMER_ID)
            raise LinkageError(
                "Checkout session has no customer", LinkageError.MISSING_CUSTOMER_ID
            )

        now = self._clock()
        record = SubscriptionRecord(
            id=subscription_id,
            user_id=user_id,
            customer_id=customer_id,
            status=SubscriptionStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        if await self._store.insert_if_absent(record):
            self._log("created", subscription_id, status=SubscriptionStatus.ACTIVE)
            return ProjectionOutcome.CREATED

        existing = await self._store.claim_user(subscription_id, user_id)
        if existing is not None and existing.user_id != user_id:
            logger.error(
                "billing.checkout.user_conflict",
                extra={"subscription_id": subscription_id, "user_id": user_id},
            )
            metrics.alert(
                "billing.checkout.user_conflict",
                value=1.0,
                threshold=0.0,
                severity="critical",
            )
        self._log("duplicate", subscription_id)
        return ProjectionOutcome.DUPLICATE

    async def on_subscription_change(self, subscription: dict[str, Any]) -> ProjectionOutcome:
        subscription_id = self._require_id(subscription)
        changes = billing_fields(subscription)

        updated = await self._store.update(subscription_id, changes)
        if updated is not None:
            await self._backfill_user(subscription_id, updated, subscription)
            self._log("updated", subscription_id, status=changes["status"])
            return ProjectionOutcome.UPDATED

        # Change arrived before (or without) its checkout completion event.
        customer_id = _object_id(subscription.get("customer"))
        if not customer_id:
            raise EventPayloadError("Subscription event has no customer")
        now = self._clock()
        record = SubscriptionRecord(
            id=subscription_id,
            user_id=_metadata_user_id(subscription),
            customer_id=customer_id,
            created_at=now,
            updated_at=now,
            **changes,
        )
        if await self._store.insert_if_absent(record):
            if record.user_id is None:
                logger.warning(
                    "billing.subscription.unlinked",
                    extra={"subscription_id": subscription_id, "customer_id": customer_id},
                )
                metrics.increment("billing.subscription.unlinked")
            self._log("created", subscription_id, status=changes["status"], note="out_of_order")
            return ProjectionOutcome.CREATED

        # Lost an insert race against a concurrent delivery; apply as an overwrite.
        updated = await self._store.update(subscription_id, changes)
        if updated is None:  # pragma: no cover - rows are never hard-deleted
            raise EventPayloadError(f"Subscription {subscription_id} vanished during update")
        self._log("updated", subscription_id, status=changes["status"], note="insert_race")
        return ProjectionOutcome.UPDATED

    async def on_subscription_deleted(self, subscription: dict[str, Any]) -> ProjectionOutcome:
        subscription_id = self._require_id(subscription)
        now = self._clock()
        updated = await self._store.update(
            subscription_id,
            {
                "status": SubscriptionStatus.CANCELED,
                "cancel_at_period_end": False,
                "canceled_at": now,
                "ended_at": now,
            },
        )
        if updated is None:
            logger.info(
                "billing.subscription.delete_missing", extra={"subscription_id": subscription_id}
            )
            return ProjectionOutcome.MISSING
        self._log("canceled", subscription_id, status=SubscriptionStatus.CANCELED)
        return ProjectionOutcome.CANCELED

    async def _backfill_user(
        self, subscription_id: str, record: SubscriptionRecord, subscription: dict[str, Any]
    ) -> None:
        user_id = _metadata_user_id(subscription)
        if record.user_id is None and user_id:
            await self._store.claim_user(subscription_id, user_id)

    @staticmethod
    def _require_id(subscription: dict[str, Any]) -> str:
        subscription_id = subscription.get("id")
        if not subscription_id:
            raise EventPayloadError("Subscription event has no id")
        return subscription_id

    @staticmethod
    def _linkage_failure(session: dict[str, Any], kind: str) -> None:
        logger.error(
            "billing.checkout.linkage_missing",
            extra={"session_id": session.get("id"), "kind": kind},
        )
        metrics.alert(
            "billing.checkout.linkage_missing",
            value=1.0,
            threshold=0.0,
            severity="critical",
            tags={"kind": kind},
        )

    @staticmethod
    def _log(
        outcome: str,
        subscription_id: str,
        *,
        status: SubscriptionStatus | None = None,
        note: str | None = None,
    ) -> None:
        logger.info(
            "billing.subscription.%s",
            outcome,
            extra={
                "subscription_id": subscription_id,
                "status": status.value if status else None,
                "note": note,
            },
        )
        metrics.increment("billing.subscription.projected", tags={"outcome": outcome})
