"""Routes verified events to their projector handler."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType
from typing import Any

from billing_sync.billing.events import (
    CHECKOUT_SESSION_COMPLETED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_DELETED,
    SUBSCRIPTION_UPDATED,
    DispatchResult,
    DispatchStatus,
    ProjectionOutcome,
    VerifiedEvent,
)
from billing_sync.billing.projector import SubscriptionProjector
from billing_sync.observability.metrics import metrics

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[ProjectionOutcome]]


def build_handlers(projector: SubscriptionProjector) -> Mapping[str, Handler]:
    return MappingProxyType(
        {
            CHECKOUT_SESSION_COMPLETED: projector.on_checkout_completed,
            SUBSCRIPTION_CREATED: projector.on_subscription_change,
            SUBSCRIPTION_UPDATED: projector.on_subscription_change,
            SUBSCRIPTION_DELETED: projector.on_subscription_deleted,
        }
    )


class EventDispatcher:
    """Closed dispatch table; unrecognised event types are acknowledged and ignored."""

    def __init__(self, projector: SubscriptionProjector) -> None:
        self._handlers = build_handlers(projector)

    @property
    def handled_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def dispatch(self, event: VerifiedEvent) -> DispatchResult:
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info(
                "billing.webhook.ignored", extra={"event_id": event.id, "type": event.type}
            )
            metrics.increment("billing.webhook.ignored", tags={"type": event.type})
            return DispatchResult.ignored(event.type)

        outcome = await handler(event.object)
        logger.info(
            "billing.webhook.applied",
            extra={"event_id": event.id, "type": event.type, "outcome": outcome.value},
        )
        metrics.increment(
            "billing.webhook.applied", tags={"type": event.type, "outcome": outcome.value}
        )
        return DispatchResult(event_type=event.type, status=DispatchStatus.APPLIED, outcome=outcome)
