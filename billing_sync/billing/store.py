"""Subscription record stores keyed by processor subscription id."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from billing_sync.billing.errors import StoreError
from billing_sync.models.subscription import (
    CURRENT_STATUSES,
    IMMUTABLE_FIELDS,
    SubscriptionRecord,
)
from billing_sync.observability.metrics import metrics

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class SubscriptionStore(Protocol):
    """Persistence contract for subscription records.

    ``update`` and ``claim_user`` are single-row read-modify-write operations;
    implementations must serialise them per id.
    """

    async def get(self, subscription_id: str) -> SubscriptionRecord | None:
        ...

    async def insert_if_absent(self, record: SubscriptionRecord) -> bool:
        ...

    async def update(
        self, subscription_id: str, changes: dict[str, Any]
    ) -> SubscriptionRecord | None:
        ...

    async def claim_user(self, subscription_id: str, user_id: str) -> SubscriptionRecord | None:
        ...

    async def latest_for_user(self, user_id: str) -> SubscriptionRecord | None:
        ...

    async def current_for_user(self, user_id: str) -> SubscriptionRecord | None:
        ...

    async def ping(self) -> bool:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_changes(changes: dict[str, Any]) -> None:
    frozen = IMMUTABLE_FIELDS.intersection(changes)
    if frozen:
        raise ValueError(f"Immutable subscription fields cannot be updated: {sorted(frozen)}")


def _newest(records: list[SubscriptionRecord]) -> SubscriptionRecord | None:
    if not records:
        return None
    return max(records, key=lambda record: record.created_at)


class InMemorySubscriptionStore(SubscriptionStore):
    """Lock-guarded store used for local development and tests."""

    def __init__(self) -> None:
        self._records: dict[str, SubscriptionRecord] = {}
        self._user_index: dict[str, set[str]] = {}
        self._lock = Lock()

    async def get(self, subscription_id: str) -> SubscriptionRecord | None:
        with self._lock:
            record = self._records.get(subscription_id)
            return record.clone() if record else None

    async def insert_if_absent(self, record: SubscriptionRecord) -> bool:
        with self._lock:
            if record.id in self._records:
                metrics.increment("billing.store.insert_skipped", tags={"store": "memory"})
                return False
            self._records[record.id] = record.clone()
            self._index_user(record)
        metrics.increment("billing.store.inserted", tags={"store": "memory"})
        return True

    async def update(
        self, subscription_id: str, changes: dict[str, Any]
    ) -> SubscriptionRecord | None:
        _check_changes(changes)
        with self._lock:
            current = self._records.get(subscription_id)
            if current is None:
                return None
            updated = current.clone(**changes, updated_at=_utcnow())
            self._records[subscription_id] = updated
            self._index_user(updated)
            return updated.clone()

    async def claim_user(self, subscription_id: str, user_id: str) -> SubscriptionRecord | None:
        with self._lock:
            current = self._records.get(subscription_id)
            if current is None:
                return None
            if current.user_id is None:
                current = current.clone(user_id=user_id, updated_at=_utcnow())
                self._records[subscription_id] = current
                self._index_user(current)
            return current.clone()

    async def latest_for_user(self, user_id: str) -> SubscriptionRecord | None:
        with self._lock:
            records = [self._records[sub_id] for sub_id in self._user_index.get(user_id, ())]
            newest = _newest(records)
            return newest.clone() if newest else None

    async def current_for_user(self, user_id: str) -> SubscriptionRecord | None:
        with self._lock:
            records = [
                self._records[sub_id]
                for sub_id in self._user_index.get(user_id, ())
                if self._records[sub_id].status in CURRENT_STATUSES
            ]
            newest = _newest(records)
            return newest.clone() if newest else None

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._records)

    def _index_user(self, record: SubscriptionRecord) -> None:
        if record.user_id:
            self._user_index.setdefault(record.user_id, set()).add(record.id)


class SQLSubscriptionStore(SubscriptionStore):
    """SQLModel-backed store running on an async SQLAlchemy session factory."""

    def __init__(self, session_factory: SessionFactory, *, backend: str = "database") -> None:
        self._session_factory = session_factory
        self._metrics_tags = {"store": backend}

    async def get(self, subscription_id: str) -> SubscriptionRecord | None:
        async with self._session("get", subscription_id) as session:
            result = await session.execute(
                select(SubscriptionRecord).where(SubscriptionRecord.id == subscription_id)
            )
            return result.scalar_one_or_none()

    async def insert_if_absent(self, record: SubscriptionRecord) -> bool:
        async with self._session("insert", record.id) as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                metrics.increment("billing.store.insert_skipped", tags=self._metrics_tags)
                logger.info(
                    "billing.store.insert_skipped",
                    extra={"subscription_id": record.id, **self._metrics_tags},
                )
                return False
        metrics.increment("billing.store.inserted", tags=self._metrics_tags)
        return True

    async def update(
        self, subscription_id: str, changes: dict[str, Any]
    ) -> SubscriptionRecord | None:
        _check_changes(changes)
        async with self._session("update", subscription_id) as session:
            current = await self._locked(session, subscription_id)
            if current is None:
                return None
            for name, value in changes.items():
                setattr(current, name, value)
            current.updated_at = _utcnow()
            await session.commit()
            return current

    async def claim_user(self, subscription_id: str, user_id: str) -> SubscriptionRecord | None:
        async with self._session("claim_user", subscription_id) as session:
            current = await self._locked(session, subscription_id)
            if current is None:
                return None
            if current.user_id is None:
                current.user_id = user_id
                current.updated_at = _utcnow()
                await session.commit()
            return current

    async def latest_for_user(self, user_id: str) -> SubscriptionRecord | None:
        async with self._session("latest_for_user") as session:
            result = await session.execute(
                select(SubscriptionRecord)
                .where(SubscriptionRecord.user_id == user_id)
                .order_by(SubscriptionRecord.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def current_for_user(self, user_id: str) -> SubscriptionRecord | None:
        async with self._session("current_for_user") as session:
            result = await session.execute(
                select(SubscriptionRecord)
                .where(
                    SubscriptionRecord.user_id == user_id,
                    SubscriptionRecord.status.in_(list(CURRENT_STATUSES)),
                )
                .order_by(SubscriptionRecord.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("billing.store.ping_failed", extra=self._metrics_tags)
            return False

    async def _locked(
        self, session: AsyncSession, subscription_id: str
    ) -> SubscriptionRecord | None:
        result = await session.execute(
            select(SubscriptionRecord)
            .where(SubscriptionRecord.id == subscription_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    @asynccontextmanager
    async def _session(
        self, operation: str, subscription_id: str | None = None
    ) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                try:
                    yield session
                except SQLAlchemyError:
                    await session.rollback()
                    raise
        except SQLAlchemyError as exc:
            logger.exception(
                "billing.store.error",
                extra={
                    "operation": operation,
                    "subscription_id": subscription_id,
                    **self._metrics_tags,
                },
            )
            metrics.increment(
                "billing.store.error", tags={"operation": operation, **self._metrics_tags}
            )
            metrics.alert(
                "billing.store.unavailable",
                value=1.0,
                threshold=0.0,
                severity="critical",
                tags={"operation": operation, **self._metrics_tags},
            )
            raise StoreError(f"Subscription store {operation} failed") from exc
