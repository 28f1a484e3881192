"""Alembic environment for the subscriptions schema."""

from __future__ import annotations

import asyncio
import logging
import os
import ssl
from logging.config import fileConfig
from typing import Any

import certifi
from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import async_engine_from_config
from sqlmodel import SQLModel

from billing_sync.config import settings
from billing_sync.core.database import async_database_url
from billing_sync.models import subscription  # noqa: F401 - ensure models are imported

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("billing_sync.alembic")
target_metadata = SQLModel.metadata

SUPABASE_POOLER_PORT = 6543


def _supabase_ssl_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context(cafile=os.environ.get("ALEMBIC_SUPABASE_CA_FILE") or certifi.where())
    if os.environ.get("ALEMBIC_SUPABASE_TLS_INSECURE", "").strip().lower() in {"1", "true", "yes"}:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("Supabase TLS verification disabled for migrations")
    return ctx


def _database_target() -> tuple[str, dict[str, Any]]:
    """Pick the migration URL and connect args.

    Precedence: ``DATABASE_URL`` env var, ``sqlalchemy.url`` in the ini file,
    then application settings. Supabase hosts are routed through the pooled
    port over TLS; asyncpg takes TLS via ``connect_args`` rather than a
    ``sslmode`` query parameter.
    """
    raw = (
        os.environ.get("DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
        or settings.database_url
    )
    if not raw:
        raise RuntimeError("DATABASE_URL must be set to run migrations.")

    url = make_url(async_database_url(raw))
    connect_args: dict[str, Any] = {}
    if "supabase.co" in (url.host or "").lower():
        query = {k: v for k, v in url.query.items() if k not in {"ssl", "sslmode"}}
        url = url.set(port=SUPABASE_POOLER_PORT, query=query)
        connect_args["ssl"] = _supabase_ssl_context()
    elif os.environ.get("PGSSLMODE", "").lower() == "require":
        connect_args["ssl"] = ssl.create_default_context()

    logger.info("Migrating %s", url.render_as_string(hide_password=True))
    return url.render_as_string(hide_password=False), connect_args


def run_migrations_offline() -> None:
    """Emit SQL without a live connection."""
    url, _ = _database_target()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    url, connect_args = _database_target()
    section = dict(config.get_section(config.config_ini_section) or {})
    section["sqlalchemy.url"] = url
    connectable = async_engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args=connect_args,
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
