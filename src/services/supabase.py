"""Supabase Postgres access with RLS context.

Calendar rows are scoped per application user: when a ``user_id`` is given,
the connection runs inside a transaction with ``app.current_user_id`` set
locally, so Row-Level Security policies on ``calendar_events`` see the
owning user.  Service-level statements (credential writes, the shared
setting, the calendar-switch wipe) run without a user context.

Uses ``asyncpg`` directly; the Supabase Python client cannot set
transaction-local session variables.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("wellnest.db")

# Module-level connection pool, created once in the app lifespan
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.supabase_db_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=30,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)", s.db_pool_min_size, s.db_pool_max_size
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized — call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(
    user_id: uuid.UUID | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a pooled connection inside a transaction.

    Usage::

        async with get_connection(user_id=ctx.wellnest_user_id) as conn:
            rows = await conn.fetch("SELECT * FROM calendar_events")

    ``set_config(..., true)`` is transaction-local, so the identity is gone
    once the connection returns to the pool.
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if user_id:
                await conn.execute(
                    "SELECT set_config('app.current_user_id', $1, true)", str(user_id)
                )
            yield conn


async def execute(query: str, *args: Any, user_id: uuid.UUID | None = None) -> str:
    """Execute a single statement and return the command tag (e.g. ``DELETE 3``)."""
    async with get_connection(user_id=user_id) as conn:
        return await conn.execute(query, *args)


async def fetch(
    query: str, *args: Any, user_id: uuid.UUID | None = None
) -> list[asyncpg.Record]:
    async with get_connection(user_id=user_id) as conn:
        return await conn.fetch(query, *args)


async def fetchrow(
    query: str, *args: Any, user_id: uuid.UUID | None = None
) -> asyncpg.Record | None:
    async with get_connection(user_id=user_id) as conn:
        return await conn.fetchrow(query, *args)


async def fetchval(query: str, *args: Any, user_id: uuid.UUID | None = None) -> Any:
    async with get_connection(user_id=user_id) as conn:
        return await conn.fetchval(query, *args)


async def ping() -> bool:
    """Return True if the database answers a trivial query."""
    try:
        return await fetchval("SELECT 1") == 1
    except (asyncpg.PostgresError, OSError, RuntimeError) as exc:
        logger.warning("Database ping failed: %s", exc)
        return False
