"""PostgreSQL connection pool for the durable secret store."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from typing import Any

import psycopg
import psycopg.rows
import psycopg_pool

from twofactor.config import settings

Row = dict[str, Any]

_pool: psycopg_pool.AsyncConnectionPool | None = None


async def init_pool(
    conninfo: str | None = None,
    *,
    min_size: int = 1,
    max_size: int = 10,
) -> psycopg_pool.AsyncConnectionPool:
    """Create and open the async connection pool (idempotent)."""
    global _pool
    if _pool is not None:
        return _pool
    _pool = psycopg_pool.AsyncConnectionPool(
        conninfo=conninfo or settings.database_url,
        min_size=min_size,
        max_size=max_size,
        kwargs={"row_factory": psycopg.rows.dict_row, "autocommit": True},
        open=False,
    )
    await _pool.open()
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def is_initialized() -> bool:
    return _pool is not None


@contextlib.asynccontextmanager
async def transaction() -> AsyncIterator[psycopg.AsyncCursor[Row]]:
    """Borrow a connection and run the block as a single transaction."""
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    async with _pool.connection() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                yield cur


async def execute(query: str, params: tuple[Any, ...] | None = None) -> list[Row]:
    """Run one statement; returns its rows, or [] if it produces none."""
    async with transaction() as cur:
        await cur.execute(query, params)
        if cur.description is None:
            return []
        return await cur.fetchall()


async def execute_one(query: str, params: tuple[Any, ...] | None = None) -> Row | None:
    """Run one statement and return its first row, if any."""
    async with transaction() as cur:
        await cur.execute(query, params)
        if cur.description is None:
            return None
        return await cur.fetchone()
