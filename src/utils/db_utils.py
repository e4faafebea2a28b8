"""Database helpers for the assistance request store.

Provides:
- Pool factory used at startup
- Connection acquisition bounded by a timeout
- Retry decorator for transient connection failures
- Pool health and graceful shutdown
"""

from __future__ import annotations

import asyncio
import functools
import random

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import asyncpg

from utils.logger import logger

P = ParamSpec("P")
T = TypeVar("T")

#: Transient failures worth another attempt. Constraint and syntax errors are not.
RETRYABLE_DB_ERRORS: tuple[type[Exception], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionError,
    OSError,
)


class DatabaseError(Exception):
    """Base exception for database plumbing failures."""


class ConnectionPoolExhausted(DatabaseError):
    """No connection could be created or acquired in time."""


async def create_database_pool(
    dsn: str,
    *,
    min_size: int = 1,
    max_size: int = 10,
    command_timeout: float = 30.0,
    connection_timeout: float = 10.0,
) -> asyncpg.Pool:
    """Create the asyncpg pool for the record store.

    Raises:
        ConnectionPoolExhausted: If the pool cannot be established in time
    """

    async def init_connection(conn: asyncpg.Connection) -> None:
        await conn.execute(f"SET statement_timeout = '{int(command_timeout * 1000)}'")

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=command_timeout,
                init=init_connection,
            ),
            timeout=connection_timeout,
        )
    except TimeoutError as e:
        raise ConnectionPoolExhausted(f"Connection pool creation timed out after {connection_timeout}s") from e
    except (asyncpg.PostgresError, *RETRYABLE_DB_ERRORS) as e:
        raise ConnectionPoolExhausted(f"Failed to create connection pool: {e}") from e

    if pool is None:
        raise ConnectionPoolExhausted("Failed to create connection pool")
    return pool


@asynccontextmanager
async def acquire_connection(
    pool: asyncpg.Pool,
    *,
    timeout: float | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a pooled connection, failing fast when the pool is exhausted."""
    try:
        async with pool.acquire(timeout=timeout) as conn:
            yield conn
    except TimeoutError as e:
        raise ConnectionPoolExhausted(f"Could not acquire database connection within {timeout}s") from e


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 2.0,
    retryable_exceptions: tuple[type[Exception], ...] = (*RETRYABLE_DB_ERRORS, ConnectionPoolExhausted),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async database operation on transient failures.

    Exponential backoff with jitter. The last failure is re-raised unchanged.

    Example:
        @with_retry(max_attempts=3)
        async def fetch(pool, patient):
            async with acquire_connection(pool) as conn:
                return await conn.fetch("SELECT ... WHERE patient = $1", patient)
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    attempt += 1
                    if attempt >= max_attempts:
                        logger.error(f"Database operation {func.__name__} failed after {attempt} attempts: {e}")
                        raise

                    delay = min(base_delay * (2 ** (attempt - 1)) + random.uniform(0, 0.1), max_delay)
                    logger.warning(
                        f"Database operation {func.__name__} failed (attempt {attempt}/{max_attempts}), "
                        f"retrying in {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


async def check_pool_health(pool: asyncpg.Pool) -> dict[str, Any]:
    """Run a trivial query and report pool statistics."""
    try:
        async with acquire_connection(pool, timeout=5.0) as conn:
            is_healthy = await conn.fetchval("SELECT 1") == 1
    except (DatabaseError, asyncpg.PostgresError, *RETRYABLE_DB_ERRORS) as e:
        logger.warning(f"Database health check failed: {e}")
        is_healthy = False

    return {
        "healthy": is_healthy,
        "pool_size": pool.get_size(),
        "pool_max_size": pool.get_max_size(),
        "free_connections": pool.get_idle_size(),
    }


async def graceful_pool_close(pool: asyncpg.Pool, timeout: float = 10.0) -> None:
    """Close the pool, giving in-flight queries up to ``timeout`` seconds."""
    try:
        await asyncio.wait_for(pool.close(), timeout=timeout)
    except TimeoutError:
        logger.warning(f"Database pool did not drain within {timeout}s, terminating")
        pool.terminate()
