"""
Database connection factory utilities for the CryptoAnalyst API.

Builds the Postgres DSN from settings and creates connections and asyncpg pools
with retry logic for transient connection failures using tenacity. Pools are
owned by whoever creates them (the container); there is no module-level pool.
"""

from __future__ import annotations

import json
from typing import Optional

import asyncpg
import psycopg
from psycopg import Connection
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cryptoanalyst.config import Settings, get_settings

_TRANSIENT_ASYNC_ERRORS = (OSError, ConnectionError, asyncpg.CannotConnectNowError)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a Postgres DSN from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


async def _init_connection(conn: asyncpg.Connection) -> None:
    # JSONB columns round-trip as Python dicts.
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(_TRANSIENT_ASYNC_ERRORS),
    reraise=True,
)
async def create_pool(
    dsn: Optional[str] = None,
    min_size: int = 1,
    max_size: int = 10,
) -> asyncpg.Pool:
    """
    Create an asyncpg pool with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.

    Parameters
    ----------
    dsn : str, optional
        Connection string; defaults to the one built from settings.
    min_size : int
        Minimum number of idle connections to keep.
    max_size : int
        Maximum total connections in the pool.

    Returns
    -------
    asyncpg.Pool
        A ready pool whose connections decode JSONB to dicts.

    Raises
    ------
    OSError
        If the server is unreachable after all retry attempts.
    """
    return await asyncpg.create_pool(
        dsn or build_dsn(),
        min_size=min_size,
        max_size=max_size,
        init=_init_connection,
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Used by maintenance scripts (schema setup, seeding).

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn())


__all__ = ["build_dsn", "create_pool", "get_sync_connection"]
