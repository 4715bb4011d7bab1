"""
Persistence layer: the ``Store`` contract, its in-memory and Postgres
implementations, and pool construction.
"""

from cryptoanalyst.infrastructure.db_factory import build_dsn, create_pool, get_sync_connection
from cryptoanalyst.infrastructure.postgres_store import PostgresStore
from cryptoanalyst.infrastructure.store import InMemoryStore, Store

__all__ = [
    "Store",
    "InMemoryStore",
    "PostgresStore",
    "build_dsn",
    "create_pool",
    "get_sync_connection",
]
