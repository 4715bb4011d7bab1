"""
Pytest configuration for the CryptoAnalyst API.

Provides fixtures for:
- Settings wired to the offline backends (memory store, template generator,
  ledger custodian, static market data)
- A container factory that seeds stakeholders and accepts collaborator overrides
- Signed webhook payloads
- Database connection management for integration tests
"""

from __future__ import annotations

import json
import os
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import psycopg
import pytest

from cryptoanalyst.adapters.payment_gateway import HmacSignatureVerifier
from cryptoanalyst.config import Settings, load_stakeholders
from cryptoanalyst.container import ApplicationContainer
from cryptoanalyst.infrastructure.store import InMemoryStore

WEBHOOK_SECRET = "test-webhook-secret"
PLATFORM_FLOAT = Decimal("1000")


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings for unit tests; nothing here touches the network or a database.
    """
    return Settings(
        store_backend="memory",
        generator_backend="template",
        custodian_backend="ledger",
        market_data_backend="static",
        x402_api_key=None,
        webhook_secret=WEBHOOK_SECRET,
        allow_manual_completion=True,
        ledger_opening_balance=PLATFORM_FLOAT,
        log_level="DEBUG",
    )


@pytest.fixture
def make_container(test_settings: Settings) -> Callable[..., Awaitable[ApplicationContainer]]:
    """
    Return an async factory building a container over a seeded in-memory store.

    Keyword arguments override collaborators (``generator=``, ``custodian=``, ...)
    and ``settings=`` replaces the test settings.
    """

    async def factory(settings: Optional[Settings] = None, **overrides: Any) -> ApplicationContainer:
        effective = settings or test_settings
        store = InMemoryStore()
        await store.replace_stakeholders(load_stakeholders(effective))
        return ApplicationContainer(effective, store, **overrides)

    return factory


@pytest.fixture
def sign_webhook() -> Callable[..., tuple[bytes, str]]:
    """Build a raw webhook body and its valid signature."""
    verifier = HmacSignatureVerifier(WEBHOOK_SECRET)

    def build(reference: str, status: str = "completed", **fields: Any) -> tuple[bytes, str]:
        raw = json.dumps({"reference": reference, "status": status, **fields}).encode("utf-8")
        return raw, verifier.sign(raw)

    return build


@pytest.fixture(scope="session")
def integration_settings() -> Settings:
    """
    Settings for integration tests, overridable via environment variables in CI.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "cryptoanalyst_test"),
        store_backend="postgres",
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(integration_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{integration_settings.db_user}:{integration_settings.db_password}"
        f"@{integration_settings.db_host}:{integration_settings.db_port}"
        f"/{integration_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False
