"""
Integration tests for the Postgres-backed store.

These tests run against a real PostgreSQL instance and verify that:
1. The schema applies cleanly and records survive a round trip
2. Status changes and distribution claims are compare-and-swap under concurrency
3. The full paid-analysis flow works end to end over Postgres

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import asyncio
import os
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator

import pytest
import pytest_asyncio

from cryptoanalyst.config import Settings, load_stakeholders
from cryptoanalyst.container import ApplicationContainer
from cryptoanalyst.domain.models import (
    Analysis,
    AnalysisCategory,
    AnalysisParameters,
    AnalysisResult,
    AnalysisStatus,
    DistributionStatus,
    Payment,
    PaymentStatus,
    User,
)
from cryptoanalyst.errors import Conflict
from cryptoanalyst.infrastructure.db_factory import create_pool, get_sync_connection
from cryptoanalyst.infrastructure.postgres_store import PostgresStore

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "db" / "init.sql"
CONCURRENT_CALLERS = 5

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)


@pytest.fixture
def clean_schema(test_dsn: str, db_connection_available: bool) -> None:
    """Apply the schema and empty every table before the test."""
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")
    with get_sync_connection(test_dsn) as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
            cur.execute(
                "TRUNCATE payment_distributions, analyses, payments, users, stakeholders CASCADE"
            )
        conn.commit()


@pytest_asyncio.fixture
async def pg_store(
    clean_schema: None, test_dsn: str, integration_settings: Settings
) -> AsyncIterator[PostgresStore]:
    pool = await create_pool(test_dsn, min_size=1, max_size=CONCURRENT_CALLERS + 1)
    store = PostgresStore(pool)
    await store.replace_stakeholders(load_stakeholders(integration_settings))
    try:
        yield store
    finally:
        await store.close()


async def _user_and_payment(store: PostgresStore) -> Payment:
    user = await store.insert_user(User(email="pg@example.com"))
    return await store.insert_payment(
        Payment(user_id=user.id, category=AnalysisCategory.BASIC_OVERVIEW, amount="10")
    )


@pytest.mark.asyncio
async def test_users_are_unique_and_bind_once(pg_store: PostgresStore) -> None:
    user = await pg_store.insert_user(User(email="pg@example.com"))

    with pytest.raises(Conflict):
        await pg_store.insert_user(User(email="pg@example.com"))
    assert (await pg_store.bind_user_wallet(user.id, "wallet_a")).wallet_id == "wallet_a"
    assert await pg_store.bind_user_wallet(user.id, "wallet_b") is None
    assert (await pg_store.get_user(user.id)).wallet_id == "wallet_a"


@pytest.mark.asyncio
async def test_payment_transition_has_one_winner(pg_store: PostgresStore) -> None:
    payment = await _user_and_payment(pg_store)

    results = await asyncio.gather(
        *(
            pg_store.transition_payment(
                payment.id, PaymentStatus.PENDING, PaymentStatus.COMPLETED, transaction_hash="0x1"
            )
            for _ in range(CONCURRENT_CALLERS)
        )
    )

    assert sum(result is not None for result in results) == 1
    stored = await pg_store.get_payment(payment.id)
    assert stored.status == PaymentStatus.COMPLETED
    assert stored.amount == Decimal("10.00")


@pytest.mark.asyncio
async def test_analysis_result_round_trips(pg_store: PostgresStore) -> None:
    payment = await _user_and_payment(pg_store)
    analysis = await pg_store.insert_analysis(
        Analysis(
            user_id=payment.user_id,
            category=AnalysisCategory.BASIC_OVERVIEW,
            parameters=AnalysisParameters(symbol="btc", risk_tolerance="low"),
            price="10",
        )
    )
    await pg_store.link_analysis_payment(analysis.id, payment.id)
    result = AnalysisResult(
        full_analysis="report",
        executive_summary="summary",
        crypto_data={"symbol": "BTC", "price": 1.5},
        market_data={"fear_greed_index": 50},
    )

    await pg_store.transition_analysis(
        analysis.id, {AnalysisStatus.PENDING_PAYMENT}, AnalysisStatus.PROCESSING
    )
    done = await pg_store.transition_analysis(
        analysis.id, {AnalysisStatus.PROCESSING}, AnalysisStatus.COMPLETED, result=result
    )

    loaded = await pg_store.find_analysis_by_payment(payment.id)
    assert done is not None
    assert loaded.parameters.symbol == "BTC"
    assert loaded.result.crypto_data == {"symbol": "BTC", "price": 1.5}
    assert await pg_store.count_analyses(AnalysisStatus.COMPLETED) == 1
    assert [a.id for a in await pg_store.list_user_analyses(payment.user_id, 0, 10)] == [analysis.id]


@pytest.mark.asyncio
async def test_paid_analysis_flow_over_postgres(
    pg_store: PostgresStore, integration_settings: Settings
) -> None:
    settings = integration_settings.model_copy(
        update={
            "generator_backend": "template",
            "custodian_backend": "ledger",
            "market_data_backend": "static",
            "x402_api_key": None,
        }
    )
    container = ApplicationContainer(settings, pg_store)
    user = await container.wallets.register_user("flow@example.com")
    ticket = await container.analysis.create_analysis_request(
        user.id, AnalysisCategory.FUNDAMENTAL_ANALYSIS, {"symbol": "ETH"}
    )

    await container.payments.complete_payment(ticket.payment_id, "0xflow")
    replays = await asyncio.gather(
        *(
            container.distribution.distribute(ticket.payment_id, ticket.price)
            for _ in range(CONCURRENT_CALLERS)
        )
    )
    analysis = await container.analysis.process_analysis(ticket.analysis_id, user.id)

    assert analysis.status == AnalysisStatus.COMPLETED
    rows = await pg_store.list_distributions(ticket.payment_id)
    assert len(rows) == 3
    assert all(len(replay) == 3 for replay in replays)
    assert {row.status for row in rows} == {DistributionStatus.COMPLETED}
    assert sum(row.amount for row in rows) == Decimal("35")

    dashboard = await container.payments.get_revenue_dashboard()
    assert dashboard.total_revenue == Decimal("35.00")
    assert dashboard.total_analyses == 1
    assert [r.category for r in dashboard.revenue_by_category] == [
        AnalysisCategory.FUNDAMENTAL_ANALYSIS
    ]
