"""
HTTP-level tests: routing, identity header, error rendering and the raw-body
webhook route, all over the offline container.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from cryptoanalyst.api import SIGNATURE_HEADER, create_app
from cryptoanalyst.config import Settings, load_stakeholders
from cryptoanalyst.container import ApplicationContainer
from cryptoanalyst.infrastructure.store import InMemoryStore


@contextmanager
def _serve(settings: Settings) -> Iterator[TestClient]:
    store = InMemoryStore()
    asyncio.run(store.replace_stakeholders(load_stakeholders(settings)))
    container = ApplicationContainer(settings, store)
    with TestClient(create_app(container)) as test_client:
        yield test_client


@pytest.fixture
def client(test_settings: Settings) -> Iterator[TestClient]:
    with _serve(test_settings) as test_client:
        yield test_client


def _register(client: TestClient, email: str = "carol@example.com") -> str:
    response = client.post("/api/users", json={"email": email})
    assert response.status_code == 201
    return response.json()["id"]


def _request_analysis(client: TestClient, user_id: str, symbol: str = "ETH") -> dict:
    response = client.post(
        "/api/analysis",
        json={"type": "MARKET_SENTIMENT", "parameters": {"symbol": symbol}},
        headers={"X-User-Id": user_id},
    )
    assert response.status_code == 201
    return response.json()


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_duplicate_registration_is_conflict(client: TestClient) -> None:
    _register(client)

    response = client.post("/api/users", json={"email": "carol@example.com"})

    assert response.status_code == 409
    assert response.json()["error"] == "Conflict"


def test_identity_header_is_required(client: TestClient) -> None:
    response = client.get("/api/analysis")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized", "message": "Missing X-User-Id header"}


def test_analysis_types(client: TestClient) -> None:
    types = client.get("/api/analysis/types").json()

    assert len(types) == 6
    assert types[0]["type"] == "BASIC_OVERVIEW"
    assert Decimal(types[0]["price"]) == Decimal("10")


def test_request_validation_errors(client: TestClient) -> None:
    user_id = _register(client)
    headers = {"X-User-Id": user_id}

    unknown = client.post(
        "/api/analysis", json={"type": "ASTROLOGY", "parameters": {"symbol": "BTC"}}, headers=headers
    )
    missing_symbol = client.post(
        "/api/analysis", json={"type": "BASIC_OVERVIEW", "parameters": {}}, headers=headers
    )
    bad_page = client.get("/api/analysis", params={"page": "abc"}, headers=headers)

    assert unknown.status_code == 400
    assert unknown.json()["error"] == "InvalidCategory"
    assert missing_symbol.status_code == 422
    assert bad_page.status_code == 400
    assert bad_page.json()["error"] == "InvalidPagination"


def test_paid_analysis_over_http(client: TestClient, sign_webhook) -> None:
    user_id = _register(client)
    headers = {"X-User-Id": user_id}
    ticket = _request_analysis(client, user_id)

    early = client.post(f"/api/analysis/{ticket['analysis_id']}/process", headers=headers)
    assert early.status_code == 402

    raw, signature = sign_webhook(ticket["payment_id"], transaction_hash="0xabc")
    first = client.post("/api/payments/webhook", content=raw, headers={SIGNATURE_HEADER: signature})
    replay = client.post("/api/payments/webhook", content=raw, headers={SIGNATURE_HEADER: signature})
    assert first.json()["applied"] is True
    assert replay.json()["applied"] is False

    processed = client.post(f"/api/analysis/{ticket['analysis_id']}/process", headers=headers)
    assert processed.status_code == 200
    assert processed.json()["status"] == "COMPLETED"
    assert processed.json()["result"]["crypto_data"]["symbol"] == "ETH"

    listing = client.get("/api/analysis", params={"page": "1", "limit": "5"}, headers=headers)
    assert listing.json()["total"] == 1

    status = client.get(f"/api/payments/{ticket['payment_id']}/status", headers=headers).json()
    assert status["payment"]["status"] == "COMPLETED"
    assert status["payment"]["transaction_hash"] == "0xabc"
    assert {row["status"] for row in status["distributions"]} == {"completed"}
    assert sum(Decimal(row["amount"]) for row in status["distributions"]) == Decimal("20")

    dashboard = client.get("/api/payments/revenue/dashboard", headers=headers).json()
    assert Decimal(dashboard["total_revenue"]) == Decimal("20")
    assert dashboard["total_analyses"] == 1


def test_webhook_rejects_bad_signature_and_unknown_reference(
    client: TestClient, sign_webhook
) -> None:
    raw, signature = sign_webhook("no-such-payment")

    forged = client.post("/api/payments/webhook", content=raw, headers={SIGNATURE_HEADER: "sha256=00"})
    unsigned = client.post("/api/payments/webhook", content=raw)
    unknown = client.post("/api/payments/webhook", content=raw, headers={SIGNATURE_HEADER: signature})

    assert forged.status_code == 401
    assert unsigned.status_code == 401
    assert unknown.status_code == 400
    assert unknown.json()["error"] == "InvalidWebhook"


def test_foreign_resources_read_as_absent(client: TestClient) -> None:
    owner = _register(client)
    other = _register(client, "dave@example.com")
    ticket = _request_analysis(client, owner)
    wallet = client.post("/api/wallet/create", headers={"X-User-Id": owner}).json()["wallet_id"]

    analysis = client.get(f"/api/analysis/{ticket['analysis_id']}", headers={"X-User-Id": other})
    payment = client.get(f"/api/payments/{ticket['payment_id']}/status", headers={"X-User-Id": other})
    balance = client.get(f"/api/wallet/{wallet}/balance", headers={"X-User-Id": other})

    assert [analysis.status_code, payment.status_code, balance.status_code] == [404, 404, 404]


def test_wallet_routes(client: TestClient) -> None:
    user_id = _register(client)
    headers = {"X-User-Id": user_id}

    created = client.post("/api/wallet/create", headers=headers)
    again = client.post("/api/wallet/create", headers=headers)
    balance = client.get(f"/api/wallet/{created.json()['wallet_id']}/balance", headers=headers)
    address = client.get("/api/wallet/platform/address")

    assert created.status_code == 201
    assert again.status_code == 409
    assert balance.json() == []
    assert address.json()["address"].startswith("0x")


def test_revenue_dashboard_requires_identity(client: TestClient) -> None:
    response = client.get("/api/payments/revenue/dashboard")

    assert response.status_code == 401
    assert response.json()["error"] == "Unauthorized"


def test_manual_completion(client: TestClient) -> None:
    user_id = _register(client)
    headers = {"X-User-Id": user_id}
    ticket = _request_analysis(client, user_id)

    completed = client.post(
        f"/api/payments/{ticket['payment_id']}/complete",
        json={"transaction_hash": "0xfeed"},
        headers=headers,
    )
    repeated = client.post(f"/api/payments/{ticket['payment_id']}/complete", headers=headers)

    assert completed.status_code == 200
    assert completed.json()["status"] == "COMPLETED"
    assert repeated.status_code == 409


def test_manual_completion_requires_the_owner(client: TestClient) -> None:
    owner = _register(client)
    other = _register(client, "dave@example.com")
    ticket = _request_analysis(client, owner)
    complete_url = f"/api/payments/{ticket['payment_id']}/complete"

    anonymous = client.post(complete_url)
    foreign = client.post(complete_url, headers={"X-User-Id": other})
    status = client.get(f"/api/payments/{ticket['payment_id']}/status", headers={"X-User-Id": owner})

    assert anonymous.status_code == 401
    assert foreign.status_code == 404
    assert status.json()["payment"]["status"] == "PENDING"
    assert status.json()["distributions"] == []


def test_manual_completion_disabled_by_setting(test_settings: Settings) -> None:
    settings = test_settings.model_copy(update={"allow_manual_completion": False})

    with _serve(settings) as client:
        user_id = _register(client)
        headers = {"X-User-Id": user_id}
        ticket = _request_analysis(client, user_id)

        response = client.post(f"/api/payments/{ticket['payment_id']}/complete", headers=headers)
        status = client.get(f"/api/payments/{ticket['payment_id']}/status", headers=headers)

    assert response.status_code == 403
    assert response.json()["error"] == "Forbidden"
    assert status.json()["payment"]["status"] == "PENDING"
