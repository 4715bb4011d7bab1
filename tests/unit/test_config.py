from __future__ import annotations

import json
from decimal import Decimal

import pytest

from cryptoanalyst.config import DEFAULT_PRICING, Settings, load_stakeholders, price_for
from cryptoanalyst.domain.models import AnalysisCategory, StakeholderEntry
from cryptoanalyst.errors import ConfigurationError
from cryptoanalyst.infrastructure.db_factory import build_dsn


def _entry(wallet: str, pct: str, active: bool = True) -> StakeholderEntry:
    return StakeholderEntry(
        wallet_id=wallet, percentage=Decimal(pct), category="platform", is_active=active
    )


def test_default_stakeholders_sum_to_one_hundred() -> None:
    entries = load_stakeholders(Settings())

    assert sum(entry.percentage for entry in entries if entry.is_active) == Decimal("100")


def test_stakeholders_not_summing_to_one_hundred_are_rejected() -> None:
    settings = Settings(stakeholders=[_entry("a", "60"), _entry("b", "30")])

    with pytest.raises(ConfigurationError):
        load_stakeholders(settings)


def test_inactive_stakeholders_do_not_count_towards_total() -> None:
    settings = Settings(
        stakeholders=[_entry("a", "70"), _entry("b", "30"), _entry("c", "50", active=False)]
    )

    entries = load_stakeholders(settings)

    assert [entry.wallet_id for entry in entries] == ["a", "b", "c"]


def test_duplicate_stakeholder_wallets_are_rejected() -> None:
    settings = Settings(stakeholders=[_entry("a", "50"), _entry("a", "50")])

    with pytest.raises(ConfigurationError):
        load_stakeholders(settings)


def test_no_active_stakeholders_is_rejected() -> None:
    settings = Settings(stakeholders=[_entry("a", "100", active=False)])

    with pytest.raises(ConfigurationError):
        load_stakeholders(settings)


def test_stakeholders_and_pricing_load_from_json_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(
        "STAKEHOLDERS",
        json.dumps(
            [
                {"wallet_id": "ops", "percentage": "80", "category": "platform"},
                {"wallet_id": "lab", "percentage": "20", "category": "researcher"},
            ]
        ),
    )
    monkeypatch.setenv("PRICING", json.dumps({"BASIC_OVERVIEW": "12.50"}))

    settings = Settings()

    assert [entry.wallet_id for entry in load_stakeholders(settings)] == ["ops", "lab"]
    assert price_for(settings, AnalysisCategory.BASIC_OVERVIEW) == Decimal("12.50")


def test_default_pricing_covers_every_category() -> None:
    assert set(DEFAULT_PRICING) == set(AnalysisCategory)
    assert price_for(Settings(), AnalysisCategory.DEFI_OPPORTUNITIES) == Decimal("50")


def test_build_dsn_uses_settings() -> None:
    settings = Settings(db_user="u", db_password="p", db_host="h", db_port=6543, db_name="n")

    assert build_dsn(settings) == "postgresql://u:p@h:6543/n"


@pytest.mark.parametrize(
    ("env", "expected"),
    [
        ({}, True),
        ({"APP_ENV": "production"}, False),
        ({"APP_ENV": "production", "ALLOW_MANUAL_COMPLETION": "true"}, True),
        ({"ALLOW_MANUAL_COMPLETION": "false"}, False),
    ],
)
def test_manual_completion_defaults_to_development_only(
    monkeypatch: pytest.MonkeyPatch, env: dict, expected: bool
) -> None:
    monkeypatch.delenv("APP_ENV", raising=False)
    monkeypatch.delenv("ALLOW_MANUAL_COMPLETION", raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)

    assert Settings().manual_completion_enabled is expected
