from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from cryptoanalyst.domain.models import (
    AnalysisCategory,
    AnalysisParameters,
    AnalysisStatus,
    DistributionStatus,
    Payment,
    PaymentStatus,
)
from cryptoanalyst.domain.state import (
    PROCESSABLE_ANALYSIS_STATES,
    can_resolve_distribution,
    can_transition_analysis,
    can_transition_payment,
    is_terminal_payment,
)
from cryptoanalyst.utils.money import share_of, to_asset_amount, to_cents, to_money


class TestMoney:
    def test_share_rounds_down_to_asset_precision(self) -> None:
        assert share_of(Decimal("10.00"), Decimal("33.333333")) == Decimal("3.333333")

    def test_shares_never_exceed_total(self) -> None:
        total = Decimal("0.01")
        parts = [share_of(total, pct) for pct in ("60", "25", "15")]

        assert sum(parts) <= total

    def test_floats_are_converted_through_str(self) -> None:
        assert to_money(0.1 + 0.2) == Decimal("0.30")
        assert to_asset_amount(1.0000009) == Decimal("1.000000")

    def test_to_cents(self) -> None:
        assert to_cents(Decimal("25")) == 2500
        assert to_cents("10.005") == 1001


class TestModels:
    def test_payment_amount_is_quantized(self) -> None:
        payment = Payment(user_id="u", category=AnalysisCategory.BASIC_OVERVIEW, amount="10")

        assert payment.amount == Decimal("10.00")
        assert payment.status == PaymentStatus.PENDING

    def test_payment_amount_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Payment(user_id="u", category=AnalysisCategory.BASIC_OVERVIEW, amount="0")

    def test_records_are_frozen(self) -> None:
        payment = Payment(user_id="u", category=AnalysisCategory.BASIC_OVERVIEW, amount="10")

        with pytest.raises(ValidationError):
            payment.status = PaymentStatus.COMPLETED  # type: ignore[misc]

    def test_parameters_normalise_symbol_and_reject_unknown_keys(self) -> None:
        assert AnalysisParameters(symbol=" eth ").symbol == "ETH"
        with pytest.raises(ValidationError):
            AnalysisParameters.model_validate({"symbol": "BTC", "leverage": 100})


class TestTransitions:
    def test_terminal_payments_never_move(self) -> None:
        for terminal in (PaymentStatus.COMPLETED, PaymentStatus.FAILED):
            assert is_terminal_payment(terminal)
            for target in PaymentStatus:
                assert not can_transition_payment(terminal, target)

    def test_pending_payment_moves_to_either_terminal(self) -> None:
        assert can_transition_payment(PaymentStatus.PENDING, PaymentStatus.COMPLETED)
        assert can_transition_payment(PaymentStatus.PENDING, PaymentStatus.FAILED)
        assert not is_terminal_payment(PaymentStatus.PENDING)

    def test_completed_analysis_is_terminal(self) -> None:
        for target in AnalysisStatus:
            assert not can_transition_analysis(AnalysisStatus.COMPLETED, target)
        assert AnalysisStatus.COMPLETED not in PROCESSABLE_ANALYSIS_STATES

    def test_failed_analysis_may_be_retried(self) -> None:
        assert can_transition_analysis(AnalysisStatus.FAILED, AnalysisStatus.PROCESSING)
        assert can_transition_analysis(AnalysisStatus.FAILED, AnalysisStatus.COMPLETED)
        assert not can_transition_analysis(AnalysisStatus.FAILED, AnalysisStatus.PAID)

    def test_abandoned_only_from_pending_payment(self) -> None:
        sources = [s for s in AnalysisStatus if can_transition_analysis(s, AnalysisStatus.ABANDONED)]

        assert sources == [AnalysisStatus.PENDING_PAYMENT]

    def test_distribution_rows_resolve_once(self) -> None:
        assert can_resolve_distribution(DistributionStatus.PENDING, DistributionStatus.COMPLETED)
        assert not can_resolve_distribution(DistributionStatus.FAILED, DistributionStatus.COMPLETED)
        assert not can_resolve_distribution(DistributionStatus.COMPLETED, DistributionStatus.FAILED)
