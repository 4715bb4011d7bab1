"""
Domain models for the CryptoAnalyst API.

Records are frozen pydantic models. Stores hand out immutable snapshots and apply
changes by producing a new copy, so no caller can mutate shared state in place.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from cryptoanalyst.utils.money import to_asset_amount, to_money


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_FROZEN = {
    "frozen": True,
    "populate_by_name": True,
    "arbitrary_types_allowed": False,
}


class AnalysisCategory(str, Enum):
    BASIC_OVERVIEW = "BASIC_OVERVIEW"
    TECHNICAL_ANALYSIS = "TECHNICAL_ANALYSIS"
    FUNDAMENTAL_ANALYSIS = "FUNDAMENTAL_ANALYSIS"
    PORTFOLIO_REVIEW = "PORTFOLIO_REVIEW"
    MARKET_SENTIMENT = "MARKET_SENTIMENT"
    DEFI_OPPORTUNITIES = "DEFI_OPPORTUNITIES"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AnalysisStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"


class DistributionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class User(BaseModel):
    """Identity with an optional, bind-once custodial wallet."""

    id: str = Field(default_factory=new_id)
    email: str = Field(..., description="Login identity; credentials live elsewhere.")
    wallet_id: Optional[str] = Field(None, description="Custodial wallet, bound at most once.")
    created_at: datetime = Field(default_factory=utcnow)

    model_config = _FROZEN


class Payment(BaseModel):
    """
    One monetary obligation.

    ``amount`` is fixed at creation. ``distributed_at`` is the idempotency marker
    claimed by the distribution engine.
    """

    id: str = Field(default_factory=new_id)
    user_id: str
    category: AnalysisCategory
    amount: Decimal = Field(..., gt=0, description="Positive amount in cents precision.")
    currency: str = Field("USD", min_length=3, max_length=3)
    status: PaymentStatus = PaymentStatus.PENDING
    gateway_reference: Optional[str] = None
    transaction_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    distributed_at: Optional[datetime] = None

    model_config = _FROZEN

    @field_validator("amount", mode="before")
    @classmethod
    def _quantize_amount(cls, value: Any) -> Decimal:
        return to_money(value)


class AnalysisParameters(BaseModel):
    """User-supplied inputs for one report."""

    symbol: str = Field(..., min_length=1, max_length=20)
    timeframe: Optional[str] = None
    risk_tolerance: Optional[Literal["low", "medium", "high"]] = None
    amount: Optional[Decimal] = None
    holdings: Optional[str] = None
    chains: Optional[str] = None
    notes: Optional[str] = None

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("symbol")
    @classmethod
    def _normalise_symbol(cls, value: str) -> str:
        return value.strip().upper()


class AnalysisResult(BaseModel):
    full_analysis: str
    executive_summary: str
    crypto_data: Dict[str, Any]
    market_data: Dict[str, Any]
    generated_at: datetime = Field(default_factory=utcnow)

    model_config = _FROZEN


class Analysis(BaseModel):
    """
    One requested report.

    ``price`` is a snapshot of the pricing table at creation time and
    ``payment_id`` is linked once, right after the payment is created.
    """

    id: str = Field(default_factory=new_id)
    user_id: str
    category: AnalysisCategory
    parameters: AnalysisParameters
    price: Decimal
    status: AnalysisStatus = AnalysisStatus.PENDING_PAYMENT
    payment_id: Optional[str] = None
    result: Optional[AnalysisResult] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    model_config = _FROZEN

    @field_validator("price", mode="before")
    @classmethod
    def _quantize_price(cls, value: Any) -> Decimal:
        return to_money(value)


class StakeholderEntry(BaseModel):
    """A configured revenue recipient."""

    wallet_id: str = Field(..., min_length=1)
    percentage: Decimal = Field(..., ge=0, le=100)
    category: str = Field(..., description="platform, data_provider, researcher, ...")
    is_active: bool = True

    model_config = _FROZEN


class PaymentDistribution(BaseModel):
    """One (payment, stakeholder) payout row. Status moves pending -> completed|failed once."""

    id: str = Field(default_factory=new_id)
    payment_id: str
    recipient: str
    amount: Decimal
    category: str
    status: DistributionStatus = DistributionStatus.PENDING
    transfer_reference: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    model_config = _FROZEN

    @field_validator("amount", mode="before")
    @classmethod
    def _quantize_amount(cls, value: Any) -> Decimal:
        return to_asset_amount(value)


class MarketQuote(BaseModel):
    symbol: str
    name: str
    price: float
    market_cap: Optional[float] = None
    volume_24h: Optional[float] = None
    change_24h: Optional[float] = None
    change_7d: Optional[float] = None
    change_30d: Optional[float] = None
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    max_supply: Optional[float] = None
    rank: Optional[int] = None
    source: str = "unknown"

    model_config = _FROZEN


class GlobalMetrics(BaseModel):
    total_market_cap: float
    total_volume: float
    btc_dominance: Optional[float] = None
    eth_dominance: Optional[float] = None
    market_cap_change_24h: Optional[float] = None
    volume_change_24h: Optional[float] = None

    model_config = _FROZEN


class WebhookEvent(BaseModel):
    """Canonical form of a gateway notification."""

    reference: str = Field(..., min_length=1)
    status: Literal["completed", "failed"]
    transaction_hash: Optional[str] = None

    model_config = {"frozen": True, "extra": "ignore"}


class WalletBalance(BaseModel):
    asset: str
    amount: Decimal

    model_config = _FROZEN


class AnalysisTicket(BaseModel):
    analysis_id: str
    payment_id: str
    price: Decimal
    status: AnalysisStatus

    model_config = _FROZEN


class AnalysisTypeInfo(BaseModel):
    type: AnalysisCategory
    name: str
    description: str
    price: Decimal
    duration: str

    model_config = _FROZEN


class AnalysisPage(BaseModel):
    analyses: List[Analysis]
    page: int
    limit: int
    total: int
    pages: int

    model_config = _FROZEN


class PaymentStatusView(BaseModel):
    payment: Payment
    distributions: List[PaymentDistribution]
    analysis: Optional[Analysis] = None

    model_config = _FROZEN


class ReconcileOutcome(BaseModel):
    """What a webhook delivery did. ``applied`` is False for duplicates and conflicts."""

    payment_id: str
    status: PaymentStatus
    applied: bool
    conflict: bool = False

    model_config = _FROZEN


class CategoryRevenue(BaseModel):
    category: AnalysisCategory
    revenue: Decimal
    count: int

    model_config = _FROZEN


class DistributionTotal(BaseModel):
    category: str
    status: DistributionStatus
    amount: Decimal
    count: int

    model_config = _FROZEN


class RevenueDashboard(BaseModel):
    total_revenue: Decimal
    total_analyses: int
    revenue_by_category: List[CategoryRevenue]
    recent_payments: List[Payment]
    distribution_totals: List[DistributionTotal]

    model_config = _FROZEN


__all__ = [
    "new_id",
    "utcnow",
    "AnalysisCategory",
    "PaymentStatus",
    "AnalysisStatus",
    "DistributionStatus",
    "User",
    "Payment",
    "AnalysisParameters",
    "AnalysisResult",
    "Analysis",
    "StakeholderEntry",
    "PaymentDistribution",
    "MarketQuote",
    "GlobalMetrics",
    "WebhookEvent",
    "WalletBalance",
    "AnalysisTicket",
    "AnalysisTypeInfo",
    "AnalysisPage",
    "PaymentStatusView",
    "ReconcileOutcome",
    "CategoryRevenue",
    "DistributionTotal",
    "RevenueDashboard",
]
