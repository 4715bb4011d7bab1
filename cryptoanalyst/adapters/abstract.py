"""
Capability interfaces for the external services the orchestrators depend on.

Concrete adapters (HTTP clients, the Gemini backend, in-process test doubles)
implement these Protocols. Orchestrators only ever see the Protocol, so production
and test implementations are interchangeable.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol, TypedDict, runtime_checkable

from cryptoanalyst.domain.models import (
    AnalysisCategory,
    AnalysisParameters,
    GlobalMetrics,
    MarketQuote,
    WalletBalance,
)


class CallbackUrls(TypedDict):
    """Redirect and notification URLs handed to the payment gateway."""

    success_url: str
    cancel_url: str
    webhook_url: str


class MarketContext(TypedDict, total=False):
    """
    Market snapshot passed to the report generator.

    ``crypto`` is the symbol quote, ``market`` the global metrics enriched with
    ``fear_greed_index``.
    """

    crypto: Dict[str, Any]
    market: Dict[str, Any]


@runtime_checkable
class QuoteProvider(Protocol):
    """A single upstream market-data source."""

    name: str

    async def fetch_quote(self, symbol: str) -> MarketQuote:
        """Return the latest quote for ``symbol`` or raise ``DataUnavailable``."""
        ...


@runtime_checkable
class MarketDataSource(Protocol):
    """Quote, global metrics and sentiment, with provider failover handled inside."""

    async def fetch_quote(self, symbol: str) -> MarketQuote:
        ...

    async def fetch_global_metrics(self) -> GlobalMetrics:
        ...

    async def fetch_sentiment_index(self) -> int:
        """Return 0-100. Never raises; falls back to a neutral value."""
        ...


@runtime_checkable
class ReportGenerator(Protocol):
    """
    Text generation backend for analysis reports.

    Implementations raise ``GenerationUnavailable`` on backend failure.
    """

    name: str

    async def generate(
        self,
        category: AnalysisCategory,
        market_context: MarketContext,
        parameters: AnalysisParameters,
    ) -> str:
        ...

    async def summarize(self, text: str) -> str:
        ...


@runtime_checkable
class PaymentGateway(Protocol):
    """External payment processor."""

    async def create_intent(
        self,
        payment_id: str,
        amount: Decimal,
        currency: str,
        callback_urls: CallbackUrls,
    ) -> str:
        """Create a payment intent and return the gateway's reference. Raises ``GatewayError``."""
        ...


@runtime_checkable
class SignatureVerifier(Protocol):
    """Authenticates webhook deliveries."""

    def verify(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        ...


@runtime_checkable
class Custodian(Protocol):
    """
    Custodial wallet provider.

    Every method raises ``TransferError`` when the custodian fails.
    """

    async def create_wallet(self) -> str:
        ...

    async def get_balances(self, wallet_id: str) -> List[WalletBalance]:
        ...

    async def get_default_address(self, wallet_id: str) -> str:
        ...

    async def transfer(
        self, from_wallet: str, to_wallet: str, amount: Decimal, asset: str
    ) -> str:
        """Move funds and return the transfer reference (transaction hash)."""
        ...


def market_context(crypto: Mapping[str, Any], market: Mapping[str, Any]) -> MarketContext:
    return MarketContext(crypto=dict(crypto), market=dict(market))


__all__ = [
    "CallbackUrls",
    "MarketContext",
    "QuoteProvider",
    "MarketDataSource",
    "ReportGenerator",
    "PaymentGateway",
    "SignatureVerifier",
    "Custodian",
    "market_context",
]
