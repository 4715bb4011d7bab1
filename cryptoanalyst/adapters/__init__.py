"""
Adapters package for the CryptoAnalyst API.

Re-exports the capability Protocols and the concrete adapters for market data,
report generation, the payment gateway and the custodian, so downstream code can
import from ``cryptoanalyst.adapters`` directly.
"""

from cryptoanalyst.adapters.abstract import (
    CallbackUrls,
    Custodian,
    MarketContext,
    MarketDataSource,
    PaymentGateway,
    QuoteProvider,
    ReportGenerator,
    SignatureVerifier,
)
from cryptoanalyst.adapters.market_data import (
    CoinGeckoProvider,
    CoinMarketCapProvider,
    FearGreedIndexProvider,
    MarketDataGateway,
    StaticMarketData,
)
from cryptoanalyst.adapters.payment_gateway import (
    HmacSignatureVerifier,
    SimulatedGateway,
    X402PayGateway,
    parse_webhook_event,
)
from cryptoanalyst.adapters.report_generator import (
    GeminiReportGenerator,
    TemplateReportGenerator,
)
from cryptoanalyst.adapters.wallet import HttpCustodian, LedgerCustodian

__all__ = [
    # Protocols
    "CallbackUrls",
    "Custodian",
    "MarketContext",
    "MarketDataSource",
    "PaymentGateway",
    "QuoteProvider",
    "ReportGenerator",
    "SignatureVerifier",
    # Market data
    "CoinGeckoProvider",
    "CoinMarketCapProvider",
    "FearGreedIndexProvider",
    "MarketDataGateway",
    "StaticMarketData",
    # Payments
    "HmacSignatureVerifier",
    "SimulatedGateway",
    "X402PayGateway",
    "parse_webhook_event",
    # Generation
    "GeminiReportGenerator",
    "TemplateReportGenerator",
    # Custody
    "HttpCustodian",
    "LedgerCustodian",
]
