"""
Composition root for the CryptoAnalyst API.

``ApplicationContainer`` lazily builds every adapter and orchestrator from
``Settings`` and hands them out already wired. Nothing in the package reaches
for a global: the API, the CLI and the tests all get their collaborators from a
container (tests usually pass their own store and fakes).
"""

from __future__ import annotations

from typing import Optional, Tuple

import httpx

from cryptoanalyst.adapters.abstract import (
    Custodian,
    MarketDataSource,
    PaymentGateway,
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
)
from cryptoanalyst.adapters.report_generator import GeminiReportGenerator, TemplateReportGenerator
from cryptoanalyst.adapters.wallet import HttpCustodian, LedgerCustodian
from cryptoanalyst.config import Settings, get_settings, load_stakeholders
from cryptoanalyst.infrastructure.db_factory import create_pool
from cryptoanalyst.infrastructure.postgres_store import PostgresStore
from cryptoanalyst.infrastructure.store import InMemoryStore, Store
from cryptoanalyst.services.analysis import AnalysisOrchestrator
from cryptoanalyst.services.distribution import RevenueDistributionEngine
from cryptoanalyst.services.payments import PaymentOrchestrator
from cryptoanalyst.services.wallets import WalletService
from cryptoanalyst.utils.logging import get_logger

log = get_logger(__name__)


class ApplicationContainer:
    """
    Lazily wires adapters and orchestrators around one store.

    Any collaborator may be supplied up front to override the one the settings
    would select.

    Usage:
        container = await create_container(settings)
        ticket = await container.analysis.create_analysis_request(...)
        await container.aclose()
    """

    def __init__(
        self,
        settings: Settings,
        store: Store,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        market_data: Optional[MarketDataSource] = None,
        generator: Optional[ReportGenerator] = None,
        gateway: Optional[PaymentGateway] = None,
        verifier: Optional[SignatureVerifier] = None,
        custodian: Optional[Custodian] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._market_data = market_data
        self._generator = generator
        self._gateway = gateway
        self._verifier = verifier
        self._custodian = custodian
        self._distribution: Optional[RevenueDistributionEngine] = None
        self._payments: Optional[PaymentOrchestrator] = None
        self._analysis: Optional[AnalysisOrchestrator] = None
        self._wallets: Optional[WalletService] = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.external_timeout_seconds)
            )
        return self._http_client

    @property
    def market_data(self) -> MarketDataSource:
        if self._market_data is None:
            if self.settings.market_data_backend == "static":
                self._market_data = StaticMarketData()
            else:
                coingecko = CoinGeckoProvider(
                    self.http_client, self.settings.coingecko_api_key, self.settings.coingecko_url
                )
                if self.settings.coinmarketcap_api_key:
                    primary = CoinMarketCapProvider(
                        self.http_client,
                        self.settings.coinmarketcap_api_key,
                        self.settings.coinmarketcap_url,
                    )
                    fallback: Optional[CoinGeckoProvider] = coingecko
                else:
                    primary, fallback = coingecko, None
                self._market_data = MarketDataGateway(
                    primary=primary,
                    fallback=fallback,
                    sentiment=FearGreedIndexProvider(self.http_client, self.settings.fear_greed_url),
                    timeout=self.settings.external_timeout_seconds,
                )
        return self._market_data

    @property
    def generator(self) -> ReportGenerator:
        if self._generator is None:
            if self.settings.generator_backend == "template":
                self._generator = TemplateReportGenerator()
            else:
                self._generator = GeminiReportGenerator(
                    api_key=self.settings.gemini_api_key,
                    analysis_model=self.settings.gemini_analysis_model,
                    summary_model=self.settings.gemini_summary_model,
                )
        return self._generator

    @property
    def gateway(self) -> PaymentGateway:
        if self._gateway is None:
            if self.settings.x402_api_key:
                self._gateway = X402PayGateway(
                    self.http_client, self.settings.x402_api_key, self.settings.x402_endpoint
                )
            else:
                log.warning("[GATEWAY SIMULATED]", extra={"reason": "X402_API_KEY not set"})
                self._gateway = SimulatedGateway()
        return self._gateway

    @property
    def verifier(self) -> SignatureVerifier:
        if self._verifier is None:
            self._verifier = HmacSignatureVerifier(self.settings.webhook_secret)
        return self._verifier

    @property
    def custodian(self) -> Custodian:
        if self._custodian is None:
            if self.settings.custodian_backend == "ledger":
                self._custodian = LedgerCustodian(
                    opening_balances={
                        self.settings.platform_wallet_id: {
                            self.settings.distribution_asset: self.settings.ledger_opening_balance
                        }
                    }
                )
            else:
                self._custodian = HttpCustodian(
                    self.http_client,
                    self.settings.custodian_api_key,
                    self.settings.custodian_endpoint,
                )
        return self._custodian

    @property
    def distribution(self) -> RevenueDistributionEngine:
        if self._distribution is None:
            self._distribution = RevenueDistributionEngine(self.store, self.custodian, self.settings)
        return self._distribution

    def _build_orchestrators(self) -> Tuple[PaymentOrchestrator, AnalysisOrchestrator]:
        payments = PaymentOrchestrator(
            store=self.store,
            gateway=self.gateway,
            verifier=self.verifier,
            distribution=self.distribution,
            settings=self.settings,
        )
        analysis = AnalysisOrchestrator(
            store=self.store,
            payments=payments,
            market_data=self.market_data,
            generator=self.generator,
            settings=self.settings,
        )
        payments.register_completion_hook(analysis.on_payment_completed)
        return payments, analysis

    @property
    def payments(self) -> PaymentOrchestrator:
        if self._payments is None:
            self._payments, self._analysis = self._build_orchestrators()
        return self._payments

    @property
    def analysis(self) -> AnalysisOrchestrator:
        if self._analysis is None:
            self._payments, self._analysis = self._build_orchestrators()
        return self._analysis

    @property
    def wallets(self) -> WalletService:
        if self._wallets is None:
            self._wallets = WalletService(self.store, self.custodian, self.settings)
        return self._wallets

    async def aclose(self) -> None:
        """Release the store and the shared HTTP client."""
        await self.store.close()
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()


async def create_store(settings: Settings) -> Store:
    """
    Build the store selected by ``settings.store_backend``.

    The in-memory store is seeded with the configured stakeholders; Postgres is
    seeded by ``scripts/init_db.py``.
    """
    if settings.store_backend == "memory":
        store = InMemoryStore()
        await store.replace_stakeholders(load_stakeholders(settings))
        return store
    pool = await create_pool(
        min_size=settings.db_pool_min_size, max_size=settings.db_pool_max_size
    )
    return PostgresStore(pool)


async def create_container(settings: Optional[Settings] = None) -> ApplicationContainer:
    """
    Validate configuration and return a wired container.

    Raises
    ------
    ConfigurationError
        If the stakeholder split is invalid.
    """
    settings = settings or get_settings()
    load_stakeholders(settings)
    store = await create_store(settings)
    container = ApplicationContainer(settings, store)
    log.info(
        "[CONTAINER READY]",
        extra={
            "store": settings.store_backend,
            "generator": settings.generator_backend,
            "custodian": settings.custodian_backend,
            "market_data": settings.market_data_backend,
        },
    )
    return container


__all__ = ["ApplicationContainer", "create_container", "create_store"]
