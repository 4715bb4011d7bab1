"""
Configuration settings for the CryptoAnalyst API.

Uses Pydantic Settings to load environment variables for database connections,
external service credentials, pricing, stakeholder splits, timeouts and logging.
Complex fields (pricing table, stakeholder list) are read from JSON-encoded
environment variables.
"""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Dict, List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cryptoanalyst.domain.models import AnalysisCategory, StakeholderEntry
from cryptoanalyst.errors import ConfigurationError

DEFAULT_PRICING: Dict[AnalysisCategory, Decimal] = {
    AnalysisCategory.BASIC_OVERVIEW: Decimal("10"),
    AnalysisCategory.TECHNICAL_ANALYSIS: Decimal("25"),
    AnalysisCategory.FUNDAMENTAL_ANALYSIS: Decimal("35"),
    AnalysisCategory.PORTFOLIO_REVIEW: Decimal("45"),
    AnalysisCategory.MARKET_SENTIMENT: Decimal("20"),
    AnalysisCategory.DEFI_OPPORTUNITIES: Decimal("50"),
}

DEFAULT_STAKEHOLDERS: List[StakeholderEntry] = [
    StakeholderEntry(wallet_id="platform-treasury", percentage=Decimal("60"), category="platform"),
    StakeholderEntry(
        wallet_id="data-provider-pool", percentage=Decimal("25"), category="data_provider"
    ),
    StakeholderEntry(wallet_id="research-pool", percentage=Decimal("15"), category="researcher"),
]


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("cryptoanalyst", alias="DB_NAME")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(3001, alias="PORT")
    frontend_url: str = Field("http://localhost:3000", alias="FRONTEND_URL")
    backend_url: str = Field("http://localhost:3001", alias="BACKEND_URL")
    # None: enabled only when APP_ENV is development.
    allow_manual_completion: Optional[bool] = Field(None, alias="ALLOW_MANUAL_COMPLETION")

    # Backend selection
    store_backend: Literal["postgres", "memory"] = Field("postgres", alias="STORE_BACKEND")
    generator_backend: Literal["gemini", "template"] = Field("gemini", alias="GENERATOR_BACKEND")
    custodian_backend: Literal["http", "ledger"] = Field("http", alias="CUSTODIAN_BACKEND")
    market_data_backend: Literal["live", "static"] = Field("live", alias="MARKET_DATA_BACKEND")

    # Pricing and revenue split
    pricing: Dict[AnalysisCategory, Decimal] = Field(
        default_factory=lambda: dict(DEFAULT_PRICING), alias="PRICING"
    )
    stakeholders: List[StakeholderEntry] = Field(
        default_factory=lambda: list(DEFAULT_STAKEHOLDERS), alias="STAKEHOLDERS"
    )
    payment_currency: str = Field("USD", alias="PAYMENT_CURRENCY")
    distribution_asset: str = Field("usdc", alias="DISTRIBUTION_ASSET")
    platform_wallet_id: str = Field("platform-wallet", alias="PLATFORM_WALLET_ID")
    ledger_opening_balance: Decimal = Field(Decimal("100000"), alias="LEDGER_OPENING_BALANCE")

    # Market data providers
    coinmarketcap_api_key: Optional[str] = Field(None, alias="COINMARKETCAP_API_KEY")
    coinmarketcap_url: str = Field("https://pro-api.coinmarketcap.com", alias="COINMARKETCAP_URL")
    coingecko_api_key: Optional[str] = Field(None, alias="COINGECKO_API_KEY")
    coingecko_url: str = Field("https://api.coingecko.com/api/v3", alias="COINGECKO_URL")
    fear_greed_url: str = Field("https://api.alternative.me/fng/", alias="FEAR_GREED_URL")

    # Report generation
    gemini_api_key: Optional[str] = Field(None, alias="GEMINI_API_KEY")
    gemini_analysis_model: str = Field("gemini-2.0-flash", alias="GEMINI_ANALYSIS_MODEL")
    gemini_summary_model: str = Field("gemini-2.0-flash-lite", alias="GEMINI_SUMMARY_MODEL")

    # Payment gateway
    x402_api_key: Optional[str] = Field(None, alias="X402_API_KEY")
    x402_endpoint: str = Field("https://api.x402.pay", alias="X402_ENDPOINT")
    webhook_secret: Optional[str] = Field(None, alias="WEBHOOK_SECRET")

    # Custodian
    custodian_endpoint: str = Field("https://api.custodian.local", alias="CUSTODIAN_ENDPOINT")
    custodian_api_key: Optional[str] = Field(None, alias="CUSTODIAN_API_KEY")

    # Timeouts (seconds)
    external_timeout_seconds: float = Field(10.0, alias="EXTERNAL_TIMEOUT_SECONDS")
    generation_timeout_seconds: float = Field(60.0, alias="GENERATION_TIMEOUT_SECONDS")
    transfer_timeout_seconds: float = Field(30.0, alias="TRANSFER_TIMEOUT_SECONDS")

    # Pagination
    default_page_size: int = Field(10, alias="DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(100, alias="MAX_PAGE_SIZE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def manual_completion_enabled(self) -> bool:
        if self.allow_manual_completion is not None:
            return self.allow_manual_completion
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


def price_for(settings: Settings, category: AnalysisCategory) -> Decimal:
    """
    Look up the configured price for a category.

    Raises
    ------
    KeyError
        If the pricing table has no entry for the category.
    """
    return settings.pricing[category]


def load_stakeholders(settings: Settings) -> List[StakeholderEntry]:
    """
    Return the configured stakeholder entries after validating the split.

    Active percentages must sum to exactly 100. The distribution engine applies
    each share independently, so this is the only place the total is enforced.

    Raises
    ------
    ConfigurationError
        If there are no active entries, the active shares do not sum to 100, or a
        wallet id repeats.
    """
    active = [entry for entry in settings.stakeholders if entry.is_active]
    if not active:
        raise ConfigurationError("No active stakeholders configured")
    total = sum((entry.percentage for entry in active), Decimal("0"))
    if total != Decimal("100"):
        raise ConfigurationError(
            f"Active stakeholder percentages sum to {total}, expected 100",
            total=str(total),
        )
    wallets = [entry.wallet_id for entry in active]
    if len(set(wallets)) != len(wallets):
        raise ConfigurationError("Duplicate stakeholder wallet ids", wallets=wallets)
    return list(settings.stakeholders)


__all__ = [
    "DEFAULT_PRICING",
    "DEFAULT_STAKEHOLDERS",
    "Settings",
    "get_settings",
    "price_for",
    "load_stakeholders",
]
