"""
Market data gateway for the CryptoAnalyst API.

Quotes and global metrics come from CoinMarketCap, with CoinGecko consulted
automatically when the primary fails. The Fear & Greed index is best-effort: any
failure yields the neutral value 50.

All providers share one ``httpx.AsyncClient`` owned by the container. Idempotent
GETs are retried on transport errors; HTTP error statuses are not retried.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cryptoanalyst.domain.models import GlobalMetrics, MarketQuote
from cryptoanalyst.errors import DataUnavailable
from cryptoanalyst.utils.logging import get_logger
from cryptoanalyst.utils.timeouts import bounded

log = get_logger(__name__)

NEUTRAL_SENTIMENT = 50

# CoinGecko addresses coins by id, not ticker.
COINGECKO_IDS: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "DOT": "polkadot",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "USDC": "usd-coin",
    "USDT": "tether",
}

_PARSE_ERRORS = (KeyError, TypeError, ValueError, IndexError)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
async def _get_json(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> Any:
    response = await client.get(url, params=params, headers=headers)
    response.raise_for_status()
    return response.json()


class CoinMarketCapProvider:
    """Primary quote and global-metrics source."""

    name: str = "coinmarketcap"

    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str], base_url: str) -> None:
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {"X-CMC_PRO_API_KEY": self._api_key or "", "Accept": "application/json"}

    async def fetch_quote(self, symbol: str) -> MarketQuote:
        symbol = symbol.upper()
        try:
            body = await _get_json(
                self._client,
                f"{self._base_url}/v1/cryptocurrency/quotes/latest",
                params={"symbol": symbol},
                headers=self._headers(),
            )
            data = body["data"][symbol]
            usd = data["quote"]["USD"]
            return MarketQuote(
                symbol=data["symbol"],
                name=data["name"],
                price=usd["price"],
                market_cap=usd.get("market_cap"),
                volume_24h=usd.get("volume_24h"),
                change_24h=usd.get("percent_change_24h"),
                change_7d=usd.get("percent_change_7d"),
                change_30d=usd.get("percent_change_30d"),
                circulating_supply=data.get("circulating_supply"),
                total_supply=data.get("total_supply"),
                max_supply=data.get("max_supply"),
                rank=data.get("cmc_rank"),
                source=self.name,
            )
        except (httpx.HTTPError, *_PARSE_ERRORS) as exc:
            raise DataUnavailable(f"{self.name} quote failed for {symbol}", symbol=symbol) from exc

    async def fetch_global_metrics(self) -> GlobalMetrics:
        try:
            body = await _get_json(
                self._client,
                f"{self._base_url}/v1/global-metrics/quotes/latest",
                headers=self._headers(),
            )
            data = body["data"]
            usd = data["quote"]["USD"]
            return GlobalMetrics(
                total_market_cap=usd["total_market_cap"],
                total_volume=usd["total_volume_24h"],
                btc_dominance=data.get("btc_dominance"),
                eth_dominance=data.get("eth_dominance"),
                market_cap_change_24h=usd.get("total_market_cap_yesterday_percentage_change"),
                volume_change_24h=usd.get("total_volume_24h_yesterday_percentage_change"),
            )
        except (httpx.HTTPError, *_PARSE_ERRORS) as exc:
            raise DataUnavailable(f"{self.name} global metrics failed") from exc


class CoinGeckoProvider:
    """Fallback quote and global-metrics source."""

    name: str = "coingecko"

    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str], base_url: str) -> None:
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-cg-demo-api-key"] = self._api_key
        return headers

    async def fetch_quote(self, symbol: str) -> MarketQuote:
        coin_id = COINGECKO_IDS.get(symbol.upper(), symbol.lower())
        try:
            data = await _get_json(
                self._client, f"{self._base_url}/coins/{coin_id}", headers=self._headers()
            )
            market = data["market_data"]
            return MarketQuote(
                symbol=data["symbol"].upper(),
                name=data["name"],
                price=market["current_price"]["usd"],
                market_cap=market.get("market_cap", {}).get("usd"),
                volume_24h=market.get("total_volume", {}).get("usd"),
                change_24h=market.get("price_change_percentage_24h"),
                change_7d=market.get("price_change_percentage_7d"),
                change_30d=market.get("price_change_percentage_30d"),
                circulating_supply=market.get("circulating_supply"),
                total_supply=market.get("total_supply"),
                max_supply=market.get("max_supply"),
                rank=data.get("market_cap_rank"),
                source=self.name,
            )
        except (httpx.HTTPError, *_PARSE_ERRORS) as exc:
            raise DataUnavailable(f"{self.name} quote failed for {symbol}", symbol=symbol) from exc

    async def fetch_global_metrics(self) -> GlobalMetrics:
        try:
            body = await _get_json(
                self._client, f"{self._base_url}/global", headers=self._headers()
            )
            data = body["data"]
            dominance = data.get("market_cap_percentage", {})
            return GlobalMetrics(
                total_market_cap=data["total_market_cap"]["usd"],
                total_volume=data["total_volume"]["usd"],
                btc_dominance=dominance.get("btc"),
                eth_dominance=dominance.get("eth"),
                market_cap_change_24h=data.get("market_cap_change_percentage_24h_usd"),
            )
        except (httpx.HTTPError, *_PARSE_ERRORS) as exc:
            raise DataUnavailable(f"{self.name} global metrics failed") from exc


class FearGreedIndexProvider:
    """alternative.me Fear & Greed index."""

    name: str = "fear_greed"

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self._url = url

    async def fetch_index(self) -> int:
        body = await _get_json(self._client, self._url)
        value = int(body["data"][0]["value"])
        if not 0 <= value <= 100:
            raise ValueError(f"Sentiment index out of range: {value}")
        return value


class MarketDataGateway:
    """
    Market data with automatic provider failover.

    Parameters
    ----------
    primary, fallback
        Providers exposing ``fetch_quote`` and ``fetch_global_metrics``.
    sentiment
        Provider exposing ``fetch_index``; failures are swallowed.
    timeout : float
        Upper bound for each individual provider call.
    """

    def __init__(
        self,
        primary: Any,
        fallback: Optional[Any],
        sentiment: Optional[FearGreedIndexProvider],
        timeout: float,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._sentiment = sentiment
        self._timeout = timeout

    async def fetch_quote(self, symbol: str) -> MarketQuote:
        try:
            return await bounded(
                self._primary.fetch_quote(symbol),
                self._timeout,
                DataUnavailable,
                f"{self._primary.name} quote",
            )
        except DataUnavailable as exc:
            if self._fallback is None:
                raise
            log.warning(
                "[MARKET DATA FALLBACK] quote",
                extra={"symbol": symbol, "primary": self._primary.name, "error": str(exc)},
            )
        return await bounded(
            self._fallback.fetch_quote(symbol),
            self._timeout,
            DataUnavailable,
            f"{self._fallback.name} quote",
        )

    async def fetch_global_metrics(self) -> GlobalMetrics:
        try:
            return await bounded(
                self._primary.fetch_global_metrics(),
                self._timeout,
                DataUnavailable,
                f"{self._primary.name} global metrics",
            )
        except DataUnavailable as exc:
            if self._fallback is None:
                raise
            log.warning(
                "[MARKET DATA FALLBACK] global metrics",
                extra={"primary": self._primary.name, "error": str(exc)},
            )
        return await bounded(
            self._fallback.fetch_global_metrics(),
            self._timeout,
            DataUnavailable,
            f"{self._fallback.name} global metrics",
        )

    async def fetch_sentiment_index(self) -> int:
        if self._sentiment is None:
            return NEUTRAL_SENTIMENT
        try:
            return await bounded(
                self._sentiment.fetch_index(), self._timeout, DataUnavailable, "sentiment index"
            )
        except Exception as exc:  # noqa: BLE001 - sentiment is best-effort by contract
            log.warning("[SENTIMENT DEFAULTED]", extra={"error": str(exc)})
            return NEUTRAL_SENTIMENT


class StaticMarketData:
    """
    Fixed market snapshot with no network access, for the demo command and tests.

    Unknown symbols raise ``DataUnavailable`` like a live provider would.
    """

    name: str = "static"

    def __init__(
        self,
        quotes: Optional[Mapping[str, MarketQuote]] = None,
        metrics: Optional[GlobalMetrics] = None,
        sentiment: int = NEUTRAL_SENTIMENT,
    ) -> None:
        self._quotes = dict(quotes) if quotes is not None else dict(STATIC_QUOTES)
        self._metrics = metrics or STATIC_METRICS
        self._sentiment = sentiment

    async def fetch_quote(self, symbol: str) -> MarketQuote:
        try:
            return self._quotes[symbol.upper()]
        except KeyError as exc:
            raise DataUnavailable(f"No static quote for {symbol}", symbol=symbol) from exc

    async def fetch_global_metrics(self) -> GlobalMetrics:
        return self._metrics

    async def fetch_sentiment_index(self) -> int:
        return self._sentiment


STATIC_QUOTES: Dict[str, MarketQuote] = {
    "BTC": MarketQuote(
        symbol="BTC",
        name="Bitcoin",
        price=67000.0,
        market_cap=1.32e12,
        volume_24h=2.8e10,
        change_24h=1.2,
        change_7d=-0.8,
        change_30d=6.5,
        circulating_supply=19_700_000,
        max_supply=21_000_000,
        rank=1,
        source="static",
    ),
    "ETH": MarketQuote(
        symbol="ETH",
        name="Ethereum",
        price=3500.0,
        market_cap=4.2e11,
        volume_24h=1.5e10,
        change_24h=0.4,
        change_7d=2.1,
        change_30d=-3.0,
        circulating_supply=120_000_000,
        rank=2,
        source="static",
    ),
}

STATIC_METRICS = GlobalMetrics(
    total_market_cap=2.4e12,
    total_volume=9.0e10,
    btc_dominance=54.0,
    eth_dominance=17.0,
    market_cap_change_24h=0.9,
)


__all__ = [
    "NEUTRAL_SENTIMENT",
    "StaticMarketData",
    "CoinMarketCapProvider",
    "CoinGeckoProvider",
    "FearGreedIndexProvider",
    "MarketDataGateway",
]
