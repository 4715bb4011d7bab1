from __future__ import annotations

import httpx
import pytest

from cryptoanalyst.adapters.market_data import (
    NEUTRAL_SENTIMENT,
    CoinGeckoProvider,
    CoinMarketCapProvider,
    FearGreedIndexProvider,
    MarketDataGateway,
    StaticMarketData,
)
from cryptoanalyst.errors import DataUnavailable

CMC_URL = "https://cmc.test"
GECKO_URL = "https://gecko.test/api/v3"
FNG_URL = "https://fng.test/fng/"
TIMEOUT = 2.0

CMC_QUOTE = {
    "data": {
        "BTC": {
            "symbol": "BTC",
            "name": "Bitcoin",
            "cmc_rank": 1,
            "circulating_supply": 19_700_000,
            "max_supply": 21_000_000,
            "quote": {"USD": {"price": 67000.5, "percent_change_24h": 1.5, "market_cap": 1.3e12}},
        }
    }
}
GECKO_QUOTE = {
    "symbol": "btc",
    "name": "Bitcoin",
    "market_cap_rank": 1,
    "market_data": {
        "current_price": {"usd": 66900.0},
        "market_cap": {"usd": 1.3e12},
        "total_volume": {"usd": 2.1e10},
        "price_change_percentage_24h": 1.4,
    },
}
GECKO_GLOBAL = {
    "data": {
        "total_market_cap": {"usd": 2.4e12},
        "total_volume": {"usd": 9.0e10},
        "market_cap_percentage": {"btc": 54.1, "eth": 16.9},
        "market_cap_change_percentage_24h_usd": 0.7,
    }
}


def _gateway(handler, with_fallback: bool = True) -> tuple[MarketDataGateway, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    gateway = MarketDataGateway(
        primary=CoinMarketCapProvider(client, "cmc-key", CMC_URL),
        fallback=CoinGeckoProvider(client, None, GECKO_URL) if with_fallback else None,
        sentiment=FearGreedIndexProvider(client, FNG_URL),
        timeout=TIMEOUT,
    )
    return gateway, client


@pytest.mark.asyncio
async def test_primary_quote_is_used_when_available() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "cmc.test"
        assert request.headers["X-CMC_PRO_API_KEY"] == "cmc-key"
        return httpx.Response(200, json=CMC_QUOTE)

    gateway, client = _gateway(handler)
    async with client:
        quote = await gateway.fetch_quote("btc")

    assert quote.source == "coinmarketcap"
    assert quote.price == 67000.5
    assert quote.rank == 1


@pytest.mark.asyncio
async def test_quote_falls_back_to_coingecko_when_primary_fails() -> None:
    seen_hosts = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_hosts.append(request.url.host)
        if request.url.host == "cmc.test":
            return httpx.Response(500)
        assert request.url.path == "/api/v3/coins/bitcoin"
        return httpx.Response(200, json=GECKO_QUOTE)

    gateway, client = _gateway(handler)
    async with client:
        quote = await gateway.fetch_quote("BTC")

    assert seen_hosts == ["cmc.test", "gecko.test"]
    assert quote.source == "coingecko"
    assert quote.symbol == "BTC"
    assert quote.price == 66900.0


@pytest.mark.asyncio
async def test_global_metrics_fall_back_on_malformed_primary_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "cmc.test":
            return httpx.Response(200, json={"data": {}})
        return httpx.Response(200, json=GECKO_GLOBAL)

    gateway, client = _gateway(handler)
    async with client:
        metrics = await gateway.fetch_global_metrics()

    assert metrics.total_market_cap == 2.4e12
    assert metrics.btc_dominance == 54.1


@pytest.mark.asyncio
async def test_data_unavailable_when_all_providers_fail() -> None:
    gateway, client = _gateway(lambda request: httpx.Response(502))
    async with client:
        with pytest.raises(DataUnavailable):
            await gateway.fetch_quote("BTC")


@pytest.mark.asyncio
async def test_no_fallback_propagates_primary_failure() -> None:
    gateway, client = _gateway(lambda request: httpx.Response(429), with_fallback=False)
    async with client:
        with pytest.raises(DataUnavailable):
            await gateway.fetch_global_metrics()


@pytest.mark.asyncio
async def test_sentiment_index_parsed() -> None:
    gateway, client = _gateway(
        lambda request: httpx.Response(200, json={"data": [{"value": "72"}]})
    )
    async with client:
        assert await gateway.fetch_sentiment_index() == 72


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500),
        httpx.Response(200, json={"data": []}),
        httpx.Response(200, json={"data": [{"value": "150"}]}),
    ],
)
async def test_sentiment_index_defaults_to_neutral_on_failure(response: httpx.Response) -> None:
    gateway, client = _gateway(lambda request: response)
    async with client:
        assert await gateway.fetch_sentiment_index() == NEUTRAL_SENTIMENT


@pytest.mark.asyncio
async def test_static_market_data_rejects_unknown_symbols() -> None:
    source = StaticMarketData()

    assert (await source.fetch_quote("eth")).symbol == "ETH"
    with pytest.raises(DataUnavailable):
        await source.fetch_quote("NOPE")
