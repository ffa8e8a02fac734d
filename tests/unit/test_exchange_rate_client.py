import httpx
import pytest

from app.domain.errors import RateUnavailableError
from app.infrastructure.exchange_rates.exchange_rate_client import ExchangeRateClient

API_URL = "https://rates.test/simple/price"


def make_client(handler, api_key=None) -> ExchangeRateClient:
    return ExchangeRateClient(
        api_url=API_URL,
        api_key=api_key,
        cache_ttl_seconds=300,
        timeout_seconds=1.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_direct_coin_rate_and_cache():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        assert request.url.params["ids"] == "bitcoin"
        assert request.url.params["vs_currencies"] == "usd"
        assert request.headers["x-cg-demo-api-key"] == "demo-key"
        return httpx.Response(200, json={"bitcoin": {"usd": 50000}})

    client = make_client(handler, api_key="demo-key")

    assert await client.fetch_rate("btc", "USD") == 50000.0
    assert await client.fetch_rate("BTC", "USD") == 50000.0
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_fiat_pair_uses_cross_rate():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["ids"] == "tether"
        return httpx.Response(200, json={"tether": {"eur": 0.9, "usd": 1.0}})

    rate = await make_client(handler).fetch_rate("EUR", "USD")

    assert rate == pytest.approx(1.0 / 0.9)


@pytest.mark.asyncio
async def test_same_currency_short_circuits():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await make_client(handler).fetch_rate("eth", "ETH") == 1.0


@pytest.mark.asyncio
async def test_http_error_raises_rate_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "down"})

    with pytest.raises(RateUnavailableError):
        await make_client(handler).fetch_rate("EUR", "USD")


@pytest.mark.asyncio
async def test_missing_direct_rate_falls_back_to_cross():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["ids"] == "bitcoin":
            return httpx.Response(200, json={})
        return httpx.Response(200, json={"tether": {"btc": 0.00002, "chf": 0.8}})

    rate = await make_client(handler).fetch_rate("BTC", "CHF")

    assert rate == pytest.approx(0.8 / 0.00002)


@pytest.mark.asyncio
async def test_requests_share_one_http_client_until_closed():
    def handler(request: httpx.Request) -> httpx.Response:
        coin = request.url.params["ids"]
        return httpx.Response(200, json={coin: {"usd": 10}})

    client = make_client(handler)

    await client.fetch_rate("BTC", "USD")
    first = client._client
    await client.fetch_rate("ETH", "USD")

    assert first is not None
    assert client._client is first

    await client.aclose()
    assert first.is_closed
    assert client._client is None

    await client.fetch_rate("SOL", "USD")
    assert client._client is not None
    assert client._client is not first
    await client.aclose()


@pytest.mark.asyncio
async def test_aclose_without_requests_is_harmless():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = make_client(handler)
    await client.aclose()
    await client.aclose()

    assert client._client is None
