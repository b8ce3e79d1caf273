"""Tests for the CoinGecko price oracle against a mocked HTTP transport."""

from decimal import Decimal

import httpx
import pytest

from conftest import FakeClock, make_chain
from defi_portfolio_tracker.cache.memory import MemoryCache
from defi_portfolio_tracker.core.models import Token
from defi_portfolio_tracker.pricing.coingecko import CoinGeckoPriceOracle, CoinListItem
from defi_portfolio_tracker.rpc.rate_limiter import RateLimiter
from defi_portfolio_tracker.rpc.retry import RetryConfig

COINS = [
    {"id": "ethereum", "symbol": "eth", "name": "Ethereum"},
    {"id": "usd-coin", "symbol": "usdc", "name": "USDC"},
    {"id": "bridged-usdc", "symbol": "usdc", "name": "Bridged USDC"},
]

PRICES = {
    "ethereum": {"usd": 2000.5, "usd_24h_change": -1.25, "eur": 1850.0},
    "usd-coin": {"usd": 1.0, "usd_24h_change": 0.01},
}


class FakeCoinGecko:
    """Routes mocked requests and records every path hit."""

    def __init__(self) -> None:
        self.paths: list[str] = []
        self.failing: dict[str, int] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v3")
        self.paths.append(path)

        status = self.failing.get(path)
        if status:
            return httpx.Response(status, json={"error": "unavailable"})

        if path == "/coins/list":
            return httpx.Response(200, json=COINS)
        if path == "/simple/price":
            ids = request.url.params["ids"].split(",")
            currency = request.url.params["vs_currencies"]
            return httpx.Response(
                200,
                json={
                    coin_id: {k: v for k, v in PRICES[coin_id].items() if k.startswith(currency)}
                    for coin_id in ids
                    if coin_id in PRICES
                },
            )
        if path == "/coins/ethereum/market_chart":
            return httpx.Response(200, json={"prices": [[1, 2000.0], [2, 2100.0], [3, 2200.0]]})
        if path == "/exchange_rates":
            return httpx.Response(
                200,
                json={"rates": {"usd": {"value": 2000.0}, "eur": {"value": 1800.0}, "btc": {"value": 1}}},
            )
        return httpx.Response(404)


@pytest.fixture
def coingecko():
    return FakeCoinGecko()


@pytest.fixture
def oracle(coingecko, memory_cache, fast_limiter):
    client = httpx.Client(
        base_url="https://api.coingecko.com/api/v3",
        transport=httpx.MockTransport(coingecko),
    )
    oracle = CoinGeckoPriceOracle(
        memory_cache,
        fast_limiter,
        retry_config=RetryConfig(max_retries=0),
        client=client,
    )
    yield oracle
    oracle.close()


def test_coin_directory_is_cached(oracle, coingecko):
    """Test the symbol directory is fetched once."""
    first = oracle.coin_directory()
    second = oracle.coin_directory()

    assert first == second
    assert isinstance(first[0], CoinListItem)
    assert coingecko.paths.count("/coins/list") == 1


def test_coin_id_resolution(oracle):
    """Test symbols resolve case-insensitively to the first match."""
    assert oracle.coin_id("ETH") == "ethereum"
    assert oracle.coin_id("usdc") == "usd-coin"
    assert oracle.coin_id("NOPE") is None


def test_unknown_symbol_is_cached(oracle, memory_cache):
    """Test negative lookups are cached too."""
    oracle.coin_id("NOPE")

    assert memory_cache.get("coinId:nope", str) == ""


def test_price_of_symbol(oracle):
    """Test USD price of a symbol."""
    assert oracle.price_of("ETH") == Decimal("2000.5")
    assert oracle.price_of("ETH", "eur") == Decimal("1850.0")


def test_price_of_unknown_symbol_is_zero(oracle, coingecko):
    """Test an unresolvable symbol prices at zero without a quote call."""
    assert oracle.price_of("NOPE") == Decimal("0")
    assert "/simple/price" not in coingecko.paths


def test_price_of_token_uses_known_id(oracle, coingecko):
    """Test a token with a CoinGecko id skips the directory."""
    token = make_chain().native_token().model_copy(update={"coingecko_id": "ethereum"})

    assert oracle.price_of(token) == Decimal("2000.5")
    assert "/coins/list" not in coingecko.paths


def test_quotes_are_cached(oracle, coingecko):
    """Test quotes are cached under the sorted id set."""
    oracle.quotes(["usd-coin", "ethereum"])
    oracle.quotes(["ethereum", "usd-coin"])

    assert coingecko.paths.count("/simple/price") == 1


def test_refresh_token_prices_in_one_call(oracle, coingecko):
    """Test a batch of tokens is priced with a single quote call."""
    chain = make_chain()
    tokens = [
        Token(symbol="ETH", name="Ether", chain=chain),
        Token(symbol="USDC", name="USD Coin", chain=chain, contract_address="0x1"),
        Token(symbol="NOPE", name="Unknown", chain=chain, contract_address="0x2"),
    ]

    oracle.refresh_token_prices(tokens)

    assert [t.price_usd for t in tokens] == [Decimal("2000.5"), Decimal("1.0"), Decimal("0")]
    assert tokens[0].price_change_24h == Decimal("-1.25")
    assert coingecko.paths.count("/simple/price") == 1


def test_prices_of(oracle):
    """Test prices keyed by token identity."""
    chain = make_chain()
    prices = oracle.prices_of([Token(symbol="ETH", name="Ether", chain=chain)])

    assert prices == {("ETH", "ethereum"): Decimal("2000.5")}


def test_upstream_failure_prices_at_zero(oracle, coingecko):
    """Test upstream errors resolve to zero instead of raising."""
    coingecko.failing["/simple/price"] = 500
    token = Token(symbol="ETH", name="Ether", chain=make_chain())

    assert oracle.price_of("ETH") == Decimal("0")
    assert oracle.refresh_token_prices([token])[0].price_usd == Decimal("0")


def test_failures_are_not_cached(oracle, coingecko):
    """Test a failed lookup is retried on the next call."""
    coingecko.failing["/simple/price"] = 503
    assert oracle.price_of("ETH") == Decimal("0")

    del coingecko.failing["/simple/price"]
    assert oracle.price_of("ETH") == Decimal("2000.5")


def test_transient_errors_are_retried(coingecko, memory_cache, fast_limiter):
    """Test 429 responses are retried with backoff."""
    responses = iter([httpx.Response(429), httpx.Response(200, json=COINS)])
    client = httpx.Client(
        base_url="https://api.coingecko.com/api/v3",
        transport=httpx.MockTransport(lambda request: next(responses)),
    )
    oracle = CoinGeckoPriceOracle(
        memory_cache,
        fast_limiter,
        retry_config=RetryConfig(max_retries=1, base_delay=0),
        client=client,
    )

    assert oracle.coin_id("eth") == "ethereum"


def test_price_change_percent(oracle):
    """Test change over the window from first to last price point."""
    assert oracle.price_change_percent("ETH", days=7) == Decimal("10")
    assert oracle.price_change_percent("NOPE") == Decimal("0")


def test_usd_to(oracle, coingecko):
    """Test USD conversion rates."""
    assert oracle.usd_to("usd") == Decimal("1")
    assert oracle.usd_to("EUR") == Decimal("0.9")
    assert oracle.usd_to("xyz") == Decimal("0")
    assert coingecko.paths.count("/exchange_rates") == 2


def test_usd_to_failure_is_zero(oracle, coingecko):
    """Test an unreachable rate source converts to zero."""
    coingecko.failing["/exchange_rates"] = 502

    assert oracle.usd_to("eur") == Decimal("0")


def test_requests_are_rate_limited(coingecko, memory_cache, clock):
    """Test every upstream call goes through the coingecko resource."""
    limiter = RateLimiter(clock=clock, sleep=clock.sleep)
    limiter.configure("coingecko", 1)
    client = httpx.Client(
        base_url="https://api.coingecko.com/api/v3",
        transport=httpx.MockTransport(coingecko),
    )
    oracle = CoinGeckoPriceOracle(memory_cache, limiter, retry_config=RetryConfig(max_retries=0), client=client)

    oracle.price_of("ETH")

    assert coingecko.paths == ["/coins/list", "/simple/price"]
    assert clock.sleeps == [1.0]


def test_api_key_header():
    """Test the demo API key is sent as a header."""
    oracle = CoinGeckoPriceOracle(MemoryCache(clock=FakeClock()), RateLimiter(), api_key="secret")

    assert oracle.client.headers["x-cg-demo-api-key"] == "secret"
    oracle.close()
