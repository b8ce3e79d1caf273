"""Pytest configuration and shared fakes for defi-portfolio-tracker tests."""

import logging
import threading
from decimal import Decimal
from typing import Any

import pytest
from eth_abi import encode

from defi_portfolio_tracker.cache.memory import MemoryCache
from defi_portfolio_tracker.chains.base import BaseChainProvider
from defi_portfolio_tracker.core.models import (
    Chain,
    ProtocolCategory,
    Token,
    TokenBalance,
    YieldPosition,
    YieldProtocol,
)
from defi_portfolio_tracker.errors import ChainError
from defi_portfolio_tracker.rpc import erc20
from defi_portfolio_tracker.rpc.rate_limiter import RateLimiter

WALLET = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


def pytest_configure(config):
    """Disable ape plugin during tests."""
    # Unregister ape pytest plugin to avoid network connection issues
    config.pluginmanager.set_blocked("ape_test")


class FakeClock:
    """Manually advanced clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRPC:
    """
    In-memory JSON-RPC node answering ``eth_getBalance`` and ERC20 ``eth_call``.

    Contracts and wallets in ``failing`` always error; ``transient_failures``
    fails that many requests of any kind first.

    """

    def __init__(self) -> None:
        self.native: dict[str, int] = {}
        self.calls: dict[tuple[str, str], str] = {}
        self.failing: set[str] = set()
        self.requests: list[tuple[str, Any]] = []
        self.transient_failures = 0
        self.connects = 0

    def set_native(self, address: str, wei: int) -> None:
        self.native[address.lower()] = wei

    def add_erc20(self, contract: str, symbol: str, name: str, decimals: int) -> None:
        self.calls[(contract.lower(), erc20.SYMBOL)] = "0x" + encode(["string"], [symbol]).hex()
        self.calls[(contract.lower(), erc20.NAME)] = "0x" + encode(["string"], [name]).hex()
        self.calls[(contract.lower(), erc20.DECIMALS)] = "0x" + encode(["uint8"], [decimals]).hex()

    def set_balance(self, contract: str, owner: str, raw: int) -> None:
        data = erc20.balance_of_call(contract, owner)["data"]
        self.calls[(contract.lower(), data)] = "0x" + encode(["uint256"], [raw]).hex()

    def connect(self) -> None:
        self.connects += 1

    def make_request(self, method: str, params: list[Any]) -> Any:
        self.requests.append((method, params))
        if self.transient_failures:
            self.transient_failures -= 1
            raise ConnectionError("connection reset")
        if method == "eth_getBalance":
            if params[0].lower() in self.failing:
                raise ConnectionError("node unavailable")
            return hex(self.native.get(params[0].lower(), 0))
        if method == "eth_call":
            call = params[0]
            if call["to"].lower() in self.failing:
                raise ConnectionError("node unavailable")
            return self.calls.get((call["to"].lower(), call["data"]), "0x")
        raise NotImplementedError(method)


class StaticPriceOracle:
    """Price oracle answering from a fixed USD price table keyed by symbol."""

    def __init__(self, prices: dict[str, str] | None = None, rates: dict[str, str] | None = None) -> None:
        self.prices = {k: Decimal(v) for k, v in (prices or {}).items()}
        self.rates = {k: Decimal(v) for k, v in (rates or {"usd": "1"}).items()}
        self.closed = False

    def refresh_token_prices(self, tokens: list[Token]) -> list[Token]:
        for token in tokens:
            token.price_usd = self.prices.get(token.symbol, Decimal("0"))
        return tokens

    def usd_to(self, currency: str) -> Decimal:
        return self.rates.get(currency.lower(), Decimal("0"))

    def close(self) -> None:
        self.closed = True


class FakeChainProvider(BaseChainProvider):
    """
    Chain provider returning canned balances and positions.

    ``fail`` raises a ``ChainError`` from every query; ``delay`` blocks each
    query until ``release`` is set or the delay elapses.

    """

    def __init__(
        self,
        chain: Chain,
        balances: list[TokenBalance] | None = None,
        positions: list[YieldPosition] | None = None,
        fail: bool = False,
        delay: float = 0.0,
    ) -> None:
        super().__init__(chain, RateLimiter(sleep=lambda s: None), StaticPriceOracle(), MemoryCache())
        self.balances = balances or []
        self.positions = positions or []
        self.fail = fail
        self.delay = delay
        self.release = threading.Event()
        self.balance_calls = 0
        self.position_calls = 0
        self.closed = False

    def _maybe_fail(self, operation: str, address: str) -> None:
        if self.delay:
            self.release.wait(self.delay)
        if self.fail:
            raise ChainError(
                "upstream down",
                chain=self.chain.id,
                resource=self.rpc_resource,
                operation=operation,
                wallet_address=address,
            )

    def is_valid_address(self, address: str) -> bool:
        return address.startswith("0x") and len(address) == 42

    def canonical_address(self, address: str) -> str:
        return address.lower()

    def native_balance(self, address: str) -> Decimal:
        return Decimal("0")

    def token_balance(self, address: str, contract_address: str) -> Decimal:
        return Decimal("0")

    def token_info(self, contract_address: str) -> Token:
        raise NotImplementedError

    def all_token_balances(self, address: str) -> list[TokenBalance]:
        self.balance_calls += 1
        self._maybe_fail("all_token_balances", address)
        return [b.model_copy(deep=True) for b in self.balances]

    def yield_positions(self, address: str) -> list[YieldPosition]:
        self.position_calls += 1
        self._maybe_fail("yield_positions", address)
        return [p.model_copy(deep=True) for p in self.positions]

    def supported_yield_protocols(self) -> list[YieldProtocol]:
        return list({p.protocol.id: p.protocol for p in self.positions}.values())

    def close(self) -> None:
        self.closed = True


def make_chain(chain_id: str = "ethereum", name: str = "Ethereum", symbol: str = "ETH", numeric_id: int = 1) -> Chain:
    return Chain(
        id=chain_id,
        name=name,
        chain_id=numeric_id,
        native_symbol=symbol,
        native_name=symbol,
        average_block_time=Decimal("12"),
    )


def make_balance(chain: Chain, symbol: str, amount: str, price: str = "1", address: str | None = None) -> TokenBalance:
    token = Token(
        symbol=symbol,
        name=symbol,
        contract_address=address,
        chain=chain,
        decimals=18,
        price_usd=Decimal(price),
    )
    return TokenBalance(token=token, wallet_address=WALLET, balance=Decimal(amount))


def make_position(
    chain: Chain,
    value_usd: str,
    apy: str,
    protocol_id: str = "aave_v3",
    category: ProtocolCategory = ProtocolCategory.LENDING,
) -> YieldPosition:
    protocol = YieldProtocol(id=protocol_id, name=protocol_id.title(), chain=chain, category=category)
    return YieldPosition(
        id=f"{chain.id}:{protocol_id}",
        wallet_address=WALLET,
        protocol=protocol,
        pool_name="USDC Lending",
        deposited_tokens=[make_balance(chain, "USDC", value_usd, "1", USDC)],
        apy=Decimal(apy),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return MemoryCache(default_ttl=60, clock=clock)


@pytest.fixture
def fast_limiter():
    """Rate limiter that never actually sleeps."""
    return RateLimiter(sleep=lambda s: None)


@pytest.fixture
def ethereum():
    return make_chain()


@pytest.fixture
def polygon():
    return make_chain("polygon", "Polygon", "POL", 137)


@pytest.fixture
def arbitrum():
    return make_chain("arbitrum", "Arbitrum One", "ETH", 42161)


@pytest.fixture
def fake_rpc():
    return FakeRPC()


@pytest.fixture
def restore_root_logger():
    """Undo handlers and level installed by configure_logging."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
