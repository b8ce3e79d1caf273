"""Tests for wiring settings into an aggregator."""

import pytest

from conftest import FakeRPC
from defi_portfolio_tracker.cache.memory import MemoryCache
from defi_portfolio_tracker.chains.evm import EvmChainProvider
from defi_portfolio_tracker.config import Settings
from defi_portfolio_tracker.core.bootstrap import build_portfolio_aggregator, build_rate_limiter
from defi_portfolio_tracker.errors import ConfigurationError


def _settings(**overrides) -> Settings:
    return Settings.model_validate(overrides)


def test_build_rate_limiter():
    """Test configured limits are applied per resource."""
    limiter = build_rate_limiter(_settings(rate_limits={"coingecko": 4, "ethereum-rpc": 10}))

    assert limiter.min_interval("coingecko") == 0.25
    assert limiter.min_interval("ethereum-rpc") == 0.1
    assert limiter.min_interval("polygon-rpc") == 0.5


def test_build_portfolio_aggregator():
    """Test one provider per enabled chain sharing cache, limiter, and oracle."""
    networks = []

    def rpc_factory(chain_id, network_choice):
        networks.append((chain_id, network_choice))
        return FakeRPC()

    cache = MemoryCache()
    settings = _settings(
        chains={"enabled": ["ethereum", "polygon"]},
        aggregation={"timeout": 5, "currencies": ["usd", "EUR"]},
    )

    aggregator = build_portfolio_aggregator(settings, cache=cache, rpc_factory=rpc_factory)

    assert list(aggregator.providers) == ["ethereum", "polygon"]
    assert networks == [("ethereum", "ethereum:mainnet"), ("polygon", "polygon:mainnet")]
    assert aggregator.cache is cache
    assert aggregator.timeout == 5
    assert aggregator.currencies == ["usd", "eur"]
    assert aggregator.yield_aggregator.providers is aggregator.providers

    ethereum, polygon = aggregator.providers.values()
    assert isinstance(ethereum, EvmChainProvider)
    assert ethereum.cache is cache
    assert ethereum.rate_limiter is polygon.rate_limiter
    assert ethereum.price_oracle is aggregator.price_oracle
    assert ethereum.explorer.resource == "ethereum-explorer"

    aggregator.close()


def test_chain_without_explorer():
    """Test a chain without explorer settings gets no token discovery."""
    settings = _settings(
        chains={"enabled": ["bsc"]},
        external_apis={"explorers": {}},
    )

    aggregator = build_portfolio_aggregator(settings, cache=MemoryCache(), rpc_factory=lambda c, n: FakeRPC())

    assert aggregator.providers["bsc"].explorer is None
    aggregator.close()


def test_unknown_chain():
    """Test enabling an unsupported chain is a configuration error."""
    settings = _settings(chains={"enabled": ["solana"]})

    with pytest.raises(ConfigurationError, match="solana"):
        build_portfolio_aggregator(settings, cache=MemoryCache(), rpc_factory=lambda c, n: FakeRPC())
