"""Wires settings into a ready-to-use portfolio aggregator."""

import logging
from collections.abc import Callable

from defi_portfolio_tracker.cache.base import BaseCache
from defi_portfolio_tracker.cache.factory import create_cache
from defi_portfolio_tracker.chains.evm import EvmChainProvider, RPCProvider
from defi_portfolio_tracker.chains.explorer import EtherscanClient
from defi_portfolio_tracker.config import Settings
from defi_portfolio_tracker.core.aggregator import PortfolioAggregator
from defi_portfolio_tracker.core.registry import ChainProviderRegistry
from defi_portfolio_tracker.core.yields import YieldAggregator
from defi_portfolio_tracker.data.loader import get_chain
from defi_portfolio_tracker.errors import ConfigurationError
from defi_portfolio_tracker.pricing.coingecko import CoinGeckoPriceOracle
from defi_portfolio_tracker.rpc.provider import ApeRPCProvider
from defi_portfolio_tracker.rpc.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Rate limiter with every configured resource limit applied."""
    limiter = RateLimiter()
    for resource, max_requests_per_second in settings.rate_limits.items():
        limiter.configure(resource, max_requests_per_second)
    return limiter


def build_portfolio_aggregator(
    settings: Settings,
    *,
    cache: BaseCache | None = None,
    rpc_factory: Callable[[str, str | None], RPCProvider] = ApeRPCProvider,
) -> PortfolioAggregator:
    """
    Build the aggregator and everything it depends on.

    The cache, rate limiter, and price oracle are created once and shared by
    every chain provider. RPC connections are opened lazily on first use.

    Parameters
    ----------
    settings : Settings
        Runtime configuration
    cache : BaseCache | None
        Cache to use instead of the configured backend
    rpc_factory : Callable[[str, str | None], RPCProvider]
        Builds the RPC transport from a chain id and ape network choice

    Returns
    -------
    PortfolioAggregator
        Aggregator over one provider per enabled chain

    Raises
    ------
    ConfigurationError
        If an enabled chain is not supported

    """
    cache = cache if cache is not None else create_cache(settings)
    rate_limiter = build_rate_limiter(settings)
    apis = settings.external_apis
    price_oracle = CoinGeckoPriceOracle(
        cache,
        rate_limiter,
        base_url=apis.coingecko_base_url,
        api_key=apis.coingecko_api_key,
        price_ttl=settings.cache.price_ttl,
        coin_list_ttl=settings.cache.coin_list_ttl,
        timeout=apis.http_timeout,
    )

    providers = []
    for chain_id in settings.chains.enabled:
        try:
            chain = get_chain(chain_id)
        except KeyError as e:
            msg = f"Unsupported chain in chains.enabled: {chain_id}"
            raise ConfigurationError(msg) from e

        explorer_settings = apis.explorers.get(chain_id)
        explorer = None
        if explorer_settings is not None:
            explorer = EtherscanClient(
                chain_id,
                rate_limiter,
                base_url=explorer_settings.base_url,
                api_key=explorer_settings.api_key,
                timeout=apis.http_timeout,
            )
        else:
            logger.warning("No explorer configured for %s, token discovery disabled", chain_id)

        providers.append(
            EvmChainProvider(
                chain,
                rate_limiter,
                price_oracle,
                cache,
                rpc_factory(chain_id, settings.chains.networks.get(chain_id)),
                explorer=explorer,
                token_info_ttl=settings.cache.coin_list_ttl,
            )
        )

    registry = ChainProviderRegistry(providers)
    logger.info("Serving chains: %s", ", ".join(registry) or "none")
    return PortfolioAggregator(
        registry,
        YieldAggregator(registry),
        price_oracle,
        cache,
        ttl=settings.cache.portfolio_ttl,
        timeout=settings.aggregation.timeout,
        max_workers=settings.aggregation.max_workers,
        currencies=settings.aggregation.currencies,
    )
