"""Chain providers: one per supported blockchain."""

from defi_portfolio_tracker.chains.base import BaseChainProvider
from defi_portfolio_tracker.chains.evm import EvmChainProvider
from defi_portfolio_tracker.chains.explorer import DiscoveredToken, EtherscanClient

__all__ = [
    "BaseChainProvider",
    "DiscoveredToken",
    "EtherscanClient",
    "EvmChainProvider",
]
