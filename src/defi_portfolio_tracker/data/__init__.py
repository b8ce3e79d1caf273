"""Packaged chain data: chain descriptors, yield protocols, and yield markets."""

from defi_portfolio_tracker.data.loader import (
    YieldMarket,
    get_all_supported_chains,
    get_chain,
    get_yield_markets,
    get_yield_protocols,
    load_chain_data,
)

__all__ = [
    "YieldMarket",
    "get_all_supported_chains",
    "get_chain",
    "get_yield_markets",
    "get_yield_protocols",
    "load_chain_data",
]
