"""Price oracle adapters for token USD value enrichment."""

from defi_portfolio_tracker.pricing.coingecko import CoinGeckoPriceOracle, CoinListItem, Quote

__all__ = [
    "CoinGeckoPriceOracle",
    "CoinListItem",
    "Quote",
]
