"""Core data models.

The aggregators live in ``defi_portfolio_tracker.core.aggregator`` and
``defi_portfolio_tracker.core.yields``; they depend on the chain providers,
which themselves build on these models.
"""

from defi_portfolio_tracker.core.models import (
    DEFAULT_APY,
    Chain,
    Portfolio,
    ProtocolCategory,
    SourceError,
    Token,
    TokenBalance,
    YieldPosition,
    YieldProtocol,
    merge_token_balances,
)

__all__ = [
    "DEFAULT_APY",
    "Chain",
    "Portfolio",
    "ProtocolCategory",
    "SourceError",
    "Token",
    "TokenBalance",
    "YieldPosition",
    "YieldProtocol",
    "merge_token_balances",
]
