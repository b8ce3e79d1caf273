"""Yield position aggregation and yield economics."""

import logging
from collections.abc import Mapping
from decimal import Decimal

from defi_portfolio_tracker.chains.base import BaseChainProvider
from defi_portfolio_tracker.core.models import DEFAULT_APY, Chain, YieldPosition, YieldProtocol
from defi_portfolio_tracker.errors import ChainError

logger = logging.getLogger(__name__)


class YieldAggregator:
    """
    Yield protocols, positions, and APY across chain providers.

    APY values are category-level approximations (``DEFAULT_APY``) unless a
    market configures its own rate; they are not read from chain.

    Parameters
    ----------
    providers : Mapping[str, BaseChainProvider]
        Chain providers keyed by chain id

    """

    def __init__(self, providers: Mapping[str, BaseChainProvider]) -> None:
        self.providers = providers

    def _provider(self, chain: Chain | str) -> BaseChainProvider | None:
        chain_id = chain.id if isinstance(chain, Chain) else chain
        return self.providers.get(chain_id)

    def protocols_for(self, chain: Chain | str) -> list[YieldProtocol]:
        """Yield protocols on a chain; empty when no provider serves it."""
        provider = self._provider(chain)
        return provider.supported_yield_protocols() if provider else []

    def positions_for(
        self,
        address: str,
        chain: Chain | str,
        *,
        tolerate_errors: bool = True,
    ) -> list[YieldPosition]:
        """
        Yield positions of a wallet on one chain.

        Parameters
        ----------
        address : str
            Wallet address
        chain : Chain | str
            Chain or chain id
        tolerate_errors : bool
            When True, a provider failure is logged and yields no positions

        Returns
        -------
        list[YieldPosition]
            Positions; empty when no provider serves the chain

        Raises
        ------
        InvalidAddressError
            If the address is malformed for the chain
        ChainError
            On provider failure, when ``tolerate_errors`` is False

        """
        provider = self._provider(chain)
        if provider is None:
            return []

        try:
            return provider.yield_positions(address)
        except ChainError as e:
            if not tolerate_errors:
                raise
            logger.warning("Yield positions unavailable on %s: %s", provider.chain_id, e)
            return []

    def current_apy(self, pool_address: str | None, protocol: YieldProtocol) -> Decimal:
        """
        APY of a pool, in percent.

        A rate configured for the pool's market wins; otherwise the
        protocol category default applies.

        Parameters
        ----------
        pool_address : str | None
            Pool or receipt-token contract
        protocol : YieldProtocol
            Protocol of the pool

        Returns
        -------
        Decimal
            Approximate APY in percent

        """
        provider = self._provider(protocol.chain)
        if provider is not None and pool_address:
            market = provider.yield_market(pool_address)
            if market is not None and market.apy is not None:
                return market.apy
        return DEFAULT_APY[protocol.category]

    def estimated_daily_yield(self, position: YieldPosition) -> Decimal:
        return position.daily_yield_usd

    def estimated_annual_yield(self, position: YieldPosition) -> Decimal:
        return position.annual_yield_usd
