"""Portfolio aggregator: concurrent fan-out to chain providers behind the cache."""

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from decimal import Decimal
from typing import Any

from defi_portfolio_tracker.cache.base import BaseCache
from defi_portfolio_tracker.chains.base import BaseChainProvider
from defi_portfolio_tracker.core.models import (
    Portfolio,
    SourceError,
    TokenBalance,
    YieldPosition,
    merge_token_balances,
)
from defi_portfolio_tracker.core.yields import YieldAggregator
from defi_portfolio_tracker.errors import InvalidAddressError, ProviderError
from defi_portfolio_tracker.pricing.coingecko import CoinGeckoPriceOracle

logger = logging.getLogger(__name__)

TOKEN_BALANCES = "token_balances"
YIELD_POSITIONS = "yield_positions"


class _Collected:
    """Results of one fan-out."""

    def __init__(self) -> None:
        self.balances: list[TokenBalance] = []
        self.positions: list[YieldPosition] = []
        self.errors: list[SourceError] = []


class PortfolioAggregator:
    """
    Assembles a wallet's portfolio from every registered chain provider.

    Each public read is cache-aside under a wallet-scoped key. On a miss the
    providers are queried concurrently; a provider that fails or misses the
    deadline contributes nothing and is recorded in ``Portfolio.errors``
    instead of failing the whole request.

    Parameters
    ----------
    providers : Mapping[str, BaseChainProvider]
        Chain providers keyed by chain id
    yield_aggregator : YieldAggregator
        Yield position source
    price_oracle : CoinGeckoPriceOracle
        Used for currency conversion in ``total_value``
    cache : BaseCache
        Shared cache
    ttl : float
        TTL in seconds of wallet-scoped entries
    timeout : float
        Overall deadline in seconds for one fan-out
    max_workers : int
        Thread pool size for one fan-out
    currencies : Iterable[str]
        Currencies whose ``total_value`` entries ``refresh`` always invalidates

    """

    def __init__(
        self,
        providers: Mapping[str, BaseChainProvider],
        yield_aggregator: YieldAggregator,
        price_oracle: CoinGeckoPriceOracle,
        cache: BaseCache,
        ttl: float = 300,
        timeout: float = 30.0,
        max_workers: int = 8,
        currencies: Iterable[str] = ("usd",),
    ) -> None:
        self.providers = providers
        self.yield_aggregator = yield_aggregator
        self.price_oracle = price_oracle
        self.cache = cache
        self.ttl = ttl
        self.timeout = timeout
        self.max_workers = max_workers
        self.currencies = [c.lower() for c in currencies]
        self._index_lock = threading.Lock()

    def _providers_for(self, address: str) -> tuple[list[BaseChainProvider], str]:
        """
        Providers for which the address is well-formed, and the address as used in cache keys.

        Raises
        ------
        InvalidAddressError
            If providers are registered but none accepts the address

        """
        providers = [p for p in self.providers.values() if p.is_valid_address(address)]
        if self.providers and not providers:
            raise InvalidAddressError(address)
        wallet_key = providers[0].canonical_address(address) if providers else address
        return providers, wallet_key

    def portfolio(self, address: str) -> Portfolio:
        """
        Full portfolio of a wallet.

        Parameters
        ----------
        address : str
            Wallet address

        Returns
        -------
        Portfolio
            Merged balances and positions from every provider that answered

        Raises
        ------
        InvalidAddressError
            If no provider accepts the address

        """
        providers, wallet_key = self._providers_for(address)

        def build() -> Portfolio:
            collected = self._collect(address, providers, (TOKEN_BALANCES, YIELD_POSITIONS))
            return Portfolio(
                wallet_address=address,
                token_balances=merge_token_balances(collected.balances),
                yield_positions=collected.positions,
                errors=collected.errors,
            )

        return self.cache.get_or_set(f"portfolio:{wallet_key}", build, self.ttl, value_type=Portfolio)

    def token_balances(self, address: str) -> list[TokenBalance]:
        """Merged token balances of a wallet across chains."""
        providers, wallet_key = self._providers_for(address)

        def build() -> list[TokenBalance]:
            return merge_token_balances(self._collect(address, providers, (TOKEN_BALANCES,)).balances)

        return self.cache.get_or_set(f"tokenBalances:{wallet_key}", build, self.ttl, value_type=list[TokenBalance])

    def yield_positions(self, address: str) -> list[YieldPosition]:
        """Yield positions of a wallet across chains."""
        providers, wallet_key = self._providers_for(address)

        def build() -> list[YieldPosition]:
            return self._collect(address, providers, (YIELD_POSITIONS,)).positions

        return self.cache.get_or_set(f"yieldPositions:{wallet_key}", build, self.ttl, value_type=list[YieldPosition])

    def total_value(self, address: str, currency: str = "usd") -> Decimal:
        """
        Total portfolio value in a currency.

        Every currency valued for a wallet is recorded next to its entries so
        that ``refresh`` can drop them all.

        Parameters
        ----------
        address : str
            Wallet address
        currency : str
            Target currency (e.g., 'usd', 'eur')

        Returns
        -------
        Decimal
            Value in ``currency``; zero when the exchange rate is unknown

        """
        currency = currency.lower()
        _, wallet_key = self._providers_for(address)
        rate = self.price_oracle.usd_to(currency)
        if rate == 0:
            logger.warning("No exchange rate for %s, total value unknown", currency)
            return Decimal("0")

        def compute() -> Decimal:
            self._track_value_currency(wallet_key, currency)
            return self.portfolio(address).total_value_usd * rate

        return self.cache.get_or_set(
            f"portfolioValue:{wallet_key}:{currency}",
            compute,
            self.ttl,
            value_type=Decimal,
        )

    def _track_value_currency(self, wallet_key: str, currency: str) -> None:
        """Record a currency valued for a wallet; the record outlives the value computed with it."""
        index_key = f"portfolioValueCurrencies:{wallet_key}"
        with self._index_lock:
            currencies = self.cache.get(index_key, list[str]) or []
            if currency not in currencies:
                currencies.append(currency)
            self.cache.set(index_key, currencies, self.ttl + self.timeout, value_type=list[str])

    def refresh(self, address: str) -> Portfolio:
        """
        Drop every cached entry of a wallet and rebuild its portfolio.

        Value entries are dropped for the configured currencies and for every
        currency valued since the wallet was last refreshed. A computation
        already in flight for the wallet is detached: its result is not
        stored, so the rebuild always queries the providers.

        """
        _, wallet_key = self._providers_for(address)
        index_key = f"portfolioValueCurrencies:{wallet_key}"
        with self._index_lock:
            valued = self.cache.get(index_key, list[str]) or []
            currencies = dict.fromkeys([*self.currencies, *valued])
            keys = [f"portfolio:{wallet_key}", f"tokenBalances:{wallet_key}", f"yieldPositions:{wallet_key}"]
            keys += [f"portfolioValue:{wallet_key}:{currency}" for currency in currencies]
            keys.append(index_key)
            for key in keys:
                self.cache.remove(key)

        logger.info("Refreshing portfolio of %s", address)
        return self.portfolio(address)

    def close(self) -> None:
        """Close every chain provider, the price oracle, and the cache backend."""
        for provider in self.providers.values():
            provider.close()
        self.price_oracle.close()
        self.cache.close()

    def __enter__(self) -> "PortfolioAggregator":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()

    def _collect(
        self,
        address: str,
        providers: list[BaseChainProvider],
        sources: tuple[str, ...],
    ) -> _Collected:
        """
        Query the given sources of every provider concurrently.

        Waits for all tasks up to ``timeout``; tasks still pending at the
        deadline are recorded as timeouts and abandoned.

        """
        collected = _Collected()
        tasks: list[tuple[str, BaseChainProvider, Callable[[], list[Any]]]] = []
        for provider in providers:
            if TOKEN_BALANCES in sources:
                tasks.append((TOKEN_BALANCES, provider, lambda p=provider: p.all_token_balances(address)))
            if YIELD_POSITIONS in sources:
                tasks.append(
                    (
                        YIELD_POSITIONS,
                        provider,
                        lambda p=provider: self.yield_aggregator.positions_for(address, p.chain, tolerate_errors=False),
                    )
                )
        if not tasks:
            return collected

        executor = ThreadPoolExecutor(max_workers=min(len(tasks), self.max_workers))
        try:
            futures: dict[Future, tuple[str, BaseChainProvider]] = {
                executor.submit(fn): (source, provider) for source, provider, fn in tasks
            }
            done, pending = wait(futures, timeout=self.timeout)

            for future in futures:
                source, provider = futures[future]
                if future in pending:
                    future.cancel()
                    logger.warning("%s on %s timed out after %.1fs", source, provider.chain_id, self.timeout)
                    collected.errors.append(
                        SourceError(
                            source=source,
                            chain=provider.chain_id,
                            kind="timeout",
                            message=f"No result within {self.timeout}s",
                        )
                    )
                    continue

                try:
                    result = future.result()
                except ProviderError as e:
                    logger.warning("%s on %s failed: %s", source, provider.chain_id, e)
                    collected.errors.append(SourceError(source=source, chain=provider.chain_id, message=str(e)))
                    continue
                except Exception as e:
                    logger.warning("%s on %s failed unexpectedly", source, provider.chain_id, exc_info=True)
                    collected.errors.append(SourceError(source=source, chain=provider.chain_id, message=repr(e)))
                    continue

                if source == TOKEN_BALANCES:
                    collected.balances.extend(result)
                else:
                    collected.positions.extend(result)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return collected
