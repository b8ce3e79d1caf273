"""Immutable registry of chain providers."""

from collections.abc import Iterable, Iterator, Mapping

from defi_portfolio_tracker.chains.base import BaseChainProvider


class ChainProviderRegistry(Mapping[str, BaseChainProvider]):
    """
    Chain providers keyed by chain id.

    Built once at startup and shared by the yield and portfolio aggregators.
    Read-only: there is no way to add or replace a provider after construction.

    Parameters
    ----------
    providers : Iterable[BaseChainProvider]
        Providers, at most one per chain

    Raises
    ------
    ValueError
        If two providers serve the same chain

    Examples
    --------
    >>> registry = ChainProviderRegistry([ethereum_provider, polygon_provider])
    >>> registry["polygon"] is polygon_provider
    True

    """

    def __init__(self, providers: Iterable[BaseChainProvider] = ()) -> None:
        self._providers: dict[str, BaseChainProvider] = {}
        for provider in providers:
            if provider.chain_id in self._providers:
                msg = f"Duplicate chain provider for {provider.chain_id}"
                raise ValueError(msg)
            self._providers[provider.chain_id] = provider

    def __getitem__(self, chain_id: str) -> BaseChainProvider:
        return self._providers[chain_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    def providers_for(self, address: str) -> list[BaseChainProvider]:
        """Providers for which ``address`` is well-formed."""
        return [p for p in self._providers.values() if p.is_valid_address(address)]

    def __repr__(self) -> str:
        return f"ChainProviderRegistry({list(self._providers)})"
