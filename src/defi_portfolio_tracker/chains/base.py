"""Base chain provider with rate-limited, error-wrapped upstream calls."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from decimal import Decimal
from typing import TypeVar

from defi_portfolio_tracker.cache.base import BaseCache
from defi_portfolio_tracker.core.models import Chain, Token, TokenBalance, YieldPosition, YieldProtocol
from defi_portfolio_tracker.data.loader import YieldMarket
from defi_portfolio_tracker.errors import ChainError, InvalidAddressError
from defi_portfolio_tracker.pricing.coingecko import CoinGeckoPriceOracle
from defi_portfolio_tracker.rpc.rate_limiter import RateLimiter

T = TypeVar("T")


class BaseChainProvider(ABC):
    """
    Abstract base class for chain providers.

    One instance serves one chain. Every network-bound call goes through the
    shared rate limiter under the provider's resource names, and every
    upstream failure surfaces as ``ChainError``.

    Parameters
    ----------
    chain : Chain
        Chain served by this provider
    rate_limiter : RateLimiter
        Shared rate limiter
    price_oracle : CoinGeckoPriceOracle
        Oracle used to price returned balances
    cache : BaseCache
        Shared cache for token metadata

    """

    def __init__(
        self,
        chain: Chain,
        rate_limiter: RateLimiter,
        price_oracle: CoinGeckoPriceOracle,
        cache: BaseCache,
    ) -> None:
        self.chain = chain
        self.rate_limiter = rate_limiter
        self.price_oracle = price_oracle
        self.cache = cache

    @property
    def chain_id(self) -> str:
        return self.chain.id

    @property
    def rpc_resource(self) -> str:
        return f"{self.chain.id}-rpc"

    @abstractmethod
    def is_valid_address(self, address: str) -> bool:
        """Whether ``address`` has this chain's address shape. Never touches the network."""
        ...

    def require_valid_address(self, address: str) -> str:
        """
        Validate an address before any network call.

        Raises
        ------
        InvalidAddressError
            If the address is malformed for this chain

        """
        if not self.is_valid_address(address):
            raise InvalidAddressError(address, self.chain.id)
        return address

    def canonical_address(self, address: str) -> str:
        """One spelling per account, used to key cached wallet data."""
        return address

    @abstractmethod
    def native_balance(self, address: str) -> Decimal:
        """Native currency held by ``address``, in token units."""
        ...

    @abstractmethod
    def token_balance(self, address: str, contract_address: str) -> Decimal:
        """Balance of one token contract held by ``address``, in token units."""
        ...

    @abstractmethod
    def token_info(self, contract_address: str) -> Token:
        """Metadata of a token contract."""
        ...

    @abstractmethod
    def all_token_balances(self, address: str) -> list[TokenBalance]:
        """Native and token balances of ``address``, priced in USD."""
        ...

    @abstractmethod
    def yield_positions(self, address: str) -> list[YieldPosition]:
        """Yield positions held by ``address`` on this chain."""
        ...

    def yield_market(self, pool_address: str) -> YieldMarket | None:
        """Configured yield market whose pool or receipt token is ``pool_address``, if any."""
        return None

    @abstractmethod
    def supported_yield_protocols(self) -> list[YieldProtocol]:
        """Yield protocols deployed on this chain."""
        ...

    def _call(
        self,
        resource: str,
        operation: str,
        fn: Callable[[], T],
        *,
        wallet_address: str | None = None,
        contract_address: str | None = None,
        rate_limited: bool = True,
    ) -> T:
        """
        Run ``fn`` through the rate limiter for ``resource``.

        Parameters
        ----------
        resource : str
            Rate-limited resource name
        operation : str
            Operation name recorded on failure
        fn : Callable[[], T]
            Upstream call
        wallet_address : str | None
            Wallet context for errors
        contract_address : str | None
            Contract context for errors
        rate_limited : bool
            False when ``fn`` takes its own rate-limiter slot (explorer client)

        Returns
        -------
        T
            Result of ``fn``

        Raises
        ------
        ChainError
            If ``fn`` fails for any reason other than validation

        """
        try:
            return self.rate_limiter.execute(resource, fn) if rate_limited else fn()
        except (InvalidAddressError, ChainError):
            raise
        except Exception as e:
            msg = f"{self.chain.name} {operation} failed: {e}"
            raise ChainError(
                msg,
                chain=self.chain.id,
                resource=resource,
                operation=operation,
                wallet_address=wallet_address,
                contract_address=contract_address,
            ) from e

    def close(self) -> None:
        """Release network resources held by the provider."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(chain={self.chain.id!r})"
