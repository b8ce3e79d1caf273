"""Chain provider for EVM chains over JSON-RPC and an Etherscan-compatible explorer."""

import logging
import re
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any, Protocol

from defi_portfolio_tracker.cache.base import BaseCache
from defi_portfolio_tracker.chains.base import BaseChainProvider
from defi_portfolio_tracker.chains.explorer import DiscoveredToken, EtherscanClient
from defi_portfolio_tracker.core.models import (
    DEFAULT_APY,
    Chain,
    Token,
    TokenBalance,
    YieldPosition,
    YieldProtocol,
)
from defi_portfolio_tracker.data.loader import YieldMarket, get_yield_markets, get_yield_protocols
from defi_portfolio_tracker.errors import ChainError
from defi_portfolio_tracker.pricing.coingecko import CoinGeckoPriceOracle
from defi_portfolio_tracker.rpc import erc20
from defi_portfolio_tracker.rpc.rate_limiter import RateLimiter
from defi_portfolio_tracker.rpc.retry import RetryConfig, is_transient_rpc_error, with_retry

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"0x[0-9a-fA-F]{40}")


class RPCProvider(Protocol):
    """Anything that can send a raw JSON-RPC request (``ApeRPCProvider`` in production)."""

    def connect(self) -> None: ...

    def make_request(self, method: str, params: list[Any]) -> Any: ...


class EvmChainProvider(BaseChainProvider):
    """
    Balances, token metadata, and yield positions for one EVM chain.

    Balances come from ``eth_getBalance`` and ERC20 ``balanceOf`` calls; the
    tokens a wallet may hold are discovered from its explorer transfer
    history. A wallet holding a receipt token of a configured yield market
    (aToken, stETH, Comet share) has a position in that market.

    Parameters
    ----------
    chain : Chain
        Chain served by this provider
    rate_limiter : RateLimiter
        Shared rate limiter
    price_oracle : CoinGeckoPriceOracle
        Oracle used to price balances and deposits
    cache : BaseCache
        Shared cache for token metadata
    rpc_provider : RPCProvider
        JSON-RPC transport
    explorer : EtherscanClient | None
        Explorer for token discovery; without it only the native balance is reported
    yield_markets : list[YieldMarket] | None
        Receipt-token markets (default: packaged chain data)
    yield_protocols : list[YieldProtocol] | None
        Protocols on this chain (default: packaged chain data)
    token_info_ttl : float
        TTL in seconds for cached token metadata
    retry_config : RetryConfig | None
        Retry policy for transient node failures; each attempt takes its own rate-limiter slot
    sleep : Callable[[float], None]
        Sleep between retries

    """

    def __init__(
        self,
        chain: Chain,
        rate_limiter: RateLimiter,
        price_oracle: CoinGeckoPriceOracle,
        cache: BaseCache,
        rpc_provider: RPCProvider,
        explorer: EtherscanClient | None = None,
        yield_markets: list[YieldMarket] | None = None,
        yield_protocols: list[YieldProtocol] | None = None,
        token_info_ttl: float = 24 * 3600,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(chain, rate_limiter, price_oracle, cache)
        self.rpc_provider = rpc_provider
        self.explorer = explorer
        self.yield_markets = yield_markets if yield_markets is not None else get_yield_markets(chain.id)
        self.yield_protocols = yield_protocols if yield_protocols is not None else get_yield_protocols(chain.id)
        self.token_info_ttl = token_info_ttl
        self._receipt_tokens = {m.receipt_token.lower() for m in self.yield_markets}
        self._request_with_retry = with_retry(
            retry_config or RetryConfig(), should_retry=is_transient_rpc_error, sleep=sleep
        )(self._rate_limited_request)

    def is_valid_address(self, address: str) -> bool:
        return isinstance(address, str) and ADDRESS_PATTERN.fullmatch(address) is not None

    def canonical_address(self, address: str) -> str:
        return address.lower()

    def _rate_limited_request(self, method: str, params: list[Any]) -> Any:
        return self.rate_limiter.execute(self.rpc_resource, lambda: self.rpc_provider.make_request(method, params))

    def _rpc(
        self,
        operation: str,
        method: str,
        params: list[Any],
        decode: Any,
        wallet_address: str | None = None,
        contract_address: str | None = None,
    ) -> Any:
        """Send a JSON-RPC request, retrying transient failures outside the rate-limiter slot."""
        self._call(
            self.rpc_resource,
            "connect",
            self.rpc_provider.connect,
            wallet_address=wallet_address,
            contract_address=contract_address,
            rate_limited=False,
        )
        return self._call(
            self.rpc_resource,
            operation,
            lambda: decode(self._request_with_retry(method, params)),
            wallet_address=wallet_address,
            contract_address=contract_address,
            rate_limited=False,
        )

    def native_balance(self, address: str) -> Decimal:
        """
        Native currency balance.

        Parameters
        ----------
        address : str
            Wallet address

        Returns
        -------
        Decimal
            Balance in native units (e.g., ETH, not wei)

        Raises
        ------
        InvalidAddressError
            If the address is malformed
        ChainError
            On RPC failure

        """
        self.require_valid_address(address)
        raw = self._rpc(
            "native_balance",
            "eth_getBalance",
            [address, "latest"],
            erc20.to_int,
            wallet_address=address,
        )
        return erc20.scale(raw, self.chain.native_decimals)

    def token_balance(self, address: str, contract_address: str) -> Decimal:
        """
        ERC20 balance of a wallet.

        Parameters
        ----------
        address : str
            Wallet address
        contract_address : str
            Token contract

        Returns
        -------
        Decimal
            Balance in token units

        Raises
        ------
        InvalidAddressError
            If either address is malformed
        ChainError
            On RPC failure

        """
        self.require_valid_address(address)
        token = self.token_info(contract_address)
        raw = self._rpc(
            "token_balance",
            "eth_call",
            [erc20.balance_of_call(contract_address, address), "latest"],
            erc20.to_int,
            wallet_address=address,
            contract_address=contract_address,
        )
        return erc20.scale(raw, token.decimals)

    def token_info(self, contract_address: str) -> Token:
        """
        ERC20 metadata (symbol, name, decimals), cached per contract.

        Parameters
        ----------
        contract_address : str
            Token contract

        Returns
        -------
        Token
            Token without price data

        Raises
        ------
        InvalidAddressError
            If the address is malformed
        ChainError
            On RPC failure

        """
        self.require_valid_address(contract_address)

        def fetch() -> Token:
            def read(selector: str, decode: Any) -> Any:
                return self._rpc(
                    "token_info",
                    "eth_call",
                    [erc20.call(contract_address, selector), "latest"],
                    decode,
                    contract_address=contract_address,
                )

            return Token(
                symbol=read(erc20.SYMBOL, erc20.decode_string),
                name=read(erc20.NAME, erc20.decode_string),
                contract_address=contract_address,
                chain=self.chain,
                decimals=read(erc20.DECIMALS, erc20.to_int),
            )

        key = f"tokenInfo:{self.chain.id}:{contract_address.lower()}"
        return self.cache.get_or_set(key, fetch, self.token_info_ttl, value_type=Token)

    def discover_tokens(self, address: str) -> list[DiscoveredToken]:
        """
        Token contracts from the wallet's explorer transfer history.

        Returns
        -------
        list[DiscoveredToken]
            Contracts in first-seen order, empty without an explorer

        """
        self.require_valid_address(address)
        if self.explorer is None:
            return []

        explorer = self.explorer
        return self._call(
            explorer.resource,
            "discover_tokens",
            lambda: explorer.token_contracts(address),
            wallet_address=address,
            rate_limited=False,
        )

    def all_token_balances(self, address: str) -> list[TokenBalance]:
        """
        Native balance plus every discovered token with a non-zero balance.

        Receipt tokens of yield markets are left out; they are reported as
        yield positions. A token whose balance cannot be read is skipped.

        Parameters
        ----------
        address : str
            Wallet address

        Returns
        -------
        list[TokenBalance]
            Balances with USD prices filled in

        Raises
        ------
        InvalidAddressError
            If the address is malformed
        ChainError
            If the native balance or token discovery fails

        """
        self.require_valid_address(address)
        native = self.native_balance(address)
        balances = [TokenBalance(token=self.chain.native_token(), wallet_address=address, balance=native)]

        for discovered in self.discover_tokens(address):
            contract = discovered.contract_address
            if contract.lower() in self._receipt_tokens or not self.is_valid_address(contract):
                continue
            try:
                token = self.token_info(contract)
                amount = self.token_balance(address, contract)
            except ChainError as e:
                logger.warning("Skipping token %s on %s: %s", contract, self.chain.id, e)
                continue
            if amount > 0:
                balances.append(TokenBalance(token=token, wallet_address=address, balance=amount))

        self.price_oracle.refresh_token_prices([b.token for b in balances])
        return balances

    def yield_positions(self, address: str) -> list[YieldPosition]:
        """
        Positions in the configured yield markets.

        Parameters
        ----------
        address : str
            Wallet address

        Returns
        -------
        list[YieldPosition]
            One position per market with a non-zero receipt balance

        Raises
        ------
        InvalidAddressError
            If the address is malformed
        ChainError
            On RPC failure

        """
        self.require_valid_address(address)
        positions = []
        for market in self.yield_markets:
            raw = self._rpc(
                "yield_positions",
                "eth_call",
                [erc20.balance_of_call(market.receipt_token, address), "latest"],
                erc20.to_int,
                wallet_address=address,
                contract_address=market.receipt_token,
            )
            if raw == 0:
                continue

            deposited = erc20.scale(raw, market.receipt_decimals) * market.underlying_ratio
            positions.append(
                YieldPosition(
                    id=f"{self.chain.id}:{market.protocol.id}:{market.receipt_token.lower()}:{address.lower()}",
                    wallet_address=address,
                    protocol=market.protocol,
                    pool_name=market.pool_name,
                    pool_address=market.receipt_token,
                    deposited_tokens=[
                        TokenBalance(token=market.underlying.model_copy(), wallet_address=address, balance=deposited)
                    ],
                    apy=market.apy if market.apy is not None else DEFAULT_APY[market.protocol.category],
                )
            )

        self.price_oracle.refresh_token_prices([t.token for p in positions for t in p.deposited_tokens])
        return positions

    def yield_market(self, pool_address: str) -> YieldMarket | None:
        for market in self.yield_markets:
            if market.receipt_token.lower() == pool_address.lower():
                return market
        return None

    def supported_yield_protocols(self) -> list[YieldProtocol]:
        return list(self.yield_protocols)

    def close(self) -> None:
        """Close the explorer client and disconnect the RPC provider."""
        if self.explorer is not None:
            self.explorer.close()
        disconnect = getattr(self.rpc_provider, "disconnect", None)
        if disconnect is not None:
            disconnect()
