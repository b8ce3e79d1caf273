"""Etherscan-compatible block explorer client for token discovery."""

import logging
from typing import Any

import httpx
from pydantic import BaseModel

from defi_portfolio_tracker.errors import ProviderError
from defi_portfolio_tracker.rpc.rate_limiter import RateLimiter
from defi_portfolio_tracker.rpc.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)

NO_TRANSACTIONS = "No transactions found"


class DiscoveredToken(BaseModel):
    """Token contract seen in a wallet's transfer history."""

    contract_address: str
    symbol: str = ""
    name: str = ""
    decimals: int | None = None


class EtherscanClient:
    """
    Client for Etherscan-compatible explorer APIs (Etherscan, Polygonscan, BscScan, Arbiscan).

    Parameters
    ----------
    chain : str
        Chain id, used for the rate-limited resource name
    rate_limiter : RateLimiter
        Shared rate limiter
    base_url : str
        API endpoint (e.g., 'https://api.etherscan.io/api')
    api_key : str
        Explorer API key
    timeout : float
        Request timeout in seconds
    retry_config : RetryConfig | None
        Retry policy for transient HTTP failures
    client : httpx.Client | None
        Preconfigured HTTP client

    """

    def __init__(
        self,
        chain: str,
        rate_limiter: RateLimiter,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        retry_config: RetryConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.chain = chain
        self.rate_limiter = rate_limiter
        self.base_url = base_url
        self.api_key = api_key
        self.resource = f"{chain}-explorer"
        self.client = client or httpx.Client(timeout=timeout)
        self._get_with_retry = with_retry(retry_config or RetryConfig())(self._rate_limited_get)

    def _rate_limited_get(self, params: dict[str, Any]) -> httpx.Response:
        def request() -> httpx.Response:
            response = self.client.get(self.base_url, params=params)
            response.raise_for_status()
            return response

        return self.rate_limiter.execute(self.resource, request)

    def _query(self, params: dict[str, Any], operation: str, wallet_address: str | None = None) -> list[Any]:
        if self.api_key:
            params = {**params, "apikey": self.api_key}

        try:
            data = self._get_with_retry(params).json()
        except (httpx.HTTPError, ValueError) as e:
            msg = f"Explorer request failed: {e}"
            raise ProviderError(
                msg, resource=self.resource, operation=operation, wallet_address=wallet_address
            ) from e

        if str(data.get("status")) == "1":
            return data.get("result") or []
        if data.get("message") == NO_TRANSACTIONS:
            return []

        msg = f"Explorer error: {data.get('message')}: {data.get('result')}"
        raise ProviderError(msg, resource=self.resource, operation=operation, wallet_address=wallet_address)

    def token_transfers(self, address: str) -> list[dict[str, Any]]:
        """
        ERC20 transfer history of a wallet (``module=account&action=tokentx``).

        Parameters
        ----------
        address : str
            Wallet address

        Returns
        -------
        list[dict[str, Any]]
            Raw transfer records, oldest first

        Raises
        ------
        ProviderError
            On network failure or explorer-reported error

        """
        params = {
            "module": "account",
            "action": "tokentx",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "sort": "asc",
        }
        return self._query(params, "token_transfers", wallet_address=address)

    def token_contracts(self, address: str) -> list[DiscoveredToken]:
        """
        Distinct token contracts a wallet has ever transferred.

        Parameters
        ----------
        address : str
            Wallet address

        Returns
        -------
        list[DiscoveredToken]
            One entry per contract, in first-seen order

        """
        seen: dict[str, DiscoveredToken] = {}
        for transfer in self.token_transfers(address):
            contract = transfer.get("contractAddress")
            if not contract or contract.lower() in seen:
                continue
            decimals = transfer.get("tokenDecimal")
            seen[contract.lower()] = DiscoveredToken(
                contract_address=contract,
                symbol=transfer.get("tokenSymbol") or "",
                name=transfer.get("tokenName") or "",
                decimals=int(decimals) if str(decimals or "").isdigit() else None,
            )

        logger.debug("Discovered %d token contracts for %s on %s", len(seen), address, self.chain)
        return list(seen.values())

    def close(self) -> None:
        """Close HTTP client."""
        self.client.close()
