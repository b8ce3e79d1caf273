"""CoinGecko price oracle with cache-aside lookups."""

import json
import logging
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

import httpx
from pydantic import BaseModel

from defi_portfolio_tracker.cache.base import BaseCache
from defi_portfolio_tracker.core.models import Token
from defi_portfolio_tracker.errors import PriceOracleError
from defi_portfolio_tracker.rpc.rate_limiter import RateLimiter
from defi_portfolio_tracker.rpc.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class CoinListItem(BaseModel):
    """Entry of the CoinGecko symbol directory."""

    id: str
    symbol: str
    name: str = ""


class Quote(BaseModel):
    """Price and 24h change of one coin in one currency."""

    price: Decimal = ZERO
    change_24h: Decimal = ZERO


class CoinGeckoPriceOracle:
    """
    Resolves token prices from the CoinGecko API.

    The symbol directory is cached for hours (``coin_list_ttl``), quotes for
    minutes (``price_ttl``). Every upstream request goes through the rate
    limiter under the ``coingecko`` resource.

    A price of zero means "unknown": unresolvable symbols and upstream
    failures both resolve to zero instead of raising.

    Parameters
    ----------
    cache : BaseCache
        Shared cache
    rate_limiter : RateLimiter
        Shared rate limiter
    base_url : str
        CoinGecko API base URL
    api_key : str
        Optional demo API key
    price_ttl : float
        TTL in seconds for quotes and price changes
    coin_list_ttl : float
        TTL in seconds for the symbol directory
    timeout : float
        HTTP timeout in seconds
    retry_config : RetryConfig | None
        Retry policy for transient HTTP failures
    client : httpx.Client | None
        Preconfigured HTTP client (tests pass one with a mock transport)

    """

    RESOURCE = "coingecko"
    COIN_LIST_KEY = "coinGeckoList"

    def __init__(
        self,
        cache: BaseCache,
        rate_limiter: RateLimiter,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str = "",
        price_ttl: float = 120,
        coin_list_ttl: float = 24 * 3600,
        timeout: float = 30.0,
        retry_config: RetryConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.price_ttl = price_ttl
        self.coin_list_ttl = coin_list_ttl
        headers = {"x-cg-demo-api-key": api_key} if api_key else {}
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout, headers=headers)
        self._get_with_retry = with_retry(retry_config or RetryConfig())(self._rate_limited_get)

    def _rate_limited_get(self, path: str, params: dict[str, Any] | None) -> httpx.Response:
        def request() -> httpx.Response:
            response = self.client.get(path, params=params)
            response.raise_for_status()
            return response

        return self.rate_limiter.execute(self.RESOURCE, request)

    def _get_json(self, path: str, params: dict[str, Any] | None = None, operation: str = "") -> Any:
        """
        Fetch and decode a JSON document, numbers as Decimal.

        Raises
        ------
        PriceOracleError
            On network, HTTP, or decoding failure

        """
        try:
            response = self._get_with_retry(path, params)
            return json.loads(response.text, parse_float=Decimal)
        except (httpx.HTTPError, ValueError) as e:
            msg = f"CoinGecko request {path} failed: {e}"
            raise PriceOracleError(msg, resource=self.RESOURCE, operation=operation or path) from e

    def coin_directory(self) -> list[CoinListItem]:
        """Symbol to id directory, cached with the long TTL."""

        def fetch() -> list[CoinListItem]:
            data = self._get_json("/coins/list", operation="coin_directory")
            return [CoinListItem.model_validate(item) for item in data if "id" in item and "symbol" in item]

        return self.cache.get_or_set(
            self.COIN_LIST_KEY, fetch, self.coin_list_ttl, value_type=list[CoinListItem]
        )

    def coin_id(self, symbol: str) -> str | None:
        """
        Resolve a CoinGecko id from a token symbol (case-insensitive).

        Parameters
        ----------
        symbol : str
            Token symbol

        Returns
        -------
        str | None
            First matching id, or None when the symbol is unknown

        """
        symbol = symbol.lower()

        def lookup() -> str:
            for coin in self.coin_directory():
                if coin.symbol.lower() == symbol:
                    return coin.id
            return ""

        coin_id = self.cache.get_or_set(f"coinId:{symbol}", lookup, self.coin_list_ttl, value_type=str)
        return coin_id or None

    def _resolve(self, token_or_symbol: Token | str) -> str | None:
        if isinstance(token_or_symbol, Token):
            return token_or_symbol.coingecko_id or self.coin_id(token_or_symbol.symbol)
        return self.coin_id(token_or_symbol)

    def quotes(self, coin_ids: Iterable[str], currency: str = "usd") -> dict[str, Quote]:
        """
        Fetch quotes for many coins in a single upstream call.

        Parameters
        ----------
        coin_ids : Iterable[str]
            CoinGecko ids
        currency : str
            Quote currency

        Returns
        -------
        dict[str, Quote]
            Quotes by id; ids without data are absent

        Raises
        ------
        PriceOracleError
            On upstream failure

        """
        ids = sorted(set(coin_ids))
        if not ids:
            return {}
        currency = currency.lower()

        def fetch() -> dict[str, Quote]:
            data = self._get_json(
                "/simple/price",
                {"ids": ",".join(ids), "vs_currencies": currency, "include_24hr_change": "true"},
                operation="quotes",
            )
            return {
                coin_id: Quote(
                    price=values.get(currency) or ZERO,
                    change_24h=values.get(f"{currency}_24h_change") or ZERO,
                )
                for coin_id, values in data.items()
                if isinstance(values, dict)
            }

        return self.cache.get_or_set(
            f"quotes:{','.join(ids)}:{currency}", fetch, self.price_ttl, value_type=dict[str, Quote]
        )

    def price_of(self, token_or_symbol: Token | str, currency: str = "usd") -> Decimal:
        """
        Current price of a token.

        Parameters
        ----------
        token_or_symbol : Token | str
            Token (its ``coingecko_id`` is used when set) or symbol
        currency : str
            Quote currency

        Returns
        -------
        Decimal
            Price, zero when unknown

        """
        try:
            coin_id = self._resolve(token_or_symbol)
            if not coin_id:
                return ZERO
            quote = self.quotes([coin_id], currency).get(coin_id)
        except PriceOracleError as e:
            logger.warning("Price lookup failed for %s: %s", _label(token_or_symbol), e)
            return ZERO
        return quote.price if quote else ZERO

    def prices_of(self, tokens: list[Token], currency: str = "usd") -> dict[tuple[str, str], Decimal]:
        """
        Prices for many tokens with one upstream quote call.

        Parameters
        ----------
        tokens : list[Token]
            Tokens to price
        currency : str
            Quote currency

        Returns
        -------
        dict[tuple[str, str], Decimal]
            Mapping of token key (symbol, chain id) to price; zero when unknown

        """
        return {key: quote.price for key, quote in self._token_quotes(tokens, currency).items()}

    def refresh_token_prices(self, tokens: list[Token]) -> list[Token]:
        """Set ``price_usd`` and ``price_change_24h`` on each token in place."""
        quotes = self._token_quotes(tokens, "usd")
        for token in tokens:
            quote = quotes[token.key]
            token.price_usd = quote.price
            token.price_change_24h = quote.change_24h
        return tokens

    def _token_quotes(self, tokens: list[Token], currency: str) -> dict[tuple[str, str], Quote]:
        result = {token.key: Quote() for token in tokens}
        if not tokens:
            return result

        try:
            ids = {token.key: self._resolve(token) for token in tokens}
            quotes = self.quotes([coin_id for coin_id in ids.values() if coin_id], currency)
        except PriceOracleError as e:
            logger.warning("Batch price lookup failed for %d tokens: %s", len(tokens), e)
            return result

        for key, coin_id in ids.items():
            if coin_id and coin_id in quotes:
                result[key] = quotes[coin_id]
        return result

    def price_change_percent(self, symbol: str, days: int = 1) -> Decimal:
        """
        Price change over the last ``days`` days, in percent.

        Parameters
        ----------
        symbol : str
            Token symbol
        days : int
            Look-back window

        Returns
        -------
        Decimal
            Change in percent, zero when unknown

        """

        def fetch() -> Decimal:
            coin_id = self.coin_id(symbol)
            if not coin_id:
                return ZERO
            data = self._get_json(
                f"/coins/{coin_id}/market_chart",
                {"vs_currency": "usd", "days": days},
                operation="price_change_percent",
            )
            points = data.get("prices") or []
            if len(points) < 2:
                return ZERO
            initial, current = Decimal(points[0][1]), Decimal(points[-1][1])
            if initial == 0:
                return ZERO
            return (current - initial) / initial * 100

        try:
            return self.cache.get_or_set(
                f"priceChange:{symbol.lower()}:{days}", fetch, self.price_ttl, value_type=Decimal
            )
        except PriceOracleError as e:
            logger.warning("Price change lookup failed for %s: %s", symbol, e)
            return ZERO

    def usd_to(self, currency: str) -> Decimal:
        """
        Multiplier converting a USD amount into ``currency``.

        Returns
        -------
        Decimal
            Conversion rate; 1 for USD, zero when unknown

        """
        currency = currency.lower()
        if currency == "usd":
            return Decimal("1")

        def fetch() -> Decimal:
            rates = self._get_json("/exchange_rates", operation="usd_to").get("rates", {})
            usd = (rates.get("usd") or {}).get("value")
            target = (rates.get(currency) or {}).get("value")
            if not usd or not target:
                return ZERO
            return Decimal(target) / Decimal(usd)

        try:
            return self.cache.get_or_set(f"exchangeRate:usd:{currency}", fetch, self.price_ttl, value_type=Decimal)
        except PriceOracleError as e:
            logger.warning("Exchange rate lookup failed for %s: %s", currency, e)
            return ZERO

    def close(self) -> None:
        """Close HTTP client."""
        self.client.close()

    def __enter__(self) -> "CoinGeckoPriceOracle":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()


def _label(token_or_symbol: Token | str) -> str:
    return token_or_symbol.symbol if isinstance(token_or_symbol, Token) else token_or_symbol
