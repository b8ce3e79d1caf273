"""Data models for chains, tokens, yield positions, and portfolios."""

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field

DAYS_PER_YEAR = Decimal(365)
PERCENT = Decimal(100)


def utcnow() -> datetime:
    """Timezone-aware current time used for every timestamp in the models."""
    return datetime.now(UTC)


class ProtocolCategory(StrEnum):
    """Category of a yield protocol."""

    LENDING = "lending"
    LIQUIDITY_POOL = "liquidity_pool"
    VAULT = "vault"
    STAKING = "staking"
    FARMING = "farming"


# Category-level APY approximations in percent, used when a market has no
# configured rate.
DEFAULT_APY: dict[ProtocolCategory, Decimal] = {
    ProtocolCategory.LENDING: Decimal("3.5"),
    ProtocolCategory.LIQUIDITY_POOL: Decimal("15.0"),
    ProtocolCategory.VAULT: Decimal("8.0"),
    ProtocolCategory.STAKING: Decimal("6.0"),
    ProtocolCategory.FARMING: Decimal("25.0"),
}


class Chain(BaseModel):
    """
    Immutable blockchain descriptor.

    Attributes
    ----------
    id : str
        Chain identifier (e.g., 'ethereum', 'polygon')
    name : str
        Display name
    chain_id : int
        Numeric EVM chain id
    native_symbol : str
        Symbol of the native currency (e.g., 'ETH')
    native_name : str
        Name of the native currency
    native_decimals : int
        Decimals of the native currency
    average_block_time : Decimal
        Average block time in seconds
    is_evm : bool
        Whether the chain uses EVM addresses and JSON-RPC
    explorer_url : str | None
        Block explorer website
    native_coingecko_id : str | None
        Price oracle identifier of the native currency

    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    chain_id: int
    native_symbol: str
    native_name: str
    native_decimals: int = 18
    average_block_time: Decimal = Decimal("0")
    is_evm: bool = True
    explorer_url: str | None = None
    native_coingecko_id: str | None = None

    def native_token(self) -> "Token":
        """Build the token representing this chain's native currency."""
        return Token(
            symbol=self.native_symbol,
            name=self.native_name,
            chain=self,
            decimals=self.native_decimals,
            coingecko_id=self.native_coingecko_id,
        )

    def __str__(self) -> str:
        return self.name


class Token(BaseModel):
    """
    Token information.

    Price fields are refreshed by the price oracle; identity for merging is
    ``(symbol, chain.id)``.

    Attributes
    ----------
    symbol : str
        Token symbol (e.g., 'ETH', 'USDC')
    name : str
        Full token name
    contract_address : str | None
        Token contract address, None for the native currency
    chain : Chain
        Chain the token lives on
    decimals : int
        Number of decimal places
    price_usd : Decimal
        Current USD price, zero when unknown
    price_change_24h : Decimal
        24h price change in percent
    coingecko_id : str | None
        Price oracle identifier, when known upfront

    """

    symbol: str
    name: str
    contract_address: str | None = None
    chain: Chain
    decimals: int = 18
    price_usd: Decimal = Decimal("0")
    price_change_24h: Decimal = Decimal("0")
    coingecko_id: str | None = None

    @property
    def is_native(self) -> bool:
        return self.contract_address is None

    @property
    def key(self) -> tuple[str, str]:
        """Merge identity: (symbol, chain id)."""
        return (self.symbol, self.chain.id)


class TokenBalance(BaseModel):
    """
    Amount of a token held by a wallet.

    Attributes
    ----------
    token : Token
        Held token
    wallet_address : str
        Owner wallet
    balance : Decimal
        Quantity in token units
    last_updated : datetime
        When the balance was read

    """

    token: Token
    wallet_address: str
    balance: Decimal
    last_updated: datetime = Field(default_factory=utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def balance_usd(self) -> Decimal:
        return self.balance * self.token.price_usd


class YieldProtocol(BaseModel):
    """Immutable descriptor of a yield-bearing protocol on one chain."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    chain: Chain
    category: ProtocolCategory
    website: str | None = None


class YieldPosition(BaseModel):
    """
    A wallet's deposit in a yield protocol pool.

    USD value and yield estimates are computed from the deposited tokens and
    APY on every read.

    Attributes
    ----------
    id : str
        Position identifier
    wallet_address : str
        Owner wallet
    protocol : YieldProtocol
        Protocol holding the deposit
    pool_name : str
        Pool or market name (e.g., 'USDC Lending')
    pool_address : str | None
        Pool or receipt-token contract
    deposited_tokens : list[TokenBalance]
        Underlying tokens deposited
    apy : Decimal
        Annual percentage yield, in percent
    entry_time : datetime | None
        When the position was opened, if known
    last_updated : datetime
        When the position was read

    """

    id: str
    wallet_address: str
    protocol: YieldProtocol
    pool_name: str
    pool_address: str | None = None
    deposited_tokens: list[TokenBalance] = Field(default_factory=list)
    apy: Decimal = Decimal("0")
    entry_time: datetime | None = None
    last_updated: datetime = Field(default_factory=utcnow)

    def add_token(self, token_balance: TokenBalance) -> None:
        """Add a deposited balance, summing into an existing entry for the same token."""
        for existing in self.deposited_tokens:
            if existing.token.key == token_balance.token.key:
                existing.balance += token_balance.balance
                break
        else:
            self.deposited_tokens.append(token_balance)
        self.last_updated = utcnow()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_value_usd(self) -> Decimal:
        return sum((t.balance_usd for t in self.deposited_tokens), Decimal("0"))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def annual_yield_usd(self) -> Decimal:
        return self.total_value_usd * self.apy / PERCENT

    @computed_field  # type: ignore[prop-decorator]
    @property
    def daily_yield_usd(self) -> Decimal:
        return self.annual_yield_usd / DAYS_PER_YEAR


class SourceError(BaseModel):
    """
    A data source that failed during aggregation.

    Attributes
    ----------
    source : str
        Source kind ('token_balances' or 'yield_positions')
    chain : str
        Chain id of the failing provider
    kind : str
        'error' or 'timeout'
    message : str
        Error description

    """

    source: str
    chain: str
    kind: str = "error"
    message: str = ""


class Portfolio(BaseModel):
    """
    A wallet's holdings across all chains.

    Every monetary rollup is computed from ``token_balances`` and
    ``yield_positions`` at read time.

    Attributes
    ----------
    wallet_address : str
        Owner wallet
    token_balances : list[TokenBalance]
        Merged token balances
    yield_positions : list[YieldPosition]
        Yield positions on all chains
    last_updated : datetime
        When the portfolio was assembled
    errors : list[SourceError]
        Sources that failed and contributed nothing

    """

    wallet_address: str
    token_balances: list[TokenBalance] = Field(default_factory=list)
    yield_positions: list[YieldPosition] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow)
    errors: list[SourceError] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_token_value_usd(self) -> Decimal:
        return sum((b.balance_usd for b in self.token_balances), Decimal("0"))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_yield_value_usd(self) -> Decimal:
        return sum((p.total_value_usd for p in self.yield_positions), Decimal("0"))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_value_usd(self) -> Decimal:
        return self.total_token_value_usd + self.total_yield_value_usd

    @computed_field  # type: ignore[prop-decorator]
    @property
    def estimated_daily_yield_usd(self) -> Decimal:
        return sum((p.daily_yield_usd for p in self.yield_positions), Decimal("0"))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def estimated_annual_yield_usd(self) -> Decimal:
        return self.estimated_daily_yield_usd * DAYS_PER_YEAR

    @computed_field  # type: ignore[prop-decorator]
    @property
    def average_apy(self) -> Decimal:
        """Position-value weighted APY in percent, zero without yield positions."""
        total_yield_value = self.total_yield_value_usd
        if total_yield_value <= 0:
            return Decimal("0")
        return self.estimated_annual_yield_usd / total_yield_value * PERCENT

    @computed_field  # type: ignore[prop-decorator]
    @property
    def by_chain(self) -> dict[str, Decimal]:
        distribution: dict[str, Decimal] = {}
        for balance in self.token_balances:
            name = balance.token.chain.name
            distribution[name] = distribution.get(name, Decimal("0")) + balance.balance_usd
        for position in self.yield_positions:
            name = position.protocol.chain.name
            distribution[name] = distribution.get(name, Decimal("0")) + position.total_value_usd
        return distribution

    @computed_field  # type: ignore[prop-decorator]
    @property
    def by_token(self) -> dict[str, Decimal]:
        distribution: dict[str, Decimal] = {}
        deposited = [t for p in self.yield_positions for t in p.deposited_tokens]
        for balance in [*self.token_balances, *deposited]:
            symbol = balance.token.symbol
            distribution[symbol] = distribution.get(symbol, Decimal("0")) + balance.balance_usd
        return distribution

    @computed_field  # type: ignore[prop-decorator]
    @property
    def by_protocol(self) -> dict[str, Decimal]:
        distribution: dict[str, Decimal] = {}
        for position in self.yield_positions:
            name = position.protocol.name
            distribution[name] = distribution.get(name, Decimal("0")) + position.total_value_usd
        return distribution


def merge_token_balances(balances: list[TokenBalance]) -> list[TokenBalance]:
    """
    Merge balances of the same token (symbol + chain) by summing quantities.

    Order of the input does not affect the merged quantities. Input balances
    are copied, never mutated.

    Parameters
    ----------
    balances : list[TokenBalance]
        Balances from any number of providers

    Returns
    -------
    list[TokenBalance]
        One balance per (symbol, chain id), in first-seen order

    """
    merged: dict[tuple[str, str], TokenBalance] = {}
    for balance in balances:
        key = balance.token.key
        existing = merged.get(key)
        if existing is None:
            merged[key] = balance.model_copy(deep=True)
            continue
        existing.balance += balance.balance
        existing.last_updated = max(existing.last_updated, balance.last_updated)
        if existing.token.price_usd <= 0 < balance.token.price_usd:
            existing.token = balance.token.model_copy()
    return list(merged.values())
