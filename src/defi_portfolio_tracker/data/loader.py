"""Packaged chain data loader."""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from defi_portfolio_tracker.core.models import Chain, Token, YieldProtocol
from defi_portfolio_tracker.errors import ConfigurationError


class YieldMarket(BaseModel):
    """
    A yield market identified by its receipt token.

    Attributes
    ----------
    protocol : YieldProtocol
        Protocol running the market
    pool_name : str
        Display name of the market
    receipt_token : str
        Contract of the token minted to depositors
    receipt_decimals : int
        Decimals of the receipt token
    underlying : Token
        Deposited token
    underlying_ratio : Decimal
        Underlying units per receipt unit
    apy : Decimal | None
        Fixed APY in percent; None uses the category default

    """

    protocol: YieldProtocol
    pool_name: str
    receipt_token: str
    receipt_decimals: int = 18
    underlying: Token
    underlying_ratio: Decimal = Decimal("1")
    apy: Decimal | None = None


@lru_cache(maxsize=1)
def load_chain_data() -> dict[str, Any]:
    """
    Load chain descriptors and yield markets from chains.yaml.

    Parsed once per process; the returned mapping is shared, do not mutate it.

    Returns
    -------
    dict[str, Any]
        Raw chain data keyed by 'chains'

    """
    path = Path(__file__).parent / "chains.yaml"
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def _chain_config(chain_id: str) -> dict[str, Any]:
    return load_chain_data()["chains"][chain_id]


def get_chain(chain_id: str) -> Chain:
    """
    Get the descriptor of a supported chain.

    Parameters
    ----------
    chain_id : str
        Chain id (e.g., 'ethereum', 'polygon')

    Returns
    -------
    Chain
        Chain descriptor

    Raises
    ------
    KeyError
        If the chain is not supported
    ConfigurationError
        If the packaged descriptor does not validate

    """
    config = _chain_config(chain_id)
    fields = {k: v for k, v in config.items() if k not in ("protocols", "yield_markets")}
    try:
        return Chain.model_validate({"id": chain_id, **fields})
    except ValidationError as e:
        msg = f"Invalid chain data for {chain_id}: {e}"
        raise ConfigurationError(msg) from e


def get_all_supported_chains() -> list[str]:
    """
    Get list of all supported chain ids.

    Returns
    -------
    list[str]
        Chain ids in file order

    """
    return list(load_chain_data()["chains"].keys())


def get_yield_protocols(chain_id: str) -> list[YieldProtocol]:
    """
    Get the yield protocols deployed on a chain.

    Parameters
    ----------
    chain_id : str
        Chain id

    Returns
    -------
    list[YieldProtocol]
        Protocol descriptors

    """
    chain = get_chain(chain_id)
    protocols = _chain_config(chain_id).get("protocols") or {}
    try:
        return [
            YieldProtocol.model_validate({"id": protocol_id, "chain": chain, **fields})
            for protocol_id, fields in protocols.items()
        ]
    except ValidationError as e:
        msg = f"Invalid protocol data for {chain_id}: {e}"
        raise ConfigurationError(msg) from e


def get_yield_markets(chain_id: str) -> list[YieldMarket]:
    """
    Get the receipt-token yield markets of a chain.

    Parameters
    ----------
    chain_id : str
        Chain id

    Returns
    -------
    list[YieldMarket]
        Markets whose receipt token marks a deposit

    Raises
    ------
    ConfigurationError
        If a market references an unknown protocol or does not validate

    """
    chain = get_chain(chain_id)
    protocols = {p.id: p for p in get_yield_protocols(chain_id)}
    markets = []
    for market in _chain_config(chain_id).get("yield_markets") or []:
        protocol = protocols.get(market.get("protocol"))
        if protocol is None:
            msg = f"Yield market {market.get('pool_name')!r} on {chain_id} references unknown protocol"
            raise ConfigurationError(msg)
        try:
            markets.append(
                YieldMarket.model_validate(
                    {
                        **market,
                        "protocol": protocol,
                        "underlying": {**market.get("underlying", {}), "chain": chain},
                    }
                )
            )
        except ValidationError as e:
            msg = f"Invalid yield market data for {chain_id}: {e}"
            raise ConfigurationError(msg) from e
    return markets
