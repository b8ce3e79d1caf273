"""ERC20 read calls over raw JSON-RPC ``eth_call``."""

from decimal import Decimal
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError

BALANCE_OF = "0x70a08231"
DECIMALS = "0x313ce567"
SYMBOL = "0x95d89b41"
NAME = "0x06fdde03"


def pad_address(address: str) -> str:
    """
    Pad address to 32 bytes for call data and topic filtering.

    Parameters
    ----------
    address : str
        Ethereum address (0x prefixed)

    Returns
    -------
    str
        64 hex characters, no prefix

    """
    return address.lower().removeprefix("0x").zfill(64)


def balance_of_call(contract: str, owner: str) -> dict[str, str]:
    return {"to": contract, "data": BALANCE_OF + pad_address(owner)}


def call(contract: str, selector: str) -> dict[str, str]:
    return {"to": contract, "data": selector}


def to_bytes(result: Any) -> bytes:
    """Normalize an ``eth_call`` result (hex string or bytes) to bytes."""
    if isinstance(result, bytes | bytearray):
        return bytes(result)
    if isinstance(result, str):
        return bytes.fromhex(result.removeprefix("0x"))
    msg = f"Unexpected eth_call result type: {type(result).__name__}"
    raise TypeError(msg)


def to_int(result: Any) -> int:
    """Decode a quantity: hex string from ``eth_getBalance`` or a uint256 word."""
    if isinstance(result, int):
        return result
    if isinstance(result, str) and len(result.removeprefix("0x")) <= 64:
        return int(result, 16) if result not in ("0x", "") else 0
    data = to_bytes(result)
    return int.from_bytes(data[:32], "big") if data else 0


def decode_string(result: Any) -> str:
    """
    Decode a ``string`` return value.

    Some older tokens (e.g., MKR) return ``bytes32`` for ``symbol`` and
    ``name``; those are decoded as null-padded ASCII.

    """
    data = to_bytes(result)
    if not data:
        return ""
    try:
        return decode(["string"], data)[0]
    except (DecodingError, OverflowError, ValueError):
        return data[:32].rstrip(b"\x00").decode("utf-8", errors="ignore")


def scale(raw: int, decimals: int) -> Decimal:
    """Convert a raw integer amount to token units."""
    return Decimal(raw) / Decimal(10**decimals)
