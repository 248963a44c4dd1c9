"""Shared field types: wallet addresses, transaction hashes and wei amounts."""

import re
from typing import Annotated, Any
from pydantic import BeforeValidator, PlainSerializer
from ulid import ULID

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
TX_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")
ZERO_ADDRESS = "0x" + "0" * 40


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(ADDRESS_PATTERN.match(value))


def is_tx_hash(value: Any) -> bool:
    return isinstance(value, str) and bool(TX_HASH_PATTERN.match(value))


def normalize_address(value: Any) -> str:
    """Validate and lower-case a 0x-prefixed 20-byte address."""
    if not is_address(value):
        raise ValueError("Invalid address: expected 0x followed by 40 hex characters")
    return value.lower()


def normalize_tx_hash(value: Any) -> str:
    if not is_tx_hash(value):
        raise ValueError("Invalid transaction hash: expected 0x followed by 64 hex characters")
    return value.lower()


def parse_wei(value: Any) -> int:
    """Parse an integer amount in minor units.

    Accepts ints and decimal digit strings. Floats, booleans, negative numbers
    and anything non-numeric are rejected so amounts never pass through
    floating point.
    """
    if isinstance(value, bool):
        raise ValueError("Amount must be an integer number of wei")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise ValueError("Amount must be an integer number of wei")
    if amount < 0:
        raise ValueError("Amount must not be negative")
    return amount


WalletAddress = Annotated[str, BeforeValidator(normalize_address)]
TxHash = Annotated[str, BeforeValidator(normalize_tx_hash)]
Wei = Annotated[
    int,
    BeforeValidator(parse_wei),
    PlainSerializer(lambda v: str(v), return_type=str, when_used="json"),
]


def new_id() -> str:
    """Generate a text record ID (ULID)."""
    return str(ULID())
