"""Address and fixed-point unit helpers shared by every contract."""

from __future__ import annotations

import re
from decimal import Decimal, ROUND_DOWN
from typing import Any, Optional

ZERO_ADDRESS = "0x" + "0" * 40
NATIVE_DECIMALS = 18
PRICE_DECIMALS = 8
BPS = 10_000

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def normalize_address(value: Any) -> Optional[str]:
    """Return the lower-cased address, or None when the value is malformed."""
    if not is_address(value):
        return None
    return value.lower()


def is_zero_address(value: Any) -> bool:
    return normalize_address(value) == ZERO_ADDRESS


def address_from_index(index: int) -> str:
    return "0x%040x" % int(index)


def parse_units(amount: Any, decimals: int = NATIVE_DECIMALS) -> int:
    """'1.5' -> 1500000000000000000 for 18 decimals; extra precision is truncated."""
    dec = Decimal(str(amount))
    scaled = (dec * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def format_units(amount: int, decimals: int = NATIVE_DECIMALS) -> Decimal:
    return Decimal(int(amount)) / (Decimal(10) ** decimals)
