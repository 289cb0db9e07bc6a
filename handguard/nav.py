"""
Fund valuation and share accounting math.

Everything is integer arithmetic on base units:
    - token balances in the token's own decimals
    - prices in USD with 8 decimals
    - NAV in native base units (18 decimals), using the wrapped native price
      as the numeraire
Divisions round down, so the fund never credits more value than it holds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence, Tuple

from handguard.errors import ValidationError
from handguard.units import BPS, NATIVE_DECIMALS

JSONDict = Dict[str, object]


@dataclass
class Holding:
    token: str
    balance: int
    decimals: int
    price: int = 0

    @property
    def value_usd(self) -> int:
        return token_value_usd(self.balance, self.price, self.decimals)


def token_value_usd(balance: int, price: int, decimals: int) -> int:
    """USD value (8 decimals) of `balance` token units."""
    return balance * price // (10**decimals)


def usd_to_native(usd: int, native_price: int) -> int:
    if native_price <= 0:
        raise ValidationError("Invalid native price")
    return usd * 10**NATIVE_DECIMALS // native_price


def token_to_native(amount: int, token_price: int, native_price: int, decimals: int) -> int:
    if native_price <= 0:
        raise ValidationError("Invalid native price")
    return amount * token_price * 10**NATIVE_DECIMALS // (native_price * 10**decimals)


def compute_fund_nav(holdings: Sequence[Holding], native_price: int) -> Tuple[int, JSONDict]:
    """
    Return (nav_native, detail) for priced holdings.

    detail carries per-token USD values, the USD total and the numeraire
    price so callers can log or publish the breakdown as-is.
    """
    per_token: Dict[str, JSONDict] = {}
    nav_usd = 0
    nav_native = 0
    for holding in holdings:
        value_usd = holding.value_usd
        value_native = token_to_native(holding.balance, holding.price, native_price, holding.decimals)
        nav_usd += value_usd
        nav_native += value_native
        per_token[holding.token] = {
            "balance": holding.balance,
            "price": holding.price,
            "value_usd": value_usd,
            "value_native": value_native,
        }
    detail: JSONDict = {
        "nav_usd": nav_usd,
        "nav_native": nav_native,
        "native_price": native_price,
        "tokens": per_token,
    }
    return nav_native, detail


def shares_for_contribution(amount: int, total_supply: int, nav_before: int) -> int:
    """Shares worth `amount` against the pre-contribution NAV; 1:1 when the fund is empty."""
    if total_supply == 0:
        return amount
    if nav_before <= 0:
        raise ValidationError("Fund has no value")
    return amount * total_supply // nav_before


def split_fee(amount: int, fee_bps: int, creator_share_bps: int) -> Tuple[int, int, int]:
    """Return (fee, creator_fee, treasury_fee); the treasury absorbs rounding."""
    fee = amount * fee_bps // BPS
    creator_fee = fee * creator_share_bps // BPS
    return fee, creator_fee, fee - creator_fee


def equal_proportions(count: int) -> List[int]:
    """100 // N for every token, with the rounding remainder on the last one."""
    if count <= 0:
        raise ValidationError("Must have at least one token")
    base = 100 // count
    return [base] * (count - 1) + [100 - base * (count - 1)]


def allocate_by_weight(amount: int, weights: Sequence[int]) -> List[int]:
    """Split `amount` by percentage weights; the last weighted slot takes the dust."""
    allocations = [amount * int(w) // 100 for w in weights]
    weighted = [idx for idx, w in enumerate(weights) if w > 0]
    if weighted:
        allocations[weighted[-1]] += amount - sum(allocations)
    return allocations


def weights_from_values(values: Mapping[str, int]) -> Dict[str, float]:
    total = sum(values.values())
    if total <= 0:
        return {token: 0.0 for token in values}
    return {token: value * 100.0 / total for token, value in values.items()}


def quote_amount(amount: int, price_in: int, decimals_in: int, price_out: int, decimals_out: int) -> int:
    """Oracle-implied output for swapping `amount` of one token into another."""
    if price_out <= 0:
        raise ValidationError("Invalid token price")
    return amount * price_in * 10**decimals_out // (price_out * 10**decimals_in)
