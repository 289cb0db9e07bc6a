"""
Local constant-product swap router.

Each pool holds two reserves and prices trades with x * y = k after the pool
fee. Swaps run over a path of tokens (one hop per adjacent pair), honour a
deadline and a min-output / max-input bound, and pull input tokens with
`transfer_from`, so callers approve the router first.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from handguard.chain import ChainState, Contract, atomic, view
from handguard.errors import SwapFailed, ValidationError
from handguard.tokens import TokenLedger
from handguard.units import BPS, normalize_address

LOG = logging.getLogger("swap_router")

__all__ = ["ConstantProductRouter", "pool_key"]

PoolKey = Tuple[str, str]


def pool_key(token_a: str, token_b: str) -> PoolKey:
    a, b = token_a.lower(), token_b.lower()
    return (a, b) if a < b else (b, a)


class ConstantProductRouter(Contract):
    _journal_fields = ("reserves",)

    def __init__(self, state: ChainState, fee_bps: int = 30) -> None:
        super().__init__(state)
        if not 0 <= int(fee_bps) < BPS:
            raise ValidationError("Invalid pool fee")
        self.fee_bps = int(fee_bps)
        self.reserves: Dict[PoolKey, Dict[str, int]] = {}

    # ------------------------------------------------------------------
    # Liquidity
    # ------------------------------------------------------------------

    def _token(self, address: str) -> TokenLedger:
        return self.state.contract(address, TokenLedger)

    @atomic
    def add_liquidity(self, caller: str, token_a: str, token_b: str, amount_a: int, amount_b: int) -> None:
        a, b = normalize_address(token_a), normalize_address(token_b)
        if a is None or b is None or a == b:
            raise ValidationError("Invalid path")
        if amount_a <= 0 or amount_b <= 0:
            raise ValidationError("Insufficient liquidity")
        self._token(a).transfer_from(self.address, caller, self.address, amount_a)
        self._token(b).transfer_from(self.address, caller, self.address, amount_b)
        pool = self.reserves.setdefault(pool_key(a, b), {a: 0, b: 0})
        pool[a] += amount_a
        pool[b] += amount_b
        LOG.info("[router] add_liquidity pool=%s/%s reserves=%d/%d", a, b, pool[a], pool[b])

    @view
    def get_reserves(self, token_in: str, token_out: str) -> Tuple[int, int]:
        a, b = normalize_address(token_in), normalize_address(token_out)
        if a is None or b is None or a == b:
            raise SwapFailed("Invalid path")
        pool = self.reserves.get(pool_key(a, b))
        if not pool or pool[a] <= 0 or pool[b] <= 0:
            raise SwapFailed("Insufficient liquidity")
        return pool[a], pool[b]

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def _amount_out(self, amount_in: int, reserve_in: int, reserve_out: int) -> int:
        if amount_in <= 0:
            raise SwapFailed("Insufficient input amount")
        in_with_fee = amount_in * (BPS - self.fee_bps)
        return (in_with_fee * reserve_out) // (reserve_in * BPS + in_with_fee)

    def _amount_in(self, amount_out: int, reserve_in: int, reserve_out: int) -> int:
        if amount_out <= 0:
            raise SwapFailed("Insufficient output amount")
        if amount_out >= reserve_out:
            raise SwapFailed("Insufficient liquidity")
        numerator = reserve_in * amount_out * BPS
        denominator = (reserve_out - amount_out) * (BPS - self.fee_bps)
        return numerator // denominator + 1

    def _check_path(self, path: Sequence[str]) -> List[str]:
        if len(path) < 2:
            raise SwapFailed("Invalid path")
        normalized = [normalize_address(p) for p in path]
        if any(p is None for p in normalized):
            raise SwapFailed("Invalid path")
        return normalized  # type: ignore[return-value]

    @view
    def get_amounts_out(self, amount_in: int, path: Sequence[str]) -> List[int]:
        hops = self._check_path(path)
        amounts = [int(amount_in)]
        for token_in, token_out in zip(hops, hops[1:]):
            reserve_in, reserve_out = self.get_reserves(token_in, token_out)
            amounts.append(self._amount_out(amounts[-1], reserve_in, reserve_out))
        return amounts

    @view
    def get_amounts_in(self, amount_out: int, path: Sequence[str]) -> List[int]:
        hops = self._check_path(path)
        amounts = [int(amount_out)]
        for token_in, token_out in reversed(list(zip(hops, hops[1:]))):
            reserve_in, reserve_out = self.get_reserves(token_in, token_out)
            amounts.insert(0, self._amount_in(amounts[0], reserve_in, reserve_out))
        return amounts

    # ------------------------------------------------------------------
    # Swaps
    # ------------------------------------------------------------------

    def _ensure_deadline(self, deadline: int) -> None:
        if self.state.now() > int(deadline):
            raise SwapFailed("Expired")

    def _execute(self, caller: str, amounts: List[int], hops: List[str], to: str) -> None:
        self._token(hops[0]).transfer_from(self.address, caller, self.address, amounts[0])
        for idx, (token_in, token_out) in enumerate(zip(hops, hops[1:])):
            pool = self.reserves[pool_key(token_in, token_out)]
            pool[token_in] += amounts[idx]
            pool[token_out] -= amounts[idx + 1]
        self._token(hops[-1]).transfer(self.address, to, amounts[-1])

    @atomic
    def swap_exact_in(
        self,
        caller: str,
        amount_in: int,
        amount_out_min: int,
        path: Sequence[str],
        to: str,
        deadline: int,
    ) -> List[int]:
        self._ensure_deadline(deadline)
        hops = self._check_path(path)
        amounts = self.get_amounts_out(amount_in, hops)
        if amounts[-1] <= 0 or amounts[-1] < amount_out_min:
            raise SwapFailed("Insufficient output amount")
        self._execute(caller, amounts, hops, to)
        LOG.debug("[router] swap_exact_in path=%s amounts=%s", hops, amounts)
        return amounts

    @atomic
    def swap_exact_out(
        self,
        caller: str,
        amount_out: int,
        amount_in_max: int,
        path: Sequence[str],
        to: str,
        deadline: int,
    ) -> List[int]:
        self._ensure_deadline(deadline)
        hops = self._check_path(path)
        amounts = self.get_amounts_in(amount_out, hops)
        if amounts[0] > amount_in_max:
            raise SwapFailed("Excessive input amount")
        self._execute(caller, amounts, hops, to)
        LOG.debug("[router] swap_exact_out path=%s amounts=%s", hops, amounts)
        return amounts
