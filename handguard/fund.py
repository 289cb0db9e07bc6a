"""
Fund: one index over a fixed basket of tokens.

The fund is its own share token. Investors buy shares with native currency
and the fund spends the contribution on the basket by target weight; sellers
burn shares for a pro-rata slice of every holding, swapped back to native.
All pricing goes through the oracle with the wrapped native token as the
numeraire, and every swap carries an oracle-derived minimum output plus a
deadline. Oracle, router and wrapped-native references are resolved from the
state at the start of each operation.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from handguard.adapters.oracle import PriceOracle
from handguard.adapters.swap_router import ConstantProductRouter
from handguard.chain import ChainState, atomic, view
from handguard.errors import InsufficientFunds, ValidationError
from handguard.events import FUND_TOKEN_BOUGHT, FUND_TOKEN_SOLD, PROPORTIONS_UPDATED, REBALANCED, TRANSFER
from handguard.nav import (
    Holding,
    allocate_by_weight,
    compute_fund_nav,
    equal_proportions,
    quote_amount,
    shares_for_contribution,
    split_fee,
    usd_to_native,
    weights_from_values,
)
from handguard.ownable import Ownable
from handguard.rebalance import RebalancePlan, plan_rebalance
from handguard.runtime_config import ProtocolConfig, SwapConfig
from handguard.tokens import TokenLedger, WrappedNative
from handguard.units import BPS, NATIVE_DECIMALS, is_zero_address, normalize_address

LOG = logging.getLogger("fund")

__all__ = ["Fund"]


def _require_address(value: str, message: str) -> str:
    normalized = normalize_address(value)
    if normalized is None or is_zero_address(normalized):
        raise ValidationError(message)
    return normalized


class Fund(TokenLedger):
    _journal_fields = TokenLedger._journal_fields + (
        "ownable",
        "_proportions",
        "treasury",
        "oracle",
        "dex",
        "wrapped_native",
    )

    def __init__(
        self,
        state: ChainState,
        creator: str,
        fund_name: str,
        fund_ticker: str,
        tokens: Sequence[str],
        oracle: str,
        dex: str,
        wrapped_native: str,
        treasury: str,
        protocol: Optional[ProtocolConfig] = None,
        swap: Optional[SwapConfig] = None,
    ) -> None:
        super().__init__(state, fund_name, fund_ticker, NATIVE_DECIMALS)
        protocol = protocol or ProtocolConfig()
        swap = swap or SwapConfig()
        self.creator = _require_address(creator, "Invalid creator address")
        self.ownable = Ownable(self.creator)
        self.tokens: List[str] = [_require_address(t, "Invalid token address") for t in tokens]
        if not self.tokens:
            raise ValidationError("Must have at least one token")
        self._proportions: Dict[str, int] = dict(zip(self.tokens, equal_proportions(len(self.tokens))))
        self.oracle = _require_address(oracle, "Invalid oracle address")
        self.dex = _require_address(dex, "Invalid DEX address")
        self.wrapped_native = _require_address(wrapped_native, "Invalid wrapped native address")
        self.treasury = _require_address(treasury, "Invalid treasury address")
        self.fee_bps = protocol.fee_bps
        self.creator_fee_share_bps = protocol.creator_fee_share_bps
        self.slippage_bps = swap.slippage_bps
        self.deadline_seconds = swap.deadline_seconds
        self.min_rebalance_usd = swap.min_rebalance_usd

    # ------------------------------------------------------------------
    # Identity and views
    # ------------------------------------------------------------------

    @property
    def fund_name(self) -> str:
        return self.name

    @property
    def fund_ticker(self) -> str:
        return self.symbol

    @property
    def owner(self) -> str:
        return self.ownable.owner

    @view
    def get_underlying_tokens(self) -> List[str]:
        return list(self.tokens)

    @view
    def target_proportions(self, token: str) -> int:
        normalized = normalize_address(token)
        return self._proportions.get(normalized, 0) if normalized else 0

    @view
    def proportions(self) -> Dict[str, int]:
        return {token: self._proportions.get(token, 0) for token in self.tokens}

    @view
    def get_token_balance(self, token: str) -> int:
        normalized = normalize_address(token)
        if normalized not in self.tokens:
            raise ValidationError("Token not in fund")
        return self._ledger(normalized).balance_of(self.address)

    @view
    def get_current_fund_value(self) -> int:
        """NAV in native base units; an empty fund is worth 0 without touching the oracle."""
        holdings = self._holdings()
        if not any(h.balance for h in holdings):
            return 0
        nav_native, _ = self._valuation(holdings)
        return nav_native

    @view
    def get_fund_value_usd(self) -> int:
        holdings = self._holdings()
        if not any(h.balance for h in holdings):
            return 0
        _, detail = self._valuation(holdings)
        return int(detail["nav_usd"])

    @view
    def share_price(self) -> int:
        """Native value of one whole share (18 decimals); 1:1 before the first buy."""
        supply = self.total_supply
        if supply == 0:
            return 10**NATIVE_DECIMALS
        return self.get_current_fund_value() * 10**NATIVE_DECIMALS // supply

    @view
    def get_token_values(self) -> List[Dict[str, Any]]:
        holdings = self._holdings()
        if any(h.balance for h in holdings):
            self._price(holdings, self._oracle())
        values = {h.token: h.value_usd for h in holdings}
        actual = weights_from_values(values)
        return [
            {
                "token": h.token,
                "balance": h.balance,
                "price": h.price,
                "value_usd": values[h.token],
                "target_pct": self._proportions.get(h.token, 0),
                "actual_pct": actual[h.token],
            }
            for h in holdings
        ]

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def _oracle(self) -> PriceOracle:
        return self.state.contract(self.oracle, PriceOracle)

    def _router(self) -> ConstantProductRouter:
        return self.state.contract(self.dex, ConstantProductRouter)

    def _wrapped(self) -> WrappedNative:
        return self.state.contract(self.wrapped_native, WrappedNative)

    def _ledger(self, token: str) -> TokenLedger:
        return self.state.contract(token, TokenLedger)

    # ------------------------------------------------------------------
    # Valuation helpers
    # ------------------------------------------------------------------

    def _holdings(self) -> List[Holding]:
        holdings = []
        for token in self.tokens:
            ledger = self._ledger(token)
            holdings.append(Holding(token=token, balance=ledger.balance_of(self.address), decimals=ledger.decimals))
        return holdings

    @staticmethod
    def _price(holdings: Sequence[Holding], oracle: PriceOracle) -> None:
        for holding in holdings:
            holding.price = oracle.get_price(holding.token)

    def _valuation(self, holdings: Sequence[Holding]):
        oracle = self._oracle()
        self._price(holdings, oracle)
        return compute_fund_nav(holdings, oracle.get_price(self.wrapped_native))

    def _swap(self, token_in: str, token_out: str, amount_in: int) -> int:
        """
        Exact-in swap through the router with an oracle-quoted floor; returns the output amount.

        Amounts too small to produce any output are left unswapped and return 0.
        """
        oracle = self._oracle()
        router = self._router()
        ledger_in = self._ledger(token_in)
        ledger_out = self._ledger(token_out)
        quote = quote_amount(
            amount_in,
            oracle.get_price(token_in),
            ledger_in.decimals,
            oracle.get_price(token_out),
            ledger_out.decimals,
        )
        min_out = quote * (BPS - self.slippage_bps) // BPS
        if quote == 0 or router.get_amounts_out(amount_in, [token_in, token_out])[-1] == 0:
            LOG.debug("[fund] swap_skipped_dust fund=%s in=%s amount_in=%d", self.address, token_in, amount_in)
            return 0
        ledger_in.approve(self.address, router.address, amount_in)
        amounts = router.swap_exact_in(
            self.address,
            amount_in,
            min_out,
            [token_in, token_out],
            self.address,
            self.state.now() + self.deadline_seconds,
        )
        LOG.debug(
            "[fund] swap fund=%s in=%s out=%s amount_in=%d amount_out=%d min_out=%d",
            self.address,
            token_in,
            token_out,
            amount_in,
            amounts[-1],
            min_out,
        )
        return amounts[-1]

    def _pay_fees(self, creator_fee: int, treasury_fee: int) -> None:
        self.state.native.transfer(self.address, self.creator, creator_fee)
        self.state.native.transfer(self.address, self.treasury, treasury_fee)

    # ------------------------------------------------------------------
    # Share transfers
    # ------------------------------------------------------------------

    @atomic
    def transfer(self, caller: str, to: str, amount: int) -> bool:
        super().transfer(caller, to, amount)
        self.emit(TRANSFER, sender=normalize_address(caller), recipient=normalize_address(to), amount=amount)
        return True

    @atomic
    def transfer_from(self, caller: str, owner: str, to: str, amount: int) -> bool:
        super().transfer_from(caller, owner, to, amount)
        self.emit(TRANSFER, sender=normalize_address(owner), recipient=normalize_address(to), amount=amount)
        return True

    # ------------------------------------------------------------------
    # Buy / sell
    # ------------------------------------------------------------------

    @atomic
    def buy(self, caller: str, value: int) -> int:
        if value <= 0:
            raise ValidationError("Must send value")
        self.state.native.transfer(caller, self.address, value)

        supply = self.total_supply
        nav_before = self.get_current_fund_value() if supply > 0 else 0
        shares = shares_for_contribution(value, supply, nav_before)
        if shares <= 0:
            raise ValidationError("Contribution too small")

        fee, creator_fee, treasury_fee = split_fee(value, self.fee_bps, self.creator_fee_share_bps)
        self._pay_fees(creator_fee, treasury_fee)
        self._invest(value - fee)

        self._mint(caller, shares)
        self.emit(FUND_TOKEN_BOUGHT, buyer=caller, hbar_amount=value, fund_tokens_minted=shares, fee_paid=fee)
        LOG.info(
            "[fund] buy fund=%s buyer=%s value=%d nav_before=%d shares=%d fee=%d",
            self.address,
            caller,
            value,
            nav_before,
            shares,
            fee,
        )
        return shares

    def _invest(self, amount: int) -> None:
        wrapped = self._wrapped()
        wrapped.deposit(self.address, amount)
        weights = [self._proportions.get(token, 0) for token in self.tokens]
        for token, allocation in zip(self.tokens, allocate_by_weight(amount, weights)):
            if allocation == 0 or token == wrapped.address:
                continue
            self._swap(wrapped.address, token, allocation)

    @atomic
    def sell(self, caller: str, share_amount: int) -> int:
        if share_amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        if self.balance_of(caller) < share_amount:
            raise InsufficientFunds("Insufficient fund tokens")

        supply = self.total_supply
        wrapped = self._wrapped()
        proceeds = 0
        for token in self.tokens:
            held = self._ledger(token).balance_of(self.address)
            portion = held * share_amount // supply
            if portion == 0:
                continue
            if token == wrapped.address:
                proceeds += portion
            else:
                proceeds += self._swap(token, wrapped.address, portion)
        if proceeds == 0:
            raise InsufficientFunds("No value to return")

        wrapped.withdraw(self.address, proceeds)
        fee, creator_fee, treasury_fee = split_fee(proceeds, self.fee_bps, self.creator_fee_share_bps)
        self._pay_fees(creator_fee, treasury_fee)
        net = proceeds - fee

        self._burn(caller, share_amount)
        self.state.native.transfer(self.address, caller, net)
        self.emit(FUND_TOKEN_SOLD, seller=caller, fund_tokens_burned=share_amount, hbar_returned=net, fee_paid=fee)
        LOG.info(
            "[fund] sell fund=%s seller=%s shares=%d proceeds=%d fee=%d",
            self.address,
            caller,
            share_amount,
            proceeds,
            fee,
        )
        return net

    # ------------------------------------------------------------------
    # Proportions and rebalancing
    # ------------------------------------------------------------------

    @atomic
    def set_proportions(self, caller: str, tokens: Sequence[str], percentages: Sequence[int]) -> RebalancePlan:
        self.ownable.require_owner(caller)
        if len(tokens) != len(percentages):
            raise ValidationError("Array lengths mismatch")
        normalized = [normalize_address(t) for t in tokens]
        if any(t is None for t in normalized):
            raise ValidationError("Invalid token address")
        if len(set(normalized)) != len(normalized):
            raise ValidationError("Duplicate tokens not allowed")
        if any(t not in self.tokens for t in normalized):
            raise ValidationError("Token not in fund")
        for pct in percentages:
            if isinstance(pct, bool) or not isinstance(pct, int) or pct < 0:
                raise ValidationError("Invalid proportion")
        if sum(percentages) != 100:
            raise ValidationError("Proportions must sum to 100")

        updated = {token: 0 for token in self.tokens}
        updated.update(zip(normalized, percentages))
        self._proportions = updated
        self.emit(PROPORTIONS_UPDATED, tokens=list(self.tokens), proportions=[updated[t] for t in self.tokens])
        LOG.info("[fund] proportions_set fund=%s weights=%s", self.address, updated)
        return self._rebalance()

    @atomic
    def rebalance(self, caller: str) -> RebalancePlan:
        self.ownable.require_owner(caller)
        return self._rebalance()

    def _rebalance(self) -> RebalancePlan:
        holdings = self._holdings()
        if not any(h.balance for h in holdings):
            plan = RebalancePlan(nav_usd=0)
            self.emit(REBALANCED, total_nav_usd=0)
            return plan

        oracle = self._oracle()
        self._price(holdings, oracle)
        plan = plan_rebalance(holdings, self._proportions, min_trade_usd=self.min_rebalance_usd)
        wrapped = self._wrapped()

        raised = 0
        for leg in plan.sells:
            if leg.token == wrapped.address:
                raised += leg.amount
            else:
                raised += self._swap(leg.token, wrapped.address, leg.amount)
        if wrapped.address not in self.tokens:
            raised = wrapped.balance_of(self.address)

        native_price = oracle.get_price(wrapped.address)
        for leg in plan.buys:
            if raised <= 0:
                break
            spend = min(usd_to_native(leg.usd, native_price), raised)
            if spend <= 0:
                continue
            if leg.token != wrapped.address and self._swap(wrapped.address, leg.token, spend) == 0:
                continue
            raised -= spend

        self.emit(REBALANCED, total_nav_usd=plan.nav_usd)
        LOG.info(
            "[fund] rebalance fund=%s nav_usd=%d sells=%d buys=%d",
            self.address,
            plan.nav_usd,
            len(plan.sells),
            len(plan.buys),
        )
        return plan

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @atomic
    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.ownable.transfer_ownership(caller, new_owner)

    @atomic
    def update_treasury(self, caller: str, treasury: str) -> None:
        self.ownable.require_owner(caller)
        self.treasury = _require_address(treasury, "Invalid treasury address")

    @atomic
    def update_oracle(self, caller: str, oracle: str) -> None:
        self.ownable.require_owner(caller)
        self.oracle = _require_address(oracle, "Invalid oracle address")

    @atomic
    def update_dex(self, caller: str, dex: str) -> None:
        self.ownable.require_owner(caller)
        self.dex = _require_address(dex, "Invalid DEX address")

    @atomic
    def update_wrapped_native(self, caller: str, wrapped_native: str) -> None:
        self.ownable.require_owner(caller)
        self.wrapped_native = _require_address(wrapped_native, "Invalid wrapped native address")
