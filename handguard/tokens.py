"""Fungible token contracts: generic ledger, mintable token, fee token, wrapped native."""

from __future__ import annotations

import logging
from typing import Dict, Tuple

from handguard.balances import BalanceMap, require_amount
from handguard.chain import Contract, ChainState, atomic, view
from handguard.errors import InsufficientFunds, ValidationError
from handguard.ownable import Ownable
from handguard.units import NATIVE_DECIMALS, normalize_address, is_zero_address

LOG = logging.getLogger("tokens")

__all__ = ["TokenLedger", "MintableToken", "FeeToken", "WrappedNative"]


class TokenLedger(Contract):
    """Fungible token with the usual transfer/approve/allowance surface."""

    _journal_fields = ("balances", "allowances")

    def __init__(self, state: ChainState, name: str, symbol: str, decimals: int = NATIVE_DECIMALS) -> None:
        super().__init__(state)
        self.name = name
        self.symbol = symbol
        self.decimals = int(decimals)
        self.balances = BalanceMap("Insufficient balance")
        self.allowances: Dict[Tuple[str, str], int] = {}

    @property
    @view
    def total_supply(self) -> int:
        return self.balances.total

    @view
    def balance_of(self, holder: str) -> int:
        return self.balances.balance_of(holder)

    @view
    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner.lower(), spender.lower()), 0)

    @atomic
    def transfer(self, caller: str, to: str, amount: int) -> bool:
        recipient = _require_recipient(to)
        self.balances.transfer(caller, recipient, amount)
        return True

    @atomic
    def approve(self, caller: str, spender: str, amount: int) -> bool:
        target = _require_recipient(spender)
        require_amount(amount)
        self.allowances[(caller.lower(), target)] = amount
        return True

    @atomic
    def transfer_from(self, caller: str, owner: str, to: str, amount: int) -> bool:
        recipient = _require_recipient(to)
        self._spend_allowance(owner, caller, amount)
        self.balances.transfer(owner, recipient, amount)
        return True

    def _spend_allowance(self, owner: str, spender: str, amount: int) -> None:
        key = (owner.lower(), spender.lower())
        current = self.allowances.get(key, 0)
        if current < amount:
            raise InsufficientFunds("Insufficient allowance")
        self.allowances[key] = current - amount

    def _mint(self, to: str, amount: int) -> None:
        self.balances.credit(_require_recipient(to), amount)

    def _burn(self, holder: str, amount: int) -> None:
        self.balances.debit(holder, amount)


def _require_recipient(address: str) -> str:
    normalized = normalize_address(address)
    if normalized is None or is_zero_address(normalized):
        raise ValidationError("Invalid receiver address")
    return normalized


class MintableToken(TokenLedger):
    """Ownable token whose owner may mint; basket tokens in local deployments."""

    _journal_fields = TokenLedger._journal_fields + ("ownable",)

    def __init__(
        self,
        state: ChainState,
        name: str,
        symbol: str,
        owner: str,
        decimals: int = NATIVE_DECIMALS,
    ) -> None:
        super().__init__(state, name, symbol, decimals)
        self.ownable = Ownable(owner)

    @property
    def owner(self) -> str:
        return self.ownable.owner

    @atomic
    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.ownable.transfer_ownership(caller, new_owner)

    @atomic
    def mint(self, caller: str, to: str, amount: int) -> None:
        self.ownable.require_owner(caller)
        self._mint(to, amount)
        LOG.info("[token] mint symbol=%s to=%s amount=%d", self.symbol, to, amount)


class FeeToken(MintableToken):
    """The platform fee token ("HGI") spent to create funds."""

    def __init__(self, state: ChainState, owner: str, name: str = "Handguard Index Token", symbol: str = "HGI") -> None:
        super().__init__(state, name, symbol, owner, NATIVE_DECIMALS)


class WrappedNative(TokenLedger):
    """Native currency wrapped 1:1 so it can trade through the router."""

    def __init__(self, state: ChainState, name: str = "Wrapped HBAR", symbol: str = "WHBAR") -> None:
        super().__init__(state, name, symbol, NATIVE_DECIMALS)

    @atomic
    def deposit(self, caller: str, value: int) -> None:
        self.state.native.transfer(caller, self.address, value)
        self._mint(caller, value)

    @atomic
    def withdraw(self, caller: str, amount: int) -> None:
        self._burn(caller, amount)
        self.state.native.transfer(self.address, caller, amount)
