"""
Balance maps.

`BalanceMap` is the single mutation path for any holder -> amount mapping
(native currency, fee token, basket tokens, fund shares). Balances never go
negative and the running total always equals the sum of balances.
"""

from __future__ import annotations

from typing import Dict, Iterator, Optional, Tuple

from handguard.errors import InsufficientFunds, ValidationError

__all__ = ["BalanceMap", "require_amount"]


class BalanceMap:
    """Holder -> integer balance with atomic debit/credit."""

    def __init__(self, insufficient_message: str = "Insufficient balance") -> None:
        self._balances: Dict[str, int] = {}
        self._total = 0
        self.insufficient_message = insufficient_message

    def __len__(self) -> int:
        return len(self._balances)

    def __iter__(self) -> Iterator[Tuple[str, int]]:
        return iter(sorted(self._balances.items()))

    @property
    def total(self) -> int:
        return self._total

    def balance_of(self, holder: str) -> int:
        return self._balances.get(holder.lower(), 0)

    def credit(self, holder: str, amount: int) -> None:
        amount = require_amount(amount)
        if amount == 0:
            return
        key = holder.lower()
        self._balances[key] = self._balances.get(key, 0) + amount
        self._total += amount

    def debit(self, holder: str, amount: int, message: Optional[str] = None) -> None:
        amount = require_amount(amount)
        if amount == 0:
            return
        key = holder.lower()
        current = self._balances.get(key, 0)
        if current < amount:
            raise InsufficientFunds(message or self.insufficient_message)
        remaining = current - amount
        if remaining:
            self._balances[key] = remaining
        else:
            self._balances.pop(key, None)
        self._total -= amount

    def transfer(self, sender: str, recipient: str, amount: int, message: Optional[str] = None) -> None:
        self.debit(sender, amount, message)
        self.credit(recipient, amount)

    def holders(self) -> Dict[str, int]:
        return dict(self._balances)


def require_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be an integer")
    if amount < 0:
        raise ValidationError("Amount must not be negative")
    return amount
