"""
Rebalance planning.

The plan is a heuristic, not a simultaneous solve: surpluses are sold first
(basket order) to raise wrapped native, then deficits are bought (basket
order) with whatever was raised. Pool fees and price impact leave a small
residual drift, so repeated passes converge further.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence

from handguard.nav import Holding


@dataclass
class RebalanceLeg:
    token: str
    usd: int
    amount: int = 0


@dataclass
class RebalancePlan:
    nav_usd: int
    targets_usd: Dict[str, int] = field(default_factory=dict)
    sells: List[RebalanceLeg] = field(default_factory=list)
    buys: List[RebalanceLeg] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.sells and not self.buys


def plan_rebalance(
    holdings: Sequence[Holding],
    proportions: Mapping[str, int],
    min_trade_usd: int = 0,
) -> RebalancePlan:
    """
    Compare each holding's USD value with its target share of NAV.

    Sell legs carry the token amount to sell (pro rata of the holding);
    buy legs carry only the USD shortfall, since the native available to fill
    them is known only after the sells settle.
    """
    nav_usd = sum(h.value_usd for h in holdings)
    plan = RebalancePlan(nav_usd=nav_usd)
    if nav_usd <= 0:
        return plan
    for holding in holdings:
        target = nav_usd * int(proportions.get(holding.token, 0)) // 100
        plan.targets_usd[holding.token] = target
        current = holding.value_usd
        if current > target:
            excess = current - target
            if excess <= min_trade_usd:
                continue
            amount = holding.balance * excess // current
            if amount > 0:
                plan.sells.append(RebalanceLeg(token=holding.token, usd=excess, amount=amount))
        elif current < target:
            deficit = target - current
            if deficit <= min_trade_usd:
                continue
            plan.buys.append(RebalanceLeg(token=holding.token, usd=deficit))
    return plan
