from __future__ import annotations

import pytest

from handguard import Fund
from handguard.errors import Unauthorized, ValidationError
from handguard.events import PROPORTIONS_UPDATED, REBALANCED
from handguard.units import parse_units


def _weights(fund):
    return {row["token"]: row["actual_pct"] for row in fund.get_token_values()}


def test_set_proportions_is_owner_only(state, fund, investor, whbar):
    with pytest.raises(Unauthorized, match=f"OwnableUnauthorizedAccount\\({investor}\\)"):
        fund.set_proportions(investor, [whbar.address], [100])


@pytest.mark.parametrize(
    "tokens, percentages, message",
    [
        (["whbar", "wbtc"], [100], "Array lengths mismatch"),
        (["whbar", "whbar"], [50, 50], "Duplicate tokens not allowed"),
        (["whbar", "stranger"], [50, 50], "Token not in fund"),
        (["whbar", "wbtc"], [120, -20], "Invalid proportion"),
        (["whbar", "wbtc"], [50, 40], "Proportions must sum to 100"),
    ],
)
def test_set_proportions_validation(state, fund, creator, whbar, wbtc, tokens, percentages, message):
    lookup = {"whbar": whbar.address, "wbtc": wbtc.address, "stranger": "0x" + "9" * 40}
    before = fund.proportions()
    with pytest.raises(ValidationError, match=message):
        fund.set_proportions(creator, [lookup[t] for t in tokens], percentages)
    assert fund.proportions() == before
    assert state.events_named(PROPORTIONS_UPDATED) == []


def test_unnamed_tokens_drop_to_zero_and_event_lists_basket(state, fund, creator, whbar, wbtc, usdc):
    fund.set_proportions(creator, [wbtc.address, whbar.address], [60, 40])

    assert fund.proportions() == {whbar.address: 40, wbtc.address: 60, usdc.address: 0}
    (event,) = state.events_named(PROPORTIONS_UPDATED, emitter=fund.address)
    assert event.args == {
        "tokens": [whbar.address, wbtc.address, usdc.address],
        "proportions": [40, 60, 0],
    }
    # Empty fund: the rebalance pass runs without touching the oracle.
    (rebalanced,) = state.events_named(REBALANCED, emitter=fund.address)
    assert rebalanced.args == {"total_nav_usd": 0}


def test_empty_fund_rebalances_without_prices(fund, creator, prices):
    prices.set_price("bitcoin", "0")
    plan = fund.rebalance(creator)
    assert plan.is_noop
    assert plan.nav_usd == 0


def test_consolidating_into_wrapped_native_sells_everything_else(fund, creator, investor, whbar, wbtc, usdc):
    fund.buy(investor, parse_units("1000"))
    nav_before = fund.get_current_fund_value()

    plan = fund.set_proportions(creator, [whbar.address], [100])

    assert {leg.token for leg in plan.sells} == {wbtc.address, usdc.address}
    assert wbtc.balance_of(fund.address) == 0
    assert usdc.balance_of(fund.address) == 0
    nav_after = fund.get_current_fund_value()
    assert nav_after == whbar.balance_of(fund.address)
    assert nav_before * 99 // 100 < nav_after < nav_before


def test_rebalance_moves_toward_new_targets(state, fund, creator, investor, whbar, wbtc, usdc):
    fund.buy(investor, parse_units("1000"))
    fund.set_proportions(creator, [whbar.address], [100])

    fund.set_proportions(creator, [wbtc.address, usdc.address], [50, 50])

    weights = _weights(fund)
    assert weights[wbtc.address] == pytest.approx(50, abs=1)
    assert weights[usdc.address] == pytest.approx(50, abs=1)
    assert weights[whbar.address] < 1
    (last,) = state.events_named(REBALANCED, emitter=fund.address)[-1:]
    assert last.args["total_nav_usd"] > 0


def test_rebalance_is_owner_only_and_converges(state, fund, creator, investor, wbtc):
    fund.buy(investor, parse_units("1000"))
    with pytest.raises(Unauthorized):
        fund.rebalance(investor)

    first = fund.rebalance(creator)
    second = fund.rebalance(creator)
    drift_first = sum(leg.usd for leg in first.sells + first.buys)
    drift_second = sum(leg.usd for leg in second.sells + second.buys)
    assert drift_second <= drift_first
    assert len(state.events_named(REBALANCED, emitter=fund.address)) == 2


def test_fund_admin_updates(state, fund, creator, investor, deployment):
    new_treasury = state.new_account()
    with pytest.raises(Unauthorized):
        fund.update_treasury(investor, new_treasury)
    fund.update_treasury(creator, new_treasury)
    assert fund.treasury == new_treasury

    with pytest.raises(ValidationError, match="Invalid oracle address"):
        fund.update_oracle(creator, "0x" + "0" * 40)
    fund.update_dex(creator, deployment.router.address)
    fund.update_wrapped_native(creator, deployment.wrapped_native.address)

    fund.buy(investor, parse_units("10"))
    assert state.native_balance(new_treasury) == parse_units("0.05")

    fund.transfer_ownership(creator, investor)
    assert fund.owner == investor
    with pytest.raises(Unauthorized):
        fund.rebalance(creator)


def test_two_token_reweight_scenario(deployment, state, creator, whbar, wbtc):
    address = deployment.registry.create_fund(creator, "Duo", "DUO", [whbar.address, wbtc.address])
    fund = state.contract(address, Fund)
    assert (fund.target_proportions(whbar.address), fund.target_proportions(wbtc.address)) == (50, 50)

    fund.set_proportions(creator, [whbar.address, wbtc.address], [70, 30])
    assert (fund.target_proportions(whbar.address), fund.target_proportions(wbtc.address)) == (70, 30)

    with pytest.raises(ValidationError, match="Proportions must sum to 100"):
        fund.set_proportions(creator, [whbar.address, wbtc.address], [60, 30])
    assert (fund.target_proportions(whbar.address), fund.target_proportions(wbtc.address)) == (70, 30)
    assert sum(fund.proportions().values()) == 100


@pytest.mark.parametrize("runtime_cfg", [{"swap": {"min_rebalance_usd": "1000000"}}])
def test_rebalance_skips_legs_below_configured_drift(state, fund, creator, investor, whbar, wbtc, usdc):
    assert fund.min_rebalance_usd == 1_000_000 * 10**8
    fund.buy(investor, parse_units("1000"))
    balances = [t.balance_of(fund.address) for t in (whbar, wbtc, usdc)]

    plan = fund.set_proportions(creator, [whbar.address], [100])

    assert plan.is_noop
    assert plan.nav_usd > 0
    assert [t.balance_of(fund.address) for t in (whbar, wbtc, usdc)] == balances
    assert state.events_named(REBALANCED, emitter=fund.address)[-1].args["total_nav_usd"] == plan.nav_usd
