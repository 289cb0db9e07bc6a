from __future__ import annotations

import threading
import time

import pytest

from handguard import Fund, deploy_protocol
from handguard.errors import InsufficientFunds, PriceFeedNotFound, SwapFailed, ValidationError
from handguard.events import FUND_TOKEN_BOUGHT, FUND_TOKEN_SOLD, TRANSFER
from handguard.units import parse_units

from conftest import fund_creator


@pytest.fixture
def native_only_fund(state, prices, treasury):
    """Single-token fund holding wrapped native directly, no fees: share math is exact."""
    deployer = state.new_account(funding=parse_units("1000"))
    dep = deploy_protocol(
        state,
        deployer,
        {"protocol": {"fee_bps": 0}},
        treasury=treasury,
        source=prices,
        feeds={"WHBAR": "hedera-hashgraph"},
    )
    creator = fund_creator(dep)
    address = dep.registry.create_fund(creator, "Hbar", "HB", [dep.wrapped_native.address])
    return state.contract(address, Fund)


def test_first_buy_mints_one_to_one_and_later_buys_pro_rata(state, native_only_fund, investor):
    fund = native_only_fund
    assert fund.buy(investor, parse_units("10")) == parse_units("10")
    assert fund.get_current_fund_value() == parse_units("10")

    second = state.new_account(funding=parse_units("5"))
    assert fund.buy(second, parse_units("5")) == parse_units("5")
    assert fund.total_supply == parse_units("15")
    assert fund.share_price() == parse_units("1")


def test_buy_splits_fee_between_creator_and_treasury(state, fund, creator, treasury, investor):
    creator_before = state.native_balance(creator)
    treasury_before = state.native_balance(treasury)

    minted = fund.buy(investor, parse_units("5"))

    assert minted == parse_units("5")
    assert state.native_balance(creator) - creator_before == parse_units("0.025")
    assert state.native_balance(treasury) - treasury_before == parse_units("0.025")
    (event,) = state.events_named(FUND_TOKEN_BOUGHT, emitter=fund.address)
    assert event.args == {
        "buyer": investor,
        "hbar_amount": parse_units("5"),
        "fund_tokens_minted": parse_units("5"),
        "fee_paid": parse_units("0.05"),
    }


def test_buy_spreads_net_value_by_weight(state, fund, investor, whbar, wbtc, usdc):
    fund.buy(investor, parse_units("1000"))

    net = parse_units("990")
    assert whbar.balance_of(fund.address) == net * 33 // 100
    assert wbtc.balance_of(fund.address) > 0
    assert usdc.balance_of(fund.address) > 0
    assert state.native_balance(fund.address) == 0

    nav = fund.get_current_fund_value()
    # Only the two swapped legs pay the 0.3% pool fee.
    assert parse_units("985") < nav <= net
    weights = {row["token"]: row["actual_pct"] for row in fund.get_token_values()}
    assert weights[usdc.address] == pytest.approx(34, abs=0.5)
    assert fund.get_fund_value_usd() == pytest.approx(nav * 5_000_000 // 10**18, rel=1e-6)


def test_later_buyers_get_shares_against_current_nav(state, fund, investor):
    fund.buy(investor, parse_units("1000"))
    nav_before = fund.get_current_fund_value()
    supply_before = fund.total_supply

    late = state.new_account(funding=parse_units("500"))
    minted = fund.buy(late, parse_units("500"))

    assert minted == parse_units("500") * supply_before // nav_before
    assert minted > parse_units("500")
    assert fund.balance_of(late) == minted


def test_buy_rejects_zero_and_unfunded(state, fund):
    with pytest.raises(ValidationError, match="Must send value"):
        fund.buy(state.new_account(), 0)
    with pytest.raises(InsufficientFunds, match="Insufficient native balance"):
        fund.buy(state.new_account(funding=1), parse_units("1"))


def test_failed_buy_rolls_back_everything(deployment, state, investor, creator, whbar):
    unpriced = deployment.deploy_token("Unpriced", "UNP", 18)
    address = deployment.registry.create_fund(creator, "Broken", "BRK", [whbar.address, unpriced.address])
    fund = state.contract(address, Fund)
    investor_before = state.native_balance(investor)
    creator_before = state.native_balance(creator)
    wrapped_supply = whbar.total_supply

    with pytest.raises(PriceFeedNotFound):
        fund.buy(investor, parse_units("100"))

    assert state.native_balance(investor) == investor_before
    assert state.native_balance(creator) == creator_before
    assert whbar.total_supply == wrapped_supply
    assert fund.total_supply == 0
    assert state.events_named(FUND_TOKEN_BOUGHT) == []


def test_buy_aborts_when_pool_price_drifts_past_slippage(fund, prices, investor):
    # Oracle now says BTC is much cheaper than the pool, so the quoted minimum is unreachable.
    prices.set_price("bitcoin", "30000")
    with pytest.raises(SwapFailed, match="Insufficient output amount"):
        fund.buy(investor, parse_units("100"))
    assert fund.total_supply == 0


def test_sell_everything_returns_proceeds_minus_fee(state, fund, investor, creator, whbar, wbtc, usdc):
    fund.buy(investor, parse_units("1000"))
    shares = fund.balance_of(investor)
    balance_before = state.native_balance(investor)
    creator_before = state.native_balance(creator)

    returned = fund.sell(investor, shares)

    assert state.native_balance(investor) - balance_before == returned
    assert parse_units("970") < returned < parse_units("990")
    assert fund.total_supply == 0
    assert [t.balance_of(fund.address) for t in (whbar, wbtc, usdc)] == [0, 0, 0]
    (event,) = state.events_named(FUND_TOKEN_SOLD, emitter=fund.address)
    fee = event.args["fee_paid"]
    assert event.args["hbar_returned"] == returned
    assert event.args["fund_tokens_burned"] == shares
    assert fee == (returned + fee) * 100 // 10_000
    assert state.native_balance(creator) - creator_before == fee // 2


def test_partial_sell_takes_pro_rata_slice(fund, investor, wbtc):
    fund.buy(investor, parse_units("1000"))
    held = wbtc.balance_of(fund.address)
    shares = fund.balance_of(investor)

    fund.sell(investor, shares // 4)

    assert wbtc.balance_of(fund.address) == held - held * (shares // 4) // shares
    assert fund.balance_of(investor) == shares - shares // 4


def test_sell_validation(state, fund, investor):
    with pytest.raises(ValidationError, match="Amount must be greater than 0"):
        fund.sell(investor, 0)
    with pytest.raises(InsufficientFunds, match="Insufficient fund tokens"):
        fund.sell(investor, 1)
    fund.buy(investor, parse_units("10"))
    with pytest.raises(InsufficientFunds, match="Insufficient fund tokens"):
        fund.sell(state.new_account(), 1)


def test_shares_are_transferable(state, fund, investor):
    fund.buy(investor, parse_units("10"))
    friend = state.new_account()
    fund.transfer(investor, friend, parse_units("4"))
    assert fund.balance_of(friend) == parse_units("4")
    fund.sell(friend, parse_units("4"))
    assert fund.balance_of(friend) == 0


def test_share_supply_matches_holder_balances(state, fund):
    holders = [state.new_account(funding=parse_units("100")) for _ in range(3)]
    for idx, holder in enumerate(holders):
        fund.buy(holder, parse_units(str(10 * (idx + 1))))
        assert sum(fund.balances.holders().values()) == fund.total_supply

    fund.sell(holders[1], fund.balance_of(holders[1]) // 3)
    fund.transfer(holders[2], holders[0], parse_units("1"))
    fund.sell(holders[0], fund.balance_of(holders[0]))

    assert sum(fund.balances.holders().values()) == fund.total_supply
    assert fund.balance_of(holders[0]) == 0


def test_share_transfers_emit_transfer_events(state, fund, investor):
    fund.buy(investor, parse_units("10"))
    friend, spender = state.new_account(), state.new_account()
    fund.transfer(investor, friend, parse_units("2"))
    fund.approve(friend, spender, parse_units("1"))
    fund.transfer_from(spender, friend, investor, parse_units("1"))

    moves = [e.args for e in state.events_named(TRANSFER, emitter=fund.address)]
    assert moves == [
        {"sender": investor, "recipient": friend, "amount": parse_units("2")},
        {"sender": friend, "recipient": investor, "amount": parse_units("1")},
    ]
    assert fund.balance_of(friend) == parse_units("1")


def test_get_token_balance(fund, investor, whbar, wbtc, usdc):
    assert fund.get_token_balance(wbtc.address) == 0
    fund.buy(investor, parse_units("1000"))
    for token in (whbar, wbtc, usdc):
        assert fund.get_token_balance(token.address) == token.balance_of(fund.address) > 0
    with pytest.raises(ValidationError, match="Token not in fund"):
        fund.get_token_balance("0x" + "9" * 40)


def test_readers_wait_for_buy_to_commit(state, fund, investor, prices, deployment):
    value = parse_units("10")
    native_before = state.native_balance(investor)
    seen = {}

    class ReadingFeed:
        """Starts a reader on another thread the first time the buy asks for a price."""

        def __init__(self):
            self.thread = None
            self.blocked = None

        def latest_price(self, feed_id):
            if self.thread is None:
                started = threading.Event()

                def reader():
                    started.set()
                    seen["native"] = state.native_balance(investor)
                    seen["shares"] = fund.balance_of(investor)

                self.thread = threading.Thread(target=reader)
                self.thread.start()
                started.wait(timeout=5)
                time.sleep(0.05)
                self.blocked = not seen
            return prices.latest_price(feed_id)

    feed = ReadingFeed()
    deployment.oracle.source = feed
    minted = fund.buy(investor, value)
    feed.thread.join(timeout=5)

    assert feed.blocked is True
    assert seen == {"native": native_before - value, "shares": minted}
