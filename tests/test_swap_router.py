from __future__ import annotations

import pytest

from handguard.adapters.swap_router import ConstantProductRouter
from handguard.errors import InsufficientFunds, SwapFailed
from handguard.tokens import MintableToken

RESERVE = 1_000_000


@pytest.fixture
def lp(state):
    return state.new_account()


@pytest.fixture
def trader(state):
    return state.new_account()


@pytest.fixture
def router(state):
    return ConstantProductRouter(state, fee_bps=30)


def _token(state, owner, symbol):
    return MintableToken(state, symbol, symbol, owner, decimals=6)


@pytest.fixture
def pair(state, lp, trader, router):
    a, b = _token(state, lp, "AAA"), _token(state, lp, "BBB")
    for token in (a, b):
        token.mint(lp, lp, RESERVE)
        token.approve(lp, router.address, RESERVE)
        token.mint(lp, trader, 10_000)
    router.add_liquidity(lp, a.address, b.address, RESERVE, RESERVE)
    return a, b


def test_quotes_follow_constant_product_with_fee(router, pair):
    a, b = pair
    assert router.get_amounts_out(1_000, [a.address, b.address]) == [1_000, 996]
    assert router.get_amounts_in(996, [a.address, b.address]) == [1_000, 996]
    assert router.get_reserves(b.address, a.address) == (RESERVE, RESERVE)


def test_swap_exact_in_moves_tokens_and_reserves(state, router, pair, trader):
    a, b = pair
    a.approve(trader, router.address, 1_000)
    amounts = router.swap_exact_in(trader, 1_000, 990, [a.address, b.address], trader, state.now() + 60)

    assert amounts == [1_000, 996]
    assert a.balance_of(trader) == 9_000
    assert b.balance_of(trader) == 10_996
    assert router.get_reserves(a.address, b.address) == (RESERVE + 1_000, RESERVE - 996)
    assert a.allowance(trader, router.address) == 0


def test_swap_exact_out_respects_max_input(state, router, pair, trader):
    a, b = pair
    a.approve(trader, router.address, 5_000)
    with pytest.raises(SwapFailed, match="Excessive input amount"):
        router.swap_exact_out(trader, 996, 999, [a.address, b.address], trader, state.now())
    amounts = router.swap_exact_out(trader, 996, 1_000, [a.address, b.address], trader, state.now())
    assert amounts == [1_000, 996]


def test_slippage_deadline_and_path_failures(state, clock, router, pair, trader):
    a, b = pair
    a.approve(trader, router.address, 5_000)
    path = [a.address, b.address]

    with pytest.raises(SwapFailed, match="Insufficient output amount"):
        router.swap_exact_in(trader, 1_000, 997, path, trader, state.now())
    with pytest.raises(SwapFailed, match="Expired"):
        router.swap_exact_in(trader, 1_000, 0, path, trader, clock.ts - 1)
    with pytest.raises(SwapFailed, match="Invalid path"):
        router.swap_exact_in(trader, 1_000, 0, [a.address], trader, state.now())

    orphan = _token(state, trader, "ZZZ")
    with pytest.raises(SwapFailed, match="Insufficient liquidity"):
        router.swap_exact_in(trader, 1_000, 0, [a.address, orphan.address], trader, state.now())

    assert a.balance_of(trader) == 10_000


def test_swap_without_approval_is_rejected(state, router, pair, trader):
    a, b = pair
    with pytest.raises(InsufficientFunds, match="Insufficient allowance"):
        router.swap_exact_in(trader, 1_000, 0, [a.address, b.address], trader, state.now())
    assert router.get_reserves(a.address, b.address) == (RESERVE, RESERVE)


def test_multi_hop_path(state, lp, router, pair, trader):
    a, b = pair
    c = _token(state, lp, "CCC")
    c.mint(lp, lp, RESERVE)
    c.approve(lp, router.address, RESERVE)
    b.approve(lp, router.address, RESERVE)
    b.mint(lp, lp, RESERVE)
    router.add_liquidity(lp, b.address, c.address, RESERVE, RESERVE)

    a.approve(trader, router.address, 1_000)
    amounts = router.swap_exact_in(trader, 1_000, 0, [a.address, b.address, c.address], trader, state.now())

    assert amounts == [1_000, 996, 992]
    assert c.balance_of(trader) == amounts[2]
    assert b.balance_of(trader) == 10_000
