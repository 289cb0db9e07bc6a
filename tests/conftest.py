"""
Pytest configuration and shared fixtures for test suite.

Every fixture builds on a fresh `ChainState` with a fixed clock and no JSONL
event log; integration tests opt into the log explicitly through tmp_path.
"""
from __future__ import annotations

import os

import pytest

from handguard import ChainState, Fund, deploy_protocol
from handguard.adapters import StaticPriceFeed
from handguard.units import parse_units

# Force safe defaults even if .env sets production values.
os.environ["ENV"] = "test"

GENESIS_TS = 1_700_000_000
POOL_DEPTH = parse_units("50000000")


class FixedClock:
    def __init__(self, ts: int = GENESIS_TS) -> None:
        self.ts = ts

    def __call__(self) -> float:
        return self.ts

    def advance(self, seconds: int) -> None:
        self.ts += seconds


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def state(clock) -> ChainState:
    return ChainState(clock=clock)


@pytest.fixture
def prices() -> StaticPriceFeed:
    return StaticPriceFeed({"hedera-hashgraph": "0.05", "bitcoin": "60000", "usd-coin": "1"})


@pytest.fixture
def runtime_cfg() -> dict:
    """Empty config: every typed view falls back to its defaults."""
    return {}


@pytest.fixture
def treasury(state) -> str:
    return state.new_account()


@pytest.fixture
def deployment(state, prices, treasury, runtime_cfg):
    deployer = state.new_account(funding=parse_units("1000000000"))
    return deploy_protocol(
        state,
        deployer,
        runtime_cfg,
        treasury=treasury,
        source=prices,
        feeds={"WHBAR": "hedera-hashgraph"},
    )


@pytest.fixture
def whbar(deployment):
    return deployment.wrapped_native


@pytest.fixture
def wbtc(deployment):
    token = deployment.deploy_token("Wrapped Bitcoin", "WBTC", 8, feed_id="bitcoin")
    deployment.seed_pool(token, POOL_DEPTH)
    return token


@pytest.fixture
def usdc(deployment):
    token = deployment.deploy_token("USD Coin", "USDC", 6, feed_id="usd-coin")
    deployment.seed_pool(token, POOL_DEPTH)
    return token


def fund_creator(deployment, native: str = "100") -> str:
    """New account holding (and having approved) exactly one creation fee of HGI."""
    account = deployment.state.new_account(funding=parse_units(native))
    fee = deployment.registry.creation_fee
    deployment.fee_token.mint(deployment.deployer, account, fee)
    deployment.fee_token.approve(account, deployment.registry.address, fee)
    return account


@pytest.fixture
def creator(deployment) -> str:
    return fund_creator(deployment)


@pytest.fixture
def investor(state) -> str:
    return state.new_account(funding=parse_units("1000000"))


@pytest.fixture
def fund(deployment, creator, whbar, wbtc, usdc) -> Fund:
    address = deployment.registry.create_fund(
        creator,
        "Blue Chips",
        "BLUE",
        [whbar.address, wbtc.address, usdc.address],
    )
    return deployment.state.contract(address, Fund)
