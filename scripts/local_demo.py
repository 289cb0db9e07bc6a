#!/usr/bin/env python3
"""Deploy a local Handguard protocol and walk one fund through create / buy / rebalance / sell."""
from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Dict

from handguard import Fund, deploy_protocol, new_state
from handguard.adapters import StaticPriceFeed
from handguard.errors import ProtocolError
from handguard.mirror import FundMirror
from handguard.runtime_config import get_mirror_config, load_runtime_config
from handguard.units import format_units, parse_units


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a local index-fund scenario against an in-process ledger")
    parser.add_argument("--config", help="runtime.yaml path (defaults to HANDGUARD_RUNTIME_CONFIG / config/runtime.yaml)")
    parser.add_argument("--buy", default="1000", help="Native amount the investor buys with (whole units)")
    parser.add_argument("--sell-fraction", type=float, default=0.5, help="Share of the position to sell back (0-1)")
    parser.add_argument("--events", help="JSONL event log path")
    parser.add_argument("--no-events", action="store_true", help="Do not write the JSONL event log")
    parser.add_argument("--mirror", action="store_true", help="Mirror events to Firestore when configured")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args()


def snapshot(fund: Fund, investor: str) -> Dict[str, Any]:
    return {
        "nav_native": str(format_units(fund.get_current_fund_value())),
        "nav_usd": str(format_units(fund.get_fund_value_usd(), 8)),
        "share_price": str(format_units(fund.share_price())),
        "total_supply": str(format_units(fund.total_supply)),
        "investor_shares": str(format_units(fund.balance_of(investor))),
        "weights": {row["token"]: round(row["actual_pct"], 2) for row in fund.get_token_values()},
    }


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    cfg = load_runtime_config(args.config) if args.config else load_runtime_config()

    state = new_state(events_path=args.events, log_events=not args.no_events)
    if args.mirror:
        FundMirror.from_config(state, get_mirror_config(cfg)).attach()

    deployer = state.new_account(funding=parse_units("100000000"))
    prices = StaticPriceFeed({"hedera-hashgraph": "0.07", "bitcoin": "65000", "usd-coin": "1"})
    dep = deploy_protocol(state, deployer, cfg, source=prices, feeds={"WHBAR": "hedera-hashgraph"})
    wbtc = dep.deploy_token("Wrapped Bitcoin", "WBTC", 8, feed_id="bitcoin")
    usdc = dep.deploy_token("USD Coin", "USDC", 6, feed_id="usd-coin")
    for token in (wbtc, usdc):
        dep.seed_pool(token, parse_units("20000000"))

    creator = state.new_account(funding=parse_units("10"))
    investor = state.new_account(funding=parse_units(args.buy) * 2)
    fee = dep.registry.creation_fee
    dep.fee_token.mint(deployer, creator, fee)
    dep.fee_token.approve(creator, dep.registry.address, fee)

    try:
        fund_address = dep.registry.create_fund(
            creator,
            "Blue Chips",
            "BLUE",
            [dep.wrapped_native.address, wbtc.address, usdc.address],
        )
        fund = state.contract(fund_address, Fund)
        print(json.dumps({"step": "created", "fund": fund_address, "weights": fund.proportions()}, indent=2))

        fund.buy(investor, parse_units(args.buy))
        print(json.dumps({"step": "bought", **snapshot(fund, investor)}, indent=2))

        fund.set_proportions(creator, [dep.wrapped_native.address, wbtc.address, usdc.address], [20, 50, 30])
        print(json.dumps({"step": "rebalanced", **snapshot(fund, investor)}, indent=2))

        fraction_bps = int(max(0.0, min(1.0, args.sell_fraction)) * 10_000)
        shares = fund.balance_of(investor) * fraction_bps // 10_000
        if shares:
            returned = fund.sell(investor, shares)
            print(json.dumps({"step": "sold", "returned": str(format_units(returned)), **snapshot(fund, investor)}, indent=2))
    except ProtocolError as exc:
        raise SystemExit(json.dumps(exc.to_dict()))

    print(json.dumps({"events": [e.name for e in state.events]}, indent=2))


if __name__ == "__main__":
    main()
