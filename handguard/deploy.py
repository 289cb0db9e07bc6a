"""
Local protocol deployment.

Mirrors the production deploy order: fee token, price oracle, wrapped
native, swap router, then the fund registry wired to all of them. Price
feeds listed in runtime.yaml are registered on the way out; `WHBAR` (or
`wrapped_native`) in the feed map refers to the freshly deployed wrapped
native token, anything else must be an address.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from handguard.adapters.oracle import HttpPriceFeed, PriceFeedSource, PriceOracle, StaticPriceFeed
from handguard.adapters.swap_router import ConstantProductRouter
from handguard.chain import ChainState
from handguard.events import event_logger
from handguard.nav import quote_amount
from handguard.registry import FundRegistry
from handguard.runtime_config import (
    OracleConfig,
    get_oracle_config,
    get_protocol_config,
    get_swap_config,
    load_runtime_config,
)
from handguard.tokens import FeeToken, MintableToken, WrappedNative
from handguard.units import NATIVE_DECIMALS, is_address

LOG = logging.getLogger("deploy")

__all__ = ["Deployment", "deploy_protocol", "new_state", "price_source"]

_WRAPPED_ALIASES = {"whbar", "wrapped_native"}


@dataclass
class Deployment:
    state: ChainState
    deployer: str
    treasury: str
    fee_token: FeeToken
    oracle: PriceOracle
    wrapped_native: WrappedNative
    router: ConstantProductRouter
    registry: FundRegistry

    def deploy_token(
        self,
        name: str,
        symbol: str,
        decimals: int = NATIVE_DECIMALS,
        feed_id: Optional[str] = None,
    ) -> MintableToken:
        """Deploy a basket token owned by the deployer and optionally register its price feed."""
        token = MintableToken(self.state, name, symbol, self.deployer, decimals)
        if feed_id:
            self.oracle.set_price_feed(self.deployer, token.address, feed_id)
        LOG.info("[deploy] token symbol=%s address=%s decimals=%d", symbol, token.address, decimals)
        return token

    def seed_pool(self, token: MintableToken, native_amount: int) -> int:
        """
        Open a wrapped-native/token pool at the oracle price.

        The deployer wraps `native_amount` from its own native balance and
        mints the matching token side, so it must own `token`. Returns the
        token amount deposited.
        """
        wrapped = self.wrapped_native
        token_amount = quote_amount(
            native_amount,
            self.oracle.get_price(wrapped.address),
            wrapped.decimals,
            self.oracle.get_price(token.address),
            token.decimals,
        )
        with self.state.transaction():
            wrapped.deposit(self.deployer, native_amount)
            token.mint(self.deployer, self.deployer, token_amount)
            wrapped.approve(self.deployer, self.router.address, native_amount)
            token.approve(self.deployer, self.router.address, token_amount)
            self.router.add_liquidity(self.deployer, wrapped.address, token.address, native_amount, token_amount)
        return token_amount


def new_state(
    clock: Optional[Callable[[], float]] = None,
    events_path: Optional[str] = None,
    log_events: bool = True,
) -> ChainState:
    """Fresh state with committed events written to the JSONL event log."""
    logger = event_logger(events_path) if log_events else None
    return ChainState(clock=clock, event_logger=logger)


def price_source(cfg: OracleConfig) -> PriceFeedSource:
    if cfg.source == "http":
        return HttpPriceFeed(url=cfg.http_url, cache_seconds=cfg.cache_seconds, timeout=cfg.timeout_seconds)
    if cfg.source != "static":
        LOG.warning("[deploy] unknown oracle source=%s, using static prices", cfg.source)
    return StaticPriceFeed(cfg.static_prices)


def deploy_protocol(
    state: ChainState,
    deployer: str,
    cfg: Optional[Dict[str, Any]] = None,
    *,
    treasury: Optional[str] = None,
    source: Optional[PriceFeedSource] = None,
    feeds: Optional[Dict[str, str]] = None,
) -> Deployment:
    cfg = load_runtime_config() if cfg is None else cfg
    protocol = get_protocol_config(cfg)
    swap = get_swap_config(cfg)
    oracle_cfg = get_oracle_config(cfg)
    treasury = treasury or deployer

    with state.transaction():
        fee_token = FeeToken(state, deployer)
        oracle = PriceOracle(state, deployer, source or price_source(oracle_cfg))
        wrapped = WrappedNative(state)
        router = ConstantProductRouter(state, fee_bps=swap.pool_fee_bps)
        registry = FundRegistry(
            state,
            deployer,
            fee_token.address,
            oracle.address,
            treasury,
            router.address,
            wrapped.address,
            protocol=protocol,
            swap=swap,
        )

        feed_map = dict(oracle_cfg.price_feeds)
        feed_map.update(feeds or {})
        for key, feed_id in feed_map.items():
            if key.lower() in _WRAPPED_ALIASES:
                oracle.set_price_feed(deployer, wrapped.address, feed_id)
            elif is_address(key):
                oracle.set_price_feed(deployer, key, feed_id)
            else:
                LOG.warning("[deploy] skip_feed key=%s reason=not_an_address", key)

    LOG.info(
        "[deploy] protocol registry=%s oracle=%s router=%s wrapped=%s hgi=%s treasury=%s",
        registry.address,
        oracle.address,
        router.address,
        wrapped.address,
        fee_token.address,
        treasury,
    )
    return Deployment(
        state=state,
        deployer=deployer.lower(),
        treasury=treasury.lower(),
        fee_token=fee_token,
        oracle=oracle,
        wrapped_native=wrapped,
        router=router,
        registry=registry,
    )
