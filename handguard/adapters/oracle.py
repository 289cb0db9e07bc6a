"""
Price oracle adapter.

`PriceOracle` maps a token address to a feed id and resolves the feed
through a pluggable source. Prices are USD with 8 decimals. A token with no
registered feed always fails with "Price feed not found"; there is no
default price.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Any, Dict, Optional, Protocol

import requests

from handguard.chain import ChainState, Contract, atomic, view
from handguard.errors import ExternalCallError, PriceFeedNotFound, ValidationError
from handguard.ownable import Ownable
from handguard.units import PRICE_DECIMALS, normalize_address

LOG = logging.getLogger("oracle")

__all__ = ["PriceFeedSource", "StaticPriceFeed", "HttpPriceFeed", "PriceOracle", "to_price_units"]


def to_price_units(usd: Any) -> int:
    try:
        dec = Decimal(str(usd))
    except InvalidOperation as exc:
        raise ExternalCallError("Invalid price") from exc
    return int((dec * (Decimal(10) ** PRICE_DECIMALS)).quantize(Decimal(1), rounding=ROUND_DOWN))


class PriceFeedSource(Protocol):
    def latest_price(self, feed_id: str) -> Optional[Decimal]:
        """USD price for the feed, or None when the source does not know it."""


class StaticPriceFeed:
    """In-memory feed source for local deployments and tests."""

    def __init__(self, prices: Optional[Dict[str, Any]] = None) -> None:
        self._prices: Dict[str, Decimal] = {}
        for feed_id, price in (prices or {}).items():
            self.set_price(feed_id, price)

    def set_price(self, feed_id: str, usd: Any) -> None:
        self._prices[str(feed_id)] = Decimal(str(usd))

    def latest_price(self, feed_id: str) -> Optional[Decimal]:
        return self._prices.get(str(feed_id))


class HttpPriceFeed:
    """CoinGecko-style simple-price source; feed ids are the provider's coin ids."""

    def __init__(
        self,
        url: str = "https://api.coingecko.com/api/v3/simple/price",
        cache_seconds: float = 60.0,
        timeout: float = 5.0,
        vs: str = "usd",
    ) -> None:
        self.url = url
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self.vs = vs
        self._cache: Dict[str, Decimal] = {}
        self._cache_ts: Dict[str, float] = {}

    def latest_price(self, feed_id: str) -> Optional[Decimal]:
        now = time.time()
        cached = self._cache.get(feed_id)
        if cached is not None and (now - self._cache_ts.get(feed_id, 0.0)) < self.cache_seconds:
            return cached
        try:
            resp = requests.get(self.url, params={"ids": feed_id, "vs_currencies": self.vs}, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json() or {}
        except (requests.RequestException, ValueError) as exc:
            LOG.warning("[oracle] http_fetch_failed feed=%s err=%s", feed_id, exc)
            raise ExternalCallError("Price source unavailable") from exc
        try:
            price = Decimal(str(data[feed_id][self.vs]))
        except (KeyError, TypeError, InvalidOperation):
            LOG.warning("[oracle] http_price_missing feed=%s", feed_id)
            return None
        self._cache[feed_id] = price
        self._cache_ts[feed_id] = now
        return price


class PriceOracle(Contract):
    _journal_fields = ("feeds", "ownable")

    def __init__(self, state: ChainState, owner: str, source: PriceFeedSource) -> None:
        super().__init__(state)
        self.ownable = Ownable(owner)
        self.source = source
        self.feeds: Dict[str, str] = {}

    @property
    def owner(self) -> str:
        return self.ownable.owner

    @atomic
    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.ownable.transfer_ownership(caller, new_owner)

    @atomic
    def set_price_feed(self, caller: str, token: str, feed_id: str) -> None:
        self.ownable.require_owner(caller)
        normalized = normalize_address(token)
        if normalized is None:
            raise ValidationError("Invalid token address")
        if not feed_id:
            raise ValidationError("Invalid feed")
        self.feeds[normalized] = str(feed_id)
        LOG.info("[oracle] feed_set token=%s feed=%s", normalized, feed_id)

    @view
    def price_feed(self, token: str) -> Optional[str]:
        normalized = normalize_address(token)
        return self.feeds.get(normalized) if normalized else None

    @view
    def get_price(self, token: str) -> int:
        feed_id = self.price_feed(token)
        if feed_id is None:
            raise PriceFeedNotFound(token)
        usd = self.source.latest_price(feed_id)
        if usd is None:
            raise PriceFeedNotFound(token)
        price = to_price_units(usd)
        if price <= 0:
            raise ExternalCallError("Invalid price")
        return price
