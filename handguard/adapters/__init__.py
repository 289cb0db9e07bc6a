"""
External collaborators consumed by funds through narrow interfaces.

    oracle.py       - token -> USD price (8 decimals) via registered feeds
    swap_router.py  - exact-in / exact-out swaps with slippage and deadline
"""
from handguard.adapters.oracle import HttpPriceFeed, PriceOracle, StaticPriceFeed
from handguard.adapters.swap_router import ConstantProductRouter

__all__ = [
    "PriceOracle",
    "StaticPriceFeed",
    "HttpPriceFeed",
    "ConstantProductRouter",
]
