from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

from handguard.log_utils import REPO_ROOT
from handguard.units import PRICE_DECIMALS, parse_units

# Always load .env from the repository root
load_dotenv(dotenv_path=REPO_ROOT / ".env")

_DEFAULT_PATH = Path(os.getenv("HANDGUARD_RUNTIME_CONFIG") or REPO_ROOT / "config" / "runtime.yaml")

DEFAULT_FEE_BPS = 100
DEFAULT_CREATOR_FEE_SHARE_BPS = 5_000
DEFAULT_CREATION_FEE = "1000"
DEFAULT_MAX_BASKET_TOKENS = 10
DEFAULT_SLIPPAGE_BPS = 300
DEFAULT_DEADLINE_SECONDS = 300
DEFAULT_POOL_FEE_BPS = 30
DEFAULT_MIN_REBALANCE_USD = "0"


@lru_cache(maxsize=1)
def load_runtime_config(path: Path | str | None = None) -> Dict[str, Any]:
    """
    Load runtime.yaml once per process.

    Missing files yield {} so every typed view falls back to its defaults;
    a malformed file raises, since running with half a config is worse.
    """
    cfg_path = Path(path) if path is not None else _DEFAULT_PATH
    if not cfg_path.exists():
        return {}
    with cfg_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


def _section(cfg: Dict[str, Any] | None, name: str) -> Dict[str, Any]:
    if cfg is None:
        cfg = load_runtime_config()
    return cfg.get(name, {}) or {}


def _clamp(value: Any, low: int, high: int, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, parsed))


@dataclass
class ProtocolConfig:
    """Fees and limits shared by the registry and every fund it creates."""
    fee_bps: int = DEFAULT_FEE_BPS
    creator_fee_share_bps: int = DEFAULT_CREATOR_FEE_SHARE_BPS
    creation_fee: int = parse_units(DEFAULT_CREATION_FEE)
    max_basket_tokens: int = DEFAULT_MAX_BASKET_TOKENS


@dataclass
class SwapConfig:
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    deadline_seconds: int = DEFAULT_DEADLINE_SECONDS
    pool_fee_bps: int = DEFAULT_POOL_FEE_BPS
    # USD with price decimals; rebalance legs at or below this drift are left alone
    min_rebalance_usd: int = 0


@dataclass
class MirrorConfig:
    enabled: bool = False
    env: str = "prod"
    root_collection: str = "handguard"


@dataclass
class OracleConfig:
    source: str = "static"
    http_url: str = "https://api.coingecko.com/api/v3/simple/price"
    cache_seconds: float = 60.0
    timeout_seconds: float = 5.0
    price_feeds: Dict[str, str] = field(default_factory=dict)
    static_prices: Dict[str, str] = field(default_factory=dict)


def get_protocol_config(cfg: Dict[str, Any] | None = None) -> ProtocolConfig:
    section = _section(cfg, "protocol")
    try:
        creation_fee = parse_units(section.get("creation_fee", DEFAULT_CREATION_FEE))
    except ArithmeticError:
        creation_fee = parse_units(DEFAULT_CREATION_FEE)
    return ProtocolConfig(
        fee_bps=_clamp(section.get("fee_bps"), 0, 10_000, DEFAULT_FEE_BPS),
        creator_fee_share_bps=_clamp(
            section.get("creator_fee_share_bps"), 0, 10_000, DEFAULT_CREATOR_FEE_SHARE_BPS
        ),
        creation_fee=max(0, creation_fee),
        max_basket_tokens=_clamp(section.get("max_basket_tokens"), 1, 100, DEFAULT_MAX_BASKET_TOKENS),
    )


def get_swap_config(cfg: Dict[str, Any] | None = None) -> SwapConfig:
    section = _section(cfg, "swap")
    try:
        min_rebalance_usd = parse_units(section.get("min_rebalance_usd", DEFAULT_MIN_REBALANCE_USD), PRICE_DECIMALS)
    except ArithmeticError:
        min_rebalance_usd = 0
    return SwapConfig(
        slippage_bps=_clamp(section.get("slippage_bps"), 0, 10_000, DEFAULT_SLIPPAGE_BPS),
        deadline_seconds=_clamp(section.get("deadline_seconds"), 1, 86_400, DEFAULT_DEADLINE_SECONDS),
        pool_fee_bps=_clamp(section.get("pool_fee_bps"), 0, 1_000, DEFAULT_POOL_FEE_BPS),
        min_rebalance_usd=max(0, min_rebalance_usd),
    )


def get_mirror_config(cfg: Dict[str, Any] | None = None) -> MirrorConfig:
    section = _section(cfg, "mirror")
    return MirrorConfig(
        enabled=bool(section.get("enabled", False)),
        env=str(section.get("env") or os.getenv("ENV", "prod")),
        root_collection=str(section.get("root_collection") or "handguard"),
    )


def get_oracle_config(cfg: Dict[str, Any] | None = None) -> OracleConfig:
    section = _section(cfg, "oracle")
    defaults = OracleConfig()
    try:
        cache_seconds = max(0.0, float(section.get("cache_seconds", defaults.cache_seconds)))
    except (TypeError, ValueError):
        cache_seconds = defaults.cache_seconds
    return OracleConfig(
        source=str(section.get("source") or defaults.source),
        http_url=str(section.get("http_url") or defaults.http_url),
        cache_seconds=cache_seconds,
        timeout_seconds=float(section.get("timeout_seconds", defaults.timeout_seconds) or defaults.timeout_seconds),
        price_feeds={str(k): str(v) for k, v in (section.get("price_feeds") or {}).items()},
        static_prices={str(k): str(v) for k, v in (section.get("static_prices") or {}).items()},
    )


__all__ = [
    "load_runtime_config",
    "ProtocolConfig",
    "SwapConfig",
    "MirrorConfig",
    "OracleConfig",
    "get_protocol_config",
    "get_swap_config",
    "get_mirror_config",
    "get_oracle_config",
]
