from __future__ import annotations

import logging
import os
from typing import Any, Mapping, MutableMapping

from handguard.log_utils import JsonlLogger, get_logger, log_event, safe_dump

__all__ = [
    "FUND_CREATED",
    "FUND_TOKEN_BOUGHT",
    "FUND_TOKEN_SOLD",
    "REBALANCED",
    "PROPORTIONS_UPDATED",
    "TRANSFER",
    "event_logger",
    "validate_event",
    "write_event",
]

_LOG = logging.getLogger("handguard.events")
_DEFAULT_EVENT_PATH = os.getenv("HANDGUARD_EVENTS_PATH") or "logs/events/fund_events.jsonl"

FUND_CREATED = "FundCreated"
FUND_TOKEN_BOUGHT = "FundTokenBought"
FUND_TOKEN_SOLD = "FundTokenSold"
REBALANCED = "Rebalanced"
PROPORTIONS_UPDATED = "ProportionsUpdated"
TRANSFER = "Transfer"

_REQUIRED_FIELDS = {
    FUND_CREATED: {"fund_id", "creator", "fund_name", "fund_ticker", "fund_address", "underlying_tokens"},
    FUND_TOKEN_BOUGHT: {"buyer", "hbar_amount", "fund_tokens_minted", "fee_paid"},
    FUND_TOKEN_SOLD: {"seller", "fund_tokens_burned", "hbar_returned", "fee_paid"},
    REBALANCED: {"total_nav_usd"},
    PROPORTIONS_UPDATED: {"tokens", "proportions"},
    TRANSFER: {"sender", "recipient", "amount"},
}

_EVENT_LOGGER: JsonlLogger | None = None


def event_logger(path: str | None = None) -> JsonlLogger:
    """Default JSONL logger for committed events, created on first use."""
    global _EVENT_LOGGER
    if path is not None:
        return get_logger(path)
    if _EVENT_LOGGER is None:
        _EVENT_LOGGER = get_logger(_DEFAULT_EVENT_PATH)
    return _EVENT_LOGGER


def validate_event(event_type: str, payload: Mapping[str, Any]) -> None:
    """Validate that required keys for an event are present."""
    required = _REQUIRED_FIELDS.get(event_type)
    if not required:
        return
    missing = [name for name in required if name not in payload]
    if missing:
        raise ValueError(f"{event_type} missing fields: {', '.join(sorted(missing))}")


def write_event(record: Any, *, logger: JsonlLogger | None = None) -> None:
    """Write a committed event record to the JSONL log; failures are logged, never raised."""
    target_logger = logger or event_logger()
    body: MutableMapping[str, Any] = safe_dump(record.args)
    try:
        validate_event(record.name, body)
    except ValueError as exc:
        _LOG.warning("skip_event invalid=%s error=%s", record.name, exc)
        return
    body.update(
        {
            "emitter": record.emitter,
            "tx_index": record.tx_index,
            "log_index": record.log_index,
            "block_ts": record.ts,
        }
    )
    try:
        log_event(target_logger, record.name, body)
    except OSError as exc:
        _LOG.warning("event_write_failed type=%s err=%s", record.name, exc)
