"""
Firestore mirror for committed fund events.

Layout (all under `{root}/{env}`):
    funds/{fund_address}                  metadata, weights, supply, last NAV
    funds/{fund_address}/holders/{holder} share balance snapshot
    transactions/{tx_index}-{log_index}   buy / sell records

The mirror is a read model for dashboards. It is eventually consistent and
never authoritative: every write failure is logged and dropped.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from google.cloud import firestore

from handguard.chain import ChainState, EventRecord
from handguard.events import (
    FUND_CREATED,
    FUND_TOKEN_BOUGHT,
    FUND_TOKEN_SOLD,
    PROPORTIONS_UPDATED,
    REBALANCED,
    TRANSFER,
)
from handguard.fund import Fund
from handguard.log_utils import safe_dump
from handguard.runtime_config import MirrorConfig, get_mirror_config

LOG = logging.getLogger("mirror")

__all__ = ["FundMirror", "get_db"]


class _NoopDoc:
    _is_noop = True

    def set(self, *_args, **_kwargs):
        return None

    def collection(self, _name: str):
        return _NOOP_DB


class _NoopFirestore:
    _is_noop = True

    def collection(self, _name: str):
        return self

    def document(self, _name: str):
        return _NoopDoc()


_NOOP_DB = _NoopFirestore()


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def firestore_available(db: Any) -> bool:
    return db is not None and not getattr(db, "_is_noop", False)


def get_db(cfg: Optional[MirrorConfig] = None) -> Any:
    """Firestore client when the mirror is enabled and credentials resolve, otherwise a no-op client."""
    cfg = cfg or get_mirror_config()
    if not cfg.enabled:
        return _NOOP_DB
    try:
        return firestore.Client()
    except Exception as exc:  # credentials / project resolution
        LOG.warning("[mirror] client_init_failed: %s", exc)
        return _NOOP_DB


class FundMirror:
    def __init__(self, state: ChainState, db: Any = None, env: str = "prod", root: str = "handguard") -> None:
        self.state = state
        self.db = db if db is not None else _NOOP_DB
        self.env = env
        self.root = root

    @classmethod
    def from_config(cls, state: ChainState, cfg: Optional[MirrorConfig] = None) -> "FundMirror":
        cfg = cfg or get_mirror_config()
        return cls(state, db=get_db(cfg), env=cfg.env, root=cfg.root_collection)

    def attach(self) -> "FundMirror":
        self.state.subscribe(self.handle)
        if not firestore_available(self.db):
            LOG.info("[mirror] attached with no-op client env=%s", self.env)
        return self

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _env_doc(self):
        return self.db.collection(self.root).document(self.env)

    def _fund_doc(self, fund_address: str):
        return self._env_doc().collection("funds").document(fund_address)

    def _holder_doc(self, fund_address: str, holder: str):
        return self._fund_doc(fund_address).collection("holders").document(holder)

    def _tx_doc(self, record: EventRecord):
        return self._env_doc().collection("transactions").document(f"{record.tx_index}-{record.log_index}")

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle(self, record: EventRecord) -> None:
        handler = {
            FUND_CREATED: self._on_created,
            FUND_TOKEN_BOUGHT: self._on_trade,
            FUND_TOKEN_SOLD: self._on_trade,
            PROPORTIONS_UPDATED: self._on_proportions,
            REBALANCED: self._on_rebalanced,
            TRANSFER: self._on_transfer,
        }.get(record.name)
        if handler is None:
            return
        try:
            handler(record)
        except Exception as exc:
            LOG.warning("[mirror] error %s emitter=%s: %s", record.name, record.emitter, exc)

    def _fund(self, address: str) -> Fund:
        return self.state.contract(address, Fund)

    def _on_created(self, record: EventRecord) -> None:
        args = record.args
        fund = self._fund(args["fund_address"])
        payload: Dict[str, Any] = {
            "fund_id": args["fund_id"],
            "name": args["fund_name"],
            "ticker": args["fund_ticker"],
            "creator": args["creator"],
            "tokens": list(args["underlying_tokens"]),
            "weights": fund.proportions(),
            "total_supply": fund.total_supply,
            "created_ts": record.ts,
            "updated_at": _utcnow_iso(),
        }
        self._fund_doc(fund.address).set(safe_dump(payload))
        LOG.info("[mirror] published fund=%s ticker=%s", fund.address, args["fund_ticker"])

    def _on_trade(self, record: EventRecord) -> None:
        args = record.args
        fund = self._fund(record.emitter)
        bought = record.name == FUND_TOKEN_BOUGHT
        account = args["buyer"] if bought else args["seller"]
        tx = {
            "type": "buy" if bought else "sell",
            "fund": fund.address,
            "account": account,
            "native_amount": args["hbar_amount"] if bought else args["hbar_returned"],
            "shares": args["fund_tokens_minted"] if bought else args["fund_tokens_burned"],
            "fee_paid": args["fee_paid"],
            "block_ts": record.ts,
        }
        self._tx_doc(record).set(safe_dump(tx))
        self._publish_holder(fund, account, record.ts)
        self._fund_doc(fund.address).set(
            safe_dump({"total_supply": fund.total_supply, "updated_at": _utcnow_iso()}),
            merge=True,
        )
        LOG.info("[mirror] published %s fund=%s account=%s", tx["type"], fund.address, account)

    def _publish_holder(self, fund: Fund, holder: str, block_ts: int) -> None:
        self._holder_doc(fund.address, holder).set(
            safe_dump({"balance": fund.balance_of(holder), "block_ts": block_ts, "updated_at": _utcnow_iso()})
        )

    def _on_transfer(self, record: EventRecord) -> None:
        fund = self._fund(record.emitter)
        for holder in (record.args["sender"], record.args["recipient"]):
            self._publish_holder(fund, holder, record.ts)
        LOG.info(
            "[mirror] published transfer fund=%s from=%s to=%s",
            fund.address,
            record.args["sender"],
            record.args["recipient"],
        )

    def _on_proportions(self, record: EventRecord) -> None:
        weights = dict(zip(record.args["tokens"], record.args["proportions"]))
        self._fund_doc(record.emitter).set(safe_dump({"weights": weights, "updated_at": _utcnow_iso()}), merge=True)
        LOG.info("[mirror] published weights fund=%s", record.emitter)

    def _on_rebalanced(self, record: EventRecord) -> None:
        payload = {"last_rebalance_nav_usd": record.args["total_nav_usd"], "last_rebalance_ts": record.ts}
        self._fund_doc(record.emitter).set(safe_dump(payload), merge=True)
        LOG.info("[mirror] published rebalance fund=%s", record.emitter)
