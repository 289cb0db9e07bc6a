"""
In-process execution substrate.

`ChainState` plays the role of the virtual machine: it owns the native
currency ledger, assigns contract addresses, and runs every state-mutating
entry point as an all-or-nothing transaction:

- one re-entrant lock serializes all entry points across all contracts
- the outermost frame snapshots every contract's journaled fields
- any exception restores the snapshot and drops buffered events
- events reach `state.events`, the JSONL event log and subscribers on commit only

Read-only accessors marked `@view` take the same lock, so a reader on
another thread waits for an in-flight transaction to commit or roll back.
"""

from __future__ import annotations

import copy
import functools
import itertools
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from handguard.balances import BalanceMap
from handguard.errors import NotFound, ValidationError
from handguard.events import write_event
from handguard.units import address_from_index, normalize_address

LOG = logging.getLogger("chain")

__all__ = ["ChainState", "Contract", "EventRecord", "atomic", "view"]

# Externally owned accounts live in a separate range from contract addresses.
_CONTRACT_ADDRESS_BASE = 0x1000


@dataclass
class EventRecord:
    name: str
    emitter: str
    args: Dict[str, Any]
    tx_index: int
    ts: int
    log_index: int = 0


Subscriber = Callable[[EventRecord], None]


class Contract:
    """Base for anything deployed on the state; subclasses list their journaled fields."""

    _journal_fields: Tuple[str, ...] = ()

    def __init__(self, state: "ChainState") -> None:
        self.state = state
        self.address = state.deploy(self)

    def _snapshot(self) -> Dict[str, Any]:
        return {name: copy.deepcopy(getattr(self, name)) for name in self._journal_fields}

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    def emit(self, name: str, **args: Any) -> None:
        self.state.emit(self.address, name, args)


def atomic(method: Callable) -> Callable:
    """Run a contract entry point inside `state.transaction()`."""

    @functools.wraps(method)
    def wrapper(self: Contract, *args: Any, **kwargs: Any) -> Any:
        with self.state.transaction():
            return method(self, *args, **kwargs)

    return wrapper


def view(method: Callable) -> Callable:
    """Run a read-only accessor inside `state.read()`."""

    @functools.wraps(method)
    def wrapper(self: Contract, *args: Any, **kwargs: Any) -> Any:
        with self.state.read():
            return method(self, *args, **kwargs)

    return wrapper


class ChainState:
    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        event_logger: Any | None = None,
    ) -> None:
        self.native = BalanceMap("Insufficient native balance")
        self.contracts: Dict[str, Contract] = {}
        self.events: List[EventRecord] = []
        self.event_logger = event_logger
        self._clock = clock or time.time
        self._lock = threading.RLock()
        self._depth = 0
        self._pending: List[EventRecord] = []
        self._tx_counter = 0
        self._next_contract = _CONTRACT_ADDRESS_BASE
        self._subscribers: List[Subscriber] = []
        self._accounts = itertools.count(1)

    # ------------------------------------------------------------------
    # Accounts and contracts
    # ------------------------------------------------------------------

    def now(self) -> int:
        return int(self._clock())

    def new_account(self, funding: int = 0) -> str:
        """Allocate an externally owned account, optionally seeded with native currency."""
        address = address_from_index(next(self._accounts))
        if funding:
            self.fund_account(address, funding)
        return address

    def fund_account(self, address: str, amount: int) -> None:
        normalized = normalize_address(address)
        if normalized is None:
            raise ValidationError("Invalid account address")
        with self.transaction():
            self.native.credit(normalized, amount)

    def native_balance(self, address: str) -> int:
        with self.read():
            return self.native.balance_of(address)

    def deploy(self, contract: Contract) -> str:
        with self._lock:
            address = address_from_index(self._next_contract)
            self._next_contract += 1
            self.contracts[address] = contract
        LOG.debug("[chain] deploy type=%s address=%s", type(contract).__name__, address)
        return address

    def contract(self, address: str, expected: type | None = None) -> Any:
        normalized = normalize_address(address)
        with self.read():
            found = self.contracts.get(normalized) if normalized else None
        if found is None:
            raise NotFound(f"No contract at {address}")
        if expected is not None and not isinstance(found, expected):
            raise NotFound(f"Contract at {address} is not a {expected.__name__}")
        return found

    # ------------------------------------------------------------------
    # Transactions and events
    # ------------------------------------------------------------------

    @contextmanager
    def read(self) -> Iterator["ChainState"]:
        """Hold the state lock for a consistent read between transactions."""
        with self._lock:
            yield self

    @contextmanager
    def transaction(self) -> Iterator["ChainState"]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._restore(snapshot)
                    self._pending = []
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._tx_counter += 1
                    committed, self._pending = self._pending, []
                    self._commit(committed)

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "native": copy.deepcopy(self.native),
            "contracts": dict(self.contracts),
            "next_contract": self._next_contract,
            "states": {addr: c._snapshot() for addr, c in self.contracts.items()},
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self.native = snapshot["native"]
        self.contracts = snapshot["contracts"]
        self._next_contract = snapshot["next_contract"]
        for addr, saved in snapshot["states"].items():
            self.contracts[addr]._restore(saved)

    def emit(self, emitter: str, name: str, args: Dict[str, Any]) -> None:
        if self._depth == 0:
            raise RuntimeError("events can only be emitted inside a transaction")
        self._pending.append(
            EventRecord(
                name=name,
                emitter=emitter,
                args=dict(args),
                tx_index=self._tx_counter,
                ts=self.now(),
                log_index=len(self._pending),
            )
        )

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def _commit(self, committed: List[EventRecord]) -> None:
        if not committed:
            return
        self.events.extend(committed)
        if self.event_logger is not None:
            for record in committed:
                write_event(record, logger=self.event_logger)
        for record in committed:
            for callback in list(self._subscribers):
                try:
                    callback(record)
                except Exception as exc:
                    LOG.warning("[chain] subscriber_failed event=%s err=%s", record.name, exc)

    def events_named(self, name: str, emitter: Optional[str] = None) -> List[EventRecord]:
        target = normalize_address(emitter) if emitter else None
        with self.read():
            return [e for e in self.events if e.name == name and (target is None or e.emitter == target)]
