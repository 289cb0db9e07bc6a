"""
Fund registry ("factory").

Creates funds against an HGI creation fee, keeps the dense list of fund
addresses and the per-creator index, and carries the shared wiring (oracle,
router, wrapped native, treasury) handed to every new fund.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from handguard.chain import ChainState, Contract, atomic, view
from handguard.errors import InsufficientFunds, NotFound, ValidationError
from handguard.events import FUND_CREATED
from handguard.fund import Fund
from handguard.ownable import Ownable
from handguard.runtime_config import ProtocolConfig, SwapConfig
from handguard.tokens import FeeToken
from handguard.units import is_address, is_zero_address, normalize_address

LOG = logging.getLogger("registry")

__all__ = ["FundInfo", "FundRegistry"]


@dataclass
class FundInfo:
    address: str
    name: str
    ticker: str
    tokens: List[str]


def _require_address(value: str, message: str) -> str:
    normalized = normalize_address(value)
    if normalized is None or is_zero_address(normalized):
        raise ValidationError(message)
    return normalized


class FundRegistry(Contract):
    _journal_fields = ("funds", "creator_funds", "ownable", "treasury", "oracle", "dex", "wrapped_native")

    def __init__(
        self,
        state: ChainState,
        owner: str,
        fee_token: str,
        oracle: str,
        treasury: str,
        dex: str,
        wrapped_native: str,
        protocol: Optional[ProtocolConfig] = None,
        swap: Optional[SwapConfig] = None,
    ) -> None:
        super().__init__(state)
        self.ownable = Ownable(owner)
        self.fee_token = _require_address(fee_token, "Invalid token address")
        self.oracle = _require_address(oracle, "Invalid oracle address")
        self.treasury = _require_address(treasury, "Invalid treasury address")
        self.dex = _require_address(dex, "Invalid DEX address")
        self.wrapped_native = _require_address(wrapped_native, "Invalid wrapped native address")
        self.protocol = protocol or ProtocolConfig()
        self.swap = swap or SwapConfig()
        self.funds: List[str] = []
        self.creator_funds: Dict[str, List[int]] = {}

    @property
    def owner(self) -> str:
        return self.ownable.owner

    @property
    def creation_fee(self) -> int:
        return self.protocol.creation_fee

    # ------------------------------------------------------------------
    # Fund creation
    # ------------------------------------------------------------------

    def _validate_basket(self, tokens: Sequence[str]) -> List[str]:
        if not tokens:
            raise ValidationError("Must have at least one token")
        if len(tokens) > self.protocol.max_basket_tokens:
            raise ValidationError("Too many tokens")
        basket = []
        for token in tokens:
            if not is_address(token) or is_zero_address(token):
                raise ValidationError("Invalid token address")
            basket.append(token.lower())
        if len(set(basket)) != len(basket):
            raise ValidationError("Duplicate tokens not allowed")
        return basket

    @atomic
    def create_fund(self, caller: str, fund_name: str, fund_ticker: str, tokens: Sequence[str]) -> str:
        if not fund_name:
            raise ValidationError("Fund name cannot be empty")
        if not fund_ticker:
            raise ValidationError("Fund ticker cannot be empty")
        basket = self._validate_basket(tokens)

        creator = caller.lower()
        fee = self.protocol.creation_fee
        hgi = self.state.contract(self.fee_token, FeeToken)
        if hgi.balance_of(creator) < fee:
            raise InsufficientFunds("Insufficient HGI balance for fund creation fee")
        if hgi.allowance(creator, self.address) < fee:
            raise InsufficientFunds("Insufficient HGI allowance for fund creation fee")
        if fee:
            hgi.transfer_from(self.address, creator, self.treasury, fee)

        fund = Fund(
            self.state,
            creator,
            fund_name,
            fund_ticker,
            basket,
            oracle=self.oracle,
            dex=self.dex,
            wrapped_native=self.wrapped_native,
            treasury=self.treasury,
            protocol=self.protocol,
            swap=self.swap,
        )
        fund_id = len(self.funds)
        self.funds.append(fund.address)
        self.creator_funds.setdefault(creator, []).append(fund_id)
        self.emit(
            FUND_CREATED,
            fund_id=fund_id,
            creator=creator,
            fund_name=fund_name,
            fund_ticker=fund_ticker,
            fund_address=fund.address,
            underlying_tokens=list(basket),
        )
        LOG.info(
            "[registry] fund_created id=%d address=%s creator=%s ticker=%s tokens=%d fee=%d",
            fund_id,
            fund.address,
            creator,
            fund_ticker,
            len(basket),
            fee,
        )
        return fund.address

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @view
    def get_total_funds(self) -> int:
        return len(self.funds)

    @view
    def fund_address(self, index: int) -> str:
        if not 0 <= index < len(self.funds):
            raise NotFound("Fund does not exist")
        return self.funds[index]

    @view
    def fund(self, index: int) -> Fund:
        return self.state.contract(self.fund_address(index), Fund)

    @view
    def get_fund(self, index: int) -> FundInfo:
        fund = self.fund(index)
        return FundInfo(
            address=fund.address,
            name=fund.fund_name,
            ticker=fund.fund_ticker,
            tokens=fund.get_underlying_tokens(),
        )

    @view
    def get_funds(self, start: int, end: int) -> List[str]:
        if start < 0 or start > end:
            raise ValidationError("Invalid index range")
        if end > len(self.funds):
            raise ValidationError("End index out of bounds")
        return list(self.funds[start:end])

    @view
    def get_creator_funds(self, creator: str) -> List[int]:
        normalized = normalize_address(creator)
        return list(self.creator_funds.get(normalized, [])) if normalized else []

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @atomic
    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.ownable.transfer_ownership(caller, new_owner)

    @atomic
    def update_treasury(self, caller: str, treasury: str) -> None:
        self.ownable.require_owner(caller)
        self.treasury = _require_address(treasury, "Invalid treasury address")
        LOG.info("[registry] treasury_updated treasury=%s", self.treasury)

    @atomic
    def update_oracle(self, caller: str, oracle: str) -> None:
        self.ownable.require_owner(caller)
        self.oracle = _require_address(oracle, "Invalid oracle address")
        LOG.info("[registry] oracle_updated oracle=%s", self.oracle)

    @atomic
    def update_dex(self, caller: str, dex: str) -> None:
        self.ownable.require_owner(caller)
        self.dex = _require_address(dex, "Invalid DEX address")
        LOG.info("[registry] dex_updated dex=%s", self.dex)

    @atomic
    def update_wrapped_native(self, caller: str, wrapped_native: str) -> None:
        self.ownable.require_owner(caller)
        self.wrapped_native = _require_address(wrapped_native, "Invalid wrapped native address")
        LOG.info("[registry] wrapped_native_updated wrapped_native=%s", self.wrapped_native)
