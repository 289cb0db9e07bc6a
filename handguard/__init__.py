"""
Handguard: on-ledger index funds.

    chain.py      - ChainState substrate (accounts, contracts, atomic transactions, events)
    tokens.py     - fungible ledgers: basket tokens, HGI fee token, wrapped native
    registry.py   - fund factory and discovery
    fund.py       - fund shares, buy/sell, proportions, rebalance
    nav.py        - integer valuation and share math
    rebalance.py  - rebalance planning
    mirror.py     - Firestore read model fed by committed events
    deploy.py     - local protocol deployment
"""
from handguard.chain import ChainState, EventRecord
from handguard.deploy import Deployment, deploy_protocol, new_state
from handguard.errors import (
    ExternalCallError,
    InsufficientFunds,
    NotFound,
    PriceFeedNotFound,
    ProtocolError,
    SwapFailed,
    Unauthorized,
    ValidationError,
)
from handguard.fund import Fund
from handguard.registry import FundInfo, FundRegistry
from handguard.tokens import FeeToken, MintableToken, TokenLedger, WrappedNative

__all__ = [
    "ChainState",
    "EventRecord",
    "Deployment",
    "deploy_protocol",
    "new_state",
    "Fund",
    "FundInfo",
    "FundRegistry",
    "TokenLedger",
    "MintableToken",
    "FeeToken",
    "WrappedNative",
    "ProtocolError",
    "ValidationError",
    "Unauthorized",
    "InsufficientFunds",
    "ExternalCallError",
    "PriceFeedNotFound",
    "SwapFailed",
    "NotFound",
]
