"""
Dark Pool Exchange Engine

Confidential order matching over a commit-reveal intake.

Components:
  - Order models (commitments, sealed reveals, book orders, matches)
  - Order Book (buy/sell indexes keyed by commitment)
  - Matching Engine (epoch-based, price-time priority, no partial fills)
  - Epoch Scheduler (fixed-interval asyncio timer)
  - Settlement and key-provider collaborators
"""

from .orders import (
    CommitmentRecord,
    EncryptedOrder,
    EngineState,
    EpochReport,
    Match,
    Order,
    OrderDetails,
    OrderSide,
    OrderStatus,
    validate_order_details,
)
from .orderbook import OrderBook
from .settlement import (
    EnvKeyProvider,
    KeyProvider,
    RecordingSettlement,
    SettlementCollaborator,
    StaticKeyProvider,
)
from .engine import MatchingEngine
from .scheduler import EpochScheduler

__all__ = [
    # Models
    "CommitmentRecord",
    "EncryptedOrder",
    "EngineState",
    "EpochReport",
    "Match",
    "Order",
    "OrderDetails",
    "OrderSide",
    "OrderStatus",
    "validate_order_details",
    # Book / engine
    "OrderBook",
    "MatchingEngine",
    "EpochScheduler",
    # Collaborators
    "SettlementCollaborator",
    "RecordingSettlement",
    "KeyProvider",
    "StaticKeyProvider",
    "EnvKeyProvider",
]
