"""
Dark Pool Order Models

Data models shared by the intake path, the order book and the matching engine:

  - CommitmentRecord: binding hash registered during the commit phase
  - EncryptedOrder: sealed order payload queued during the reveal phase
  - OrderDetails: the decrypted payload (the only place the secret lives)
  - Order: a verified, live order resting on the book
  - Match: an immutable buy/sell pairing produced by an epoch
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List

from ..constants import MAX_ORDER_SIZE, MIN_ORDER_SIZE
from ..crypto.address import normalize_address, require_address
from ..crypto.commitment import secret_nonce_bytes
from ..exceptions import InputRejected

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    COMMITTED = "committed"
    PENDING_REVEAL = "pending_reveal"        # revealed, queued for the next epoch
    OPEN = "open"                            # resting on the book
    MATCHED = "matched"
    SETTLEMENT_FAILED = "settlement_failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REJECTED = "rejected"

    @property
    def is_final(self) -> bool:
        return self not in (OrderStatus.COMMITTED, OrderStatus.PENDING_REVEAL, OrderStatus.OPEN)


class EngineState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    MATCHING = "matching"


# ---------------------------------------------------------------------------
# Intake records
# ---------------------------------------------------------------------------

@dataclass
class CommitmentRecord:
    """A registered commitment awaiting its reveal."""
    commitment: str
    trader: str
    submitted_at: float                  # engine clock at intake
    client_timestamp: float = 0.0        # timestamp claimed by the client


@dataclass
class EncryptedOrder:
    """A sealed order payload. ``nonce`` is a client sequence number, never the secret."""
    commitment: str
    ciphertext: bytes
    submitted_at: float = field(default_factory=time.time)
    nonce: int = 0


# ---------------------------------------------------------------------------
# Decrypted payload
# ---------------------------------------------------------------------------

def _to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, (bool, float)):
        raise TypeError(f"{field_name} must be a decimal string or integer")
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{field_name} is not a number: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"{field_name} must be finite")
    return result


@dataclass(frozen=True)
class OrderDetails:
    """Plaintext order parameters, bound by the commitment."""
    trader: str
    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Decimal
    is_buy: bool
    secret_nonce: bytes

    @property
    def side(self) -> OrderSide:
        return OrderSide.BUY if self.is_buy else OrderSide.SELL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trader": self.trader,
            "tokenIn": self.token_in,
            "tokenOut": self.token_out,
            "amountIn": str(self.amount_in),
            "amountOut": str(self.amount_out),
            "isBuy": self.is_buy,
            "secretNonce": "0x" + self.secret_nonce.hex(),
        }

    def to_payload(self) -> bytes:
        """Canonical JSON encoding sealed inside the order envelope."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderDetails":
        if not isinstance(data, dict):
            raise TypeError("Order payload must be an object")
        for key in ("trader", "tokenIn", "tokenOut"):
            if not isinstance(data[key], str):
                raise TypeError(f"{key} must be a string")
        if not isinstance(data["isBuy"], bool):
            raise TypeError("isBuy must be a boolean")
        return cls(
            trader=data["trader"],
            token_in=data["tokenIn"],
            token_out=data["tokenOut"],
            amount_in=_to_decimal(data["amountIn"], "amountIn"),
            amount_out=_to_decimal(data["amountOut"], "amountOut"),
            is_buy=data["isBuy"],
            secret_nonce=secret_nonce_bytes(data["secretNonce"]),
        )

    @classmethod
    def from_payload(cls, payload: bytes) -> "OrderDetails":
        return cls.from_dict(json.loads(payload.decode("utf-8"), parse_float=Decimal))

    def __repr__(self) -> str:
        # never print the secret nonce
        return (
            f"OrderDetails(trader={self.trader}, side={self.side.value}, "
            f"{self.amount_in} {self.token_in} -> {self.amount_out} {self.token_out})"
        )


def validate_order_details(
    details: OrderDetails,
    min_order_size: Decimal = MIN_ORDER_SIZE,
    max_order_size: Decimal = MAX_ORDER_SIZE,
) -> None:
    """
    Check a decrypted order against the intake limits.

    Raises:
        InputRejected: invalid addresses, same-token swap, or out-of-bounds amounts
    """
    require_address(details.trader, "trader")
    require_address(details.token_in, "token_in")
    require_address(details.token_out, "token_out")

    if normalize_address(details.token_in) == normalize_address(details.token_out):
        raise InputRejected("Cannot swap a token for itself")
    if details.amount_in < min_order_size:
        raise InputRejected(f"Order size {details.amount_in} below minimum {min_order_size}")
    if details.amount_in > max_order_size:
        raise InputRejected(f"Order size {details.amount_in} above maximum {max_order_size}")
    if details.amount_out <= ZERO:
        raise InputRejected("amount_out must be positive")


# ---------------------------------------------------------------------------
# Book entries
# ---------------------------------------------------------------------------

@dataclass
class Order:
    """A verified order resting on the book."""
    commitment: str
    trader: str
    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Decimal
    side: OrderSide
    committed_at: float
    revealed_at: float
    sequence: int = 0                    # arrival order within the book

    @property
    def price(self) -> Decimal:
        """Limit price as amount_out per unit of amount_in."""
        return self.amount_out / self.amount_in

    @property
    def is_buy(self) -> bool:
        return self.side == OrderSide.BUY

    @classmethod
    def from_details(
        cls,
        commitment: str,
        details: OrderDetails,
        committed_at: float,
        revealed_at: float,
        sequence: int = 0,
    ) -> "Order":
        return cls(
            commitment=commitment,
            trader=require_address(details.trader, "trader"),
            token_in=require_address(details.token_in, "token_in"),
            token_out=require_address(details.token_out, "token_out"),
            amount_in=details.amount_in,
            amount_out=details.amount_out,
            side=details.side,
            committed_at=committed_at,
            revealed_at=revealed_at,
            sequence=sequence,
        )

    def can_match(self, other: "Order") -> bool:
        """Opposite sides, crossed token pair, and buy price at or above sell price."""
        if self.side == other.side:
            return False
        buy, sell = (self, other) if self.is_buy else (other, self)
        if buy.token_in != sell.token_out or buy.token_out != sell.token_in:
            return False
        return buy.price >= sell.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": self.commitment,
            "trader": self.trader,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "side": self.side.value,
            "price": str(self.price),
            "committed_at": self.committed_at,
            "revealed_at": self.revealed_at,
        }


@dataclass(frozen=True)
class Match:
    """A buy/sell pairing produced by one epoch. Never mutated after creation."""
    id: str
    buy_commitment: str
    sell_commitment: str
    buy_order: Order
    sell_order: Order
    match_price: Decimal
    epoch: int
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "buy_commitment": self.buy_commitment,
            "sell_commitment": self.sell_commitment,
            "buy_trader": self.buy_order.trader,
            "sell_trader": self.sell_order.trader,
            "amount": str(self.buy_order.amount_in),
            "match_price": str(self.match_price),
            "epoch": self.epoch,
            "timestamp": self.timestamp,
        }


@dataclass
class EpochReport:
    """Outcome of a single matching pass."""
    epoch: int
    accepted: List[str] = field(default_factory=list)
    discarded: Dict[str, str] = field(default_factory=dict)       # commitment -> reason
    matches: List[Match] = field(default_factory=list)
    settlement_failures: List[str] = field(default_factory=list)  # match ids
    swept: List[str] = field(default_factory=list)
    started_at: float = 0.0
    finished_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epoch": self.epoch,
            "accepted": list(self.accepted),
            "discarded": dict(self.discarded),
            "matches": [m.to_dict() for m in self.matches],
            "settlement_failures": list(self.settlement_failures),
            "swept": list(self.swept),
        }
