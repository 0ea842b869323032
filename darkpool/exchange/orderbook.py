"""
Dark Pool Order Book

Live, verified orders indexed by commitment and split by side. Unlike a lit
book there are no visible price levels: orders are only ever compared pairwise
against a single taker during an epoch's match search.

Priority for a taker's candidates:
  - best price (lowest sell for a buy, highest buy for a sell)
  - earliest reveal
  - arrival sequence
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .orders import Order, OrderSide

logger = logging.getLogger(__name__)


class OrderBook:
    """
    Buy and sell indexes keyed by commitment.

    Iteration over either side yields orders in arrival order. A commitment
    lives on at most one side.
    """

    def __init__(self):
        self._buys: Dict[str, Order] = {}
        self._sells: Dict[str, Order] = {}
        self._sequence: int = 0

    # -- Mutation -----------------------------------------------------------

    def insert(self, order: Order) -> Order:
        """
        Add a verified order to its side of the book.

        Raises:
            ValueError: if the commitment is already on the book
        """
        if order.commitment in self:
            raise ValueError(f"Commitment already on book: {order.commitment}")
        if order.amount_in <= 0:
            raise ValueError("Order amount_in must be positive")

        self._sequence += 1
        order.sequence = self._sequence
        side = self._buys if order.side == OrderSide.BUY else self._sells
        side[order.commitment] = order
        logger.debug("Order %s added to %s side", order.commitment, order.side.value)
        return order

    def remove(self, commitment: str) -> Optional[Order]:
        order = self._buys.pop(commitment, None)
        if order is None:
            order = self._sells.pop(commitment, None)
        return order

    # -- Matching -----------------------------------------------------------

    def matches_for(self, order: Order) -> List[Order]:
        """Opposite-side orders compatible with ``order``, best first."""
        opposite = self._sells if order.is_buy else self._buys
        candidates = [o for o in opposite.values() if order.can_match(o)]
        if order.is_buy:
            candidates.sort(key=lambda o: (o.price, o.revealed_at, o.sequence))
        else:
            candidates.sort(key=lambda o: (-o.price, o.revealed_at, o.sequence))
        return candidates

    def expired(self, now: float, window: float) -> List[Order]:
        """Orders whose commit time plus ``window`` lies before ``now``."""
        return [
            o for o in list(self._buys.values()) + list(self._sells.values())
            if now - o.committed_at > window
        ]

    # -- Query --------------------------------------------------------------

    def get(self, commitment: str) -> Optional[Order]:
        order = self._buys.get(commitment)
        if order is None:
            order = self._sells.get(commitment)
        return order

    def buy_orders(self) -> List[Order]:
        return list(self._buys.values())

    def sell_orders(self) -> List[Order]:
        return list(self._sells.values())

    def depth(self) -> Dict[str, int]:
        return {OrderSide.BUY.value: len(self._buys), OrderSide.SELL.value: len(self._sells)}

    def __contains__(self, commitment: str) -> bool:
        return commitment in self._buys or commitment in self._sells

    def __len__(self) -> int:
        return len(self._buys) + len(self._sells)
