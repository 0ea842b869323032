"""
Dark Pool Matching Engine

Epoch-based matching over commit-reveal intake.

Lifecycle of an order:

    commit(commitment)        -> CommitmentRecord         [COMMITTED]
    reveal(EncryptedOrder)    -> queued for next epoch    [PENDING_REVEAL]
    run_epoch():
        decrypt + verify      -> Order on the book        [OPEN]
        match search          -> Match, settlement        [MATCHED]
                                                          [SETTLEMENT_FAILED]
    cancel / sweep / discard                              [CANCELLED / EXPIRED / REJECTED]

Engine states advance Idle -> Collecting -> Matching -> Idle. Every mutation
of the book and the queues happens under one engine lock, and the reveal
queue is swapped out at the start of a tick, so reveals arriving while an
epoch is matching land in the next epoch.

Security:
  - The secret nonce is only ever seen inside the decrypted envelope
  - Commitment re-derived from the revealed payload before book insertion
  - Revealed trader must equal the committing trader
  - Commitments are single-use: a known commitment is never accepted twice
  - Per-item discard: one bad reveal never aborts an epoch
  - Deterministic match IDs: blake2b(buy:sell:epoch), no uuid4
  - Emergency pause blocks new commits and reveals
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Deque, Dict, List, Optional, Set

from ..constants import (
    COMMITMENT_WINDOW,
    MAX_CLOCK_SKEW,
    MAX_ORDER_SIZE,
    MAX_PENDING_REVEALS,
    MIN_ORDER_SIZE,
    RECENT_MATCHES_KEPT,
    REVEAL_WINDOW,
)
from ..crypto.address import normalize_address, require_address
from ..crypto.commitment import is_valid_commitment_format, normalize_commitment, verify_commitment
from ..crypto.envelope import decrypt_order
from ..crypto.hashing import blake2b_hex
from ..exceptions import InputRejected, UndecryptableError, VerificationFailed, WindowExpired
from .orderbook import OrderBook
from .orders import (
    CommitmentRecord,
    EncryptedOrder,
    EngineState,
    EpochReport,
    Match,
    Order,
    OrderStatus,
    validate_order_details,
)
from .settlement import KeyProvider, RecordingSettlement, SettlementCollaborator

logger = logging.getLogger(__name__)


class MatchingEngine:
    """
    Commit-reveal intake plus the per-epoch matching pass.

    Usage:

        engine = MatchingEngine(key_provider, settlement)
        engine.commit(commitment, client_ts, trader)
        engine.reveal(EncryptedOrder(commitment, ciphertext))
        report = engine.run_epoch()
    """

    def __init__(
        self,
        key_provider: KeyProvider,
        settlement: Optional[SettlementCollaborator] = None,
        commitment_window: float = COMMITMENT_WINDOW,
        reveal_window: float = REVEAL_WINDOW,
        max_clock_skew: float = MAX_CLOCK_SKEW,
        min_order_size: Decimal = MIN_ORDER_SIZE,
        max_order_size: Decimal = MAX_ORDER_SIZE,
        max_pending_reveals: int = MAX_PENDING_REVEALS,
        recent_matches_kept: int = RECENT_MATCHES_KEPT,
        clock: Callable[[], float] = time.time,
    ):
        if commitment_window <= 0 or reveal_window <= 0:
            raise ValueError("Commitment and reveal windows must be positive")

        self._keypair = key_provider.engine_keypair()
        self.settlement = settlement if settlement is not None else RecordingSettlement()
        self.commitment_window = commitment_window
        self.reveal_window = reveal_window
        self.max_clock_skew = max_clock_skew
        self.min_order_size = min_order_size
        self.max_order_size = max_order_size
        self.max_pending_reveals = max_pending_reveals
        self.clock = clock

        self.book = OrderBook()
        self.state = EngineState.IDLE
        self.current_epoch: int = 0

        self._lock = threading.RLock()
        self._commitments: Dict[str, CommitmentRecord] = {}
        self._pending: List[EncryptedOrder] = []
        self._queued: Set[str] = set()
        self._statuses: Dict[str, OrderStatus] = {}
        self._recent_matches: Deque[Match] = deque(maxlen=recent_matches_kept)
        self._paused: bool = False

        # --- Stats ---
        self.total_commits: int = 0
        self.total_matches: int = 0
        self.total_discarded: int = 0
        self.total_settlement_failures: int = 0

    # -- Properties ---------------------------------------------------------

    @property
    def public_key(self) -> bytes:
        return self._keypair.public_key

    @property
    def public_key_hex(self) -> str:
        return self._keypair.public_key_hex

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def pending_reveal_count(self) -> int:
        return len(self._pending)

    def pause(self) -> None:
        self._paused = True
        logger.warning("Dark pool trading PAUSED")

    def resume(self) -> None:
        self._paused = False
        logger.info("Dark pool trading resumed")

    # -- Intake -------------------------------------------------------------

    def commit(self, commitment: str, timestamp: float, trader: str) -> CommitmentRecord:
        """
        Register a commitment ahead of its reveal.

        Args:
            commitment: 0x-prefixed 32-byte hash
            timestamp: client's claimed commit time (unix seconds)
            trader: committing address

        Raises:
            InputRejected: malformed, zero or duplicate commitment, bad trader,
                timestamp in the future, or trading paused
        """
        if self._paused:
            raise InputRejected("Trading is paused")
        if not is_valid_commitment_format(commitment):
            raise InputRejected(f"Invalid commitment: {commitment!r}")
        trader = require_address(trader, "trader")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or timestamp < 0:
            raise InputRejected(f"Invalid commitment timestamp: {timestamp!r}")

        commitment = normalize_commitment(commitment)
        with self._lock:
            now = self.clock()
            if timestamp > now + self.max_clock_skew:
                raise InputRejected("Commitment timestamp is in the future")
            if commitment in self._statuses:
                raise InputRejected(f"Duplicate commitment: {commitment}")

            record = CommitmentRecord(
                commitment=commitment,
                trader=trader,
                submitted_at=now,
                client_timestamp=float(timestamp),
            )
            self._commitments[commitment] = record
            self._statuses[commitment] = OrderStatus.COMMITTED
            self.total_commits += 1
            if self.state == EngineState.IDLE:
                self.state = EngineState.COLLECTING

        logger.info("Commitment %s registered by %s", commitment, trader)
        return record

    def reveal(self, encrypted_order: EncryptedOrder) -> EncryptedOrder:
        """
        Queue a sealed order for the next epoch.

        Raises:
            InputRejected: unknown commitment, duplicate reveal, empty payload,
                full queue, or trading paused
            WindowExpired: reveal window has closed
        """
        if self._paused:
            raise InputRejected("Trading is paused")
        if not is_valid_commitment_format(encrypted_order.commitment):
            raise InputRejected(f"Invalid commitment: {encrypted_order.commitment!r}")
        if not isinstance(encrypted_order.ciphertext, (bytes, bytearray)) or not encrypted_order.ciphertext:
            raise InputRejected("Encrypted order payload is empty")

        commitment = normalize_commitment(encrypted_order.commitment)
        with self._lock:
            if commitment in self._queued:
                raise InputRejected(f"Order already revealed: {commitment}")
            record = self._commitments.get(commitment)
            if record is None:
                raise InputRejected(f"Unknown commitment: {commitment}")

            now = self.clock()
            if now - record.submitted_at > self.reveal_window:
                raise WindowExpired(f"Reveal window closed for {commitment}")
            if len(self._pending) >= self.max_pending_reveals:
                raise InputRejected("Reveal queue is full")

            queued = replace(
                encrypted_order,
                commitment=commitment,
                ciphertext=bytes(encrypted_order.ciphertext),
                submitted_at=now,
            )
            self._pending.append(queued)
            self._queued.add(commitment)
            self._statuses[commitment] = OrderStatus.PENDING_REVEAL
            if self.state == EngineState.IDLE:
                self.state = EngineState.COLLECTING

        logger.info("Order queued for epoch %d: %s", self.current_epoch + 1, commitment)
        return queued

    def cancel(self, commitment: str, trader: str) -> CommitmentRecord:
        """
        Withdraw an unrevealed commitment.

        Raises:
            InputRejected: unknown or already-revealed commitment
            VerificationFailed: caller is not the committer
            WindowExpired: commitment window has closed
        """
        if not is_valid_commitment_format(commitment):
            raise InputRejected(f"Invalid commitment: {commitment!r}")
        trader = require_address(trader, "trader")
        commitment = normalize_commitment(commitment)

        with self._lock:
            if commitment in self._queued or commitment in self.book:
                raise InputRejected("Revealed orders cannot be cancelled")
            record = self._commitments.get(commitment)
            if record is None:
                raise InputRejected(f"Unknown commitment: {commitment}")
            if normalize_address(record.trader) != normalize_address(trader):
                logger.warning("SECURITY: cancel of %s attempted by non-committer %s", commitment, trader)
                raise VerificationFailed("Only the committer can cancel")
            if self.clock() - record.submitted_at > self.commitment_window:
                raise WindowExpired(f"Commitment window closed for {commitment}")

            del self._commitments[commitment]
            self._statuses[commitment] = OrderStatus.CANCELLED

        logger.info("Commitment %s cancelled", commitment)
        return record

    # -- Epoch --------------------------------------------------------------

    def run_epoch(self) -> EpochReport:
        """
        Run one matching pass: sweep, ingest queued reveals, match, settle.
        """
        with self._lock:
            self.state = EngineState.MATCHING
            self.current_epoch += 1
            now = self.clock()
            report = EpochReport(epoch=self.current_epoch, started_at=now)

            queue, self._pending = self._pending, []
            try:
                self._sweep(now, report)
                for encrypted_order in queue:
                    try:
                        self._ingest(encrypted_order, now, report)
                    except Exception as e:
                        self._queued.discard(encrypted_order.commitment)
                        logger.error("Error ingesting reveal %s: %s", encrypted_order.commitment, e)
                        self._discard(encrypted_order.commitment, f"ingest error: {e}", OrderStatus.REJECTED, report)
                for match in self._match(now, report):
                    self._settle(match, report)
            finally:
                report.finished_at = self.clock()
                self.state = EngineState.COLLECTING if self._has_work() else EngineState.IDLE

        if queue or report.matches or report.swept:
            logger.info(
                "Epoch %d completed: %d accepted, %d discarded, %d matches, %d swept",
                report.epoch, len(report.accepted), len(report.discarded),
                len(report.matches), len(report.swept),
            )
        return report

    def _has_work(self) -> bool:
        return bool(self._commitments or self._pending or len(self.book))

    def _sweep(self, now: float, report: EpochReport) -> None:
        """Expire stale book orders and unrevealed commitments past the reveal window."""
        for order in self.book.expired(now, self.reveal_window):
            self.book.remove(order.commitment)
            self._statuses[order.commitment] = OrderStatus.EXPIRED
            report.swept.append(order.commitment)
            logger.info("Order %s expired unmatched", order.commitment)

        for commitment, record in list(self._commitments.items()):
            if commitment in self._queued:
                continue
            if now - record.submitted_at > self.reveal_window:
                del self._commitments[commitment]
                self._statuses[commitment] = OrderStatus.EXPIRED
                report.swept.append(commitment)
                logger.debug("Commitment %s expired without reveal", commitment)

    def _discard(self, commitment: str, reason: str, status: OrderStatus, report: EpochReport) -> None:
        report.discarded[commitment] = reason
        self.total_discarded += 1
        if commitment in self._statuses:
            self._statuses[commitment] = status
        logger.info("Discarded reveal %s: %s", commitment, reason)

    def _ingest(self, encrypted_order: EncryptedOrder, now: float, report: EpochReport) -> None:
        commitment = encrypted_order.commitment
        self._queued.discard(commitment)

        record = self._commitments.get(commitment)
        if record is None:
            self._discard(commitment, "unknown commitment", OrderStatus.REJECTED, report)
            return
        if now - record.submitted_at > self.reveal_window:
            del self._commitments[commitment]
            self._discard(commitment, "reveal window elapsed", OrderStatus.EXPIRED, report)
            return

        try:
            details = decrypt_order(encrypted_order.ciphertext, self._keypair)
        except UndecryptableError as e:
            self._discard(commitment, f"undecryptable: {e}", OrderStatus.REJECTED, report)
            return

        if not verify_commitment(commitment, details):
            logger.warning("SECURITY: commitment mismatch on reveal %s", commitment)
            self._discard(commitment, "commitment mismatch", OrderStatus.REJECTED, report)
            return
        try:
            validate_order_details(details, self.min_order_size, self.max_order_size)
        except InputRejected as e:
            self._discard(commitment, str(e), OrderStatus.REJECTED, report)
            return
        if normalize_address(details.trader) != normalize_address(record.trader):
            logger.warning("SECURITY: reveal %s names a trader other than the committer", commitment)
            self._discard(commitment, "trader does not match committer", OrderStatus.REJECTED, report)
            return

        order = Order.from_details(
            commitment,
            details,
            committed_at=record.submitted_at,
            revealed_at=encrypted_order.submitted_at,
        )
        self.book.insert(order)
        del self._commitments[commitment]
        self._statuses[commitment] = OrderStatus.OPEN
        report.accepted.append(commitment)
        logger.info("Order added to book: %s", commitment)

    def _match(self, now: float, report: EpochReport) -> List[Match]:
        """Pair each buy, in reveal-arrival order, with its best compatible sell."""
        matches: List[Match] = []
        processed: Set[str] = set()

        for buy in self.book.buy_orders():
            if buy.commitment in processed:
                continue
            for sell in self.book.matches_for(buy):
                if sell.commitment in processed:
                    continue
                match = self._execute(buy, sell, now)
                matches.append(match)
                report.matches.append(match)
                processed.add(buy.commitment)
                processed.add(sell.commitment)
                break

        return matches

    def _execute(self, buy: Order, sell: Order, now: float) -> Match:
        # Removal and match creation form one step under the engine lock
        self.book.remove(buy.commitment)
        self.book.remove(sell.commitment)

        match = Match(
            id=blake2b_hex(buy.commitment, sell.commitment, str(self.current_epoch)),
            buy_commitment=buy.commitment,
            sell_commitment=sell.commitment,
            buy_order=buy,
            sell_order=sell,
            match_price=min(buy.price, sell.price),
            epoch=self.current_epoch,
            timestamp=now,
        )
        self._statuses[buy.commitment] = OrderStatus.MATCHED
        self._statuses[sell.commitment] = OrderStatus.MATCHED
        self._recent_matches.append(match)
        self.total_matches += 1
        logger.info("Match %s: %s <-> %s at %s", match.id, buy.commitment, sell.commitment, match.match_price)
        return match

    def _settle(self, match: Match, report: EpochReport) -> None:
        try:
            ok = self.settlement.execute_match(match)
        except Exception as e:
            logger.exception("Settlement collaborator raised for match %s: %s", match.id, e)
            ok = False

        if not ok:
            self._statuses[match.buy_commitment] = OrderStatus.SETTLEMENT_FAILED
            self._statuses[match.sell_commitment] = OrderStatus.SETTLEMENT_FAILED
            report.settlement_failures.append(match.id)
            self.total_settlement_failures += 1
            logger.error(
                "Settlement FAILED for match %s (%s <-> %s); orders not re-inserted",
                match.id, match.buy_commitment, match.sell_commitment,
            )

    # -- Query --------------------------------------------------------------

    def get_status(self, commitment: str) -> Optional[OrderStatus]:
        if not isinstance(commitment, str):
            return None
        return self._statuses.get(normalize_commitment(commitment))

    def get_commitment(self, commitment: str) -> Optional[CommitmentRecord]:
        return self._commitments.get(normalize_commitment(commitment))

    def get_order(self, commitment: str) -> Optional[Order]:
        return self.book.get(normalize_commitment(commitment))

    def candidates_for(self, commitment: str) -> List[Order]:
        """
        Compatible counter-orders for a resting order, best first.

        Raises:
            InputRejected: if the commitment is not on the book
        """
        with self._lock:
            order = self.book.get(normalize_commitment(commitment))
            if order is None:
                raise InputRejected(f"Order not found: {commitment}")
            return self.book.matches_for(order)

    def recent_matches(self, count: int = 50) -> List[Match]:
        if count <= 0:
            return []
        return list(self._recent_matches)[-count:]

    def status(self) -> Dict[str, object]:
        with self._lock:
            depth = self.book.depth()
            return {
                "buy_orders": depth["buy"],
                "sell_orders": depth["sell"],
                "pending_orders": len(self._pending),
                "pending_commitments": len(self._commitments),
                "current_epoch": self.current_epoch,
                "state": self.state.value,
                "paused": self._paused,
            }

    def stats(self) -> Dict[str, int]:
        return {
            "total_commits": self.total_commits,
            "total_matches": self.total_matches,
            "total_discarded": self.total_discarded,
            "total_settlement_failures": self.total_settlement_failures,
        }
