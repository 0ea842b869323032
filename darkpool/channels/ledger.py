"""
Dark Pool Channel Ledger

Off-chain balance records ("state channels") updated by participant-signed
messages instead of per-trade settlement.

    open ──> update* ──> close
      │                    ▲
      └─> request_emergency_withdraw ──(delay)──> execute_emergency_withdraw

Update digest, signed with the Ethereum personal_sign prefix:

    keccak256(abi.encode(address participant, uint256 balanceWei,
                         uint256 nonce, uint256 timestamp))

Security:
  - Nonce must be exactly current + 1, so replays and gaps are both refused
  - Signed timestamps older than max_update_age are refused
  - Signatures must recover the channel's participant
  - One lock per participant held across check, verify and mutate, so two
    updates carrying the same nonce can never both be accepted
  - Emergency withdrawal is time-locked; cooperative updates remain valid
    during the challenge period and supersede the state that will be paid
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from eth_abi import encode

from ..constants import (
    EMERGENCY_WITHDRAWAL_DELAY,
    MAX_CHANNEL_BALANCE,
    MAX_CLOCK_SKEW,
    MAX_UPDATE_AGE,
    MIN_CHANNEL_BALANCE,
)
from ..crypto.address import normalize_address, require_address
from ..crypto.commitment import require_base_unit_precision, to_base_units
from ..crypto.hashing import blake2b_hex, keccak256
from ..crypto.keys import PrivateKey, Signature
from ..crypto.signing import recover_message_signer, sign_message
from ..exceptions import (
    InputRejected,
    SettlementFailed,
    TimelockNotElapsed,
    VerificationFailed,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
MAX_REASON_LENGTH = 256
UPDATE_TYPES = ["address", "uint256", "uint256", "uint256"]

Amount = Union[Decimal, int, str]


class PayoutStatus(str, Enum):
    NONE = "none"
    PAID = "paid"
    FAILED = "failed"


@dataclass
class Channel:
    """One participant's off-chain balance record."""
    id: str
    participant: str
    balance: Decimal
    collateral: Decimal
    nonce: int = 0
    opened_at: float = 0.0
    last_update_at: float = 0.0
    is_active: bool = True
    emergency_withdraw_requested_at: Optional[float] = None
    payout_status: PayoutStatus = PayoutStatus.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "participant": self.participant,
            "balance": str(self.balance),
            "collateral": str(self.collateral),
            "nonce": self.nonce,
            "opened_at": self.opened_at,
            "last_update_at": self.last_update_at,
            "is_active": self.is_active,
            "emergency_withdraw_requested_at": self.emergency_withdraw_requested_at,
            "payout_status": self.payout_status.value,
        }


@dataclass
class EmergencyRequest:
    """A pending or executed unilateral exit."""
    requester: str
    requested_at: float
    reason: str = ""
    is_executed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requester": self.requester,
            "requested_at": self.requested_at,
            "reason": self.reason,
            "is_executed": self.is_executed,
        }


# ---------------------------------------------------------------------------
# Update digests
# ---------------------------------------------------------------------------

def channel_update_digest(participant: str, balance: Amount, nonce: int, timestamp: int) -> bytes:
    """keccak256 over the ABI-encoded update tuple."""
    return keccak256(encode(
        UPDATE_TYPES,
        [require_address(participant, "participant"), to_base_units(balance), int(nonce), int(timestamp)],
    ))


def sign_channel_update(
    private_key: PrivateKey,
    participant: str,
    balance: Amount,
    nonce: int,
    timestamp: int,
) -> str:
    """
    Sign a channel update as the participant would from their wallet.

    Returns:
        0x-prefixed 65-byte signature
    """
    digest = channel_update_digest(participant, balance, nonce, timestamp)
    return sign_message(private_key, digest).to_hex()


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class ChannelLedger:
    """
    Registry of channels keyed by participant, one channel per participant.

    The settlement collaborator, when given, is asked to pay out on close and
    on emergency withdrawal.
    """

    def __init__(
        self,
        settlement=None,
        min_balance: Decimal = MIN_CHANNEL_BALANCE,
        max_balance: Decimal = MAX_CHANNEL_BALANCE,
        withdrawal_delay: float = EMERGENCY_WITHDRAWAL_DELAY,
        max_update_age: float = MAX_UPDATE_AGE,
        max_clock_skew: float = MAX_CLOCK_SKEW,
        clock: Callable[[], float] = time.time,
    ):
        self.settlement = settlement
        self.min_balance = Decimal(min_balance)
        self.max_balance = Decimal(max_balance)
        self.withdrawal_delay = withdrawal_delay
        self.max_update_age = max_update_age
        self.max_clock_skew = max_clock_skew
        self.clock = clock

        self._channels: Dict[str, Channel] = {}
        self._emergency: Dict[str, EmergencyRequest] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # -- Locking ------------------------------------------------------------

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @staticmethod
    def _key(participant: str) -> str:
        return normalize_address(require_address(participant, "participant"))

    def _require_channel(self, key: str) -> Channel:
        channel = self._channels.get(key)
        if channel is None:
            raise InputRejected("Channel not found")
        return channel

    def _require_active(self, key: str) -> Channel:
        channel = self._require_channel(key)
        if not channel.is_active:
            raise InputRejected("Channel is not active")
        return channel

    @staticmethod
    def _amount(value: Amount, field_name: str) -> Decimal:
        if isinstance(value, (bool, float)):
            raise InputRejected(f"{field_name} must be a Decimal, int or str")
        try:
            amount = Decimal(str(value))
        except ArithmeticError as e:
            raise InputRejected(f"Invalid {field_name}: {value!r}") from e
        if not amount.is_finite():
            raise InputRejected(f"Invalid {field_name}: {value!r}")
        require_base_unit_precision(amount, field_name)
        return amount

    # -- Operations ---------------------------------------------------------

    def open(self, participant: str, initial_balance: Amount, collateral: Amount) -> Channel:
        """
        Open a channel.

        Raises:
            InputRejected: existing channel, balance out of bounds, or
                collateral below the balance
        """
        checksum = require_address(participant, "participant")
        key = normalize_address(checksum)
        balance = self._amount(initial_balance, "initial_balance")
        collateral_amount = self._amount(collateral, "collateral")

        if balance < self.min_balance:
            raise InputRejected("Initial balance below minimum")
        if balance > self.max_balance:
            raise InputRejected("Initial balance above maximum")
        if collateral_amount < balance:
            raise InputRejected("Collateral must cover the initial balance")

        with self._lock_for(key):
            if key in self._channels:
                raise InputRejected("Channel already exists for participant")
            now = self.clock()
            channel = Channel(
                id=blake2b_hex(key, now),
                participant=checksum,
                balance=balance,
                collateral=collateral_amount,
                opened_at=now,
                last_update_at=now,
            )
            self._channels[key] = channel

        logger.info("Channel opened for %s with balance %s", checksum, balance)
        return channel

    def _verify_update(
        self,
        channel: Channel,
        new_balance: Decimal,
        signature: Union[Signature, bytes, str],
        nonce: int,
        timestamp: int,
    ) -> None:
        if isinstance(nonce, bool) or not isinstance(nonce, int):
            raise InputRejected(f"Invalid nonce: {nonce!r}")
        if isinstance(timestamp, bool) or not isinstance(timestamp, int):
            raise InputRejected(f"Invalid timestamp: {timestamp!r}")
        if new_balance < ZERO:
            raise InputRejected("Balance cannot be negative")
        if new_balance > channel.collateral:
            raise InputRejected("Balance exceeds channel collateral")

        if nonce <= channel.nonce:
            logger.warning("SECURITY: stale nonce %d for channel %s (current %d)", nonce, channel.participant, channel.nonce)
            raise VerificationFailed(f"Stale nonce {nonce}, expected {channel.nonce + 1}")
        if nonce != channel.nonce + 1:
            logger.warning("SECURITY: nonce gap %d for channel %s (current %d)", nonce, channel.participant, channel.nonce)
            raise VerificationFailed(f"Nonce gap: got {nonce}, expected {channel.nonce + 1}")

        now = self.clock()
        if timestamp > now + self.max_clock_skew:
            raise VerificationFailed("Update timestamp is in the future")
        if now - timestamp > self.max_update_age:
            raise VerificationFailed("Update timestamp is too old")

        digest = channel_update_digest(channel.participant, new_balance, nonce, timestamp)
        try:
            signer = recover_message_signer(digest, signature)
        except ValueError as e:
            logger.warning("SECURITY: malformed signature on update for %s", channel.participant)
            raise VerificationFailed(f"Invalid signature: {e}") from e
        if normalize_address(signer) != normalize_address(channel.participant):
            logger.warning("SECURITY: update for %s signed by %s", channel.participant, signer)
            raise VerificationFailed("Signature does not match participant")

    def update(
        self,
        participant: str,
        new_balance: Amount,
        signature: Union[Signature, bytes, str],
        nonce: int,
        timestamp: int,
    ) -> Channel:
        """
        Apply a participant-signed balance update.

        Raises:
            InputRejected: unknown or inactive channel, malformed fields
            VerificationFailed: stale or gapped nonce, stale timestamp, bad signature
        """
        key = self._key(participant)
        balance = self._amount(new_balance, "new_balance")

        with self._lock_for(key):
            channel = self._require_active(key)
            self._verify_update(channel, balance, signature, nonce, timestamp)
            channel.balance = balance
            channel.nonce += 1
            channel.last_update_at = self.clock()

        logger.info("Channel %s updated: balance %s, nonce %d", channel.participant, balance, channel.nonce)
        return channel

    def close(
        self,
        participant: str,
        final_balance: Amount,
        signature: Union[Signature, bytes, str],
        nonce: int,
        timestamp: int,
    ) -> Channel:
        """
        Cooperatively close a channel at a signed final balance and pay it out.

        Raises:
            InputRejected / VerificationFailed: as for update(), nothing changes
            SettlementFailed: payout failed; the channel is already closed
        """
        key = self._key(participant)
        balance = self._amount(final_balance, "final_balance")

        with self._lock_for(key):
            channel = self._require_active(key)
            self._verify_update(channel, balance, signature, nonce, timestamp)
            channel.balance = balance
            channel.nonce += 1
            channel.is_active = False
            channel.last_update_at = self.clock()
            paid = self._payout(channel)

        if not paid:
            raise SettlementFailed(f"Payout failed for channel {channel.id}")
        logger.info("Channel %s closed with final balance %s", channel.participant, balance)
        return channel

    def request_emergency_withdraw(self, participant: str, reason: str = "") -> EmergencyRequest:
        """
        Start the emergency-withdrawal timelock.

        Raises:
            InputRejected: unknown or inactive channel, or a request already exists
        """
        if not isinstance(reason, str):
            raise InputRejected("Reason must be a string")
        if len(reason) > MAX_REASON_LENGTH:
            raise InputRejected(f"Reason longer than {MAX_REASON_LENGTH} characters")
        key = self._key(participant)

        with self._lock_for(key):
            channel = self._require_active(key)
            existing = self._emergency.get(key)
            if existing is not None and not existing.is_executed:
                raise InputRejected("Emergency withdrawal already requested")

            now = self.clock()
            request = EmergencyRequest(requester=channel.participant, requested_at=now, reason=reason)
            self._emergency[key] = request
            channel.emergency_withdraw_requested_at = now

        logger.warning("Emergency withdrawal requested for %s: %s", channel.participant, reason or "no reason given")
        return request

    def can_emergency_withdraw(self, participant: str) -> bool:
        key = self._key(participant)
        request = self._emergency.get(key)
        channel = self._channels.get(key)
        if request is None or request.is_executed or channel is None or not channel.is_active:
            return False
        return self.clock() - request.requested_at >= self.withdrawal_delay

    def execute_emergency_withdraw(self, participant: str) -> Decimal:
        """
        Finish an emergency withdrawal once the delay has passed.

        Returns:
            The last confirmed balance, paid out to the participant

        Raises:
            InputRejected: no pending request, already executed, or inactive channel
            TimelockNotElapsed: the delay has not passed yet
            SettlementFailed: payout failed; the channel is already closed
        """
        key = self._key(participant)

        with self._lock_for(key):
            request = self._emergency.get(key)
            if request is None:
                raise InputRejected("No emergency withdrawal requested")
            if request.is_executed:
                raise InputRejected("Emergency withdrawal already executed")
            channel = self._require_active(key)

            remaining = request.requested_at + self.withdrawal_delay - self.clock()
            if remaining > 0:
                raise TimelockNotElapsed(f"Emergency withdrawal available in {remaining:.0f}s")

            channel.is_active = False
            channel.last_update_at = self.clock()
            request.is_executed = True
            payout = channel.balance
            paid = self._payout(channel)

        if not paid:
            raise SettlementFailed(f"Emergency payout failed for channel {channel.id}")
        logger.warning("Emergency withdrawal executed for %s: %s", channel.participant, payout)
        return payout

    def _payout(self, channel: Channel) -> bool:
        if self.settlement is None:
            channel.payout_status = PayoutStatus.PAID
            return True
        try:
            ok = self.settlement.execute_channel_payout(channel)
        except Exception as e:
            logger.exception("Settlement collaborator raised for channel %s: %s", channel.id, e)
            ok = False
        channel.payout_status = PayoutStatus.PAID if ok else PayoutStatus.FAILED
        if not ok:
            logger.error("Payout FAILED for channel %s (%s)", channel.id, channel.participant)
        return ok

    # -- Query --------------------------------------------------------------

    def get_channel(self, participant: str) -> Optional[Channel]:
        return self._channels.get(self._key(participant))

    def get_emergency_request(self, participant: str) -> Optional[EmergencyRequest]:
        return self._emergency.get(self._key(participant))

    def active_channels(self) -> List[Channel]:
        return [c for c in self._channels.values() if c.is_active]

    def total_locked_value(self) -> Decimal:
        return sum((c.balance for c in self.active_channels()), ZERO)

    def stats(self) -> Dict[str, Any]:
        active = self.active_channels()
        total = self.total_locked_value()
        average = total / len(active) if active else ZERO
        return {
            "total_channels": len(self._channels),
            "active_channels": len(active),
            "total_value": str(total),
            "average_balance": str(average),
            "pending_emergency_withdrawals": sum(1 for r in self._emergency.values() if not r.is_executed),
        }
