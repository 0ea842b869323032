"""
Dark Pool Intake Service

Single entry point for client requests. Every request is a typed dataclass;
submit() dispatches on the request type and converts the domain exceptions
into an IntakeResult carrying a status code, so callers never have to
catch exceptions.

    service = DarkPoolService.from_config(load_config(), EnvKeyProvider())
    result = service.submit(CommitOrder(commitment, timestamp, trader))
    if not result.success:
        print(result.status, result.error)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .channels.ledger import ChannelLedger
from .config.loader import DarkPoolConfig
from .constants import NODE_VERSION
from .exceptions import (
    DarkPoolException,
    InputRejected,
    SettlementFailed,
    TimelockNotElapsed,
    VerificationFailed,
    WindowExpired,
)
from .exchange.engine import MatchingEngine
from .exchange.orders import EncryptedOrder, EpochReport
from .exchange.scheduler import EpochScheduler
from .exchange.settlement import KeyProvider, RecordingSettlement, SettlementCollaborator
from .logger import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class IntakeStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WINDOW_EXPIRED = "window_expired"
    VERIFICATION_FAILED = "verification_failed"
    SETTLEMENT_FAILED = "settlement_failed"
    TIMELOCK_NOT_ELAPSED = "timelock_not_elapsed"
    ERROR = "error"


class IntakeResult:
    """Ack or reject for a single intake request."""

    __slots__ = ("success", "status", "data", "error")

    def __init__(
        self,
        success: bool = True,
        status: IntakeStatus = IntakeStatus.ACCEPTED,
        data: Optional[Dict[str, Any]] = None,
        error: str = "",
    ):
        self.success = success
        self.status = status
        self.data = data or {}
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"ok": True, "status": self.status.value, "result": self.data}
        return {"ok": False, "status": self.status.value, "error": self.error}

    def __repr__(self) -> str:
        return f"IntakeResult(success={self.success}, status={self.status.value}, error={self.error!r})"


# Most specific first: InvalidAddressError is an InputRejected
_STATUS_BY_EXCEPTION = (
    (SettlementFailed, IntakeStatus.SETTLEMENT_FAILED),
    (TimelockNotElapsed, IntakeStatus.TIMELOCK_NOT_ELAPSED),
    (WindowExpired, IntakeStatus.WINDOW_EXPIRED),
    (VerificationFailed, IntakeStatus.VERIFICATION_FAILED),
    (InputRejected, IntakeStatus.REJECTED),
)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CommitOrder:
    commitment: str
    timestamp: float
    trader: str


@dataclass(frozen=True)
class RevealOrder:
    commitment: str
    ciphertext: bytes
    nonce: int = 0


@dataclass(frozen=True)
class CancelOrder:
    commitment: str
    trader: str


@dataclass(frozen=True)
class OpenChannel:
    participant: str
    initial_balance: Union[Decimal, int, str]
    collateral: Union[Decimal, int, str]


@dataclass(frozen=True)
class UpdateChannel:
    participant: str
    new_balance: Union[Decimal, int, str]
    signature: str
    nonce: int
    timestamp: int


@dataclass(frozen=True)
class CloseChannel:
    participant: str
    final_balance: Union[Decimal, int, str]
    signature: str
    nonce: int
    timestamp: int


@dataclass(frozen=True)
class RequestEmergencyWithdraw:
    participant: str
    reason: str = ""


@dataclass(frozen=True)
class ExecuteEmergencyWithdraw:
    participant: str


IntakeRequest = Union[
    CommitOrder,
    RevealOrder,
    CancelOrder,
    OpenChannel,
    UpdateChannel,
    CloseChannel,
    RequestEmergencyWithdraw,
    ExecuteEmergencyWithdraw,
]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class DarkPoolService:
    """
    Intake surface and read-only views over the matching engine and the
    channel ledger.
    """

    def __init__(
        self,
        engine: MatchingEngine,
        ledger: ChannelLedger,
        scheduler: Optional[EpochScheduler] = None,
    ):
        self.engine = engine
        self.ledger = ledger
        self.scheduler = scheduler or EpochScheduler(engine)
        self.started_at = time.time()

        self._handlers: Dict[type, Callable[[Any], Dict[str, Any]]] = {
            CommitOrder: self._op_commit,
            RevealOrder: self._op_reveal,
            CancelOrder: self._op_cancel,
            OpenChannel: self._op_open_channel,
            UpdateChannel: self._op_update_channel,
            CloseChannel: self._op_close_channel,
            RequestEmergencyWithdraw: self._op_request_emergency,
            ExecuteEmergencyWithdraw: self._op_execute_emergency,
        }

    @classmethod
    def from_config(
        cls,
        config: DarkPoolConfig,
        key_provider: KeyProvider,
        settlement: Optional[SettlementCollaborator] = None,
        clock: Callable[[], float] = time.time,
    ) -> "DarkPoolService":
        """Wire an engine, ledger and scheduler from configuration."""
        config.validate()
        settlement = settlement if settlement is not None else RecordingSettlement()
        engine = MatchingEngine(
            key_provider,
            settlement,
            commitment_window=config.engine.commitment_window,
            reveal_window=config.engine.reveal_window,
            max_clock_skew=config.engine.max_clock_skew,
            min_order_size=config.intake.min_order_size,
            max_order_size=config.intake.max_order_size,
            max_pending_reveals=config.intake.max_pending_reveals,
            recent_matches_kept=config.engine.recent_matches_kept,
            clock=clock,
        )
        ledger = ChannelLedger(
            settlement,
            min_balance=config.channels.min_balance,
            max_balance=config.channels.max_balance,
            withdrawal_delay=config.channels.emergency_withdrawal_delay,
            max_update_age=config.channels.max_update_age,
            max_clock_skew=config.engine.max_clock_skew,
            clock=clock,
        )
        scheduler = EpochScheduler(engine, interval=config.engine.epoch_interval)
        return cls(engine, ledger, scheduler)

    # -- Dispatch -----------------------------------------------------------

    def submit(self, request: IntakeRequest) -> IntakeResult:
        """Execute one intake request."""
        handler = self._handlers.get(type(request))
        if handler is None:
            return IntakeResult(
                success=False,
                status=IntakeStatus.REJECTED,
                error=f"Unknown request type: {type(request).__name__}",
            )

        try:
            return IntakeResult(data=handler(request))
        except DarkPoolException as e:
            for exc_type, status in _STATUS_BY_EXCEPTION:
                if isinstance(e, exc_type):
                    break
            else:
                status = IntakeStatus.ERROR
            logger.info("%s rejected (%s): %s", type(request).__name__, status.value, e)
            return IntakeResult(success=False, status=status, error=str(e))
        except (ValueError, TypeError) as e:
            logger.info("%s rejected: %s", type(request).__name__, e)
            return IntakeResult(success=False, status=IntakeStatus.REJECTED, error=str(e))
        except Exception as e:
            logger.error("%s failed: %s", type(request).__name__, e)
            return IntakeResult(success=False, status=IntakeStatus.ERROR, error=str(e))

    # -- Convenience wrappers ----------------------------------------------

    def commit(self, commitment: str, timestamp: float, trader: str) -> IntakeResult:
        return self.submit(CommitOrder(commitment, timestamp, trader))

    def reveal(self, commitment: str, ciphertext: bytes, nonce: int = 0) -> IntakeResult:
        return self.submit(RevealOrder(commitment, ciphertext, nonce))

    def cancel(self, commitment: str, trader: str) -> IntakeResult:
        return self.submit(CancelOrder(commitment, trader))

    def open_channel(self, participant: str, initial_balance, collateral) -> IntakeResult:
        return self.submit(OpenChannel(participant, initial_balance, collateral))

    def update_channel(self, participant: str, new_balance, signature: str, nonce: int, timestamp: int) -> IntakeResult:
        return self.submit(UpdateChannel(participant, new_balance, signature, nonce, timestamp))

    def close_channel(self, participant: str, final_balance, signature: str, nonce: int, timestamp: int) -> IntakeResult:
        return self.submit(CloseChannel(participant, final_balance, signature, nonce, timestamp))

    def request_emergency_withdraw(self, participant: str, reason: str = "") -> IntakeResult:
        return self.submit(RequestEmergencyWithdraw(participant, reason))

    def execute_emergency_withdraw(self, participant: str) -> IntakeResult:
        return self.submit(ExecuteEmergencyWithdraw(participant))

    # -- Operation handlers -------------------------------------------------

    def _op_commit(self, req: CommitOrder) -> Dict[str, Any]:
        record = self.engine.commit(req.commitment, req.timestamp, req.trader)
        return {"commitment": record.commitment, "submitted_at": record.submitted_at}

    def _op_reveal(self, req: RevealOrder) -> Dict[str, Any]:
        queued = self.engine.reveal(EncryptedOrder(
            commitment=req.commitment,
            ciphertext=req.ciphertext,
            nonce=req.nonce,
        ))
        return {"commitment": queued.commitment, "epoch": self.engine.current_epoch + 1}

    def _op_cancel(self, req: CancelOrder) -> Dict[str, Any]:
        record = self.engine.cancel(req.commitment, req.trader)
        return {"commitment": record.commitment, "status": "cancelled"}

    def _op_open_channel(self, req: OpenChannel) -> Dict[str, Any]:
        return self.ledger.open(req.participant, req.initial_balance, req.collateral).to_dict()

    def _op_update_channel(self, req: UpdateChannel) -> Dict[str, Any]:
        channel = self.ledger.update(req.participant, req.new_balance, req.signature, req.nonce, req.timestamp)
        return channel.to_dict()

    def _op_close_channel(self, req: CloseChannel) -> Dict[str, Any]:
        channel = self.ledger.close(req.participant, req.final_balance, req.signature, req.nonce, req.timestamp)
        return channel.to_dict()

    def _op_request_emergency(self, req: RequestEmergencyWithdraw) -> Dict[str, Any]:
        return self.ledger.request_emergency_withdraw(req.participant, req.reason).to_dict()

    def _op_execute_emergency(self, req: ExecuteEmergencyWithdraw) -> Dict[str, Any]:
        payout = self.ledger.execute_emergency_withdraw(req.participant)
        return {"participant": req.participant, "payout": str(payout)}

    # -- Lifecycle ----------------------------------------------------------

    def run_epoch(self) -> EpochReport:
        return self.scheduler.tick()

    async def start(self):
        await self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()

    def pause(self) -> None:
        self.engine.pause()

    def resume(self) -> None:
        self.engine.resume()

    # -- Views --------------------------------------------------------------

    @property
    def engine_public_key(self) -> str:
        return self.engine.public_key_hex

    @property
    def current_epoch(self) -> int:
        return self.engine.current_epoch

    @property
    def pending_reveal_count(self) -> int:
        return self.engine.pending_reveal_count

    def book_depth(self) -> Dict[str, int]:
        return self.engine.book.depth()

    def orderbook_status(self) -> Dict[str, Any]:
        return self.engine.status()

    def order_status(self, commitment: str) -> Optional[str]:
        status = self.engine.get_status(commitment)
        return status.value if status is not None else None

    def recent_matches(self, count: int = 50) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in self.engine.recent_matches(count)]

    def channel(self, participant: str) -> Optional[Dict[str, Any]]:
        channel = self.ledger.get_channel(participant)
        return channel.to_dict() if channel is not None else None

    def emergency_request(self, participant: str) -> Optional[Dict[str, Any]]:
        request = self.ledger.get_emergency_request(participant)
        return request.to_dict() if request is not None else None

    def channel_stats(self) -> Dict[str, Any]:
        return self.ledger.stats()

    def health(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "version": NODE_VERSION,
            "current_epoch": self.engine.current_epoch,
            "engine_state": self.engine.state.value,
            "paused": self.engine.is_paused,
            "scheduler_running": self.scheduler.is_running,
            "uptime": time.time() - self.started_at,
        }
