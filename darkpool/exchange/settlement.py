"""
Dark Pool Settlement Collaborators

The matching engine and channel ledger never touch a chain directly. They
hand computed matches and channel payouts to a settlement collaborator and
obtain the engine's envelope key from a key provider.

Collaborator interfaces (Protocol for structural typing):
  - SettlementCollaborator: execute_match / execute_channel_payout -> bool
  - KeyProvider: engine_keypair() -> EngineKeyPair

Built-in implementations:
  - RecordingSettlement: in-memory, used by tests and the development node
  - StaticKeyProvider / EnvKeyProvider
"""

from __future__ import annotations

import logging
import os
import threading
from typing import TYPE_CHECKING, List, Optional, Protocol, Set

from ..crypto.envelope import EngineKeyPair
from ..exceptions import ConfigurationError, InvalidKeyError
from .orders import Match

if TYPE_CHECKING:
    from ..channels.ledger import Channel

logger = logging.getLogger(__name__)

ENGINE_KEY_ENV = "DARKPOOL_ENGINE_PRIVATE_KEY"


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class SettlementCollaborator(Protocol):
    """Executes matches and channel payouts. Returns False on failure."""

    def execute_match(self, match: Match) -> bool: ...
    def execute_channel_payout(self, channel: "Channel") -> bool: ...


class KeyProvider(Protocol):
    """Supplies the engine's envelope keypair."""

    def engine_keypair(self) -> EngineKeyPair: ...


# ---------------------------------------------------------------------------
# In-memory settlement
# ---------------------------------------------------------------------------

class RecordingSettlement:
    """
    Records every settlement request instead of submitting it anywhere.

    Failure can be simulated for all matches (``fail_matches``), for matches
    touching specific commitments (``fail_commitments``), or for payouts
    (``fail_payouts``).
    """

    def __init__(
        self,
        fail_matches: bool = False,
        fail_payouts: bool = False,
        fail_commitments: Optional[Set[str]] = None,
    ):
        self.fail_matches = fail_matches
        self.fail_payouts = fail_payouts
        self.fail_commitments: Set[str] = set(fail_commitments or ())
        self.matches: List[Match] = []
        self.payouts: List["Channel"] = []
        self._lock = threading.Lock()

    def execute_match(self, match: Match) -> bool:
        if self.fail_matches or {match.buy_commitment, match.sell_commitment} & self.fail_commitments:
            logger.debug("Simulated settlement failure for match %s", match.id)
            return False
        with self._lock:
            self.matches.append(match)
        return True

    def execute_channel_payout(self, channel: "Channel") -> bool:
        if self.fail_payouts:
            logger.debug("Simulated payout failure for channel %s", channel.id)
            return False
        with self._lock:
            self.payouts.append(channel)
        return True


# ---------------------------------------------------------------------------
# Key providers
# ---------------------------------------------------------------------------

class StaticKeyProvider:
    """Serves a keypair supplied at construction."""

    def __init__(self, keypair: EngineKeyPair):
        self._keypair = keypair

    def engine_keypair(self) -> EngineKeyPair:
        return self._keypair


class EnvKeyProvider:
    """Reads a hex X25519 private key from the environment."""

    def __init__(self, env_var: str = ENGINE_KEY_ENV, value: Optional[str] = None):
        self.env_var = env_var
        self._value = value
        self._keypair: Optional[EngineKeyPair] = None

    def engine_keypair(self) -> EngineKeyPair:
        if self._keypair is None:
            raw = self._value if self._value is not None else os.environ.get(self.env_var, "")
            if not raw:
                raise ConfigurationError(f"{self.env_var} is not set")
            try:
                self._keypair = EngineKeyPair.from_private_bytes(raw.strip())
            except (ValueError, InvalidKeyError) as e:
                raise ConfigurationError(f"{self.env_var} is not a valid engine key: {e}") from e
            logger.info("Loaded engine key %s from %s", self._keypair.public_key_hex[:18], self.env_var)
        return self._keypair
