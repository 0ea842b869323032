import pytest

from darkpool.crypto.envelope import EngineKeyPair
from darkpool.exchange.settlement import RecordingSettlement, StaticKeyProvider


class FakeClock:
    """Manually advanced clock for window and timelock tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine_keypair():
    return EngineKeyPair.generate()


@pytest.fixture
def key_provider(engine_keypair):
    return StaticKeyProvider(engine_keypair)


@pytest.fixture
def settlement():
    return RecordingSettlement()
