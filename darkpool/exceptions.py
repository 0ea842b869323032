"""
Dark Pool Exceptions

Custom exception classes for the dark pool settlement layer.

Every rejection raised here except ``SettlementFailed`` is raised before any
state is mutated, so callers can treat them as side-effect free.
"""


class DarkPoolException(Exception):
    """Base exception for the dark pool."""
    pass


class InputRejected(DarkPoolException):
    """Malformed, duplicate or out-of-bounds input rejected at the boundary."""
    pass


class WindowExpired(DarkPoolException):
    """Reveal or cancel submitted after its deadline."""
    pass


class VerificationFailed(DarkPoolException):
    """Commitment mismatch, bad signature or stale nonce."""
    pass


class SettlementFailed(DarkPoolException):
    """The settlement collaborator reported failure for a computed match or payout."""
    pass


class TimelockNotElapsed(DarkPoolException):
    """Emergency withdrawal attempted before its delay has passed."""
    pass


class UndecryptableError(DarkPoolException):
    """Ciphertext is corrupted or was not encrypted for this key."""
    pass


class InvalidKeyError(DarkPoolException):
    """Invalid cryptographic key."""
    pass


class InvalidAddressError(InputRejected):
    """Invalid address format."""
    pass


class ConfigurationError(DarkPoolException):
    """Configuration error."""
    pass
