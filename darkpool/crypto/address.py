"""
Dark Pool Crypto Address Module

Ethereum-style (EIP-55) addresses for traders, tokens and channel participants.
"""

from eth_utils import is_hex_address, to_checksum_address as _eth_checksum

from ..constants import ZERO_ADDRESS
from ..exceptions import InvalidAddressError


def is_valid_address(address: str) -> bool:
    """
    Check if address is a 20-byte hex address with 0x prefix.

    Args:
        address: Address to validate

    Returns:
        True if valid, False otherwise
    """
    if not isinstance(address, str) or not address.startswith(("0x", "0X")):
        return False
    return is_hex_address(address)


def is_zero_address(address: str) -> bool:
    return normalize_address(address) == ZERO_ADDRESS


def to_checksum_address(address: str) -> str:
    """
    Convert address to EIP-55 checksum format.

    Raises:
        InvalidAddressError: if the address is not a valid hex address
    """
    if not is_valid_address(address):
        raise InvalidAddressError(f"Invalid address: {address!r}")
    return _eth_checksum(address)


def normalize_address(address: str) -> str:
    """Lowercase 0x-prefixed form, used as dictionary key and for comparisons."""
    if not is_valid_address(address):
        raise InvalidAddressError(f"Invalid address: {address!r}")
    return "0x" + address[2:].lower()


def require_address(address: str, field_name: str = "address", allow_zero: bool = False) -> str:
    """
    Validate and checksum an address supplied at an intake boundary.

    Raises:
        InvalidAddressError: if malformed, or the zero address when not allowed
    """
    if not is_valid_address(address):
        raise InvalidAddressError(f"Invalid {field_name}: {address!r}")
    if not allow_zero and is_zero_address(address):
        raise InvalidAddressError(f"Invalid {field_name}: zero address")
    return _eth_checksum(address)
