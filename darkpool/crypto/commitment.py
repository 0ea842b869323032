"""
Dark Pool Order Commitments

Hiding, binding commitments for the commit-reveal intake protocol.

A commitment is keccak256 over the ABI encoding of

    (address trader, address tokenIn, address tokenOut,
     uint256 amountIn, uint256 amountOut, bool isBuy, bytes32 secretNonce)

with amounts in 18-decimal base units. ABI encoding pads every field to a
fixed 32-byte slot, so the digest is order-sensitive and distinguishes types
(``isBuy=True`` never collides with an amount of 1).
"""

from __future__ import annotations

import re
import secrets
from decimal import Decimal
from typing import TYPE_CHECKING, Union

from eth_abi import encode
from eth_abi.exceptions import EncodingError
from eth_utils import to_wei

from ..constants import ZERO_COMMITMENT
from ..exceptions import InputRejected
from .address import require_address
from .hashing import keccak256

if TYPE_CHECKING:
    from ..exchange.orders import OrderDetails

COMMITMENT_TYPES = ["address", "address", "address", "uint256", "uint256", "bool", "bytes32"]
SECRET_NONCE_SIZE = 32
BASE_UNIT_DECIMALS = 18

_COMMITMENT_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

Amount = Union[Decimal, int, str]


def to_base_units(amount: Amount) -> int:
    """Convert a token amount (18 decimals) to integer base units."""
    if isinstance(amount, float):
        raise TypeError("Amounts must be Decimal, int or str, not float")
    value = Decimal(str(amount))
    require_base_unit_precision(value, "amount")
    wei = to_wei(value, "ether")
    return int(wei)


def require_base_unit_precision(value: Decimal, field_name: str) -> None:
    """Refuse amounts finer than one base unit, which the 18-decimal encoding would drop."""
    if not value.is_finite():
        return
    _, digits, exponent = value.as_tuple()
    excess = -BASE_UNIT_DECIMALS - exponent
    if excess > 0 and any(digits[-excess:]):
        raise InputRejected(f"{field_name} has more than {BASE_UNIT_DECIMALS} decimal places: {value}")


def secret_nonce_bytes(secret_nonce: Union[bytes, str]) -> bytes:
    """Normalize a secret nonce to exactly 32 bytes."""
    if not isinstance(secret_nonce, (bytes, str)):
        raise TypeError(f"Secret nonce must be bytes or hex, not {type(secret_nonce).__name__}")
    if isinstance(secret_nonce, str):
        value = secret_nonce[2:] if secret_nonce.startswith(("0x", "0X")) else secret_nonce
        secret_nonce = bytes.fromhex(value)
    if len(secret_nonce) != SECRET_NONCE_SIZE:
        raise ValueError(f"Secret nonce must be {SECRET_NONCE_SIZE} bytes, got {len(secret_nonce)}")
    return secret_nonce


def generate_secret_nonce() -> bytes:
    """Fresh 32-byte secret nonce from the OS CSPRNG."""
    return secrets.token_bytes(SECRET_NONCE_SIZE)


def compute_commitment(
    trader: str,
    token_in: str,
    token_out: str,
    amount_in: Amount,
    amount_out: Amount,
    is_buy: bool,
    secret_nonce: Union[bytes, str],
) -> str:
    """
    Compute the commitment for an order.

    Returns:
        0x-prefixed lowercase hex of the 32-byte digest
    """
    payload = encode(
        COMMITMENT_TYPES,
        [
            require_address(trader, "trader", allow_zero=True),
            require_address(token_in, "token_in", allow_zero=True),
            require_address(token_out, "token_out", allow_zero=True),
            to_base_units(amount_in),
            to_base_units(amount_out),
            bool(is_buy),
            secret_nonce_bytes(secret_nonce),
        ],
    )
    return "0x" + keccak256(payload).hex()


def commitment_for(details: "OrderDetails") -> str:
    return compute_commitment(
        details.trader,
        details.token_in,
        details.token_out,
        details.amount_in,
        details.amount_out,
        details.is_buy,
        details.secret_nonce,
    )


def verify_commitment(commitment: str, details: "OrderDetails") -> bool:
    """
    Recompute the commitment from revealed fields and compare.

    Malformed fields count as a mismatch rather than raising.
    """
    if not isinstance(commitment, str):
        return False
    try:
        expected = commitment_for(details)
    except (ValueError, TypeError, InputRejected, EncodingError):
        return False
    return secrets.compare_digest(expected, normalize_commitment(commitment))


def normalize_commitment(commitment: str) -> str:
    return commitment.lower()


def is_valid_commitment_format(commitment: str) -> bool:
    """32-byte 0x-hex and not the all-zero value."""
    if not isinstance(commitment, str) or not _COMMITMENT_RE.match(commitment):
        return False
    return commitment.lower() != ZERO_COMMITMENT
