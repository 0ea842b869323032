"""
Dark Pool Crypto Hashing Module

Provides the hash functions used for commitments and signed channel updates:
- keccak256: Web3 standard, used for commitments and update digests
- blake2b_hex: short deterministic identifiers (match and channel ids)
"""

import hashlib
from typing import Union

from Crypto.Hash import keccak as _keccak


def _to_bytes(data: Union[bytes, str]) -> bytes:
    if isinstance(data, str):
        if data.startswith('0x') or data.startswith('0X'):
            return bytes.fromhex(data[2:])
        return bytes.fromhex(data)
    return data


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum standard).

    Args:
        data: Input bytes or hex string

    Returns:
        32-byte hash
    """
    k = _keccak.new(digest_bits=256)
    k.update(_to_bytes(data))
    return k.digest()


def keccak256_hex(data: Union[bytes, str]) -> str:
    """
    Compute Keccak-256 hash and return as hex string.

    Args:
        data: Input bytes or hex string

    Returns:
        Hex string with 0x prefix
    """
    return '0x' + keccak256(data).hex()


def blake2b_hex(*parts: object, digest_size: int = 8) -> str:
    """Deterministic short identifier over ``:``-joined parts, no uuid4."""
    raw = ":".join(str(p) for p in parts).encode()
    return hashlib.blake2b(raw, digest_size=digest_size).hexdigest()
