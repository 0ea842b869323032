"""
Dark Pool Crypto Module

This module provides cryptographic primitives for the dark pool:
- secp256k1 keys and personal_sign signatures (channel updates)
- Hash functions (keccak256, blake2b identifiers)
- Order commitments (keccak256 over ABI-encoded order fields)
- Order envelopes (X25519 + BLAKE3 + AES-256-GCM)
- Address validation and checksumming
"""

from .keys import PrivateKey, PublicKey, Signature, generate_keypair
from .signing import (
    sign_message,
    recover_public_key,
    recover_message_signer,
    verify_message,
)
from .hashing import keccak256, keccak256_hex, blake2b_hex
from .address import (
    is_valid_address,
    is_zero_address,
    to_checksum_address,
    normalize_address,
    require_address,
)
from .commitment import (
    compute_commitment,
    commitment_for,
    verify_commitment,
    generate_secret_nonce,
    is_valid_commitment_format,
    to_base_units,
)
from .envelope import (
    EngineKeyPair,
    encrypt_payload,
    decrypt_payload,
    encrypt_order,
    decrypt_order,
)

__all__ = [
    # Keys (secp256k1)
    "PrivateKey",
    "PublicKey",
    "Signature",
    "generate_keypair",
    # Signing
    "sign_message",
    "recover_public_key",
    "recover_message_signer",
    "verify_message",
    # Hashing
    "keccak256",
    "keccak256_hex",
    "blake2b_hex",
    # Address
    "is_valid_address",
    "is_zero_address",
    "to_checksum_address",
    "normalize_address",
    "require_address",
    # Commitments
    "compute_commitment",
    "commitment_for",
    "verify_commitment",
    "generate_secret_nonce",
    "is_valid_commitment_format",
    "to_base_units",
    # Envelopes
    "EngineKeyPair",
    "encrypt_payload",
    "decrypt_payload",
    "encrypt_order",
    "decrypt_order",
]
