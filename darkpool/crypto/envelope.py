"""
Dark Pool Order Envelope Encryption

Hybrid public-key encryption for revealed order payloads. Only the holder of
the matching engine's private key can open an envelope.

    Client                                         Engine
      | ephemeral X25519 keypair (e, E)               |
      | shared = X25519(e, engine_pub)                |
      | key = BLAKE3(tag || shared || E || engine_pub)|
      | AES-256-GCM(key, nonce, payload, aad=header)  |
      |---------------------------------------------->|
      |            shared = X25519(engine_priv, E)    |

Envelope layout:

    version (1) || ephemeral_pub (32) || nonce (12) || ciphertext || tag (16)

The header is authenticated as associated data, so any bit flip anywhere in
the envelope, or an envelope sealed for a different engine key, fails the
GCM tag check and raises UndecryptableError.
"""

import os
from dataclasses import dataclass
from typing import Union

import blake3
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import InvalidKeyError, UndecryptableError

ENVELOPE_VERSION = 1
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
HEADER_SIZE = 1 + KEY_SIZE
MIN_ENVELOPE_SIZE = HEADER_SIZE + NONCE_SIZE + TAG_SIZE

_KDF_TAG = b"darkpool-order-envelope-v1"


def _raw_public(key: X25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _load_public(public_key: Union[bytes, str]) -> X25519PublicKey:
    if isinstance(public_key, str):
        public_key = bytes.fromhex(public_key[2:] if public_key.startswith("0x") else public_key)
    if len(public_key) != KEY_SIZE:
        raise InvalidKeyError(f"Engine public key must be {KEY_SIZE} bytes, got {len(public_key)}")
    return X25519PublicKey.from_public_bytes(public_key)


def _derive_key(shared_secret: bytes, ephemeral_pub: bytes, recipient_pub: bytes) -> bytes:
    return blake3.blake3(_KDF_TAG + shared_secret + ephemeral_pub + recipient_pub).digest()


@dataclass(frozen=True)
class EngineKeyPair:
    """The matching engine's long-lived envelope keypair."""
    private_key: X25519PrivateKey
    public_key: bytes

    @classmethod
    def generate(cls) -> "EngineKeyPair":
        private_key = X25519PrivateKey.generate()
        return cls(private_key=private_key, public_key=_raw_public(private_key.public_key()))

    @classmethod
    def from_private_bytes(cls, data: Union[bytes, str]) -> "EngineKeyPair":
        if isinstance(data, str):
            data = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        if len(data) != KEY_SIZE:
            raise InvalidKeyError(f"Engine private key must be {KEY_SIZE} bytes, got {len(data)}")
        private_key = X25519PrivateKey.from_private_bytes(data)
        return cls(private_key=private_key, public_key=_raw_public(private_key.public_key()))

    def private_bytes(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @property
    def public_key_hex(self) -> str:
        return "0x" + self.public_key.hex()

    def __repr__(self) -> str:
        return f"EngineKeyPair(public_key={self.public_key_hex[:18]}...)"


def encrypt_payload(payload: bytes, public_key: Union[bytes, str]) -> bytes:
    """
    Seal ``payload`` for the holder of ``public_key``.

    Args:
        payload: Plaintext bytes
        public_key: Engine X25519 public key (raw 32 bytes or hex)

    Returns:
        Envelope bytes
    """
    recipient = _load_public(public_key)
    recipient_pub = _raw_public(recipient)

    ephemeral = X25519PrivateKey.generate()
    ephemeral_pub = _raw_public(ephemeral.public_key())
    shared_secret = ephemeral.exchange(recipient)

    key = _derive_key(shared_secret, ephemeral_pub, recipient_pub)
    header = bytes([ENVELOPE_VERSION]) + ephemeral_pub
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, payload, header)
    return header + nonce + ciphertext


def decrypt_payload(envelope: bytes, keypair: EngineKeyPair) -> bytes:
    """
    Open an envelope produced by encrypt_payload().

    Raises:
        UndecryptableError: on truncated, tampered or mis-keyed envelopes
    """
    if not isinstance(envelope, (bytes, bytearray)) or len(envelope) < MIN_ENVELOPE_SIZE:
        raise UndecryptableError("Envelope too short")
    if envelope[0] != ENVELOPE_VERSION:
        raise UndecryptableError(f"Unsupported envelope version: {envelope[0]}")

    header = bytes(envelope[:HEADER_SIZE])
    ephemeral_pub = header[1:]
    nonce = bytes(envelope[HEADER_SIZE:HEADER_SIZE + NONCE_SIZE])
    ciphertext = bytes(envelope[HEADER_SIZE + NONCE_SIZE:])

    try:
        shared_secret = keypair.private_key.exchange(X25519PublicKey.from_public_bytes(ephemeral_pub))
    except ValueError as e:
        # Low-order points produce an all-zero shared secret, which cryptography rejects
        raise UndecryptableError(f"Invalid ephemeral key: {e}") from e

    key = _derive_key(shared_secret, ephemeral_pub, keypair.public_key)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, header)
    except InvalidTag as e:
        raise UndecryptableError("Envelope authentication failed") from e


def encrypt_order(details, public_key: Union[bytes, str]) -> bytes:
    """Seal an OrderDetails payload for the matching engine."""
    return encrypt_payload(details.to_payload(), public_key)


def decrypt_order(envelope: bytes, keypair: EngineKeyPair):
    """
    Open an order envelope and decode its OrderDetails.

    Raises:
        UndecryptableError: if the envelope does not open or the payload is malformed
    """
    from ..exchange.orders import OrderDetails

    payload = decrypt_payload(envelope, keypair)
    try:
        return OrderDetails.from_payload(payload)
    except (ValueError, TypeError, KeyError) as e:
        raise UndecryptableError(f"Malformed order payload: {e}") from e
