"""
Dark Pool Crypto Signing Module

Message signing and signer recovery using secp256k1 (Ethereum personal_sign).
"""

from typing import Union

from .keys import PrivateKey, PublicKey, Signature
from .hashing import keccak256


def _personal_message_hash(message: bytes) -> bytes:
    prefix = b'\x19Ethereum Signed Message:\n' + str(len(message)).encode()
    return keccak256(prefix + message)


def sign_message(private_key: PrivateKey, message: bytes) -> Signature:
    """
    Sign a message (Ethereum personal_sign style).

    The message is prefixed with "\\x19Ethereum Signed Message:\\n{length}"
    before hashing and signing.

    Args:
        private_key: PrivateKey to sign with
        message: Raw message bytes

    Returns:
        Signature
    """
    return private_key.sign_msg_hash(_personal_message_hash(message))


def recover_public_key(msg_hash: bytes, signature: Signature) -> PublicKey:
    return PublicKey.recover_from_msg_hash(msg_hash, signature)


def recover_message_signer(message: bytes, signature: Union[Signature, bytes, str]) -> str:
    """
    Recover the signer address of a personal_sign signature.

    Args:
        message: Original message bytes
        signature: Signature object, 65 raw bytes or hex string

    Returns:
        Checksum address of the signer

    Raises:
        ValueError: if the signature is malformed or does not recover
    """
    try:
        if isinstance(signature, str):
            signature = Signature.from_hex(signature)
        elif isinstance(signature, bytes):
            signature = Signature.from_bytes(signature)
        public_key = recover_public_key(_personal_message_hash(message), signature)
    except Exception as e:
        raise ValueError(f"Signature does not recover: {e}") from e
    return public_key.to_address()


def verify_message(address: str, message: bytes, signature: Union[Signature, bytes, str]) -> bool:
    """
    Verify a personal_sign signature was produced by ``address``.

    Returns:
        True if valid, False otherwise
    """
    try:
        recovered = recover_message_signer(message, signature)
    except ValueError:
        return False
    return recovered.lower() == address.lower()
