# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Cryptographic primitives for the Atum client.

Provides:
- Nonce derivation: SHAKE256(prefix || message), 64 bytes
- Signature verification dispatch per algorithm:
    * Ed25519 (RFC 8032) via the cryptography library
    * XMSS^MT (RFC 8391) via atum_client.xmssmt

Everything here is pure: no cache, no network. verify_signature() checks
only the signature, not whether the server still vouches for the key; use
atum_client.verify for the full check.
"""

import hashlib
import logging
from pathlib import Path
from typing import BinaryIO, Union

import aiofiles
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from . import xmssmt
from .errors import UnsupportedAlgorithmError, UnsupportedHashError
from .types import (
    HashAlgorithm,
    Hashing,
    Signature,
    SignatureAlgorithm,
    encode_time_nonce,
)

logger = logging.getLogger(__name__)

# Size of a nonce derived from a message
NONCE_SIZE = 64

ED25519_PUBLIC_KEY_SIZE = 32
ED25519_SIGNATURE_SIZE = 64

_CHUNK_SIZE = 64 * 1024

Message = Union[bytes, bytearray, memoryview, BinaryIO]


# =============================================================================
# Nonce derivation
# =============================================================================

def _nonce_hasher(hashing: Hashing):
    if hashing.hash != HashAlgorithm.SHAKE256:
        raise UnsupportedHashError(hashing.hash)
    hasher = hashlib.shake_256()
    hasher.update(hashing.prefix)
    return hasher


def derive_nonce(hashing: Hashing, message: Message) -> bytes:
    """
    Reduce a message to the nonce that gets timestamped.

    Absorbs hashing.prefix, then the whole message, and squeezes 64 bytes.

    Args:
        hashing: Hash algorithm and random prefix
        message: The message, as bytes or a binary file object (read to the end)

    Returns:
        64-byte nonce

    Raises:
        UnsupportedHashError: If hashing.hash is not SHAKE256
    """
    hasher = _nonce_hasher(hashing)
    if isinstance(message, (bytes, bytearray, memoryview)):
        hasher.update(message)
    else:
        while True:
            chunk = message.read(_CHUNK_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.digest(NONCE_SIZE)


async def derive_nonce_from_file(hashing: Hashing, path: Union[str, Path]) -> bytes:
    """Like derive_nonce(), streaming the contents of a file."""
    hasher = _nonce_hasher(hashing)
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(_CHUNK_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.digest(NONCE_SIZE)


# =============================================================================
# Signature verification
# =============================================================================

def verify_ed25519(public_key: bytes, signature: bytes, message: bytes) -> bool:
    """
    Verify a detached Ed25519 signature.

    A public key or signature of the wrong length is an invalid signature.
    """
    if len(public_key) != ED25519_PUBLIC_KEY_SIZE:
        logger.debug(f"Rejecting Ed25519 public key of {len(public_key)} bytes")
        return False
    if len(signature) != ED25519_SIGNATURE_SIZE:
        return False
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def verify_signature(sig: Signature, time: int, nonce: bytes) -> bool:
    """
    Check that sig is a valid signature on (time, nonce).

    This does NOT check that the public key belongs to the server; only use
    it once trust in sig.public_key has been established separately.

    Args:
        sig: Signature from a timestamp
        time: Unix time on the timestamp
        nonce: The timestamped nonce

    Returns:
        True if the signature is valid

    Raises:
        UnsupportedAlgorithmError: If sig.alg is not known
        ValidationError: If time is not a signed 64-bit value
    """
    msg = encode_time_nonce(time, nonce)

    if sig.alg == SignatureAlgorithm.ED25519:
        return verify_ed25519(sig.public_key, sig.data, msg)

    if sig.alg == SignatureAlgorithm.XMSSMT:
        return xmssmt.verify(sig.public_key, msg, sig.data)

    raise UnsupportedAlgorithmError(sig.alg)
