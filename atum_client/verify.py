# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Verification of Atum timestamps.

Two steps, always in this order:
1. Trust: does the server (still) vouch for the public key that signed the
   timestamp? Answered from the cache while the server's last answer has
   not expired, otherwise by asking the server.
2. Signature: is the signature valid on (time, nonce)? Purely offline.

A signature check without step 1 proves nothing about who set the
timestamp; it is only available under the long name
dangerous_verify_signature_but_not_public_key().

Usage:
    from atum_client import AtumClient
    from atum_client.verify import verify_timestamp

    async with AtumClient() as client:
        result = await verify_timestamp(ts, message, client)
        if result.valid:
            print(f"Timestamped at {ts.get_time()} by {ts.server_url}")
        else:
            print(result.message)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

import aiofiles

from .crypto import Message, derive_nonce, derive_nonce_from_file, verify_signature
from .errors import PublicKeyExpiredError, UnsupportedAlgorithmError
from .types import Signature, SignatureAlgorithm, Timestamp

if TYPE_CHECKING:
    from .client import AtumClient

logger = logging.getLogger(__name__)


class VerifyStatus(str, Enum):
    """Verification result status."""
    VALID = "valid"                      # Key trusted and signature valid
    UNTRUSTED_KEY = "untrusted_key"      # Server does not vouch for the key
    INVALID_SIGNATURE = "invalid_sig"    # Signature does not match (time, nonce)


@dataclass
class VerifyResult:
    """
    Outcome of a completed verification.

    Verification that could not be completed (server unreachable, garbled
    answer) raises TransportError instead of producing a result.

    Attributes:
        valid: True only if the key is trusted and the signature valid
        status: Detailed status code
        message: Human-readable explanation
        checked_at: Timestamp of verification
        details: Additional verification details
    """
    valid: bool
    status: VerifyStatus
    message: str
    checked_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, details: Optional[Dict] = None) -> "VerifyResult":
        return cls(
            valid=True,
            status=VerifyStatus.VALID,
            message="Valid timestamp: public key trusted and signature verified",
            details=details or {},
        )

    @classmethod
    def failure(cls, status: VerifyStatus, message: str, details: Optional[Dict] = None) -> "VerifyResult":
        return cls(valid=False, status=status, message=message, details=details or {})


def _read_all(message: Message) -> bytes:
    if isinstance(message, (bytes, bytearray, memoryview)):
        return bytes(message)
    return message.read()


def resolve_nonce(timestamp: Timestamp, message: Message) -> bytes:
    """
    The nonce a timestamp was set on.

    For a hashed timestamp the message is hashed with the recorded prefix;
    otherwise the message is the nonce itself.
    """
    if timestamp.hashing is not None:
        return derive_nonce(timestamp.hashing, message)
    return _read_all(message)


async def verify_public_key(timestamp: Timestamp, client: "AtumClient") -> bool:
    """
    Check whether the timestamp's server vouches for its public key.

    A cached answer is used while it has not expired; otherwise the server
    is asked and a positive answer is cached until the expiry it states.

    Returns:
        True if trusted, False if the server says it is not

    Raises:
        TransportError: If the server can't be reached or understood
        PublicKeyExpiredError: If the server's vouching ends before the
                               time on the timestamp
    """
    sig = timestamp.sig

    expires = await client.lookup_public_key(timestamp.server_url, sig.alg, sig.public_key)
    if expires is not None:
        # In Unix seconds; timestamp.time may exceed datetime's range
        if expires > datetime.now(timezone.utc) and expires.timestamp() >= timestamp.time:
            logger.debug(f"Public key trusted by cache until {expires.isoformat()}")
            return True
        logger.debug(f"Cached trust for public key not usable (expires {expires.isoformat()})")

    resp = await client.check_public_key(timestamp.server_url, sig.alg, sig.public_key)

    # The key must have been valid at the time the timestamp claims
    if resp.expires.timestamp() < timestamp.time:
        raise PublicKeyExpiredError(
            f"Public key expired at {resp.expires.isoformat()}, "
            f"before the timestamp time {timestamp.time}"
        )

    if not resp.trusted:
        logger.info(f"{timestamp.server_url} does not vouch for public key {sig.public_key.hex()[:16]}...")
        return False

    await client.remember_public_key(timestamp.server_url, sig.alg, sig.public_key, resp.expires)
    return True


def _require_known_alg(sig: Signature) -> None:
    try:
        SignatureAlgorithm(sig.alg)
    except ValueError as e:
        raise UnsupportedAlgorithmError(sig.alg) from e


async def _verify_nonce(timestamp: Timestamp, nonce: bytes, client: "AtumClient") -> VerifyResult:
    # Unknown algorithms fail locally, without asking the server about the key
    _require_known_alg(timestamp.sig)

    details = {
        "server_url": timestamp.server_url,
        "time": timestamp.time,
        "alg": getattr(timestamp.sig.alg, "value", timestamp.sig.alg),
    }

    if not await verify_public_key(timestamp, client):
        return VerifyResult.failure(
            VerifyStatus.UNTRUSTED_KEY,
            f"{timestamp.server_url} does not vouch for the signing public key",
            details=details,
        )

    if not verify_signature(timestamp.sig, timestamp.time, nonce):
        return VerifyResult.failure(
            VerifyStatus.INVALID_SIGNATURE,
            "Signature verification failed",
            details=details,
        )

    return VerifyResult.success(details=details)


async def verify_timestamp(timestamp: Timestamp, message: Message, client: "AtumClient") -> VerifyResult:
    """
    Full verification of a timestamp.

    Args:
        timestamp: The timestamp
        message: The nonce, or for a hashed timestamp the original message
                 (bytes or a binary file object)
        client: Client used for cache access and the public key check

    Returns:
        VerifyResult

    Raises:
        TransportError: If verification could not be completed
        PublicKeyExpiredError: If the key expired before the timestamp time
        UnsupportedAlgorithmError: If the signature algorithm is unknown
        UnsupportedHashError: If the hashing algorithm is unknown
    """
    nonce = resolve_nonce(timestamp, message)
    return await _verify_nonce(timestamp, nonce, client)


async def verify_from(timestamp: Timestamp, message: Message, client: "AtumClient") -> bool:
    """Verify a timestamp; True only if the key is trusted and the signature valid."""
    result = await verify_timestamp(timestamp, message, client)
    return result.valid


async def verify(timestamp: Timestamp, nonce: bytes, client: "AtumClient") -> bool:
    """Verify a timestamp on a nonce (or on the message of a hashed timestamp)."""
    return await verify_from(timestamp, nonce, client)


async def verify_file(timestamp: Timestamp, path: Union[str, Path], client: "AtumClient") -> bool:
    """Verify a timestamp on the contents of a file."""
    if timestamp.hashing is not None:
        nonce = await derive_nonce_from_file(timestamp.hashing, path)
    else:
        async with aiofiles.open(path, "rb") as f:
            nonce = await f.read()
    result = await _verify_nonce(timestamp, nonce, client)
    return result.valid


def dangerous_verify_signature_but_not_public_key(timestamp: Timestamp, message: Message) -> bool:
    """
    Check only the signature of a timestamp.

    Anyone can produce a valid signature with their own key, so this says
    nothing unless the caller has established by other means that
    timestamp.sig.public_key belongs to the server.
    """
    nonce = resolve_nonce(timestamp, message)
    return verify_signature(timestamp.sig, timestamp.time, nonce)
