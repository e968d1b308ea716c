# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Wire types for the Atum timestamping protocol.

Data model:
- Request: what the client POSTs (nonce, optional time/algorithm/proof of work)
- Response: what the server answers (error code, timestamp, server info)
- Timestamp: signed (time, nonce) assertion, owned by the caller
- ServerInfo: server capabilities, cached client-side
- PublicKeyCheckResponse: the server vouching for one of its keys

The JSON field names and encodings match the reference Atum server:
capitalized field names, standard base64 for byte strings, Unix seconds
for times and RFC 3339 for the public key expiry.
"""

import base64
import json
import re
import secrets
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from .errors import ValidationError


class SignatureAlgorithm(str, Enum):
    """Signature algorithms, as named on the wire."""
    ED25519 = "ed25519"   # RFC 8032 EdDSA
    XMSSMT = "xmssmt"     # RFC 8391 XMSS^MT (stateful hash-based)


class HashAlgorithm(str, Enum):
    """Hashes used to reduce a long message to a nonce."""
    SHAKE256 = "shake256"


class ErrorCode(str, Enum):
    """Error codes reported by the server."""
    LAG = "lag"
    MISSING_NONCE = "missing nonce"
    NONCE_TOO_LONG = "nonce is too long"
    MISSING_POW = "missing proof of work"
    POW_INVALID = "proof of work is invalid"


# Size of the random prefix put in front of a hashed message
HASHING_PREFIX_SIZE = 32

# Range of a timestamp time (signed 64-bit Unix seconds)
MIN_TIME = -(1 << 63)
MAX_TIME = (1 << 63) - 1


def _parse_enum(enum_cls, value):
    """Map a wire string onto an enum member, keeping unknown strings as-is."""
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _wire(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return value


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: Optional[str]) -> bytes:
    if data is None:
        return b""
    return base64.b64decode(data, validate=True)


_RFC3339_FRACTION = re.compile(r"\.(\d+)")


def parse_rfc3339(value: str) -> datetime:
    """
    Parse an RFC 3339 timestamp as emitted by Go's encoding/json.

    Go writes up to nine fractional digits and a trailing "Z"; datetime only
    keeps microseconds, so extra digits are truncated.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _RFC3339_FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def encode_time_nonce(time: int, nonce: bytes) -> bytes:
    """
    Canonical encoding of (time, nonce): the bytes that are signed and
    proof-of-worked.

    Format: 8-byte big-endian signed time || nonce

    Raises:
        ValidationError: If time does not fit in a signed 64-bit integer
    """
    try:
        encoded = struct.pack(">q", time)
    except struct.error as e:
        raise ValidationError(f"Time out of range: {time}", e) from e
    return encoded + bytes(nonce)


# =============================================================================
# Signature / Hashing / Timestamp
# =============================================================================

@dataclass(frozen=True)
class Signature:
    """
    Signature on a timestamp.

    Attributes:
        alg: Signature algorithm (determines how data and public_key are read)
        data: Serialized signature
        public_key: Serialized public key the signature was set with
    """
    alg: Union[SignatureAlgorithm, str]
    data: bytes
    public_key: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Alg": _wire(self.alg),
            "Data": b64encode(self.data),
            "PublicKey": b64encode(self.public_key),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        return cls(
            alg=_parse_enum(SignatureAlgorithm, data["Alg"]),
            data=b64decode(data.get("Data")),
            public_key=b64decode(data.get("PublicKey")),
        )


@dataclass(frozen=True)
class Hashing:
    """
    How a long message was reduced to the signed nonce.

    The prefix is a random salt chosen by the requester so that the server
    never sees a plain hash of the message.
    """
    hash: Union[HashAlgorithm, str]
    prefix: bytes

    @classmethod
    def generate(cls, hash: HashAlgorithm = HashAlgorithm.SHAKE256) -> "Hashing":
        """Create a Hashing with a fresh cryptographically random prefix."""
        return cls(hash=hash, prefix=secrets.token_bytes(HASHING_PREFIX_SIZE))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Hash": _wire(self.hash),
            "Prefix": b64encode(self.prefix),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Hashing":
        return cls(
            hash=_parse_enum(HashAlgorithm, data["Hash"]),
            prefix=b64decode(data.get("Prefix")),
        )


@dataclass(frozen=True)
class Timestamp:
    """
    A signed assertion that a nonce existed at a given time.

    Attributes:
        time: Unix time (seconds) put on the timestamp
        server_url: URL of the server that set it (with trailing slash)
        sig: The server's signature over encode_time_nonce(time, nonce)
        hashing: Set when the nonce was derived from a longer message
    """
    time: int
    server_url: str
    sig: Signature
    hashing: Optional[Hashing] = None

    def get_time(self) -> datetime:
        """
        Time on the timestamp as an aware UTC datetime.

        Raises:
            ValidationError: If the time is beyond what datetime can represent
        """
        try:
            return datetime.fromtimestamp(self.time, tz=timezone.utc)
        except (OverflowError, ValueError, OSError) as e:
            raise ValidationError(f"Timestamp time not representable: {self.time}", e) from e

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "Time": self.time,
            "ServerUrl": self.server_url,
            "Sig": self.sig.to_dict(),
        }
        if self.hashing is not None:
            result["Hashing"] = self.hashing.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Timestamp":
        time = int(data["Time"])
        if not MIN_TIME <= time <= MAX_TIME:
            raise ValidationError(f"Timestamp time out of range: {time}")
        hashing = None
        if data.get("Hashing"):
            hashing = Hashing.from_dict(data["Hashing"])
        return cls(
            time=time,
            server_url=data.get("ServerUrl") or "",
            sig=Signature.from_dict(data["Sig"]),
            hashing=hashing,
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "Timestamp":
        """
        Load a timestamp from its JSON form.

        Raises:
            ValidationError: If the text is not a well-formed timestamp
        """
        try:
            return cls.from_dict(json.loads(text))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ValidationError("Failed to parse timestamp", e) from e


# =============================================================================
# Server info
# =============================================================================

@dataclass(frozen=True)
class ServerInfo:
    """
    Information published by an Atum server.

    Attributes:
        max_nonce_size: Maximum nonce length accepted (bytes)
        acceptable_lag: Maximum accepted difference between request time
                        and server time (seconds)
        default_sig_alg: Algorithm used when the request has no preference
        required_proof_of_work: Proof-of-work descriptor per algorithm
    """
    max_nonce_size: int
    acceptable_lag: int
    default_sig_alg: Union[SignatureAlgorithm, str]
    required_proof_of_work: Dict[Union[SignatureAlgorithm, str], str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "MaxNonceSize": self.max_nonce_size,
            "AcceptableLag": self.acceptable_lag,
            "DefaultSigAlg": _wire(self.default_sig_alg),
            "RequiredProofOfWork": {
                _wire(alg): req for alg, req in self.required_proof_of_work.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerInfo":
        required = data.get("RequiredProofOfWork") or {}
        return cls(
            max_nonce_size=int(data.get("MaxNonceSize") or 0),
            acceptable_lag=int(data.get("AcceptableLag") or 0),
            default_sig_alg=_parse_enum(SignatureAlgorithm, data.get("DefaultSigAlg")),
            required_proof_of_work={
                _parse_enum(SignatureAlgorithm, alg): req for alg, req in required.items()
            },
        )


# =============================================================================
# Request / Response
# =============================================================================

@dataclass
class Request:
    """
    A request to put a timestamp on a nonce.

    Attributes:
        nonce: The nonce to timestamp (see ServerInfo.max_nonce_size)
        proof_of_work: Proof of work bound to encode_time_nonce(time, nonce)
        time: Unix time to put on the timestamp; the server rejects it if it
              is too far off its own clock (see ServerInfo.acceptable_lag)
        preferred_sig_alg: Preferred signature algorithm; the server falls
                           back to its default if unsupported
    """
    nonce: bytes
    proof_of_work: Optional[str] = None
    time: Optional[int] = None
    preferred_sig_alg: Optional[Union[SignatureAlgorithm, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"Nonce": b64encode(self.nonce)}
        if self.proof_of_work is not None:
            result["ProofOfWork"] = self.proof_of_work
        if self.time is not None:
            result["Time"] = self.time
        if self.preferred_sig_alg is not None:
            result["PreferredSigAlg"] = _wire(self.preferred_sig_alg)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Request":
        time = data.get("Time")
        return cls(
            nonce=b64decode(data.get("Nonce")),
            proof_of_work=data.get("ProofOfWork"),
            time=int(time) if time is not None else None,
            preferred_sig_alg=_parse_enum(SignatureAlgorithm, data.get("PreferredSigAlg")),
        )


@dataclass
class Response:
    """
    The server's answer to a Request.

    error and stamp are mutually exclusive; info accompanies most errors.
    """
    error: Optional[Union[ErrorCode, str]] = None
    stamp: Optional[Timestamp] = None
    info: Optional[ServerInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Error": _wire(self.error),
            "Stamp": self.stamp.to_dict() if self.stamp else None,
            "Info": self.info.to_dict() if self.info else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Response":
        error = data.get("Error") or None
        stamp = data.get("Stamp")
        info = data.get("Info")
        return cls(
            error=_parse_enum(ErrorCode, error),
            stamp=Timestamp.from_dict(stamp) if stamp else None,
            info=ServerInfo.from_dict(info) if info else None,
        )


@dataclass(frozen=True)
class PublicKeyCheckResponse:
    """
    The server's statement on one of its public keys.

    Attributes:
        trusted: Whether the server vouches for the key
        expires: Until when the answer may be relied upon
    """
    trusted: bool
    expires: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Trusted": self.trusted,
            "Expires": format_rfc3339(self.expires),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublicKeyCheckResponse":
        return cls(
            trusted=bool(data["Trusted"]),
            expires=parse_rfc3339(data["Expires"]),
        )
