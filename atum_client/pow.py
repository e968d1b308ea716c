# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Proof of work bound to a timestamp request.

A server may require, per signature algorithm, that the client solves a
small puzzle over encode_time_nonce(time, nonce) before it signs. The puzzle
is described by a text descriptor published in ServerInfo; the solution is a
text proof sent along with the Request.

Supported puzzle kinds:
- sha2bday: a 3-way birthday collision on the first `difficulty` bits of
  SHA-256(puzzle_nonce || data || counter_be64).
  descriptor: "sha2bday-<difficulty>-<base64 puzzle nonce>"
  proof:      base64 of three distinct big-endian uint64 counters

Usage:
    req = ProofOfWorkRequest.parse(info.required_proof_of_work[alg])
    proof = req.fulfil(encode_time_nonce(time, nonce))
    assert req.check(proof, encode_time_nonce(time, nonce))
"""

import base64
import binascii
import hashlib
import secrets
import struct
from dataclasses import dataclass

from .errors import UnsupportedProofOfWorkError

SHA2BDAY = "sha2bday"

# Difficulties beyond this take far too long to fulfil on a client
MAX_DIFFICULTY = 64

_COLLISION_SIZE = 3


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text + "=" * (-len(text) % 4), validate=True)


@dataclass(frozen=True)
class ProofOfWorkRequest:
    """A parsed proof-of-work descriptor."""
    kind: str
    difficulty: int
    nonce: bytes

    @classmethod
    def new(cls, difficulty: int, nonce: bytes | None = None) -> "ProofOfWorkRequest":
        """Create a sha2bday request with a random puzzle nonce."""
        if not 0 <= difficulty <= MAX_DIFFICULTY:
            raise UnsupportedProofOfWorkError(f"Difficulty out of range: {difficulty}")
        return cls(kind=SHA2BDAY, difficulty=difficulty, nonce=nonce or secrets.token_bytes(16))

    @classmethod
    def parse(cls, text: str) -> "ProofOfWorkRequest":
        """
        Parse a descriptor string.

        Raises:
            UnsupportedProofOfWorkError: If the kind is unknown or the text malformed
        """
        parts = text.split("-", 2)
        if parts[0] != SHA2BDAY:
            raise UnsupportedProofOfWorkError(f"Unsupported proof of work: {parts[0]!r}")
        if len(parts) != 3:
            raise UnsupportedProofOfWorkError(f"Malformed proof of work request: {text!r}")
        try:
            difficulty = int(parts[1])
            nonce = _b64decode(parts[2])
        except (ValueError, binascii.Error) as e:
            raise UnsupportedProofOfWorkError(f"Malformed proof of work request: {text!r}", e) from e
        if not 0 <= difficulty <= MAX_DIFFICULTY:
            raise UnsupportedProofOfWorkError(f"Difficulty out of range: {difficulty}")
        return cls(kind=SHA2BDAY, difficulty=difficulty, nonce=nonce)

    def __str__(self) -> str:
        return f"{self.kind}-{self.difficulty}-{_b64encode(self.nonce)}"

    def _bucket(self, prefix: bytes, counter: int) -> int:
        digest = hashlib.sha256(prefix + struct.pack(">Q", counter)).digest()
        return int.from_bytes(digest[:8], "big") >> (64 - self.difficulty)

    def fulfil(self, data: bytes) -> str:
        """Solve the puzzle for data and return the proof."""
        prefix = self.nonce + data
        buckets: dict[int, list[int]] = {}
        counter = 0
        while True:
            bucket = buckets.setdefault(self._bucket(prefix, counter), [])
            bucket.append(counter)
            if len(bucket) == _COLLISION_SIZE:
                return _b64encode(struct.pack(">3Q", *bucket))
            counter += 1

    def check(self, proof: str, data: bytes) -> bool:
        """Check a proof for data."""
        try:
            raw = _b64decode(proof)
        except (ValueError, binascii.Error):
            return False
        if len(raw) != 8 * _COLLISION_SIZE:
            return False
        counters = struct.unpack(">3Q", raw)
        if len(set(counters)) != _COLLISION_SIZE:
            return False
        prefix = self.nonce + data
        return len({self._bucket(prefix, c) for c in counters}) == 1


def fulfil(descriptor: str, data: bytes) -> str:
    """Parse descriptor and solve it for data."""
    return ProofOfWorkRequest.parse(descriptor).fulfil(data)
