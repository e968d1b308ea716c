# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Exception hierarchy for the Atum client.

Every fallible operation raises a subclass of AtumError:

- TransportError: the server could not be reached or its reply could not
  be read (verification or stamping could not be completed)
- ServerError: the server answered with a protocol error code
- ValidationError: local input is unusable (bad nonce, unknown algorithm, ...)
- PublicKeyExpiredError: the server only vouches for the key until
  before the timestamp's own time

The underlying exception, if any, is chained (``raise ... from exc``) and
available as ``err.cause``.
"""

from __future__ import annotations

from typing import Any


class AtumError(Exception):
    """Base class for all Atum client errors."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        """The wrapped error, if any."""
        return self.__cause__

    def __str__(self) -> str:
        if self.__cause__ is not None:
            return f"{self.message}: {self.__cause__}"
        return self.message


class TransportError(AtumError):
    """Connection failure, timeout or unreadable response body."""
    pass


class ServerError(AtumError):
    """The server reported a protocol error."""

    def __init__(self, code: Any, message: str | None = None):
        super().__init__(message or f"Server reported error: {code}")
        self.code = code

    @property
    def is_proof_of_work(self) -> bool:
        """True for the error codes that a retry with fresh server info resolves."""
        from .types import ErrorCode
        return self.code in (ErrorCode.MISSING_POW, ErrorCode.POW_INVALID)


class ValidationError(AtumError):
    """Local input is invalid."""
    pass


class UnsupportedAlgorithmError(ValidationError):
    """Signature algorithm is not known to this client."""

    def __init__(self, alg: Any):
        super().__init__(f"Unsupported signature algorithm: {alg}")
        self.alg = alg


class UnsupportedHashError(ValidationError):
    """Hash algorithm is not known to this client."""

    def __init__(self, hash_alg: Any):
        super().__init__(f"Unsupported hash algorithm: {hash_alg}")
        self.hash_alg = hash_alg


class UnsupportedProofOfWorkError(ValidationError):
    """Proof-of-work descriptor is of an unknown kind or malformed."""
    pass


class PublicKeyExpiredError(AtumError):
    """Public key trust expired before the time claimed by the timestamp."""
    pass
