# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Atum Python client - post-quantum trusted timestamping

An Atum server signs (time, nonce) pairs. This package requests such
timestamps and verifies them later:
- Ed25519 and XMSS^MT (post-quantum, hash-based) signatures
- Long messages hashed with SHAKE256 and a random prefix
- Server-required proof of work filled in automatically
- Trust in server keys checked with the server and cached until expiry

Usage:
    from atum_client import AtumClient

    async with AtumClient("https://keyshare.privacybydesign.foundation/atumd/") as client:
        ts = await client.stamp_message(b"my document")
        print(ts.to_json())  # store this alongside the document

        # later, possibly in another process
        assert await client.verify(ts, b"my document")

Caching:
    from atum_client import MemoryCache, set_default_cache

    set_default_cache(MyPersistentCache())   # any atum_client.Cache
"""

# Cache
from .cache import (
    Cache,
    MemoryCache,
    get_default_cache,
    public_key_cache_key,
    set_default_cache,
)

# Client
from .client import DEFAULT_SERVER_URL, AtumClient, ClientConfig, normalize_server_url

# Crypto
from .crypto import derive_nonce, derive_nonce_from_file, verify_signature

# Errors
from .errors import (
    AtumError,
    PublicKeyExpiredError,
    ServerError,
    TransportError,
    UnsupportedAlgorithmError,
    UnsupportedHashError,
    UnsupportedProofOfWorkError,
    ValidationError,
)
from .pow import ProofOfWorkRequest
from .types import (
    ErrorCode,
    HashAlgorithm,
    Hashing,
    PublicKeyCheckResponse,
    Request,
    Response,
    ServerInfo,
    Signature,
    SignatureAlgorithm,
    Timestamp,
    encode_time_nonce,
)

# Verification
from .verify import (
    VerifyResult,
    VerifyStatus,
    dangerous_verify_signature_but_not_public_key,
    verify,
    verify_file,
    verify_from,
    verify_public_key,
    verify_timestamp,
)

__version__ = "0.1.0"
__all__ = [
    # Types
    "Request",
    "Response",
    "Timestamp",
    "Signature",
    "Hashing",
    "ServerInfo",
    "PublicKeyCheckResponse",
    "SignatureAlgorithm",
    "HashAlgorithm",
    "ErrorCode",
    "encode_time_nonce",
    # Errors
    "AtumError",
    "TransportError",
    "ServerError",
    "ValidationError",
    "UnsupportedAlgorithmError",
    "UnsupportedHashError",
    "UnsupportedProofOfWorkError",
    "PublicKeyExpiredError",
    # Cache
    "Cache",
    "MemoryCache",
    "get_default_cache",
    "set_default_cache",
    "public_key_cache_key",
    # Crypto
    "derive_nonce",
    "derive_nonce_from_file",
    "verify_signature",
    "ProofOfWorkRequest",
    # Client
    "AtumClient",
    "ClientConfig",
    "DEFAULT_SERVER_URL",
    "normalize_server_url",
    # Verification
    "verify",
    "verify_from",
    "verify_file",
    "verify_public_key",
    "verify_timestamp",
    "VerifyResult",
    "VerifyStatus",
    "dangerous_verify_signature_but_not_public_key",
]
