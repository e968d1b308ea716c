# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Client-side cache of server information and public key trust.

For each known Atum server the cache keeps:
- the last ServerInfo it sent (saves a round trip when proof of work is needed)
- per (server, algorithm, public key) the time until which the server
  vouches for the key (saves a round trip when verifying)

Backends implement the Cache interface. Every operation must be safe to call
concurrently without the caller holding a lock; writes replace, last write wins.

A backend may fail (I/O error, corruption); AtumClient logs such failures and
treats them as a cache miss, so correctness never depends on the cache.

Usage:
    from atum_client import AtumClient, MemoryCache

    cache = MemoryCache()
    async with AtumClient("https://atum.example/", cache=cache) as client:
        ts = await client.stamp(b"nonce")
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional, Union

from .types import ServerInfo, SignatureAlgorithm

logger = logging.getLogger(__name__)


def _alg_name(alg: Union[SignatureAlgorithm, str]) -> str:
    return alg.value if isinstance(alg, SignatureAlgorithm) else str(alg)


def public_key_cache_key(
    server_url: str,
    alg: Union[SignatureAlgorithm, str],
    public_key: bytes,
) -> str:
    """Lookup key of a key-trust record: <hex pk>-<alg>-<server url>."""
    return f"{public_key.hex()}-{_alg_name(alg)}-{server_url}"


class Cache(ABC):
    """Storage for server info and public key trust decisions."""

    @abstractmethod
    async def store_public_key(
        self,
        server_url: str,
        alg: Union[SignatureAlgorithm, str],
        public_key: bytes,
        expires: datetime,
    ) -> None:
        """Record that the server vouches for public_key until expires."""

    @abstractmethod
    async def get_public_key(
        self,
        server_url: str,
        alg: Union[SignatureAlgorithm, str],
        public_key: bytes,
    ) -> Optional[datetime]:
        """
        Return until when public_key may be trusted for the server,
        or None if unknown.

        Expiry is the caller's concern: an expired value is returned as-is.
        """

    @abstractmethod
    async def store_server_info(self, server_url: str, info: ServerInfo) -> None:
        """Store the latest server info."""

    @abstractmethod
    async def get_server_info(self, server_url: str) -> Optional[ServerInfo]:
        """Return cached server info, if any."""


class MemoryCache(Cache):
    """
    In-memory cache, lost at process exit.

    Each operation holds a threading.Lock for its duration, so an instance
    may be shared between tasks, threads and event loops.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._public_keys: Dict[str, datetime] = {}
        self._server_infos: Dict[str, ServerInfo] = {}

    async def store_public_key(self, server_url, alg, public_key, expires):
        with self._lock:
            self._public_keys[public_key_cache_key(server_url, alg, public_key)] = expires

    async def get_public_key(self, server_url, alg, public_key):
        with self._lock:
            return self._public_keys.get(public_key_cache_key(server_url, alg, public_key))

    async def store_server_info(self, server_url, info):
        with self._lock:
            self._server_infos[server_url] = info

    async def get_server_info(self, server_url):
        with self._lock:
            return self._server_infos.get(server_url)

    def get_stats(self) -> dict:
        """Number of cached entries."""
        with self._lock:
            return {
                "public_keys": len(self._public_keys),
                "server_infos": len(self._server_infos),
            }

    def clear(self) -> None:
        with self._lock:
            self._public_keys.clear()
            self._server_infos.clear()


_default_cache: Optional[Cache] = None
_default_cache_lock = threading.Lock()


def get_default_cache() -> Cache:
    """Process-wide cache used by clients that are not given one."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = MemoryCache()
        return _default_cache


def set_default_cache(cache: Optional[Cache]) -> None:
    """
    Replace the process-wide cache.

    Passing None resets it; a fresh MemoryCache is created on next use.
    Clients that already hold a cache keep using theirs.
    """
    global _default_cache
    with _default_cache_lock:
        _default_cache = cache
    logger.debug(f"Default cache set to {type(cache).__name__ if cache else 'fresh MemoryCache'}")
