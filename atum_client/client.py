# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Atum client - requests timestamps and checks server public keys.
"""

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import aiohttp

from .cache import Cache, get_default_cache
from .crypto import Message, derive_nonce, derive_nonce_from_file
from .errors import ServerError, TransportError, ValidationError
from .pow import fulfil as fulfil_proof_of_work
from .types import (
    Hashing,
    PublicKeyCheckResponse,
    Request,
    Response,
    ServerInfo,
    SignatureAlgorithm,
    Timestamp,
    encode_time_nonce,
)

logger = logging.getLogger(__name__)

# Public Atum server hosted by SIDN
DEFAULT_SERVER_URL = "https://keyshare.privacybydesign.foundation/atumd/"

CHECK_PUBLIC_KEY_PATH = "checkPublicKey"


def normalize_server_url(url: str) -> str:
    """Server URLs always end with a slash; endpoints are appended to it."""
    return url if url.endswith("/") else url + "/"


@dataclass
class ClientConfig:
    """Atum client configuration."""
    server_url: str = DEFAULT_SERVER_URL
    timeout_ms: int = 10000
    connect_timeout_ms: int = 5000
    user_agent: str = "atum-client-python"

    def __post_init__(self):
        self.server_url = normalize_server_url(self.server_url)

    @classmethod
    def from_env(
        cls,
        url_var: str = "ATUM_SERVER_URL",
        timeout_var: str = "ATUM_TIMEOUT_MS",
    ) -> "ClientConfig":
        """
        Load configuration from environment variables.

        Unset variables keep their defaults.

        Raises:
            ValueError: If the timeout is not an integer
        """
        kwargs: dict[str, Any] = {}
        url = os.environ.get(url_var)
        if url:
            kwargs["server_url"] = url.strip()
        timeout = os.environ.get(timeout_var)
        if timeout:
            try:
                kwargs["timeout_ms"] = int(timeout)
            except ValueError as e:
                raise ValueError(f"{timeout_var} must be an integer, got {timeout!r}") from e
        return cls(**kwargs)


def _resolve_alg(request: Request, info: ServerInfo) -> Union[SignatureAlgorithm, str]:
    """Preferred algorithm if this client knows it, else the server default."""
    if request.preferred_sig_alg is not None:
        try:
            return SignatureAlgorithm(request.preferred_sig_alg)
        except ValueError:
            logger.debug(f"Ignoring unknown preferred algorithm {request.preferred_sig_alg!r}")
    return info.default_sig_alg


class AtumClient:
    """
    Async Atum client.

    Features:
    - Proof of work filled in from cached server info
    - One retry when the server reports a proof-of-work problem
    - Public key trust checks cached until the server's stated expiry
    - Connection pooling via aiohttp

    Usage:
        async with AtumClient("https://atum.example/") as client:
            ts = await client.stamp(b"some nonce")
            assert await client.verify(ts, b"some nonce")

            # Long messages are hashed with a random prefix first
            ts = await client.stamp_file("contract.pdf")
            assert await client.verify_file(ts, "contract.pdf")
    """

    def __init__(
        self,
        server_url: Optional[str] = None,
        cache: Optional[Cache] = None,
        config: Optional[ClientConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        **kwargs
    ):
        if config is None:
            config = ClientConfig(
                server_url=server_url or DEFAULT_SERVER_URL,
                **{k: v for k, v in kwargs.items() if hasattr(ClientConfig, k)}
            )
        elif server_url is not None:
            config = replace(config, server_url=server_url)
        self.config = config

        self._cache = cache if cache is not None else get_default_cache()
        self._session = session
        self._owns_session = session is None

    @property
    def cache(self) -> Cache:
        return self._cache

    @property
    def server_url(self) -> str:
        return self.config.server_url

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=self.config.timeout_ms / 1000,
                connect=self.config.connect_timeout_ms / 1000,
            )
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self.config.user_agent,
                },
            )
            self._owns_session = True
        return self._session

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        return False

    async def close(self) -> None:
        """Explicitly close the client."""
        await self.__aexit__(None, None, None)

    # =========================================================================
    # Cache access (a failing cache is a missing cache)
    # =========================================================================

    async def lookup_server_info(self, server_url: str) -> Optional[ServerInfo]:
        """Cached server info for server_url; None on a miss or a cache failure."""
        try:
            return await self._cache.get_server_info(server_url)
        except Exception as e:
            logger.warning(f"Cache lookup of server info for {server_url} failed: {e}")
            return None

    async def remember_server_info(self, server_url: str, info: ServerInfo) -> None:
        """Cache server info; a cache failure is logged and ignored."""
        try:
            await self._cache.store_server_info(server_url, info)
        except Exception as e:
            logger.warning(f"Failed to cache server info for {server_url}: {e}")

    async def lookup_public_key(
        self,
        server_url: str,
        alg: Union[SignatureAlgorithm, str],
        public_key: bytes,
    ) -> Optional[datetime]:
        """
        Cached trust expiry of a server public key.

        Returns None on a miss or a cache failure. The expiry is returned
        as stored; whether it still holds is up to the caller.
        """
        try:
            return await self._cache.get_public_key(server_url, alg, public_key)
        except Exception as e:
            logger.warning(f"Cache lookup of public key for {server_url} failed: {e}")
            return None

    async def remember_public_key(
        self,
        server_url: str,
        alg: Union[SignatureAlgorithm, str],
        public_key: bytes,
        expires: datetime,
    ) -> None:
        """Cache that the server vouches for public_key until expires; failures are logged."""
        try:
            await self._cache.store_public_key(server_url, alg, public_key, expires)
        except Exception as e:
            logger.warning(f"Failed to cache public key for {server_url}: {e}")

    # =========================================================================
    # HTTP
    # =========================================================================

    @staticmethod
    def _parse_body(body: str, status: int, url: str) -> dict:
        try:
            data = json.loads(body)
        except ValueError as e:
            raise TransportError(f"Failed to parse response from {url} (HTTP {status})", e) from e
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response from {url} (HTTP {status}): not a JSON object")
        return data

    async def _post_json(self, url: str, payload: dict) -> dict:
        session = await self._get_session()
        try:
            async with session.post(url, json=payload) as response:
                body = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Failed POST request to {url}", e) from e
        return self._parse_body(body, status, url)

    async def _get_json(self, url: str, params: dict) -> dict:
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as response:
                body = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Failed GET request to {url}", e) from e
        return self._parse_body(body, status, url)

    @staticmethod
    async def _with_timeout(coro, timeout: Optional[float]):
        if timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Operation timed out after {timeout}s", e) from e

    # =========================================================================
    # Requesting timestamps
    # =========================================================================

    async def _send_attempt(self, server_url: str, request: Request) -> Timestamp:
        """One round trip. Raises ServerError on any server-reported error."""
        req = replace(request)

        info = await self.lookup_server_info(server_url)
        if info is not None:
            if info.max_nonce_size and len(req.nonce) > info.max_nonce_size:
                raise ValidationError(
                    f"Nonce of {len(req.nonce)} bytes exceeds the server maximum "
                    f"of {info.max_nonce_size}"
                )

            alg = _resolve_alg(req, info)
            descriptor = info.required_proof_of_work.get(alg)
            if descriptor is not None:
                if req.time is None:
                    req.time = int(time.time())
                data = encode_time_nonce(req.time, req.nonce)
                # CPU bound; keep the event loop responsive
                req.proof_of_work = await asyncio.to_thread(fulfil_proof_of_work, descriptor, data)
                logger.debug(f"Attached proof of work for {alg} ({descriptor})")

        result = await self._post_json(server_url, req.to_dict())
        try:
            response = Response.from_dict(result)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise TransportError(f"Failed to parse response from {server_url}", e) from e

        if response.error is not None:
            error = ServerError(response.error)
            if error.is_proof_of_work:
                if response.info is not None:
                    await self.remember_server_info(server_url, response.info)
                else:
                    logger.warning(f"{server_url} reported '{response.error}' without server info")
            raise error

        if response.stamp is None:
            raise TransportError(f"Response from {server_url} has neither error nor timestamp")

        return replace(response.stamp, server_url=server_url)

    async def _send_request(self, request: Request, server_url: str) -> Timestamp:
        if not request.nonce:
            raise ValidationError("Nonce must not be empty")

        try:
            return await self._send_attempt(server_url, request)
        except ServerError as e:
            if not e.is_proof_of_work:
                raise
            # Proof of work was missing or stale: refreshed server info is in
            # the cache now. Exactly one more attempt, whatever its outcome.
            logger.info(f"Retrying request to {server_url}: {e}")

        return await self._send_attempt(server_url, request)

    async def send_request(
        self,
        request: Request,
        server_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Timestamp:
        """
        Request a timestamp.

        Makes at most two POSTs: the second only if the server reports a
        missing or invalid proof of work on the first.

        Args:
            request: The request; not modified
            server_url: Server to ask (defaults to the configured one)
            timeout: Overall deadline in seconds for both attempts

        Returns:
            The Timestamp, with server_url set to the server contacted

        Raises:
            ValidationError: If the nonce is empty or too long
            ServerError: If the server reports an error
            TransportError: If the server can't be reached or understood
        """
        url = normalize_server_url(server_url or self.config.server_url)
        return await self._with_timeout(self._send_request(request, url), timeout)

    async def stamp(
        self,
        nonce: bytes,
        time: Optional[int] = None,
        preferred_sig_alg: Optional[Union[SignatureAlgorithm, str]] = None,
        server_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Timestamp:
        """Request a timestamp on nonce."""
        request = Request(nonce=nonce, time=time, preferred_sig_alg=preferred_sig_alg)
        return await self.send_request(request, server_url=server_url, timeout=timeout)

    async def json_stamp(self, nonce: bytes, **kwargs) -> str:
        """Request a timestamp on nonce and return it JSON encoded."""
        ts = await self.stamp(nonce, **kwargs)
        return ts.to_json()

    async def stamp_message(self, message: Message, **kwargs) -> Timestamp:
        """
        Request a timestamp on a message of any length.

        The message is reduced to a nonce with SHAKE256 and a random prefix;
        the returned timestamp records both in its hashing field, which is
        needed to verify it later.
        """
        hashing = Hashing.generate()
        nonce = derive_nonce(hashing, message)
        ts = await self.stamp(nonce, **kwargs)
        return replace(ts, hashing=hashing)

    async def stamp_file(self, path: Union[str, Path], **kwargs) -> Timestamp:
        """Like stamp_message(), streaming the contents of a file."""
        hashing = Hashing.generate()
        nonce = await derive_nonce_from_file(hashing, path)
        ts = await self.stamp(nonce, **kwargs)
        return replace(ts, hashing=hashing)

    # =========================================================================
    # Public key checks and verification
    # =========================================================================

    async def check_public_key(
        self,
        server_url: str,
        alg: Union[SignatureAlgorithm, str],
        public_key: bytes,
    ) -> PublicKeyCheckResponse:
        """
        Ask a server whether it vouches for public_key. Never cached.

        Raises:
            TransportError: If the server can't be reached or understood
        """
        url = normalize_server_url(server_url) + CHECK_PUBLIC_KEY_PATH
        params = {
            "alg": alg.value if isinstance(alg, SignatureAlgorithm) else str(alg),
            "pk": public_key.hex(),
        }
        result = await self._get_json(url, params)
        try:
            return PublicKeyCheckResponse.from_dict(result)
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Failed to parse public key check response from {url}", e) from e

    async def verify_public_key(self, timestamp: Timestamp, timeout: Optional[float] = None) -> bool:
        """Check that the timestamp's server vouches for its public key."""
        from .verify import verify_public_key
        return await self._with_timeout(verify_public_key(timestamp, self), timeout)

    async def verify(self, timestamp: Timestamp, nonce: bytes, timeout: Optional[float] = None) -> bool:
        """
        Verify a timestamp on a nonce (or, for a hashed timestamp, a message).

        Returns False for an untrusted key or an invalid signature.

        Raises:
            TransportError: If verification could not be completed
            PublicKeyExpiredError: If the key expired before the timestamp time
        """
        from .verify import verify
        return await self._with_timeout(verify(timestamp, nonce, self), timeout)

    async def verify_from(self, timestamp: Timestamp, message: Message, timeout: Optional[float] = None) -> bool:
        """Like verify(), reading the message from a binary file object."""
        from .verify import verify_from
        return await self._with_timeout(verify_from(timestamp, message, self), timeout)

    async def verify_file(self, timestamp: Timestamp, path: Union[str, Path], timeout: Optional[float] = None) -> bool:
        """Like verify(), streaming the message from a file."""
        from .verify import verify_file
        return await self._with_timeout(verify_file(timestamp, path, self), timeout)

    def get_stats(self) -> dict:
        """Get client statistics."""
        stats = {
            "server_url": self.config.server_url,
            "cache": type(self._cache).__name__,
        }
        get_cache_stats = getattr(self._cache, "get_stats", None)
        if callable(get_cache_stats):
            stats["cache_entries"] = get_cache_stats()
        return stats
