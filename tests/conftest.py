# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""Shared fixtures: an in-process fake Atum server and clients talking to it."""

import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from atum_client import xmssmt
from atum_client.cache import MemoryCache
from atum_client.client import AtumClient
from atum_client.pow import ProofOfWorkRequest
from atum_client.types import (
    ErrorCode,
    PublicKeyCheckResponse,
    Request,
    Response,
    ServerInfo,
    Signature,
    SignatureAlgorithm,
    Timestamp,
    encode_time_nonce,
)

XMSSMT_PARAMS = "XMSSMT-SHA2_20/4_256"
XMSSMT_SEED = bytes(range(96))


def ed25519_public_bytes(key: Ed25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def sign_timestamp(alg, ed25519_key, xmssmt_key, time_: int, nonce: bytes, server_url: str = "") -> Timestamp:
    """Create a timestamp the way an Atum server does."""
    msg = encode_time_nonce(time_, nonce)
    if alg == SignatureAlgorithm.XMSSMT:
        sig = Signature(
            alg=SignatureAlgorithm.XMSSMT,
            data=xmssmt_key.sign(msg),
            public_key=xmssmt_key.public_key().to_bytes(),
        )
    else:
        sig = Signature(
            alg=SignatureAlgorithm.ED25519,
            data=ed25519_key.sign(msg),
            public_key=ed25519_public_bytes(ed25519_key),
        )
    return Timestamp(time=time_, server_url=server_url, sig=sig)


class FakeAtumServer:
    """
    Minimal Atum server.

    Knobs:
        info: ServerInfo it enforces and reports with errors
        force_error: error code returned on every POST
        raw_body: literal body returned on every POST
        delay: seconds to sleep before answering a POST
        trusted / key_expires: answer of the public key check
    """

    def __init__(self, xmssmt_key):
        self.ed25519_key = Ed25519PrivateKey.generate()
        self.xmssmt_key = xmssmt_key
        self.info = ServerInfo(
            max_nonce_size=128,
            acceptable_lag=60,
            default_sig_alg=SignatureAlgorithm.ED25519,
            required_proof_of_work={},
        )
        self.force_error = None
        self.raw_body = None
        self.delay = 0.0
        self.trusted = True
        self.key_expires = datetime.now(timezone.utc) + timedelta(days=1)

        self.requests: list[Request] = []
        self.key_checks: list[dict] = []

    @property
    def post_count(self) -> int:
        return len(self.requests)

    @property
    def ed25519_public_key(self) -> bytes:
        return ed25519_public_bytes(self.ed25519_key)

    def require_proof_of_work(self, alg=SignatureAlgorithm.ED25519, difficulty: int = 12) -> None:
        required = dict(self.info.required_proof_of_work)
        required[alg] = str(ProofOfWorkRequest.new(difficulty))
        self.info = ServerInfo(
            max_nonce_size=self.info.max_nonce_size,
            acceptable_lag=self.info.acceptable_lag,
            default_sig_alg=self.info.default_sig_alg,
            required_proof_of_work=required,
        )

    def _error(self, code: ErrorCode) -> web.Response:
        return web.json_response(Response(error=code, info=self.info).to_dict())

    async def handle_stamp(self, request: web.Request) -> web.Response:
        req = Request.from_dict(await request.json())
        self.requests.append(req)

        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raw_body is not None:
            return web.Response(text=self.raw_body, content_type="text/plain")
        if self.force_error is not None:
            return self._error(self.force_error)

        if not req.nonce:
            return self._error(ErrorCode.MISSING_NONCE)
        if len(req.nonce) > self.info.max_nonce_size:
            return self._error(ErrorCode.NONCE_TOO_LONG)

        now = int(time.time())
        ts_time = req.time if req.time is not None else now
        if abs(ts_time - now) > self.info.acceptable_lag:
            return self._error(ErrorCode.LAG)

        alg = self.info.default_sig_alg
        if req.preferred_sig_alg in (SignatureAlgorithm.ED25519, SignatureAlgorithm.XMSSMT):
            alg = req.preferred_sig_alg

        descriptor = self.info.required_proof_of_work.get(alg)
        if descriptor is not None:
            if req.proof_of_work is None:
                return self._error(ErrorCode.MISSING_POW)
            pow_req = ProofOfWorkRequest.parse(descriptor)
            if not pow_req.check(req.proof_of_work, encode_time_nonce(ts_time, req.nonce)):
                return self._error(ErrorCode.POW_INVALID)

        stamp = sign_timestamp(alg, self.ed25519_key, self.xmssmt_key, ts_time, req.nonce)
        return web.json_response(Response(stamp=stamp).to_dict())

    async def handle_check_public_key(self, request: web.Request) -> web.Response:
        self.key_checks.append(dict(request.query))
        resp = PublicKeyCheckResponse(trusted=self.trusted, expires=self.key_expires)
        return web.json_response(resp.to_dict())

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/", self.handle_stamp)
        app.router.add_get("/checkPublicKey", self.handle_check_public_key)
        return app


@pytest.fixture(scope="session")
def xmssmt_keypair():
    """Deterministic XMSS^MT key pair (key generation is slow, so shared)."""
    return xmssmt.generate_keypair(XMSSMT_PARAMS, seed=XMSSMT_SEED)


@pytest.fixture
def ed25519_key():
    return Ed25519PrivateKey.generate()


@pytest.fixture
def fake_server(xmssmt_keypair):
    return FakeAtumServer(xmssmt_keypair[0])


@pytest_asyncio.fixture
async def server_url(fake_server):
    server = TestServer(fake_server.make_app())
    await server.start_server()
    yield str(server.make_url("/"))
    await server.close()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest_asyncio.fixture
async def client(server_url, cache):
    async with AtumClient(server_url, cache=cache) as c:
        yield c
