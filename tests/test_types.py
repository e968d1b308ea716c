# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""Tests for wire types and their JSON encoding."""

import json
from datetime import datetime, timezone

import pytest

from atum_client.errors import ValidationError
from atum_client.types import (
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
    parse_rfc3339,
)


def _timestamp(**kwargs) -> Timestamp:
    fields = dict(
        time=1_700_000_000,
        server_url="https://atum.example/",
        sig=Signature(alg=SignatureAlgorithm.ED25519, data=b"\x01" * 64, public_key=b"\x02" * 32),
    )
    fields.update(kwargs)
    return Timestamp(**fields)


# =============================================================================
# encode_time_nonce
# =============================================================================


def test_encode_time_nonce_layout():
    """Time is 8 bytes big-endian, followed by the nonce."""
    assert encode_time_nonce(1, b"\xaa\xbb") == b"\x00" * 7 + b"\x01" + b"\xaa\xbb"


def test_encode_time_nonce_length():
    for nonce in (b"", b"x", b"y" * 128):
        assert len(encode_time_nonce(1_700_000_000, nonce)) == 8 + len(nonce)


def test_encode_time_nonce_negative_time():
    """Times before 1970 are encoded as two's complement."""
    assert encode_time_nonce(-1, b"") == b"\xff" * 8


def test_encode_time_nonce_distinguishes_inputs():
    assert encode_time_nonce(1, b"\x02") != encode_time_nonce(2, b"\x02")
    assert encode_time_nonce(1, b"\x02") != encode_time_nonce(1, b"\x03")


# =============================================================================
# JSON
# =============================================================================


def test_request_omits_unset_fields():
    """Only the nonce is mandatory on the wire."""
    assert Request(nonce=b"\x01\x02").to_dict() == {"Nonce": "AQI="}


def test_request_field_names():
    req = Request(
        nonce=b"\x01\x02",
        proof_of_work="proof",
        time=1234,
        preferred_sig_alg=SignatureAlgorithm.XMSSMT,
    )
    assert req.to_dict() == {
        "Nonce": "AQI=",
        "ProofOfWork": "proof",
        "Time": 1234,
        "PreferredSigAlg": "xmssmt",
    }


def test_timestamp_json_field_names():
    ts = _timestamp(hashing=Hashing(hash=HashAlgorithm.SHAKE256, prefix=b"\x00" * 32))
    data = json.loads(ts.to_json())

    assert set(data) == {"Time", "ServerUrl", "Sig", "Hashing"}
    assert set(data["Sig"]) == {"Alg", "Data", "PublicKey"}
    assert data["Sig"]["Alg"] == "ed25519"
    assert data["Hashing"] == {"Hash": "shake256", "Prefix": "A" * 43 + "="}


def test_timestamp_without_hashing_has_no_hashing_field():
    assert "Hashing" not in json.loads(_timestamp().to_json())


def test_timestamp_json_roundtrip():
    ts = _timestamp(hashing=Hashing.generate())
    assert Timestamp.from_json(ts.to_json()) == ts


def test_timestamp_get_time():
    assert _timestamp(time=0).get_time() == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_timestamp_keeps_unknown_algorithm():
    """Unknown algorithms survive parsing; verification rejects them later."""
    data = _timestamp().to_dict()
    data["Sig"]["Alg"] = "sphincs+"
    ts = Timestamp.from_dict(data)
    assert ts.sig.alg == "sphincs+"


@pytest.mark.parametrize("text", [
    "not json",
    "[]",
    '{"Time": 1}',
    '{"Time": 1, "Sig": {"Alg": "ed25519", "Data": "%%%", "PublicKey": ""}}',
])
def test_timestamp_from_json_rejects_malformed(text):
    with pytest.raises(ValidationError):
        Timestamp.from_json(text)


def test_response_with_error_and_info():
    resp = Response.from_dict({
        "Error": "missing proof of work",
        "Stamp": None,
        "Info": {
            "MaxNonceSize": 128,
            "AcceptableLag": 60,
            "DefaultSigAlg": "xmssmt",
            "RequiredProofOfWork": {"ed25519": "sha2bday-10-AAAA"},
        },
    })
    assert resp.error == ErrorCode.MISSING_POW
    assert resp.stamp is None
    assert resp.info == ServerInfo(
        max_nonce_size=128,
        acceptable_lag=60,
        default_sig_alg=SignatureAlgorithm.XMSSMT,
        required_proof_of_work={SignatureAlgorithm.ED25519: "sha2bday-10-AAAA"},
    )


def test_response_empty_error_is_no_error():
    """The server sends an empty string when there is no error."""
    ts = _timestamp()
    resp = Response.from_dict({"Error": "", "Stamp": ts.to_dict(), "Info": None})
    assert resp.error is None
    assert resp.stamp == ts


def test_response_keeps_unknown_error_code():
    assert Response.from_dict({"Error": "out of coffee"}).error == "out of coffee"


def test_server_info_roundtrip():
    info = ServerInfo(
        max_nonce_size=64,
        acceptable_lag=30,
        default_sig_alg=SignatureAlgorithm.ED25519,
        required_proof_of_work={SignatureAlgorithm.XMSSMT: "sha2bday-8-AAAA"},
    )
    assert ServerInfo.from_dict(info.to_dict()) == info


# =============================================================================
# Public key check
# =============================================================================


def test_parse_rfc3339_nanoseconds():
    """Go emits up to nine fractional digits."""
    dt = parse_rfc3339("2024-05-01T12:30:00.123456789Z")
    assert dt == datetime(2024, 5, 1, 12, 30, 0, 123456, tzinfo=timezone.utc)


def test_parse_rfc3339_offset():
    dt = parse_rfc3339("2024-05-01T14:30:00+02:00")
    assert dt == datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def test_public_key_check_response():
    resp = PublicKeyCheckResponse.from_dict({"Trusted": True, "Expires": "2030-01-01T00:00:00Z"})
    assert resp.trusted
    assert resp.expires == datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert resp.to_dict() == {"Trusted": True, "Expires": "2030-01-01T00:00:00Z"}


# =============================================================================
# Time range
# =============================================================================


def test_encode_time_nonce_rejects_time_beyond_int64():
    with pytest.raises(ValidationError):
        encode_time_nonce(1 << 63, b"nonce")
    with pytest.raises(ValidationError):
        encode_time_nonce(-(1 << 63) - 1, b"nonce")


def test_timestamp_time_int64_bounds():
    for t in (-(1 << 63), (1 << 63) - 1):
        data = _timestamp(time=t).to_dict()
        assert Timestamp.from_dict(data).time == t


@pytest.mark.parametrize("t", [1 << 63, 1 << 64, -(1 << 63) - 1])
def test_timestamp_from_json_rejects_time_beyond_int64(t):
    data = _timestamp().to_dict()
    data["Time"] = t
    with pytest.raises(ValidationError):
        Timestamp.from_json(json.dumps(data))


def test_get_time_beyond_datetime_range():
    """Valid on the wire, but later than year 9999."""
    with pytest.raises(ValidationError):
        _timestamp(time=10**12).get_time()
