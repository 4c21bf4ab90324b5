import base64
import json

import pytest

from crash_rocket.errors import DecodeError, ValidationError
from crash_rocket.issuance import decode_token, read_token


def make_token(payload, signature="sig"):
    raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=") + "." + signature


def test_decodes_payload_segment():
    payload = decode_token(make_token({"seed": "a1b2", "vol": 0.25, "uid": 7}))
    assert payload.seed == "a1b2"
    assert payload.vol == 0.25


def test_missing_vol_uses_default():
    assert decode_token(make_token({"seed": "a1b2"})).vol == 0.6


def test_signature_segment_is_not_inspected():
    payload = decode_token(make_token({"seed": "x", "vol": 1}, signature="%%%not-base64"))
    assert payload.seed == "x"


@pytest.mark.parametrize(
    "token",
    [
        "a.sig",                    # impossible base64 length
        make_token(b"not json"),
        make_token([1, 2, 3]),
    ],
)
def test_decode_errors(token):
    with pytest.raises(DecodeError):
        decode_token(token)


@pytest.mark.parametrize(
    "payload",
    [
        {"vol": 0.5},
        {"seed": "", "vol": 0.5},
        {"seed": "x", "vol": "high"},
        {"seed": "x", "vol": float("nan")},
        {"seed": "x", "vol": float("inf")},
        {"seed": "x", "vol": "0.5"},
        {"seed": "x", "vol": True},
        {"seed": "x", "vol": None},
    ],
)
def test_payload_validation_errors(payload):
    with pytest.raises(ValidationError):
        decode_token(make_token(payload))


@pytest.mark.parametrize("raw", [None, "", "   ", "no-separator"])
def test_read_token_treats_malformed_as_absent(raw):
    assert read_token(raw) is None


def test_read_token_strips():
    assert read_token("  abc.def ") == "abc.def"
