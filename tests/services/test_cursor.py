"""
Tests for the cursor codec.
"""

import base64
import json
from datetime import datetime

import pytest

from audit_trail.errors import InvalidCursor
from audit_trail.services.cursor import CursorCodec, CursorKey


@pytest.fixture
def codec():
    return CursorCodec(secret="test-secret")


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class TestRoundTrip:

    def test_decode_returns_encoded_key(self, codec):
        key = CursorKey(datetime(2026, 1, 15, 12, 0, 0, 123456), 42)
        assert codec.decode(codec.encode(key)) == key

    def test_token_is_url_safe(self, codec):
        token = codec.encode(CursorKey(datetime(2026, 1, 15), 7))
        assert all(c.isalnum() or c in "-_." for c in token)


class TestRejection:

    @pytest.mark.parametrize("token", ["", "abc", "a.b.c", "!!!.???"])
    def test_malformed_token(self, codec, token):
        with pytest.raises(InvalidCursor):
            codec.decode(token)

    def test_tampered_payload(self, codec):
        token = codec.encode(CursorKey(datetime(2026, 1, 15), 7))
        _, signature = token.split(".")
        forged = _b64(json.dumps({"t": "2030-01-01T00:00:00", "i": 7}).encode())

        with pytest.raises(InvalidCursor):
            codec.decode(f"{forged}.{signature}")

    def test_other_secret(self, codec):
        token = CursorCodec(secret="another-secret").encode(
            CursorKey(datetime(2026, 1, 15), 7)
        )
        with pytest.raises(InvalidCursor):
            codec.decode(token)

    def test_signed_but_wrong_shape(self, codec):
        payload = json.dumps({"t": "2026-01-15T00:00:00", "i": True}).encode()
        token = f"{_b64(payload)}.{_b64(codec._sign(payload))}"

        with pytest.raises(InvalidCursor):
            codec.decode(token)

    def test_signed_but_bad_timestamp(self, codec):
        payload = json.dumps({"t": "yesterday", "i": 1}).encode()
        token = f"{_b64(payload)}.{_b64(codec._sign(payload))}"

        with pytest.raises(InvalidCursor):
            codec.decode(token)
