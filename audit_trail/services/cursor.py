"""
Opaque pagination cursors.

A cursor names the (created_at, id) of the last entry on the
previous page. Tokens look like ``<payload>.<signature>``, both
parts base64url without padding. The signature is a truncated
HMAC-SHA256 of the payload, so a token that was edited by hand
fails to decode instead of silently restarting the walk.
"""

import base64
import binascii
import hashlib
import hmac
import json
from datetime import datetime
from typing import NamedTuple

from audit_trail.config import get_settings
from audit_trail.errors import InvalidCursor

SIGNATURE_BYTES = 16


class CursorKey(NamedTuple):
    """Keyset position of one entry in listing order."""
    created_at: datetime
    id: int


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class CursorCodec:
    """Encodes and decodes signed cursor tokens."""

    def __init__(self, secret: str | None = None):
        secret = secret if secret is not None else get_settings().CURSOR_SECRET
        self._secret = secret.encode("utf-8")

    def _sign(self, payload: bytes) -> bytes:
        digest = hmac.new(self._secret, payload, hashlib.sha256).digest()
        return digest[:SIGNATURE_BYTES]

    def encode(self, key: CursorKey) -> str:
        payload = json.dumps(
            {"t": key.created_at.isoformat(), "i": key.id},
            separators=(",", ":"),
        ).encode("utf-8")
        return f"{_b64encode(payload)}.{_b64encode(self._sign(payload))}"

    def decode(self, token: str) -> CursorKey:
        """
        Turn a token back into the key it was built from.

        Raises InvalidCursor for anything that is not a token this
        codec produced with the same secret.
        """
        if not isinstance(token, str) or token.count(".") != 1:
            raise InvalidCursor("Malformed pagination cursor")

        payload_part, signature_part = token.split(".")
        try:
            payload = _b64decode(payload_part)
            signature = _b64decode(signature_part)
        except (binascii.Error, ValueError):
            raise InvalidCursor("Malformed pagination cursor")

        if not hmac.compare_digest(signature, self._sign(payload)):
            raise InvalidCursor("Pagination cursor signature mismatch")

        try:
            data = json.loads(payload)
            created_at = datetime.fromisoformat(data["t"])
            entry_id = data["i"]
        except (ValueError, KeyError, TypeError):
            raise InvalidCursor("Malformed pagination cursor")

        # bool is an int subclass; reject it explicitly.
        if not isinstance(entry_id, int) or isinstance(entry_id, bool):
            raise InvalidCursor("Malformed pagination cursor")

        return CursorKey(created_at=created_at, id=entry_id)
