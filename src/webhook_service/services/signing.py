"""HMAC-SHA256 signing of webhook payloads."""
from __future__ import annotations

import hmac
import json
from hashlib import sha256
from typing import Any


def canonical_json(value: Any) -> bytes:
    """Serialize ``value`` with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


class EventSigner:
    """Signs payloads and verifies received signatures.

    The signature is the lowercase hex HMAC-SHA256 of :func:`canonical_json`
    of the payload, keyed with the webhook secret. Receivers recompute it over
    the ``payload`` field of the delivered body.
    """

    def sign(self, payload: Any, secret: str) -> str:
        return hmac.new(secret.encode("utf-8"), canonical_json(payload), sha256).hexdigest()

    def verify(self, signature: Any, payload: Any, secret: str) -> bool:
        if not isinstance(signature, str) or not signature.isascii():
            return False
        expected = self.sign(payload, secret)
        return hmac.compare_digest(signature.encode("ascii"), expected.encode("ascii"))
