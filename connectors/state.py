"""
OAuth ``state`` tokens (CSRF protection).

A state is a base64 JSON payload ``{user_id, provider, nonce, exp}``
followed by an HMAC-SHA256 signature, so the callback can check that it
was issued by us, for this provider, recently.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Callable

from connectors.errors import InvalidStateError


class StateSigner:
    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret.encode()
        self._ttl = ttl_seconds
        self._clock = clock

    def _sign(self, raw: bytes) -> str:
        return hmac.new(self._secret, raw, hashlib.sha256).hexdigest()[:32]

    def create(self, user_id: str, provider: str) -> str:
        """Create an opaque state bound to ``user_id`` and ``provider``."""
        payload = json.dumps(
            {
                "user_id": user_id,
                "provider": provider,
                "nonce": secrets.token_urlsafe(12),
                "exp": int(self._clock()) + self._ttl,
            }
        )
        raw = payload.encode()
        return urlsafe_b64encode(raw).decode() + "." + self._sign(raw)

    def verify(self, state: str, provider: str) -> str:
        """Verify ``state`` for ``provider`` and return its user id."""
        if not state:
            raise InvalidStateError("missing state")
        parts = state.split(".", 1)
        if len(parts) != 2:
            raise InvalidStateError("bad format")
        try:
            raw = urlsafe_b64decode(parts[0].encode())
        except ValueError as exc:
            raise InvalidStateError("bad encoding") from exc
        if not hmac.compare_digest(parts[1].encode(), self._sign(raw).encode()):
            raise InvalidStateError("bad signature")

        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise InvalidStateError("bad payload") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("user_id"), str):
            raise InvalidStateError("bad payload")
        if not isinstance(payload.get("exp"), int) or payload["exp"] < self._clock():
            raise InvalidStateError("state expired")
        if payload.get("provider") != provider:
            raise InvalidStateError("state was issued for another provider")
        return payload["user_id"]
