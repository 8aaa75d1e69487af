"""Stateless signed session tokens for the operator login.

A token is ``base64url(payload) + "." + base64url(hmac_sha256(payload))``
where payload is canonical JSON ``{"exp": ms, "iat": ms, "u": subject}``.
The server keeps no session table; the signature is the whole state.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Callable


SECRET_DERIVATION_PREFIX = "snac-admin:"
DEFAULT_TTL_MS = 12 * 60 * 60 * 1000


def _encode_payload(claims: dict[str, Any]) -> bytes:
    # Signed bytes: sorted keys, compact separators, ASCII only.
    return json.dumps(claims, sort_keys=True, separators=(",", ":")).encode("ascii")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(text: str) -> bytes:
    pad = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode((text + pad).encode("ascii"))


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(str(a).encode("utf-8"), str(b).encode("utf-8"))


def derive_session_secret(explicit: str | None, admin_password: str) -> str:
    if explicit:
        return explicit
    material = f"{SECRET_DERIVATION_PREFIX}{admin_password}".encode("utf-8")
    return hashlib.sha256(material).hexdigest()


def check_login(user: str, password: str, *, admin_user: str, admin_password: str) -> bool:
    """Return True only when both fields match.

    Both comparisons always run so a wrong user and a wrong password take the
    same path.
    """
    user_ok = constant_time_equals(user, admin_user)
    pass_ok = constant_time_equals(password, admin_password)
    return user_ok and pass_ok


@dataclass(frozen=True)
class SessionClaims:
    subject: str
    issued_at_ms: int
    expires_at_ms: int


class SessionCodec:
    def __init__(
        self,
        secret: str,
        *,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("session secret must not be empty")
        self._key = secret.encode("utf-8")
        self._ttl_ms = int(ttl_ms)
        self._clock = clock

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _sign(self, payload: bytes) -> str:
        return b64url_encode(hmac.new(self._key, payload, hashlib.sha256).digest())

    def issue(self, subject: str, ttl_ms: int | None = None) -> str:
        now = self._now_ms()
        ttl = self._ttl_ms if ttl_ms is None else int(ttl_ms)
        payload = _encode_payload({"u": str(subject), "iat": now, "exp": now + ttl})
        return f"{b64url_encode(payload)}.{self._sign(payload)}"

    def claims(self, token: Any) -> SessionClaims | None:
        """Decode and authenticate a token; None for anything invalid."""
        if not isinstance(token, str) or not token:
            return None
        parts = token.split(".")
        if len(parts) != 2:
            return None
        payload_b64, signature = parts
        try:
            payload = b64url_decode(payload_b64)
        except (binascii.Error, ValueError):
            return None
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        subject = data.get("u")
        expires = data.get("exp")
        issued = data.get("iat", 0)
        if not isinstance(subject, str) or not subject:
            return None
        if isinstance(expires, bool) or not isinstance(expires, int):
            return None
        if isinstance(issued, bool) or not isinstance(issued, int):
            return None
        if self._now_ms() > expires:
            return None
        if not constant_time_equals(signature, self._sign(payload)):
            return None
        return SessionClaims(subject=subject, issued_at_ms=issued, expires_at_ms=expires)

    def verify(self, token: Any) -> str | None:
        claims = self.claims(token)
        return claims.subject if claims else None
