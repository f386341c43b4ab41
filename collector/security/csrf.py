"""Signed, time-boxed CSRF tokens bound to a form and an origin.

Token format: ``base64url(payload) + "." + base64url(HMAC-SHA256(payload))``
where ``payload`` is the JSON object ``{"s": submit_hash, "o": origin,
"e": expires_at_epoch_ms}``. Tokens carry no server-side state and may be
replayed until they expire.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass


class CsrfNotConfigured(RuntimeError):
    """Raised when a token is requested but no signing secret is configured."""


@dataclass(frozen=True)
class CsrfConfig:
    secret: str | None
    ttl_seconds: int = 15 * 60

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    @classmethod
    def from_settings(cls, settings_obj) -> "CsrfConfig":
        secret = (getattr(settings_obj, "csrf_secret", None) or "").strip()
        return cls(secret=secret or None, ttl_seconds=settings_obj.csrf_ttl_seconds)


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * ((4 - (len(data) % 4)) % 4)
    return base64.urlsafe_b64decode((data + padding).encode("utf-8"))


def _now_ms(now: float | None) -> int:
    return int((time.time() if now is None else now) * 1000)


def _sign(secret: str, payload_b64: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload_b64.encode("utf-8"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def issue_csrf_token(
    config: CsrfConfig,
    submit_hash: str,
    origin: str,
    now: float | None = None,
) -> str:
    """Issue a token for ``(submit_hash, origin)`` valid for ``config.ttl_seconds``."""
    if not config.enabled:
        raise CsrfNotConfigured("csrf_secret is required to issue CSRF tokens")

    payload = {
        "s": submit_hash,
        "o": origin,
        "e": _now_ms(now) + config.ttl_seconds * 1000,
    }
    payload_b64 = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{payload_b64}.{_sign(config.secret, payload_b64)}"


def verify_csrf_token(
    config: CsrfConfig,
    token: str,
    submit_hash: str,
    origin: str,
    now: float | None = None,
) -> bool:
    """Return True only for an untampered, unexpired token issued for this pair."""
    if not config.enabled or not token:
        return False

    payload_b64, _, signature = token.rpartition(".")
    if not payload_b64 or not signature:
        return False

    expected = _sign(config.secret, payload_b64).encode("utf-8")
    provided = signature.encode("utf-8")
    # Length mismatch is a fast reject; the byte comparison is constant-time.
    if len(provided) != len(expected):
        return False
    if not hmac.compare_digest(provided, expected):
        return False

    try:
        payload = json.loads(_b64url_decode(payload_b64))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return False

    if not isinstance(payload, dict):
        return False
    if payload.get("s") != submit_hash or payload.get("o") != origin:
        return False

    expires_at = payload.get("e")
    if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)) or not expires_at:
        return False
    return _now_ms(now) <= expires_at
