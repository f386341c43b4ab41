"""ALTCHA-compatible proof-of-work challenges.

A challenge is ``sha256(salt + secret_number)`` signed with
``HMAC-SHA256(key, challenge)``. The client brute-forces the number in
``[0, maxnumber]`` and returns a base64 JSON solution which is checked here.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from urllib.parse import parse_qs

ALGORITHM = "SHA-256"


class ChallengeNotConfigured(RuntimeError):
    """Raised when no HMAC key is configured for challenges."""


@dataclass(frozen=True)
class ChallengeConfig:
    hmac_key: str | None
    max_number: int = 100_000
    ttl_seconds: int = 600

    @property
    def enabled(self) -> bool:
        return bool(self.hmac_key)

    @classmethod
    def from_settings(cls, settings_obj) -> "ChallengeConfig":
        key = (getattr(settings_obj, "altcha_hmac_key", None) or "").strip()
        return cls(
            hmac_key=key or None,
            max_number=max(1, settings_obj.altcha_max_number),
            ttl_seconds=max(1, settings_obj.altcha_ttl_seconds),
        )


def _hash_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _signature(key: str, challenge: str) -> str:
    return hmac.new(key.encode("utf-8"), challenge.encode("utf-8"), hashlib.sha256).hexdigest()


def create_challenge(
    config: ChallengeConfig,
    now: float | None = None,
    number: int | None = None,
) -> dict:
    """Create a signed challenge; ``number`` is only pinned by tests."""
    if not config.enabled:
        raise ChallengeNotConfigured("altcha_hmac_key is required to issue challenges")

    issued_at = time.time() if now is None else now
    expires = int(issued_at) + config.ttl_seconds
    salt = f"{secrets.token_hex(12)}?expires={expires}"
    if number is None:
        number = secrets.randbelow(config.max_number + 1)
    challenge = _hash_hex(f"{salt}{number}")
    return {
        "algorithm": ALGORITHM,
        "challenge": challenge,
        "maxnumber": config.max_number,
        "salt": salt,
        "signature": _signature(config.hmac_key, challenge),
    }


def _salt_expired(salt: str, now: float) -> bool:
    _, _, query = salt.partition("?")
    if not query:
        return False
    values = parse_qs(query).get("expires")
    if not values:
        return False
    try:
        return int(values[0]) < now
    except ValueError:
        return True


def verify_solution(config: ChallengeConfig, payload: str, now: float | None = None) -> bool:
    """Verify a base64 JSON solution against its HMAC-bound challenge."""
    if not config.enabled:
        raise ChallengeNotConfigured("altcha_hmac_key is required to verify challenges")

    try:
        data = json.loads(base64.b64decode(payload.strip(), validate=False))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return False
    if not isinstance(data, dict):
        return False

    algorithm = data.get("algorithm")
    challenge = data.get("challenge")
    number = data.get("number")
    salt = data.get("salt")
    signature = data.get("signature")
    if algorithm != ALGORITHM:
        return False
    if not all(isinstance(v, str) and v for v in (challenge, salt, signature)):
        return False
    if isinstance(number, bool) or not isinstance(number, int) or number < 0:
        return False

    if _salt_expired(salt, time.time() if now is None else now):
        return False
    if not hmac.compare_digest(_hash_hex(f"{salt}{number}").encode(), challenge.encode()):
        return False
    expected = _signature(config.hmac_key, challenge)
    return hmac.compare_digest(expected.encode(), signature.encode())

