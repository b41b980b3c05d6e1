"""Session token generation and hashing helpers."""
from __future__ import annotations

import hashlib
import hmac
import secrets

from app.config import get_settings

TOKEN_PREFIX = "mkt_"


def hash_token(raw: str) -> str:
    """Return an HMAC-SHA256 hash for the provided bearer token."""

    secret = get_settings().SECRET_KEY
    return hmac.new(secret.encode(), raw.encode(), hashlib.sha256).hexdigest()


def gen_token(prefix_len: int = 6) -> tuple[str, str, str]:
    """Generate a client-facing session token, its prefix, and the stored hash."""

    prefix = TOKEN_PREFIX + secrets.token_hex(prefix_len)[:prefix_len]
    suffix = secrets.token_urlsafe(32)
    raw = f"{prefix}.{suffix}"
    return raw, prefix, hash_token(raw)


def constant_time_equals(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided, expected)


__all__ = ["hash_token", "gen_token", "constant_time_equals", "TOKEN_PREFIX"]
