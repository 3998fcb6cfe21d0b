"""Bearer token handling: HS256 JWT encode/decode.

Tokens are minted by the identity service; this module only needs to
verify them and read the user id. HS256 needs nothing beyond hmac.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from core.config import get_settings
from core.logging_config import get_logger

LOGGER = get_logger(__name__)


# ---------------------------------------------------------------------------
# HS256 JWT
# ---------------------------------------------------------------------------

def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    padding = 4 - len(s) % 4
    if padding != 4:
        s += "=" * padding
    return base64.urlsafe_b64decode(s)


def _sign(signing_input: str, secret: str) -> bytes:
    return hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()


def _jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    head = _b64url_encode(json.dumps(header, separators=(",", ":")).encode())
    body = _b64url_encode(json.dumps(payload, separators=(",", ":"), default=str).encode())
    return f"{head}.{body}.{_b64url_encode(_sign(f'{head}.{body}', secret))}"


def _jwt_decode(token: str, secret: str) -> Optional[dict]:
    parts = token.split(".")
    if len(parts) != 3:
        return None

    try:
        header = json.loads(_b64url_decode(parts[0]))
        actual_sig = _b64url_decode(parts[2])
        payload = json.loads(_b64url_decode(parts[1]))
    except (ValueError, TypeError) as e:
        LOGGER.debug(f"Malformed token: {e}")
        return None

    if header.get("alg") != "HS256":
        return None
    if not hmac.compare_digest(_sign(f"{parts[0]}.{parts[1]}", secret), actual_sig):
        return None
    if not isinstance(payload, dict):
        return None

    exp = payload.get("exp")
    if isinstance(exp, (int, float)) and exp < time.time():
        return None

    return payload


# ---------------------------------------------------------------------------
# Token Creation/Decoding
# ---------------------------------------------------------------------------

def create_access_token(user_id: int, role: str, expires_minutes: Optional[int] = None) -> str:
    """Create an access token for a user (used by tooling and tests)."""
    settings = get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_access_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": int(expire.timestamp()),
        "type": "access",
    }
    return _jwt_encode(payload, settings.jwt_secret_key)


def decode_access_token(token: str) -> Optional[dict]:
    """
    Decode and validate an access token.

    Returns:
        Token payload dict, or None if invalid, expired or not an access token.
    """
    payload = _jwt_decode(token, get_settings().jwt_secret_key)
    if payload is None or payload.get("type") != "access":
        return None
    try:
        int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    return payload


__all__ = [
    "create_access_token",
    "decode_access_token",
]
