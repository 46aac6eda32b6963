"""
Signed caller tokens.

Tokens are URL-safe base64 JSON payloads signed with HMAC-SHA256.
Secret key is loaded from ``config.jwt_secret`` (env var: ``JWT_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Optional

from config.settings import config
from connectors.errors import Unauthenticated


def _sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(user_id: str, *, secret: Optional[str] = None, ttl_seconds: Optional[int] = None) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    secret = secret or config.jwt_secret
    ttl = config.jwt_expiry_seconds if ttl_seconds is None else ttl_seconds
    raw = json.dumps({"user_id": user_id, "exp": int(time.time()) + ttl}).encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign(raw, secret)


def verify_token(token: str, *, secret: Optional[str] = None) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``Unauthenticated`` on malformed, forged or expired tokens.
    """
    secret = secret or config.jwt_secret
    parts = token.split(".", 1)
    if len(parts) != 2:
        raise Unauthenticated("bad token format")
    try:
        raw = urlsafe_b64decode(parts[0].encode())
    except ValueError:
        raise Unauthenticated("bad token encoding")
    if not hmac.compare_digest(parts[1], _sign(raw, secret)):
        raise Unauthenticated("bad token signature")
    try:
        payload = json.loads(raw)
    except ValueError:
        raise Unauthenticated("bad token payload")
    if payload.get("exp", 0) < time.time():
        raise Unauthenticated("token expired")
    user_id = payload.get("user_id")
    if not user_id:
        raise Unauthenticated("token has no user")
    return str(user_id)
