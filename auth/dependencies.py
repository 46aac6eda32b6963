"""
FastAPI dependencies for caller identity.

The connect popup cannot attach headers to the provider's redirect, so the
callback also accepts the session cookie set by the web app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt import verify_token
from connectors.errors import Unauthenticated

SESSION_COOKIE = "adlink_session"

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    session_token: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
) -> Optional[str]:
    """
    Return the caller's ``user_id`` from the bearer header or session cookie,
    or None when neither is present.  A present but invalid token raises.
    """
    token = credentials.credentials if credentials else session_token
    if not token:
        return None
    return verify_token(token)


async def get_current_user_id(
    user_id: Optional[str] = Depends(get_optional_user_id),
) -> str:
    """Like ``get_optional_user_id`` but the caller must be signed in."""
    if not user_id:
        raise Unauthenticated("no caller identity")
    return user_id


async def get_callback_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    session_token: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
) -> Optional[str]:
    """
    Caller identity for the provider redirect.

    An invalid token is treated as no identity so the callback can still
    render its failure page (and consume nothing it should not).
    """
    try:
        return await get_optional_user_id(credentials, session_token)
    except Unauthenticated:
        return None
