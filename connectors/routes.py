"""
Connector API routes — platform catalogue, OAuth connect/callback,
list connections, disconnect.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import html
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse

from auth.dependencies import get_callback_user_id, get_current_user_id
from connectors.service import ConnectorService, get_connector_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])

_CALLBACK_PARAMS = ("code", "state", "error", "error_description")


@router.get("/platforms")
async def list_platforms(
    service: ConnectorService = Depends(get_connector_service),
) -> list[dict]:
    """
    List all advertising platforms and whether they can be connected.
    No auth required — used by frontend to render the connect buttons.
    """
    return service.platforms.list_platforms()


@router.get("/connections")
async def list_connections(
    user_id: str = Depends(get_current_user_id),
    service: ConnectorService = Depends(get_connector_service),
) -> list[dict]:
    """List the caller's active ad accounts (tokens are never returned)."""
    accounts = await service.list_active(user_id)
    return [a.public_view() for a in accounts]


@router.get("/{platform}/auth-url")
async def get_auth_url(
    platform: str,
    user_id: str = Depends(get_current_user_id),
    service: ConnectorService = Depends(get_connector_service),
) -> Dict[str, str]:
    """
    Get the OAuth authorization URL for a platform.

    Frontend should open this URL in a popup window.  Calling this again for
    the same platform invalidates the previous URL.
    """
    target = await service.initiate(user_id, platform)
    return {"auth_url": target.auth_url, "platform": target.platform}


@router.get("/callback")
async def oauth_callback(
    request: Request,
    user_id: Optional[str] = Depends(get_callback_user_id),
    service: ConnectorService = Depends(get_connector_service),
) -> HTMLResponse:
    """
    OAuth callback — every provider redirects here after consent.

    The platform is read from the state token.  Returns a small HTML page
    that notifies the opener window and auto-closes.
    """
    params = {k: request.query_params[k] for k in _CALLBACK_PARAMS if k in request.query_params}
    result = await service.complete(user_id, params)
    return HTMLResponse(
        content=_callback_html(
            success=result.ok,
            message=result.message,
            platform=result.platform or "",
            reason=result.reason,
            target_origin=service.popup_origin,
        ),
        status_code=200,
    )


@router.delete("/connections/{platform}/{account_id}")
async def delete_connection(
    platform: str,
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ConnectorService = Depends(get_connector_service),
) -> Dict[str, Any]:
    """Disconnect an ad account (soft delete; it can be reconnected later)."""
    if not await service.disconnect(user_id, platform, account_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Connection not found")
    return {"status": "disconnected", "platform": platform, "account_id": account_id}


# ── Callback HTML template ─────────────────────────────────────────────


def _callback_html(
    success: bool,
    message: str,
    platform: str,
    reason: Optional[str] = None,
    target_origin: str = "",
) -> str:
    """
    Small HTML page shown in the OAuth popup after redirect.
    Sends a postMessage to the opener (restricted to ``target_origin``) and
    auto-closes.
    """
    status_emoji = "✅" if success else "❌"
    status_text = "Connected!" if success else "Connection Failed"
    color = "#16a34a" if success else "#ef4444"
    payload = json.dumps(
        {
            "type": "oauth-callback",
            "platform": platform,
            "success": success,
            "reason": reason,
            "message": message,
        }
    ).replace("</", "<\\/")
    origin = json.dumps(target_origin).replace("</", "<\\/") if target_origin else "window.location.origin"

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>AdLink · {html.escape(status_text)}</title>
    <style>
        html, body {{ height: 100%; margin: 0; }}
        body {{
            display: grid; place-items: center;
            font: 14px/1.5 system-ui, -apple-system, sans-serif;
            background: #f1f5f9; color: #1e293b;
        }}
        main {{
            width: min(360px, 90vw); padding: 32px 28px;
            background: #fff; border-radius: 10px;
            box-shadow: 0 1px 3px rgba(15, 23, 42, 0.12);
            text-align: center;
        }}
        .mark {{ font-size: 2.5rem; }}
        h1 {{ font-size: 1.15rem; color: {color}; margin: 12px 0 6px; }}
        .detail {{ color: #475569; }}
        .hint {{ color: #94a3b8; font-size: 0.75rem; margin-top: 18px; }}
    </style>
</head>
<body>
    <main>
        <div class="mark">{status_emoji}</div>
        <h1>{html.escape(status_text)}</h1>
        <p class="detail">{html.escape(message)}</p>
        <p class="hint">You can close this window.</p>
    </main>
    <script>
        const result = {payload};
        if (window.opener) {{
            window.opener.postMessage(result, {origin});
            setTimeout(() => window.close(), 1500);
        }}
    </script>
</body>
</html>"""
