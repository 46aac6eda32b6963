"""
TikTokAdsConnector — TikTok for Business (Marketing API) authorization.

TikTok deviates from plain OAuth2: the consent page takes ``app_id``, the
token call is a JSON body (``app_id`` / ``secret`` / ``auth_code``) and every
response is wrapped in ``{"code": 0, "message": ..., "data": {...}}``.
Business API tokens do not expire and come without a refresh token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from connectors.base import AccountIdentity, BaseConnector, provider_error_text
from connectors.errors import AccountLookupFailed, TokenExchangeFailed
from connectors.platforms import PlatformConfig

logger = logging.getLogger(__name__)

_TIKTOK_API = "https://business-api.tiktok.com/open_api/v1.3"


class TikTokAdsConnector(BaseConnector):
    """OAuth2-style connector for TikTok Ads."""

    @property
    def platform_key(self) -> str:
        return "tiktok_ads"

    def authorization_params(self, platform: PlatformConfig, state: str) -> Dict[str, str]:
        params = super().authorization_params(platform, state)
        params["app_id"] = platform.client_id
        return params

    def _unwrap(self, resp: httpx.Response, error: type) -> Dict[str, Any]:
        if resp.is_error:
            raise error(provider_error_text(resp), platform=self.platform_key)
        body = self._json(resp, error)
        if not isinstance(body, dict) or body.get("code") != 0:
            message = body.get("message") if isinstance(body, dict) else None
            raise error(
                f"TikTok API error {body.get('code') if isinstance(body, dict) else '?'}: {message}",
                platform=self.platform_key,
            )
        return body.get("data") or {}

    async def _request_token(
        self,
        client: httpx.AsyncClient,
        platform: PlatformConfig,
        code: str,
        redirect_uri: str,
    ) -> Dict[str, Any]:
        resp = await client.post(
            platform.token_endpoint,
            json={
                "app_id": platform.client_id,
                "secret": self.client_secret,
                "auth_code": code,
            },
        )
        return self._unwrap(resp, TokenExchangeFailed)

    async def _fetch_accounts(self, client: httpx.AsyncClient, access_token: str) -> List[AccountIdentity]:
        platform_client_id = self.settings.tiktok_ads_client_id
        resp = await client.get(
            f"{_TIKTOK_API}/oauth2/advertiser/get/",
            headers={"Access-Token": access_token},
            params={"app_id": platform_client_id, "secret": self.client_secret},
        )
        data = self._unwrap(resp, AccountLookupFailed)
        return [
            AccountIdentity(
                account_id=str(item["advertiser_id"]),
                account_name=item.get("advertiser_name") or f"TikTok Ads Account ({item['advertiser_id']})",
            )
            for item in data.get("list") or []
        ]
