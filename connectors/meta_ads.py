"""
MetaAdsConnector — Facebook Login for the Marketing API.

Meta does not issue refresh tokens; user tokens from the code exchange are
short-lived and carry ``expires_in``.
"""

from __future__ import annotations

from typing import Any, Dict, List

import httpx

from connectors.base import AccountIdentity, BaseConnector
from connectors.platforms import PlatformConfig

_GRAPH_API = "https://graph.facebook.com/v18.0"


class MetaAdsConnector(BaseConnector):
    """OAuth2 connector for Meta (Facebook / Instagram) Ads."""

    @property
    def platform_key(self) -> str:
        return "meta_ads"

    async def _request_token(
        self,
        client: httpx.AsyncClient,
        platform: PlatformConfig,
        code: str,
        redirect_uri: str,
    ) -> Dict[str, Any]:
        return await self._post_form(
            client,
            platform.token_endpoint,
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": platform.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
            },
        )

    async def _fetch_accounts(self, client: httpx.AsyncClient, access_token: str) -> List[AccountIdentity]:
        data = await self._get_json(
            client,
            f"{_GRAPH_API}/me/adaccounts",
            headers={"Authorization": f"Bearer {access_token}"},
            params={"fields": "account_id,name"},
        )
        return [
            AccountIdentity(
                account_id=str(item["account_id"]),
                account_name=item.get("name") or f"Meta Ads Account ({item['account_id']})",
            )
            for item in data.get("data") or []
        ]
