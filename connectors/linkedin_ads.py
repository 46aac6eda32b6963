"""
LinkedInAdsConnector — OAuth2 for the LinkedIn Marketing API.

LinkedIn only issues refresh tokens to approved Marketing partners, so a
missing refresh token is normal here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from connectors.base import AccountIdentity, BaseConnector
from connectors.platforms import PlatformConfig

logger = logging.getLogger(__name__)

# Restli search syntax must reach LinkedIn unencoded.
_LI_AD_ACCOUNTS_URL = (
    "https://api.linkedin.com/rest/adAccounts"
    "?q=search&search=(status:(values:List(ACTIVE)))"
)
_LI_API_VERSION = "202404"


class LinkedInAdsConnector(BaseConnector):
    """OAuth2 connector for LinkedIn Ads."""

    @property
    def platform_key(self) -> str:
        return "linkedin_ads"

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
            _LI_AD_ACCOUNTS_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "LinkedIn-Version": _LI_API_VERSION,
                "X-Restli-Protocol-Version": "2.0.0",
            },
        )
        return [
            AccountIdentity(
                account_id=str(element["id"]),
                account_name=element.get("name") or f"LinkedIn Ads Account ({element['id']})",
            )
            for element in data.get("elements") or []
        ]
