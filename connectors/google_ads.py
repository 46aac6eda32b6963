"""
GoogleAdsConnector — OAuth2 web flow for the Google Ads API.

Google issues refresh tokens only with ``access_type=offline``; combined
with ``prompt=consent`` a refresh token comes back on every connect.
Account lookup needs the application's developer token in addition to the
user's bearer token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from connectors.base import AccountIdentity, BaseConnector
from connectors.platforms import PlatformConfig

logger = logging.getLogger(__name__)

_GOOGLE_ADS_API = "https://googleads.googleapis.com/v17"


class GoogleAdsConnector(BaseConnector):
    """OAuth2 connector for Google Ads."""

    issues_refresh_token = True

    @property
    def platform_key(self) -> str:
        return "google_ads"

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
                "code": code,
                "client_id": platform.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )

    async def _fetch_accounts(self, client: httpx.AsyncClient, access_token: str) -> List[AccountIdentity]:
        data = await self._get_json(
            client,
            f"{_GOOGLE_ADS_API}/customers:listAccessibleCustomers",
            headers={
                "Authorization": f"Bearer {access_token}",
                "developer-token": self.settings.google_ads_developer_token,
            },
        )
        accounts = []
        # resource names look like "customers/1234567890"
        for resource_name in data.get("resourceNames") or []:
            customer_id = resource_name.split("/")[-1]
            if customer_id:
                accounts.append(
                    AccountIdentity(
                        account_id=customer_id,
                        account_name=f"Google Ads Account ({customer_id})",
                    )
                )
        return accounts
