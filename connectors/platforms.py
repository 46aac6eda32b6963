"""
PlatformRegistry — immutable per-platform OAuth descriptors.

Built once at startup from ``config`` and injected wherever a platform has
to be looked up, so tests can hand in a registry with fake endpoints.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel

from config.settings import Settings
from connectors.errors import UnsupportedPlatform

logger = logging.getLogger(__name__)


class PlatformConfig(BaseModel):
    key: str
    display_name: str
    client_id: str
    scopes: Tuple[str, ...]
    authorization_endpoint: str
    token_endpoint: str
    redirect_uri: str
    enabled: bool
    offline_access: bool = False     # ask for a refresh token (offline access + forced consent)

    model_config = {"frozen": True}


# key → (display name, authorization endpoint, token endpoint, scopes, offline access)
_CATALOGUE = {
    "google_ads": (
        "Google Ads",
        "https://accounts.google.com/o/oauth2/v2/auth",
        "https://oauth2.googleapis.com/token",
        ("https://www.googleapis.com/auth/adwords",),
        True,
    ),
    "linkedin_ads": (
        "LinkedIn Ads",
        "https://www.linkedin.com/oauth/v2/authorization",
        "https://www.linkedin.com/oauth/v2/accessToken",
        ("r_ads", "r_ads_reporting", "r_organization_social"),
        False,
    ),
    "meta_ads": (
        "Meta Ads",
        "https://www.facebook.com/v18.0/dialog/oauth",
        "https://graph.facebook.com/v18.0/oauth/access_token",
        ("ads_read", "ads_management", "business_management"),
        False,
    ),
    "tiktok_ads": (
        "TikTok Ads",
        "https://business-api.tiktok.com/portal/auth",
        "https://business-api.tiktok.com/open_api/v1.3/oauth2/access_token/",
        ("advertiser.read",),
        False,
    ),
}


class PlatformRegistry:
    """Read-only lookup table of ``PlatformConfig`` by platform key."""

    def __init__(self, platforms: Iterable[PlatformConfig]):
        self._platforms = MappingProxyType({p.key: p for p in platforms})

    def get(self, key: str) -> PlatformConfig:
        """
        Return the config for ``key``, enabled or not.

        Callers must check ``enabled`` themselves.  Raises
        ``UnsupportedPlatform`` for unknown keys.
        """
        platform = self._platforms.get(key)
        if platform is None:
            raise UnsupportedPlatform(f"No platform registered for key {key!r}", platform=key)
        return platform

    def find(self, key: str) -> Optional[PlatformConfig]:
        return self._platforms.get(key)

    def keys(self) -> List[str]:
        return list(self._platforms.keys())

    def list_platforms(self) -> List[dict]:
        """Public catalogue for the UI (no client ids)."""
        return [
            {"platform": p.key, "display_name": p.display_name, "enabled": p.enabled}
            for p in self._platforms.values()
        ]


def build_platform_registry(settings: Settings) -> PlatformRegistry:
    """Build the registry from the catalogue and per-platform settings."""
    platforms = []
    for key, (display_name, auth_url, token_url, scopes, offline) in _CATALOGUE.items():
        creds = settings.platform_credentials(key)
        client_id = (creds["client_id"] or "").strip()
        enabled = bool(creds["enabled"]) and bool(client_id)
        if creds["enabled"] and not client_id:
            logger.warning("Platform %s disabled: no client id configured", key)
        platforms.append(
            PlatformConfig(
                key=key,
                display_name=display_name,
                client_id=client_id,
                scopes=scopes,
                authorization_endpoint=auth_url,
                token_endpoint=token_url,
                redirect_uri=settings.oauth_redirect_uri,
                enabled=enabled,
                offline_access=offline,
            )
        )
    return PlatformRegistry(platforms)
