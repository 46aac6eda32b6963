"""
ConnectorRegistry — maps platform keys to their connector implementation.

Adding a platform means adding a ``BaseConnector`` subclass to
``default_connectors`` and an entry to the platform catalogue.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import httpx

from config.settings import Settings
from connectors.base import BaseConnector
from connectors.errors import UnsupportedPlatform
from connectors.google_ads import GoogleAdsConnector
from connectors.linkedin_ads import LinkedInAdsConnector
from connectors.meta_ads import MetaAdsConnector
from connectors.platforms import PlatformRegistry
from connectors.tiktok_ads import TikTokAdsConnector

logger = logging.getLogger(__name__)


def default_connectors(
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[BaseConnector]:
    return [
        GoogleAdsConnector(settings, transport=transport),
        LinkedInAdsConnector(settings, transport=transport),
        MetaAdsConnector(settings, transport=transport),
        TikTokAdsConnector(settings, transport=transport),
    ]


class ConnectorRegistry:
    """Lookup of connectors by platform key."""

    def __init__(self, connectors: Iterable[BaseConnector]):
        self._connectors: Dict[str, BaseConnector] = {c.platform_key: c for c in connectors}

    def get(self, platform: str) -> BaseConnector:
        connector = self._connectors.get(platform)
        if connector is None:
            raise UnsupportedPlatform(f"No connector implemented for {platform!r}", platform=platform)
        return connector

    def list_configured(self) -> List[str]:
        """Platform keys whose server-side secrets are all present."""
        return [
            key for key, conn in self._connectors.items()
            if not conn.settings.missing_secrets(key)
        ]

    def log_configuration(self, platforms: PlatformRegistry) -> None:
        """Warn at startup about enabled platforms that cannot complete a connect."""
        for key in platforms.keys():
            platform = platforms.get(key)
            if not platform.enabled:
                logger.info("Platform %s disabled", key)
                continue
            if key not in self._connectors:
                logger.error("Platform %s enabled but has no connector implementation", key)
                continue
            missing = self._connectors[key].settings.missing_secrets(key)
            if missing:
                logger.warning("Platform %s enabled but missing secrets: %s", key, ", ".join(missing))
            else:
                logger.info("Connector registered: %s (%s)", platform.display_name, key)
