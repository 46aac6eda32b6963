"""
AuthorizationInitiator — start a connect flow for one platform.

Issues a fresh state for (user, platform), stores it (replacing any state
still pending for that pair) and returns the provider's consent URL.
Nothing here talks to the provider.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel

from connectors.errors import PlatformDisabled, Unauthenticated
from connectors.platforms import PlatformRegistry
from connectors.registry import ConnectorRegistry
from connectors.state import StateCodec, StateStore

logger = logging.getLogger(__name__)


class RedirectTarget(BaseModel):
    auth_url: str
    platform: str


class AuthorizationInitiator:
    def __init__(
        self,
        platforms: PlatformRegistry,
        connectors: ConnectorRegistry,
        codec: StateCodec,
        state_store: StateStore,
    ):
        self._platforms = platforms
        self._connectors = connectors
        self._codec = codec
        self._state_store = state_store

    async def initiate(self, user_id: Optional[str], platform_key: str) -> RedirectTarget:
        if not user_id:
            raise Unauthenticated("initiate called without a caller identity", platform=platform_key)

        platform = self._platforms.get(platform_key)
        if not platform.enabled:
            raise PlatformDisabled(f"{platform_key} is disabled", platform=platform_key)
        connector = self._connectors.get(platform_key)

        state = self._codec.issue(user_id, platform_key)
        await self._state_store.save(state)

        logger.info("OAuth initiated: user=%s platform=%s", user_id, platform_key)
        return RedirectTarget(
            auth_url=connector.authorization_url(platform, state.value),
            platform=platform_key,
        )
