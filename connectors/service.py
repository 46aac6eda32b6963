"""
ConnectorService — wires the OAuth components together once per process.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings
from connectors.callback import CallbackHandler, CallbackResult
from connectors.credential_store import ConnectedAccount, SqlCredentialStore
from connectors.encryption import TokenCipher
from connectors.initiator import AuthorizationInitiator, RedirectTarget
from connectors.limits import ConnectionLimitPolicy, PlanConnectionLimitPolicy
from connectors.platforms import PlatformRegistry, build_platform_registry
from connectors.registry import ConnectorRegistry, default_connectors
from connectors.state import SqlStateStore, StateCodec, StateStore

logger = logging.getLogger(__name__)


class ConnectorService:
    """Facade used by the HTTP routes and by other subsystems."""

    def __init__(
        self,
        platforms: PlatformRegistry,
        connectors: ConnectorRegistry,
        codec: StateCodec,
        state_store: StateStore,
        limits: ConnectionLimitPolicy,
        credentials: SqlCredentialStore,
        *,
        popup_origin: str,
    ):
        self.platforms = platforms
        self.popup_origin = popup_origin
        self.connectors = connectors
        self.state_store = state_store
        self.credentials = credentials
        self.initiator = AuthorizationInitiator(platforms, connectors, codec, state_store)
        self.callback = CallbackHandler(platforms, connectors, codec, state_store, limits, credentials)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ConnectorService":
        platforms = build_platform_registry(settings)
        connectors = ConnectorRegistry(default_connectors(settings, transport=transport))
        return cls(
            platforms=platforms,
            connectors=connectors,
            codec=StateCodec(settings.oauth_state_secret, settings.oauth_state_ttl_seconds),
            state_store=SqlStateStore(session_factory),
            limits=PlanConnectionLimitPolicy(session_factory, settings.default_max_connections),
            credentials=SqlCredentialStore(session_factory, TokenCipher(settings.token_encryption_key)),
            popup_origin=settings.popup_target_origin,
        )

    async def initiate(self, user_id: Optional[str], platform: str) -> RedirectTarget:
        return await self.initiator.initiate(user_id, platform)

    async def complete(self, user_id: Optional[str], params) -> CallbackResult:
        return await self.callback.handle(user_id, params)

    async def list_active(self, user_id: str, platform: Optional[str] = None) -> List[ConnectedAccount]:
        return await self.credentials.list_active(user_id, platform)

    async def disconnect(self, user_id: str, platform: str, account_id: str) -> bool:
        return await self.credentials.deactivate(user_id, platform, account_id)


_service: Optional[ConnectorService] = None


def get_connector_service() -> ConnectorService:
    """FastAPI dependency — the process-wide service, built on first use."""
    global _service
    if _service is None:
        from config.settings import config
        from database.session import async_session_factory

        _service = ConnectorService.from_settings(config, async_session_factory)
    return _service
