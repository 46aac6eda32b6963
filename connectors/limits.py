"""
Connection limits — how many active ad accounts a user's plan allows.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.models import PlanEntitlement

logger = logging.getLogger(__name__)


class ConnectionLimitPolicy(ABC):
    @abstractmethod
    async def max_connections(self, user_id: str) -> int:
        ...


class PlanConnectionLimitPolicy(ConnectionLimitPolicy):
    """
    Reads ``plan_entitlements`` (owned by billing) on every call.

    Users without an active entitlement get ``default_max``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], default_max: int = 1):
        self._session_factory = session_factory
        self._default_max = default_max

    async def max_connections(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PlanEntitlement.max_connections)
                .where(PlanEntitlement.user_id == user_id, PlanEntitlement.is_active.is_(True))
                .order_by(PlanEntitlement.updated_at.desc())
                .limit(1)
            )
            value = result.scalar_one_or_none()
        if value is None:
            logger.debug("No active plan entitlement for user %s, using default %d", user_id, self._default_max)
            return self._default_max
        return max(int(value), 0)
