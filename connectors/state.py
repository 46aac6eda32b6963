"""
OAuth state — CSRF-safe state tokens and the pending-state store.

A state token is self-verifying and also stored server-side:

    <platform>.<issued_at>.<nonce>.<owner_hash>.<signature>

* ``platform``   — registry key, readable without touching the code
* ``issued_at``  — unix seconds
* ``nonce``      — 192 bits from ``secrets``
* ``owner_hash`` — keyed HMAC of the initiating user id (not reversible)
* ``signature``  — HMAC-SHA256 over the four fields above

The store keeps exactly one pending state per (user, platform); saving a new
one replaces the old one, and ``consume`` always deletes.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.errors import StateMismatch, StateNotFound
from connectors.models import OAuthStateRecord
from database.models import as_utc

logger = logging.getLogger(__name__)

_SEPARATOR = "."
_HASH_LEN = 32


class OAuthState(BaseModel):
    platform: str
    user_id: str
    nonce: str
    issued_at: datetime
    expires_at: datetime
    owner_hash: str
    value: str

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return as_utc(self.expires_at) <= now


class StateCodec:
    """Issues and checks signed state tokens."""

    def __init__(self, secret: str, ttl_seconds: int = 600):
        if not secret:
            raise ValueError("OAuth state secret must not be empty")
        self._secret = secret.encode()
        self.ttl = timedelta(seconds=ttl_seconds)

    def owner_hash(self, user_id: str) -> str:
        digest = hmac.new(self._secret, f"owner:{user_id}".encode(), hashlib.sha256)
        return digest.hexdigest()[:_HASH_LEN]

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode(), hashlib.sha256).hexdigest()[:_HASH_LEN]

    def issue(self, user_id: str, platform: str, *, now: Optional[datetime] = None) -> OAuthState:
        now = now or datetime.now(timezone.utc)
        issued = int(now.timestamp())
        nonce = secrets.token_urlsafe(24)
        owner = self.owner_hash(user_id)
        payload = _SEPARATOR.join([platform, str(issued), nonce, owner])
        value = payload + _SEPARATOR + self._sign(payload)
        issued_at = datetime.fromtimestamp(issued, tz=timezone.utc)
        return OAuthState(
            platform=platform,
            user_id=user_id,
            nonce=nonce,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl,
            owner_hash=owner,
            value=value,
        )

    @staticmethod
    def platform_of(value: str) -> str:
        """
        Extract the platform key from a raw state value.

        Raises ``StateMismatch`` if the value is not a state token at all.
        """
        parts = value.split(_SEPARATOR)
        if len(parts) != 5 or not parts[0]:
            raise StateMismatch("Malformed state token")
        return parts[0]

    def verify(
        self,
        value: str,
        *,
        user_id: str,
        platform: str,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Check signature, owner, platform and age of a raw state value.

        Raises ``StateMismatch`` when the token was not issued by us for this
        user and platform, ``StateNotFound`` when it is past its TTL.
        """
        parts = value.split(_SEPARATOR)
        if len(parts) != 5:
            raise StateMismatch("Malformed state token", platform=platform)
        token_platform, issued, _nonce, owner, signature = parts
        payload = _SEPARATOR.join(parts[:4])
        if not hmac.compare_digest(signature, self._sign(payload)):
            raise StateMismatch("State signature invalid", platform=platform)
        if token_platform != platform:
            raise StateMismatch("State issued for another platform", platform=platform)
        if not hmac.compare_digest(owner, self.owner_hash(user_id)):
            raise StateMismatch("State issued to another user", platform=platform)
        try:
            issued_at = datetime.fromtimestamp(int(issued), tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            raise StateMismatch("State timestamp invalid", platform=platform)
        now = now or datetime.now(timezone.utc)
        if issued_at + self.ttl <= now:
            raise StateNotFound("State expired", platform=platform)


class StateStore(ABC):
    """Holds the single pending state per (user, platform)."""

    @abstractmethod
    async def save(self, state: OAuthState) -> None:
        """Persist ``state``, replacing any pending state for the same pair."""
        ...

    @abstractmethod
    async def consume(self, user_id: str, platform: str) -> Optional[OAuthState]:
        """
        Delete and return the pending state for the pair.

        Returns None when nothing is pending or the pending state expired.
        """
        ...

    @abstractmethod
    async def purge_expired(self) -> int:
        ...


class SqlStateStore(StateStore):
    """``oauth_states`` table, one row per (user_id, platform)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def save(self, state: OAuthState) -> None:
        async with self._session_factory() as session:
            dialect = session.bind.dialect.name
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            values = dict(
                user_id=state.user_id,
                platform=state.platform,
                state=state.value,
                nonce=state.nonce,
                owner_hash=state.owner_hash,
                issued_at=state.issued_at,
                expires_at=state.expires_at,
            )
            stmt = insert(OAuthStateRecord).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "platform"],
                set_={k: v for k, v in values.items() if k not in ("user_id", "platform")},
            )
            await session.execute(stmt)
            await session.commit()
        logger.debug("Stored pending OAuth state for user=%s platform=%s", state.user_id, state.platform)

    async def consume(self, user_id: str, platform: str) -> Optional[OAuthState]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OAuthStateRecord)
                .where(
                    OAuthStateRecord.user_id == user_id,
                    OAuthStateRecord.platform == platform,
                )
                .with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            state = OAuthState(
                platform=row.platform,
                user_id=row.user_id,
                nonce=row.nonce,
                issued_at=as_utc(row.issued_at),
                expires_at=as_utc(row.expires_at),
                owner_hash=row.owner_hash,
                value=row.state,
            )
            await session.delete(row)
            await session.commit()

        if state.is_expired():
            logger.info("Pending OAuth state for user=%s platform=%s had expired", user_id, platform)
            return None
        return state

    async def purge_expired(self) -> int:
        """
        Delete pending states past their TTL.  Called on startup.

        Returns the number of rows removed.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                delete(OAuthStateRecord).where(
                    OAuthStateRecord.expires_at < datetime.now(timezone.utc)
                )
            )
            await session.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info("Purged %d expired OAuth states", removed)
        return removed
