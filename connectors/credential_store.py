"""
Credential store — persist connected ad accounts and their tokens.

One row per (user_id, platform, account_id).  Writes for a user are
serialized by a per-user lock inside this process and, on PostgreSQL, by a
transaction-scoped advisory lock across processes, so the "is this a new
account / is the user under the limit / upsert" sequence in ``connect`` is
atomic per user without blocking other users.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.base import TokenSet
from connectors.encryption import TokenCipher
from connectors.errors import ConnectionLimitExceeded, CredentialExpired, CredentialNotFound
from connectors.models import AdAccount
from database.models import as_utc

logger = logging.getLogger(__name__)


class ConnectedAccount(BaseModel):
    user_id: str
    platform: str
    account_id: str
    account_name: str
    token_set: TokenSet
    is_active: bool = True
    connected_at: Optional[datetime] = None

    def public_view(self) -> dict:
        """Everything except the credential."""
        return {
            "platform": self.platform,
            "account_id": self.account_id,
            "account_name": self.account_name,
            "is_active": self.is_active,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
            "token_expires_at": (
                self.token_set.expires_at.isoformat() if self.token_set.expires_at else None
            ),
        }


class SqlCredentialStore:
    """``ad_accounts`` table access."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cipher: TokenCipher):
        self._session_factory = session_factory
        self._cipher = cipher
        self._user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ── Writes ──────────────────────────────────────────────────────────

    async def upsert(self, account: ConnectedAccount) -> bool:
        """
        Insert or update the row for the account's natural key.

        Returns True if a new row was created.
        """
        async with self._user_transaction(account.user_id) as session:
            existing = await self._find(session, account.user_id, account.platform, account.account_id)
            return self._write(session, existing, account)

    async def connect(self, account: ConnectedAccount, max_connections: int) -> bool:
        """
        Upsert ``account`` unless that would push the user past ``max_connections``.

        Re-connecting an account that is already active never counts against
        the limit.  Raises ``ConnectionLimitExceeded``; returns True if a new
        row was created.
        """
        async with self._user_transaction(account.user_id) as session:
            existing = await self._find(session, account.user_id, account.platform, account.account_id)
            if existing is None or not existing.is_active:
                active = await self._count_active(session, account.user_id)
                if active >= max_connections:
                    raise ConnectionLimitExceeded(
                        f"user {account.user_id} has {active}/{max_connections} active connections",
                        platform=account.platform,
                    )
            return self._write(session, existing, account)

    async def deactivate(self, user_id: str, platform: str, account_id: str) -> bool:
        """
        Soft-delete one account (``is_active = False``, tokens kept).

        Returns False if the user has no such account.
        """
        async with self._user_transaction(user_id) as session:
            row = await self._find(session, user_id, platform, account_id)
            if row is None:
                return False
            row.is_active = False
            row.updated_at = datetime.now(timezone.utc)
        logger.info("Deactivated %s account %s for user %s", platform, account_id, user_id)
        return True

    # ── Reads ───────────────────────────────────────────────────────────

    async def list_active(self, user_id: str, platform: Optional[str] = None) -> List[ConnectedAccount]:
        async with self._session_factory() as session:
            stmt = select(AdAccount).where(AdAccount.user_id == user_id, AdAccount.is_active.is_(True))
            if platform:
                stmt = stmt.where(AdAccount.platform == platform)
            result = await session.execute(stmt.order_by(AdAccount.connected_at))
            return [self._to_account(row) for row in result.scalars().all()]

    async def get_account(self, user_id: str, platform: str, account_id: str) -> Optional[ConnectedAccount]:
        """The stored account for the natural key, active or not."""
        async with self._session_factory() as session:
            row = await self._find(session, user_id, platform, account_id)
        return self._to_account(row) if row is not None else None

    async def count_active(self, user_id: str) -> int:
        async with self._session_factory() as session:
            return await self._count_active(session, user_id)

    async def get_credential(self, user_id: str, platform: str, account_id: str) -> TokenSet:
        """
        Return the decrypted tokens of an active account.

        Expired tokens are not refreshed here; the user has to reconnect.
        """
        async with self._session_factory() as session:
            row = await self._find(session, user_id, platform, account_id)
        if row is None or not row.is_active:
            raise CredentialNotFound(f"No active {platform} account {account_id}", platform=platform)
        account = self._to_account(row)
        expires_at = account.token_set.expires_at
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            raise CredentialExpired(f"{platform} token for account {account_id} expired", platform=platform)
        return account.token_set

    # ── Internals ───────────────────────────────────────────────────────

    @asynccontextmanager
    async def _user_transaction(self, user_id: str) -> AsyncIterator[AsyncSession]:
        """One transaction holding the user's write lock until commit."""
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        async with lock:
            async with self._session_factory() as session:
                async with session.begin():
                    if session.bind.dialect.name == "postgresql":
                        await session.execute(
                            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                            {"key": f"ad_accounts:{user_id}"},
                        )
                    yield session

    @staticmethod
    async def _find(session: AsyncSession, user_id: str, platform: str, account_id: str) -> Optional[AdAccount]:
        result = await session.execute(
            select(AdAccount).where(
                AdAccount.user_id == user_id,
                AdAccount.platform == platform,
                AdAccount.account_id == account_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _count_active(session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            select(func.count())
            .select_from(AdAccount)
            .where(AdAccount.user_id == user_id, AdAccount.is_active.is_(True))
        )
        return int(result.scalar_one())

    def _write(self, session: AsyncSession, existing: Optional[AdAccount], account: ConnectedAccount) -> bool:
        now = datetime.now(timezone.utc)
        tokens = account.token_set
        if existing is not None:
            existing.access_token = self._cipher.encrypt(tokens.access_token)
            # keep the old refresh token if the provider did not send a new one
            if tokens.refresh_token:
                existing.refresh_token = self._cipher.encrypt(tokens.refresh_token)
            existing.token_expires_at = tokens.expires_at
            existing.scopes = list(tokens.scopes)
            existing.account_name = account.account_name or existing.account_name
            existing.is_active = True
            existing.updated_at = now
            logger.info("Updated %s account %s for user %s", account.platform, account.account_id, account.user_id)
            return False

        session.add(
            AdAccount(
                connection_id=uuid.uuid4(),
                user_id=account.user_id,
                platform=account.platform,
                account_id=account.account_id,
                account_name=account.account_name,
                access_token=self._cipher.encrypt(tokens.access_token),
                refresh_token=self._cipher.encrypt(tokens.refresh_token),
                token_expires_at=tokens.expires_at,
                scopes=list(tokens.scopes),
                is_active=True,
                connected_at=account.connected_at or now,
                updated_at=now,
            )
        )
        logger.info("Created %s account %s for user %s", account.platform, account.account_id, account.user_id)
        return True

    def _to_account(self, row: AdAccount) -> ConnectedAccount:
        return ConnectedAccount(
            user_id=row.user_id,
            platform=row.platform,
            account_id=row.account_id,
            account_name=row.account_name or "",
            token_set=TokenSet(
                access_token=self._cipher.decrypt(row.access_token),
                refresh_token=self._cipher.decrypt(row.refresh_token),
                expires_at=as_utc(row.token_expires_at),
                scopes=list(row.scopes or []),
            ),
            is_active=bool(row.is_active),
            connected_at=as_utc(row.connected_at),
        )
