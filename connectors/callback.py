"""
CallbackHandler — drive a provider redirect to a stored connection.

Stages run strictly in order, each feeding the next:

    RECEIVED → STATE_VALIDATED → CODE_EXCHANGED → IDENTITY_RESOLVED
             → LIMIT_CHECKED → PERSISTED

Any failure ends in FAILED with a typed ``ConnectorError``.  Nothing is
retried: authorization codes are single-use, so a retry is always a fresh
``initiate``.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Mapping, Optional

from connectors.base import AccountIdentity
from connectors.credential_store import ConnectedAccount, SqlCredentialStore
from connectors.errors import (
    ConfigurationError,
    ConnectionLimitExceeded,
    ConnectorError,
    MissingCode,
    MissingState,
    PlatformDisabled,
    ProviderDenied,
    StateMismatch,
    StateNotFound,
    Unauthenticated,
)
from connectors.limits import ConnectionLimitPolicy
from connectors.platforms import PlatformRegistry
from connectors.registry import ConnectorRegistry
from connectors.state import StateCodec, StateStore

logger = logging.getLogger(__name__)


class CallbackStage(str, Enum):
    RECEIVED = "received"
    STATE_VALIDATED = "state_validated"
    CODE_EXCHANGED = "code_exchanged"
    IDENTITY_RESOLVED = "identity_resolved"
    LIMIT_CHECKED = "limit_checked"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class CallbackResult:
    stage: CallbackStage
    platform: Optional[str] = None
    account: Optional[ConnectedAccount] = None
    # every account the token can see; ``account`` is the first of these
    accounts: List[AccountIdentity] = field(default_factory=list)
    created: bool = False
    error: Optional[ConnectorError] = None
    failed_at: Optional[CallbackStage] = None

    @property
    def ok(self) -> bool:
        return self.stage is CallbackStage.PERSISTED

    @property
    def reason(self) -> Optional[str]:
        return self.error.reason if self.error else None

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.user_message
        name = self.account.account_name if self.account else ""
        return f"Connected {name}".strip()


class CallbackHandler:
    def __init__(
        self,
        platforms: PlatformRegistry,
        connectors: ConnectorRegistry,
        codec: StateCodec,
        state_store: StateStore,
        limits: ConnectionLimitPolicy,
        credentials: SqlCredentialStore,
    ):
        self._platforms = platforms
        self._connectors = connectors
        self._codec = codec
        self._state_store = state_store
        self._limits = limits
        self._credentials = credentials

    async def handle(self, user_id: Optional[str], params: Mapping[str, str]) -> CallbackResult:
        """Run the redirect query ``params`` through every stage for ``user_id``."""
        result = CallbackResult(stage=CallbackStage.RECEIVED)
        try:
            await self._run(user_id, params, result)
        except ConnectorError as exc:
            result.failed_at = result.stage
            result.stage = CallbackStage.FAILED
            result.error = exc
            self._log_failure(user_id, result)
            return result

        logger.info(
            "OAuth connected: user=%s platform=%s account=%s created=%s",
            user_id, result.platform, result.account.account_id, result.created,
        )
        return result

    async def _run(self, user_id: Optional[str], params: Mapping[str, str], result: CallbackResult) -> None:
        # ── Received ────────────────────────────────────────────────────
        error = params.get("error")
        if error:
            raise ProviderDenied(f"{error}: {params.get('error_description') or ''}".strip())
        code = params.get("code")
        state_value = params.get("state")
        if not code:
            raise MissingCode("callback without code")
        if not state_value:
            raise MissingState("callback without state")
        if not user_id:
            raise Unauthenticated("callback without a caller identity")

        platform_key = self._codec.platform_of(state_value)
        result.platform = platform_key
        platform = self._platforms.get(platform_key)
        if not platform.enabled:
            raise PlatformDisabled(f"callback for disabled platform {platform_key}", platform=platform_key)
        connector = self._connectors.get(platform_key)

        # ── State validation (single use, whatever the outcome) ─────────
        pending = await self._state_store.consume(user_id, platform_key)
        if pending is None:
            raise StateNotFound("no pending state for user/platform", platform=platform_key)
        if not hmac.compare_digest(pending.value, state_value):
            raise StateMismatch("state differs from the pending one", platform=platform_key)
        self._codec.verify(state_value, user_id=user_id, platform=platform_key)
        result.stage = CallbackStage.STATE_VALIDATED

        # ── Code exchange ───────────────────────────────────────────────
        tokens = await connector.exchange(platform, code, platform.redirect_uri)
        result.stage = CallbackStage.CODE_EXCHANGED

        # ── Identity ────────────────────────────────────────────────────
        result.accounts = await connector.resolve(tokens.access_token)
        chosen = result.accounts[0]
        if len(result.accounts) > 1:
            logger.info(
                "%s token sees %d accounts, connecting the first (%s)",
                platform_key, len(result.accounts), chosen.account_id,
            )
        result.stage = CallbackStage.IDENTITY_RESOLVED

        # ── Limit check + persistence (one transaction) ─────────────────
        account = ConnectedAccount(
            user_id=user_id,
            platform=platform_key,
            account_id=chosen.account_id,
            account_name=chosen.account_name,
            token_set=tokens,
            is_active=True,
            connected_at=datetime.now(timezone.utc),
        )
        max_connections = await self._limits.max_connections(user_id)
        result.created = await self._credentials.connect(account, max_connections)
        result.stage = CallbackStage.LIMIT_CHECKED
        result.account = await self._credentials.get_account(user_id, platform_key, chosen.account_id) or account
        result.stage = CallbackStage.PERSISTED

    @staticmethod
    def _log_failure(user_id: Optional[str], result: CallbackResult) -> None:
        exc = result.error
        if isinstance(exc, ConfigurationError):
            logger.error(
                "OAuth callback configuration fault: user=%s platform=%s stage=%s detail=%s",
                user_id, result.platform, result.failed_at.value, exc.detail,
            )
        elif isinstance(exc, (StateMismatch, ProviderDenied, ConnectionLimitExceeded)):
            logger.warning(
                "OAuth callback rejected: user=%s platform=%s stage=%s reason=%s detail=%s",
                user_id, result.platform, result.failed_at.value, exc.reason, exc.detail,
            )
        else:
            logger.info(
                "OAuth callback failed: user=%s platform=%s stage=%s reason=%s detail=%s",
                user_id, result.platform, result.failed_at.value, exc.reason, exc.detail,
            )
