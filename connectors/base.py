"""
BaseConnector — abstract interface for all ad-platform OAuth2 connectors.

A connector owns everything that differs between providers:

* the authorization URL parameters (``authorization_url``)
* the code → token request and its response shape (``exchange``)
* the "which ad accounts can this token see" call (``resolve``)

Each provider (Google Ads, LinkedIn Ads, …) subclasses this and implements
``_request_token`` and ``_fetch_accounts``; the public template methods
handle configuration checks, timeouts, error mapping and normalisation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from config.settings import Settings, config
from connectors.errors import (
    AccountLookupFailed,
    ConfigurationError,
    ConnectorError,
    NoAccountsFound,
    TokenExchangeFailed,
)
from connectors.platforms import PlatformConfig

logger = logging.getLogger(__name__)

_MAX_ERROR_TEXT = 300


class TokenSet(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: List[str] = []

    def __repr__(self) -> str:
        # never let a token end up in a log line or traceback
        return (
            f"TokenSet(access_token='***', refresh_token={'***' if self.refresh_token else None}, "
            f"expires_at={self.expires_at!r})"
        )

    __str__ = __repr__


class AccountIdentity(BaseModel):
    account_id: str
    account_name: str


def expiry_from_seconds(expires_in: Any, *, now: Optional[datetime] = None) -> Optional[datetime]:
    """Turn a provider ``expires_in`` (seconds; int, float or numeric str) into an absolute time."""
    if expires_in in (None, ""):
        return None
    try:
        seconds = int(float(expires_in))
    except (TypeError, ValueError, OverflowError):
        return None
    if seconds <= 0:
        return None
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=seconds)


def provider_error_text(resp: httpx.Response) -> str:
    """Short, log-safe excerpt of a provider error body."""
    text = resp.text or ""
    if len(text) > _MAX_ERROR_TEXT:
        text = text[:_MAX_ERROR_TEXT] + "…"
    return f"HTTP {resp.status_code}: {text}"


class BaseConnector(ABC):
    """Token exchanger + account identity resolver for one platform."""

    # Whether the provider hands out refresh tokens at all.
    issues_refresh_token: bool = False

    def __init__(
        self,
        settings: Settings = config,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def platform_key(self) -> str:
        """Registry key: 'google_ads', 'linkedin_ads', …"""
        ...

    # ── Configuration ───────────────────────────────────────────────────

    @property
    def client_secret(self) -> str:
        return getattr(self.settings, f"{self.platform_key}_client_secret", "")

    def ensure_configured(self) -> None:
        """Raise ``ConfigurationError`` if a server-side secret is missing."""
        missing = self.settings.missing_secrets(self.platform_key)
        if missing:
            raise ConfigurationError(
                f"Missing server-side secrets for {self.platform_key}: {', '.join(missing)}",
                platform=self.platform_key,
            )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.provider_http_timeout_seconds,
            transport=self._transport,
        )

    # ── Authorization URL ───────────────────────────────────────────────

    def authorization_params(self, platform: PlatformConfig, state: str) -> Dict[str, str]:
        params = {
            "client_id": platform.client_id,
            "redirect_uri": platform.redirect_uri,
            "response_type": "code",
            "scope": " ".join(platform.scopes),
            "state": state,
        }
        if platform.offline_access:
            params["access_type"] = "offline"   # gets refresh_token
            params["prompt"] = "consent"        # force consent to always get refresh_token
        return params

    def authorization_url(self, platform: PlatformConfig, state: str) -> str:
        return f"{platform.authorization_endpoint}?{urlencode(self.authorization_params(platform, state))}"

    # ── Token exchange ──────────────────────────────────────────────────

    async def exchange(self, platform: PlatformConfig, code: str, redirect_uri: str) -> TokenSet:
        """
        Exchange an authorization code for a ``TokenSet``.

        The code is single-use, so nothing here retries.  Raises
        ``ConfigurationError`` before any network call if a secret is missing
        and ``TokenExchangeFailed`` on timeouts, non-2xx or malformed bodies.
        """
        self.ensure_configured()
        try:
            async with self._client() as client:
                data = await self._request_token(client, platform, code, redirect_uri)
        except ConnectorError:
            raise
        except httpx.TimeoutException as exc:
            raise TokenExchangeFailed(
                f"{self.platform_key} token endpoint timed out", platform=self.platform_key
            ) from exc
        except httpx.HTTPError as exc:
            raise TokenExchangeFailed(
                f"{self.platform_key} token request failed: {exc.__class__.__name__}",
                platform=self.platform_key,
            ) from exc

        tokens = self._normalize_tokens(data)
        self._check_refresh_token(platform, tokens)
        return tokens

    @abstractmethod
    async def _request_token(
        self,
        client: httpx.AsyncClient,
        platform: PlatformConfig,
        code: str,
        redirect_uri: str,
    ) -> Dict[str, Any]:
        """Perform the provider's token request; return the token payload dict."""
        ...

    def _normalize_tokens(self, data: Dict[str, Any]) -> TokenSet:
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise TokenExchangeFailed(
                f"{self.platform_key} token response had no access_token", platform=self.platform_key
            )
        scope = data.get("scope") or []
        if isinstance(scope, str):
            scope = scope.replace(",", " ").split()
        return TokenSet(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            expires_at=expiry_from_seconds(data.get("expires_in")),
            scopes=[str(s) for s in scope],
        )

    def _check_refresh_token(self, platform: PlatformConfig, tokens: TokenSet) -> None:
        if tokens.refresh_token or not self.issues_refresh_token:
            return
        if not platform.offline_access:
            logger.error(
                "%s issued no refresh token: platform config does not request offline access",
                self.platform_key,
            )
        else:
            logger.warning(
                "%s issued no refresh token despite offline access + forced consent",
                self.platform_key,
            )

    async def _post_form(self, client: httpx.AsyncClient, url: str, data: Dict[str, str]) -> Dict[str, Any]:
        resp = await client.post(url, data=data, headers={"Accept": "application/json"})
        if resp.is_error:
            raise TokenExchangeFailed(provider_error_text(resp), platform=self.platform_key)
        return self._json(resp, TokenExchangeFailed)

    def _json(self, resp: httpx.Response, error: type) -> Any:
        try:
            return resp.json()
        except ValueError:
            raise error(
                f"{self.platform_key} returned a non-JSON body ({provider_error_text(resp)})",
                platform=self.platform_key,
            )

    # ── Account identity ────────────────────────────────────────────────

    async def resolve(self, access_token: str) -> List[AccountIdentity]:
        """
        List the ad accounts this token can access, in provider order.

        Raises ``AccountLookupFailed`` on transport / non-2xx errors and
        ``NoAccountsFound`` on an empty, well-formed result.
        """
        try:
            async with self._client() as client:
                accounts = await self._fetch_accounts(client, access_token)
        except ConnectorError:
            raise
        except httpx.TimeoutException as exc:
            raise AccountLookupFailed(
                f"{self.platform_key} account endpoint timed out", platform=self.platform_key
            ) from exc
        except httpx.HTTPError as exc:
            raise AccountLookupFailed(
                f"{self.platform_key} account request failed: {exc.__class__.__name__}",
                platform=self.platform_key,
            ) from exc
        except (KeyError, TypeError, AttributeError) as exc:
            raise AccountLookupFailed(
                f"{self.platform_key} account response malformed: {exc!r}", platform=self.platform_key
            ) from exc

        if not accounts:
            raise NoAccountsFound(f"{self.platform_key} returned no accessible accounts", platform=self.platform_key)
        return accounts

    @abstractmethod
    async def _fetch_accounts(self, client: httpx.AsyncClient, access_token: str) -> List[AccountIdentity]:
        ...

    async def _get_json(self, client: httpx.AsyncClient, url: str, headers: Dict[str, str], **kwargs) -> Any:
        resp = await client.get(url, headers=headers, **kwargs)
        if resp.is_error:
            raise AccountLookupFailed(provider_error_text(resp), platform=self.platform_key)
        return self._json(resp, AccountLookupFailed)
