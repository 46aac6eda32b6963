"""
Connector error taxonomy.

Every failure the connect flow can end in is a ``ConnectorError`` subclass
with a stable ``reason`` code.  ``detail`` is for server logs only;
``user_message`` is the only text that may reach the end user.
"""

from __future__ import annotations

from typing import Optional

_UNVERIFIED = "The connection could not be verified. Please start again."
_UNAVAILABLE = "This integration is temporarily unavailable. Please try again later."


class ConnectorError(Exception):
    """Base class for all connect-flow failures."""

    reason: str = "connector_error"
    status_code: int = 400
    default_message: str = "The account could not be connected. Please try again."

    def __init__(self, detail: str = "", *, platform: Optional[str] = None):
        super().__init__(detail or self.reason)
        self.detail = detail
        self.platform = platform

    @property
    def user_message(self) -> str:
        return self.default_message


class UnsupportedPlatform(ConnectorError):
    reason = "unsupported_platform"
    status_code = 404
    default_message = "This advertising platform is not supported."


class PlatformDisabled(ConnectorError):
    reason = "platform_disabled"
    status_code = 400
    default_message = "This integration is coming soon."


class Unauthenticated(ConnectorError):
    reason = "unauthenticated"
    status_code = 401
    default_message = "Please sign in before connecting an account."


class MissingCode(ConnectorError):
    reason = "missing_code"
    default_message = "The provider did not return an authorization code. Please start again."


class MissingState(ConnectorError):
    reason = "missing_state"
    default_message = "The authorization response was incomplete. Please start again."


class StateNotFound(ConnectorError):
    reason = "state_not_found"
    default_message = "This connection attempt has expired. Please start again."


class StateMismatch(ConnectorError):
    reason = "state_mismatch"
    default_message = _UNVERIFIED


class ProviderDenied(ConnectorError):
    reason = "provider_denied"
    default_message = _UNVERIFIED


class TokenExchangeFailed(ConnectorError):
    reason = "token_exchange_failed"
    status_code = 502
    default_message = "The provider rejected the authorization. Please start again."


class AccountLookupFailed(ConnectorError):
    reason = "account_lookup_failed"
    status_code = 502
    default_message = "We could not read your ad accounts from the provider. Please try again."


class NoAccountsFound(ConnectorError):
    reason = "no_accounts_found"
    default_message = "No ad accounts are accessible with this login."


class ConnectionLimitExceeded(ConnectorError):
    reason = "connection_limit_exceeded"
    status_code = 409
    default_message = (
        "You have reached the maximum number of connected ad accounts for your plan. "
        "Please upgrade your plan to connect more."
    )


class ConfigurationError(ConnectorError):
    """Operational fault: a server-side secret is missing or invalid."""

    reason = "configuration_error"
    status_code = 503
    default_message = _UNAVAILABLE


class CredentialNotFound(ConnectorError):
    reason = "credential_not_found"
    status_code = 404
    default_message = "This ad account is not connected."


class CredentialExpired(ConnectorError):
    reason = "credential_expired"
    status_code = 409
    default_message = "The access for this ad account has expired. Please reconnect your account."
