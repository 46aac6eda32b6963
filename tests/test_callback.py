"""
End-to-end tests for initiate → provider redirect → stored connection.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest

from connectors.callback import CallbackStage
from connectors.errors import PlatformDisabled, Unauthenticated, UnsupportedPlatform
from connectors.state import StateCodec

from conftest import OTHER_USER, USER


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


async def _initiate(service, platform="google_ads", user=USER) -> str:
    target = await service.initiate(user, platform)
    return _state_from(target.auth_url)


class TestInitiate:
    @pytest.mark.asyncio
    async def test_returns_provider_url(self, service):
        target = await service.initiate(USER, "google_ads")
        assert target.platform == "google_ads"
        assert target.auth_url.startswith("https://accounts.google.com/")
        assert StateCodec.platform_of(_state_from(target.auth_url)) == "google_ads"

    @pytest.mark.asyncio
    async def test_disabled_platform_builds_no_url_and_stores_nothing(self, service):
        with patch.object(service.state_store, "save", new_callable=AsyncMock) as save:
            with pytest.raises(PlatformDisabled):
                await service.initiate(USER, "meta_ads")
        save.assert_not_called()
        assert await service.state_store.consume(USER, "meta_ads") is None

    @pytest.mark.asyncio
    async def test_unknown_platform(self, service):
        with pytest.raises(UnsupportedPlatform):
            await service.initiate(USER, "myspace_ads")

    @pytest.mark.asyncio
    async def test_requires_identity(self, service):
        with pytest.raises(Unauthenticated):
            await service.initiate(None, "google_ads")

    @pytest.mark.asyncio
    async def test_initiate_does_not_contact_provider(self, service, provider):
        await service.initiate(USER, "google_ads")
        assert provider.calls == []


class TestCallbackRoundTrip:
    @pytest.mark.asyncio
    async def test_connects_first_account(self, service):
        state = await _initiate(service)
        result = await service.complete(USER, {"code": "c0de", "state": state})

        assert result.ok, result.reason
        assert result.stage is CallbackStage.PERSISTED
        assert result.created is True
        assert result.account.account_id == "1234567890"
        assert [a.account_id for a in result.accounts] == ["1234567890", "9876543210"]

        active = await service.list_active(USER)
        assert len(active) == 1
        assert active[0].is_active is True
        assert active[0].token_set.access_token == "google-access"
        assert active[0].token_set.refresh_token == "google-refresh"

    @pytest.mark.asyncio
    async def test_exchange_uses_registered_redirect_uri(self, service, provider):
        state = await _initiate(service)
        await service.complete(USER, {"code": "c0de", "state": state})

        request = provider.calls_to("oauth2.googleapis.com/token")[0]
        assert b"redirect_uri=https%3A%2F%2Fapp.example.com%2Fapi%2Fv1%2Fconnectors%2Fcallback" in request.content

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, service):
        state = await _initiate(service)
        await service.complete(USER, {"code": "c0de", "state": state})
        replay = await service.complete(USER, {"code": "c0de", "state": state})

        assert replay.reason == "state_not_found"

    @pytest.mark.asyncio
    async def test_reconnect_updates_in_place(self, service):
        await service.complete(USER, {"code": "one", "state": await _initiate(service)})
        again = await service.complete(USER, {"code": "two", "state": await _initiate(service)})

        assert again.ok
        assert again.created is False
        assert len(await service.list_active(USER)) == 1

    @pytest.mark.asyncio
    async def test_reconnect_reports_stored_connected_at(self, service):
        first = await service.complete(USER, {"code": "one", "state": await _initiate(service)})
        again = await service.complete(USER, {"code": "two", "state": await _initiate(service)})

        [stored] = await service.list_active(USER)
        assert again.account.connected_at == first.account.connected_at == stored.connected_at
        assert again.account.token_set.access_token == "google-access"


class TestCallbackFailures:
    @pytest.mark.asyncio
    async def test_provider_denied_makes_no_calls(self, service, provider):
        state = await _initiate(service)
        with patch.object(service.credentials, "connect", new_callable=AsyncMock) as connect:
            result = await service.complete(
                USER, {"error": "access_denied", "error_description": "User said no", "state": state}
            )

        assert result.stage is CallbackStage.FAILED
        assert result.reason == "provider_denied"
        assert result.failed_at is CallbackStage.RECEIVED
        assert provider.calls == []
        connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_code(self, service):
        result = await service.complete(USER, {"state": await _initiate(service)})
        assert result.reason == "missing_code"

    @pytest.mark.asyncio
    async def test_missing_state(self, service):
        result = await service.complete(USER, {"code": "c0de"})
        assert result.reason == "missing_state"

    @pytest.mark.asyncio
    async def test_unauthenticated(self, service):
        result = await service.complete(None, {"code": "c0de", "state": await _initiate(service)})
        assert result.reason == "unauthenticated"

    @pytest.mark.asyncio
    async def test_unknown_embedded_platform_before_network(self, service, provider):
        forged = StateCodec("test-state-secret").issue(USER, "myspace_ads").value
        result = await service.complete(USER, {"code": "c0de", "state": forged})

        assert result.reason == "unsupported_platform"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_never_initiated(self, service):
        state = StateCodec("test-state-secret").issue(USER, "google_ads").value
        result = await service.complete(USER, {"code": "c0de", "state": state})
        assert result.reason == "state_not_found"

    @pytest.mark.asyncio
    async def test_superseded_state_is_mismatch(self, service, provider):
        first = await _initiate(service)
        await _initiate(service)
        result = await service.complete(USER, {"code": "c0de", "state": first})

        assert result.reason == "state_mismatch"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_mismatch_still_consumes_pending_state(self, service):
        first = await _initiate(service)
        second = await _initiate(service)
        await service.complete(USER, {"code": "c0de", "state": first})

        result = await service.complete(USER, {"code": "c0de", "state": second})
        assert result.reason == "state_not_found"

    @pytest.mark.asyncio
    async def test_expired_state(self, service, settings):
        codec = StateCodec(settings.oauth_state_secret, settings.oauth_state_ttl_seconds)
        old = codec.issue(USER, "google_ads", now=datetime.now(timezone.utc) - timedelta(minutes=11))
        await service.state_store.save(old)

        result = await service.complete(USER, {"code": "c0de", "state": old.value})
        assert result.reason == "state_not_found"

    @pytest.mark.asyncio
    async def test_state_of_another_user(self, service, provider):
        victim_state = await _initiate(service, user=OTHER_USER)
        await _initiate(service, user=USER)
        result = await service.complete(USER, {"code": "attacker-code", "state": victim_state})

        assert result.reason == "state_mismatch"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_mismatch_and_denied_read_the_same(self, service):
        first = await _initiate(service)
        await _initiate(service)
        mismatch = await service.complete(USER, {"code": "c0de", "state": first})
        denied = await service.complete(USER, {"error": "access_denied"})

        assert mismatch.message == denied.message

    @pytest.mark.asyncio
    async def test_token_exchange_failure_hides_code(self, service, provider):
        provider.json_route(
            "POST", "oauth2.googleapis.com/token",
            {"error": "invalid_grant", "error_description": "Bad code"}, status_code=400,
        )
        result = await service.complete(USER, {"code": "s3cret-code", "state": await _initiate(service)})

        assert result.reason == "token_exchange_failed"
        assert result.failed_at is CallbackStage.STATE_VALIDATED
        assert "invalid_grant" in result.error.detail
        assert "s3cret-code" not in result.message
        assert await service.list_active(USER) == []

    @pytest.mark.asyncio
    async def test_no_accounts(self, service, provider):
        provider.json_route("GET", "googleads.googleapis.com/v17/customers:listAccessibleCustomers", {"resourceNames": []})
        result = await service.complete(USER, {"code": "c0de", "state": await _initiate(service)})

        assert result.reason == "no_accounts_found"
        assert result.failed_at is CallbackStage.CODE_EXCHANGED

    @pytest.mark.asyncio
    async def test_configuration_error_is_generic(self, service, settings, provider):
        settings.google_ads_client_secret = ""
        result = await service.complete(USER, {"code": "c0de", "state": await _initiate(service)})

        assert result.reason == "configuration_error"
        assert "SECRET" not in result.message
        assert provider.calls == []


class TestConnectionLimitScenario:
    @pytest.mark.asyncio
    async def test_limit_of_one(self, service):
        # platform A account "1234567890" fits the plan
        a = await service.complete(USER, {"code": "a", "state": await _initiate(service, "google_ads")})
        assert a.ok
        assert len(await service.list_active(USER)) == 1

        # platform B account "456" does not
        b = await service.complete(USER, {"code": "b", "state": await _initiate(service, "linkedin_ads")})
        assert b.reason == "connection_limit_exceeded"
        assert b.failed_at is CallbackStage.IDENTITY_RESOLVED

        # reconnecting A at the boundary is fine
        again = await service.complete(USER, {"code": "a2", "state": await _initiate(service, "google_ads")})
        assert again.ok

        # after disconnecting A, B fits
        assert await service.disconnect(USER, "google_ads", "1234567890")
        b2 = await service.complete(USER, {"code": "b2", "state": await _initiate(service, "linkedin_ads")})
        assert b2.ok
        assert [a.platform for a in await service.list_active(USER)] == ["linkedin_ads"]

    @pytest.mark.asyncio
    async def test_limit_is_read_on_every_callback(self, service):
        with patch.object(service.callback._limits, "max_connections", new=AsyncMock(return_value=2)) as limit:
            await service.complete(USER, {"code": "a", "state": await _initiate(service, "google_ads")})
            b = await service.complete(USER, {"code": "b", "state": await _initiate(service, "linkedin_ads")})

        assert b.ok
        assert limit.await_count == 2
