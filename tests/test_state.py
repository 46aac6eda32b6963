"""
Tests for state tokens and the pending-state store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from connectors.errors import StateMismatch, StateNotFound
from connectors.state import SqlStateStore, StateCodec

from conftest import OTHER_USER, USER


@pytest.fixture
def codec() -> StateCodec:
    return StateCodec("test-state-secret", ttl_seconds=600)


class TestStateCodec:
    def test_token_carries_platform_and_hides_user(self, codec):
        state = codec.issue(USER, "google_ads")
        assert StateCodec.platform_of(state.value) == "google_ads"
        assert USER not in state.value
        assert state.owner_hash in state.value
        assert state.expires_at - state.issued_at == timedelta(seconds=600)

    def test_tokens_are_unique(self, codec):
        values = {codec.issue(USER, "google_ads").value for _ in range(20)}
        assert len(values) == 20

    def test_verify_accepts_fresh_token(self, codec):
        state = codec.issue(USER, "linkedin_ads")
        codec.verify(state.value, user_id=USER, platform="linkedin_ads")

    def test_other_user_is_rejected(self, codec):
        state = codec.issue(USER, "google_ads")
        with pytest.raises(StateMismatch):
            codec.verify(state.value, user_id=OTHER_USER, platform="google_ads")

    def test_other_platform_is_rejected(self, codec):
        state = codec.issue(USER, "google_ads")
        with pytest.raises(StateMismatch):
            codec.verify(state.value, user_id=USER, platform="linkedin_ads")

    def test_tampered_platform_breaks_signature(self, codec):
        state = codec.issue(USER, "google_ads")
        forged = "linkedin_ads" + state.value[len("google_ads"):]
        with pytest.raises(StateMismatch, match="signature"):
            codec.verify(forged, user_id=USER, platform="linkedin_ads")

    def test_token_from_other_secret_is_rejected(self, codec):
        foreign = StateCodec("another-secret").issue(USER, "google_ads")
        with pytest.raises(StateMismatch):
            codec.verify(foreign.value, user_id=USER, platform="google_ads")

    def test_expired_token(self, codec):
        old = datetime.now(timezone.utc) - timedelta(minutes=11)
        state = codec.issue(USER, "google_ads", now=old)
        with pytest.raises(StateNotFound):
            codec.verify(state.value, user_id=USER, platform="google_ads")

    @pytest.mark.parametrize("value", ["", "google_ads", "a.b.c", "..."])
    def test_malformed_values(self, value):
        with pytest.raises(StateMismatch):
            StateCodec.platform_of(value)

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            StateCodec("")


class TestSqlStateStore:
    @pytest.mark.asyncio
    async def test_consume_returns_and_deletes(self, session_factory, codec):
        store = SqlStateStore(session_factory)
        state = codec.issue(USER, "google_ads")
        await store.save(state)

        pending = await store.consume(USER, "google_ads")
        assert pending is not None
        assert pending.value == state.value
        assert await store.consume(USER, "google_ads") is None

    @pytest.mark.asyncio
    async def test_new_state_supersedes_old(self, session_factory, codec):
        store = SqlStateStore(session_factory)
        first = codec.issue(USER, "google_ads")
        second = codec.issue(USER, "google_ads")
        await store.save(first)
        await store.save(second)

        pending = await store.consume(USER, "google_ads")
        assert pending.value == second.value

    @pytest.mark.asyncio
    async def test_pairs_are_independent(self, session_factory, codec):
        store = SqlStateStore(session_factory)
        await store.save(codec.issue(USER, "google_ads"))
        await store.save(codec.issue(USER, "linkedin_ads"))
        await store.save(codec.issue(OTHER_USER, "google_ads"))

        assert await store.consume(USER, "linkedin_ads") is not None
        assert await store.consume(OTHER_USER, "google_ads") is not None
        assert await store.consume(USER, "google_ads") is not None

    @pytest.mark.asyncio
    async def test_expired_state_is_not_returned(self, session_factory, codec):
        store = SqlStateStore(session_factory)
        old = datetime.now(timezone.utc) - timedelta(minutes=30)
        await store.save(codec.issue(USER, "google_ads", now=old))

        assert await store.consume(USER, "google_ads") is None

    @pytest.mark.asyncio
    async def test_purge_expired(self, session_factory, codec):
        store = SqlStateStore(session_factory)
        old = datetime.now(timezone.utc) - timedelta(minutes=30)
        await store.save(codec.issue(USER, "google_ads", now=old))
        await store.save(codec.issue(USER, "linkedin_ads"))

        assert await store.purge_expired() == 1
        assert await store.consume(USER, "linkedin_ads") is not None
