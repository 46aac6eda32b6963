"""
Shared fixtures: in-memory database, test settings and a fake provider.
"""

from __future__ import annotations

import json
from typing import Callable, Dict, List, Tuple

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.settings import Settings
from connectors.service import ConnectorService
from database.models import Base

USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        google_ads_client_id="google-client",
        google_ads_client_secret="google-secret",
        google_ads_developer_token="dev-token",
        linkedin_ads_client_id="linkedin-client",
        linkedin_ads_client_secret="linkedin-secret",
        meta_ads_client_id="meta-client",
        meta_ads_client_secret="meta-secret",
        meta_ads_enabled=False,
        tiktok_ads_client_id="tiktok-app",
        tiktok_ads_client_secret="tiktok-secret",
        tiktok_ads_enabled=True,
        oauth_redirect_base="https://app.example.com",
        frontend_origin="https://web.example.com/",
        oauth_state_secret="test-state-secret",
        jwt_secret="test-jwt-secret",
        token_encryption_key="",
        default_max_connections=1,
        provider_http_timeout_seconds=2.0,
    )


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


class FakeProvider:
    """
    Routes provider calls by (method, host + path) to canned responses and
    records every request it sees.
    """

    def __init__(self):
        self.calls: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.json_route("POST", "oauth2.googleapis.com/token", {
            "access_token": "google-access",
            "refresh_token": "google-refresh",
            "expires_in": 3599,
            "scope": "https://www.googleapis.com/auth/adwords",
            "token_type": "Bearer",
        })
        self.json_route("GET", "googleads.googleapis.com/v17/customers:listAccessibleCustomers", {
            "resourceNames": ["customers/1234567890", "customers/9876543210"],
        })
        self.json_route("POST", "www.linkedin.com/oauth/v2/accessToken", {
            "access_token": "linkedin-access",
            "expires_in": 5183999,
            "scope": "r_ads,r_ads_reporting",
        })
        self.json_route("GET", "api.linkedin.com/rest/adAccounts", {
            "elements": [{"id": 456, "name": "Acme LinkedIn"}],
        })
        self.json_route("POST", "business-api.tiktok.com/open_api/v1.3/oauth2/access_token/", {
            "code": 0,
            "message": "OK",
            "data": {"access_token": "tiktok-access", "advertiser_ids": ["789"], "scope": [4, 5]},
        })
        self.json_route("GET", "business-api.tiktok.com/open_api/v1.3/oauth2/advertiser/get/", {
            "code": 0,
            "message": "OK",
            "data": {"list": [{"advertiser_id": "789", "advertiser_name": "Acme TikTok"}]},
        })
        self.json_route("POST", "graph.facebook.com/v18.0/oauth/access_token", {
            "access_token": "meta-access",
            "token_type": "bearer",
            "expires_in": 5183944,
        })
        self.json_route("GET", "graph.facebook.com/v18.0/me/adaccounts", {
            "data": [{"account_id": "111", "name": "Acme Meta", "id": "act_111"}],
        })

    def json_route(self, method: str, url: str, body, status_code: int = 200) -> None:
        self.routes[(method, url)] = lambda request: httpx.Response(status_code, json=body)

    def route(self, method: str, url: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method, url)] = handler

    def calls_to(self, url: str) -> List[httpx.Request]:
        return [r for r in self.calls if f"{r.url.host}{r.url.path}" == url]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, f"{request.url.host}{request.url.path}")
        if key not in self.routes:
            return httpx.Response(404, text=f"no fake route for {key}")
        return self.routes[key](request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def service(settings, session_factory, provider) -> ConnectorService:
    return ConnectorService.from_settings(settings, session_factory, transport=provider.transport)


def form(request: httpx.Request) -> Dict[str, str]:
    """Decode a form-encoded request body."""
    return dict(httpx.QueryParams(request.content.decode()))


def body_json(request: httpx.Request) -> dict:
    return json.loads(request.content)
