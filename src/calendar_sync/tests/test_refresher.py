"""Tests for the Token Refresher: refresh grant, failure typing, write-back."""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from src.calendar_sync.base import Credential
from src.calendar_sync.errors import (
    InvalidRefreshTokenError,
    NoCredentialError,
    ProviderUnavailableError,
)
from src.calendar_sync.memory import InMemoryCredentialStore
from src.calendar_sync.refresher import TokenRefresher
from src.calendar_sync.tests.conftest import (
    ADMIN_ID,
    GOOGLE_TOKEN_URL,
    NOW,
    FakeProvider,
    fixed_clock,
    token_response,
)


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestRefreshSuccess:
    @pytest.mark.asyncio
    async def test_returns_new_token_and_persists_it(
        self, refresher: TokenRefresher, credential_store: InMemoryCredentialStore
    ) -> None:
        token = await refresher.refresh(ADMIN_ID, "google")

        assert token == "fresh-token"
        stored = await credential_store.get(ADMIN_ID, "google")
        assert stored.access_token == "fresh-token"
        assert stored.expires_at == NOW + timedelta(seconds=3600)
        assert stored.is_active is True

    @pytest.mark.asyncio
    async def test_keeps_refresh_token_when_none_issued(
        self, refresher: TokenRefresher, credential_store: InMemoryCredentialStore
    ) -> None:
        await refresher.refresh(ADMIN_ID, "google")
        stored = await credential_store.get(ADMIN_ID, "google")
        assert stored.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_replaces_old_one(
        self,
        provider: FakeProvider,
        refresher: TokenRefresher,
        credential_store: InMemoryCredentialStore,
    ) -> None:
        provider.on("POST", GOOGLE_TOKEN_URL, (200, token_response(refresh_token="refresh-2")))
        await refresher.refresh(ADMIN_ID, "google")
        stored = await credential_store.get(ADMIN_ID, "google")
        assert stored.refresh_token == "refresh-2"

    @pytest.mark.asyncio
    async def test_missing_expires_in_defaults_to_one_hour(
        self,
        provider: FakeProvider,
        refresher: TokenRefresher,
        credential_store: InMemoryCredentialStore,
    ) -> None:
        provider.on("POST", GOOGLE_TOKEN_URL, (200, {"access_token": "no-expiry"}))
        await refresher.refresh(ADMIN_ID, "google")
        stored = await credential_store.get(ADMIN_ID, "google")
        assert stored.expires_at == NOW + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_zero_expires_in_is_kept(
        self,
        provider: FakeProvider,
        refresher: TokenRefresher,
        credential_store: InMemoryCredentialStore,
    ) -> None:
        provider.on("POST", GOOGLE_TOKEN_URL, (200, token_response(expires_in=0)))
        await refresher.refresh(ADMIN_ID, "google")
        stored = await credential_store.get(ADMIN_ID, "google")
        assert stored.expires_at == NOW
        assert stored.needs_refresh(NOW, buffer_seconds=0)

    @pytest.mark.asyncio
    async def test_sends_refresh_grant_with_client_credentials(
        self, provider: FakeProvider, refresher: TokenRefresher
    ) -> None:
        await refresher.refresh(ADMIN_ID, "google")

        (request,) = provider.calls("POST", GOOGLE_TOKEN_URL)
        form = _form(request)
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-1"
        assert form["client_id"] == "google-client"
        assert form["client_secret"] == "google-secret"

    @pytest.mark.asyncio
    async def test_basic_auth_provider_keeps_secret_out_of_form(self, settings) -> None:
        fitbit_url = "https://api.fitbit.com/oauth2/token"
        provider = FakeProvider().on("POST", fitbit_url, (200, token_response()))
        store = InMemoryCredentialStore(
            [Credential(account_id=ADMIN_ID, provider="fitbit", refresh_token="fb-refresh")]
        )
        refresher = TokenRefresher(
            store,
            settings,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider)),
            clock=fixed_clock,
        )

        await refresher.refresh(ADMIN_ID, "fitbit")

        (request,) = provider.calls("POST", fitbit_url)
        assert request.headers["Authorization"].startswith("Basic ")
        assert "client_secret" not in _form(request)


class TestRefreshFailures:
    @pytest.mark.asyncio
    async def test_no_credential(self, settings, http_client) -> None:
        refresher = TokenRefresher(InMemoryCredentialStore(), settings, http_client=http_client)
        with pytest.raises(NoCredentialError):
            await refresher.refresh(ADMIN_ID, "google")

    @pytest.mark.asyncio
    async def test_empty_refresh_token(self, settings, http_client) -> None:
        store = InMemoryCredentialStore(
            [Credential(account_id=ADMIN_ID, provider="google", access_token="a")]
        )
        refresher = TokenRefresher(store, settings, http_client=http_client)
        with pytest.raises(NoCredentialError):
            await refresher.refresh(ADMIN_ID, "google")

    @pytest.mark.asyncio
    async def test_unconfigured_client_is_no_credential(
        self, credential_store, http_client, settings
    ) -> None:
        unconfigured = settings.model_copy(update={"google_client_id": ""})
        refresher = TokenRefresher(credential_store, unconfigured, http_client=http_client)
        with pytest.raises(NoCredentialError):
            await refresher.refresh(ADMIN_ID, "google")

    @pytest.mark.asyncio
    async def test_400_marks_credential_expired_and_inactive(
        self,
        provider: FakeProvider,
        refresher: TokenRefresher,
        credential_store: InMemoryCredentialStore,
    ) -> None:
        provider.on("POST", GOOGLE_TOKEN_URL, (400, {"error": "invalid_grant"}))

        with pytest.raises(InvalidRefreshTokenError):
            await refresher.refresh(ADMIN_ID, "google")

        stored = await credential_store.get(ADMIN_ID, "google")
        assert stored.access_token is None
        assert stored.expires_at == NOW
        assert stored.is_active is False
        assert stored.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_inactive_credential_short_circuits(
        self,
        provider: FakeProvider,
        refresher: TokenRefresher,
        credential_store: InMemoryCredentialStore,
        fresh_credential: Credential,
    ) -> None:
        await credential_store.put(fresh_credential.expired(NOW))

        with pytest.raises(InvalidRefreshTokenError):
            await refresher.refresh(ADMIN_ID, "google")
        assert provider.calls("POST", GOOGLE_TOKEN_URL) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 429, 500, 503])
    async def test_other_error_status_is_unavailable(
        self,
        status: int,
        provider: FakeProvider,
        refresher: TokenRefresher,
        credential_store: InMemoryCredentialStore,
    ) -> None:
        provider.on("POST", GOOGLE_TOKEN_URL, (status, {"error": "boom"}))

        with pytest.raises(ProviderUnavailableError) as exc_info:
            await refresher.refresh(ADMIN_ID, "google")

        assert exc_info.value.status_code == status
        stored = await credential_store.get(ADMIN_ID, "google")
        assert stored.access_token == "stored-token"
        assert stored.is_active is True

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(
        self, provider: FakeProvider, refresher: TokenRefresher
    ) -> None:
        provider.on("POST", GOOGLE_TOKEN_URL, (0, httpx.ConnectTimeout("timed out")))
        with pytest.raises(ProviderUnavailableError):
            await refresher.refresh(ADMIN_ID, "google")

    @pytest.mark.asyncio
    async def test_success_without_access_token_is_unavailable(
        self, provider: FakeProvider, refresher: TokenRefresher
    ) -> None:
        provider.on("POST", GOOGLE_TOKEN_URL, (200, {"expires_in": 3600}))
        with pytest.raises(ProviderUnavailableError):
            await refresher.refresh(ADMIN_ID, "google")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [["not", "an", "object"], "<html>gateway</html>", 42])
    async def test_success_with_malformed_body_is_unavailable(
        self,
        body,
        provider: FakeProvider,
        refresher: TokenRefresher,
        credential_store: InMemoryCredentialStore,
    ) -> None:
        provider.on("POST", GOOGLE_TOKEN_URL, (200, body))
        with pytest.raises(ProviderUnavailableError, match="malformed"):
            await refresher.refresh(ADMIN_ID, "google")
        stored = await credential_store.get(ADMIN_ID, "google")
        assert stored.access_token == "stored-token"
        assert stored.is_active is True
