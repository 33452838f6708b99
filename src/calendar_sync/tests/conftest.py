"""Shared fixtures, a scripted fake provider, and in-memory wiring for calendar sync tests."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import httpx
import pytest

from src.calendar_sync.base import Credential
from src.calendar_sync.config_loader import SyncConfig, load_sync_config
from src.calendar_sync.executor import AuthenticatedCallExecutor
from src.calendar_sync.google_calendar import GoogleCalendarClient
from src.calendar_sync.memory import (
    InMemoryCalendarEventStore,
    InMemoryCredentialStore,
    InMemorySharedSettingStore,
    InMemorySubscriptionStore,
)
from src.calendar_sync.orchestrator import CalendarSyncService
from src.calendar_sync.reconciler import CalendarReconciler
from src.calendar_sync.refresher import TokenRefresher
from src.config import Settings

# Canonical ids
ADMIN_ID = UUID("00000000-0000-4000-8000-000000000001")
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
OTHER_USER_ID = UUID("87654321-4321-8765-4321-876543218765")

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"
PRIMARY_EVENTS_URL = f"{CALENDAR_API}/calendars/primary/events"
CALENDAR_LIST_URL = f"{CALENDAR_API}/users/me/calendarList"


def fixed_clock() -> datetime:
    return NOW


def token_response(access_token: str = "fresh-token", **extra: Any) -> dict:
    return {"access_token": access_token, "expires_in": 3600, "token_type": "Bearer", **extra}


def timed_event(remote_id: str, summary: str | None, start: str, end: str, **extra: Any) -> dict:
    return {
        "id": remote_id,
        "summary": summary,
        "start": {"dateTime": start, "timeZone": "America/New_York"},
        "end": {"dateTime": end, "timeZone": "America/New_York"},
        **extra,
    }


def all_day_event(remote_id: str, summary: str, day: str, next_day: str, **extra: Any) -> dict:
    return {
        "id": remote_id,
        "summary": summary,
        "start": {"date": day},
        "end": {"date": next_day},
        **extra,
    }


# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """httpx.MockTransport handler answering scripted responses per (method, url).

    Each route holds a queue of ``(status, body)`` pairs; the last entry is
    repeated once the queue is down to one.  A ``str`` body is sent as plain
    text rather than JSON.  Unrouted requests get a 599 so a
    test never silently hits a real endpoint.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], deque] = {}

    def on(self, method: str, url: str, *responses: tuple[int, Any]) -> "FakeProvider":
        self._routes[(method.upper(), url)] = deque(responses)
        return self

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and str(r.url).split("?")[0] == url
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, str(request.url).split("?")[0])
        queue = self._routes.get(key)
        if not queue:
            return httpx.Response(599, json={"error": f"unrouted {key}"})
        status, body = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(body, Exception):
            raise body
        if body is None:
            return httpx.Response(status)
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)


# ---------------------------------------------------------------------------
# Config / settings
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real bundled sync config."""
    return load_sync_config()


@pytest.fixture
def settings() -> Settings:
    return Settings.model_construct(
        admin_account_id=ADMIN_ID,
        google_client_id="google-client",
        google_client_secret="google-secret",
        fitbit_client_id="fitbit-client",
        fitbit_client_secret="fitbit-secret",
        oauth_redirect_base_url="https://api.wellnest.test/api/v1/integrations",
        oauth_state_secret="state-secret-for-tests-only-0123456789",
        oauth_state_ttl_seconds=600,
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture
def fresh_credential() -> Credential:
    """Admin Google credential valid for another hour."""
    return Credential(
        account_id=ADMIN_ID,
        provider="google",
        access_token="stored-token",
        refresh_token="refresh-1",
        expires_at=NOW + timedelta(hours=1),
        updated_at=NOW - timedelta(minutes=5),
    )


@pytest.fixture
def credential_store(fresh_credential: Credential) -> InMemoryCredentialStore:
    return InMemoryCredentialStore([fresh_credential])


@pytest.fixture
def event_store() -> InMemoryCalendarEventStore:
    return InMemoryCalendarEventStore()


@pytest.fixture
def setting_store() -> InMemorySharedSettingStore:
    return InMemorySharedSettingStore()


@pytest.fixture
def subscription_store() -> InMemorySubscriptionStore:
    return InMemorySubscriptionStore()


# ---------------------------------------------------------------------------
# HTTP + components
# ---------------------------------------------------------------------------


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider().on("POST", GOOGLE_TOKEN_URL, (200, token_response()))


@pytest.fixture
def http_client(provider: FakeProvider) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(provider))


@pytest.fixture
def refresher(
    credential_store: InMemoryCredentialStore, settings: Settings, http_client: httpx.AsyncClient
) -> TokenRefresher:
    return TokenRefresher(credential_store, settings, http_client=http_client, clock=fixed_clock)


@pytest.fixture
def executor(
    credential_store: InMemoryCredentialStore,
    refresher: TokenRefresher,
    http_client: httpx.AsyncClient,
) -> AuthenticatedCallExecutor:
    return AuthenticatedCallExecutor(credential_store, refresher, http_client, clock=fixed_clock)


@pytest.fixture
def calendar_client(executor: AuthenticatedCallExecutor) -> GoogleCalendarClient:
    return GoogleCalendarClient(executor, ADMIN_ID)


@pytest.fixture
def service(
    calendar_client: GoogleCalendarClient,
    credential_store: InMemoryCredentialStore,
    event_store: InMemoryCalendarEventStore,
    setting_store: InMemorySharedSettingStore,
    subscription_store: InMemorySubscriptionStore,
) -> CalendarSyncService:
    return CalendarSyncService(
        calendar=calendar_client,
        reconciler=CalendarReconciler(event_store),
        credentials=credential_store,
        events=event_store,
        settings_store=setting_store,
        subscriptions=subscription_store,
        admin_account_id=ADMIN_ID,
        clock=fixed_clock,
    )
