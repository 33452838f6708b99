"""HTTP-level tests for the calendar and integrations routers."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from src.calendar_sync.memory import InMemoryCredentialStore
from src.calendar_sync.oauth import OAuthFlow
from src.calendar_sync.orchestrator import CalendarSyncService
from src.calendar_sync.tests.conftest import (
    ADMIN_ID,
    CALENDAR_LIST_URL,
    GOOGLE_TOKEN_URL,
    PRIMARY_EVENTS_URL,
    TEST_USER_ID,
    FakeProvider,
    all_day_event,
    fixed_clock,
    timed_event,
    token_response,
)
from src.config import get_settings
from src.dependencies import AuthContext
from src.routers import calendar, integrations

WEEK = {
    "items": [
        timed_event("evt-1", "Dentist", "2026-03-03T15:00:00Z", "2026-03-03T16:00:00Z"),
        all_day_event("evt-2", "Team offsite", "2026-03-04", "2026-03-05"),
    ]
}


class _Auth:
    """Stands in for the Clerk middleware: whatever is set here lands on request.state."""

    def __init__(self) -> None:
        self.current: AuthContext | None = None


@pytest.fixture
def auth() -> _Auth:
    return _Auth()


@pytest.fixture
def oauth_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def client(
    auth: _Auth,
    service: CalendarSyncService,
    settings,
    http_client: httpx.AsyncClient,
    oauth_store: InMemoryCredentialStore,
) -> TestClient:
    app = FastAPI()

    @app.middleware("http")
    async def _inject_auth(request: Request, call_next):
        request.state.auth = auth.current
        return await call_next(request)

    app.include_router(calendar.router, prefix="/api/v1")
    app.include_router(integrations.router, prefix="/api/v1")
    app.state.calendar_sync = service
    app.state.oauth_flow = OAuthFlow(oauth_store, settings, http_client=http_client, clock=fixed_clock)
    app.dependency_overrides[get_settings] = lambda: settings
    return TestClient(app)


def _as_member(auth: _Auth) -> None:
    auth.current = AuthContext(user_id="user_member", wellnest_user_id=TEST_USER_ID)


def _as_admin(auth: _Auth) -> None:
    auth.current = AuthContext(user_id="user_admin", wellnest_user_id=ADMIN_ID)


class TestAccess:
    def test_anonymous_request_is_rejected(self, client: TestClient) -> None:
        assert client.get("/api/v1/calendar/events").status_code == 401

    def test_unprovisioned_user_is_rejected(self, auth: _Auth, client: TestClient) -> None:
        auth.current = AuthContext(user_id="user_new")
        assert client.get("/api/v1/calendar/events").status_code == 403

    def test_member_cannot_manage_calendars(self, auth: _Auth, client: TestClient) -> None:
        _as_member(auth)
        assert client.get("/api/v1/calendar/calendars").status_code == 403
        assert client.put("/api/v1/calendar/settings", json={"calendar_id": "x"}).status_code == 403

    def test_missing_service_is_unavailable(self, auth: _Auth) -> None:
        app = FastAPI()

        @app.middleware("http")
        async def _inject_auth(request: Request, call_next):
            request.state.auth = auth.current
            return await call_next(request)

        app.include_router(calendar.router)
        _as_member(auth)
        assert TestClient(app).post("/calendar/sync").status_code == 503


class TestCalendarRoutes:
    def test_sync_then_list(self, auth: _Auth, provider: FakeProvider, client: TestClient) -> None:
        _as_member(auth)
        provider.on("GET", PRIMARY_EVENTS_URL, (200, WEEK))

        synced = client.post("/api/v1/calendar/sync")
        assert synced.status_code == 200
        assert synced.json()["inserted"] == 2
        assert synced.json()["status"] == "success"

        events = client.get("/api/v1/calendar/events").json()
        assert [e["remote_id"] for e in events] == ["evt-1", "evt-2"]
        assert events[0]["is_health_related"] is True
        assert events[1]["all_day"] is True

        health = client.get("/api/v1/calendar/events", params={"health_only": "true"}).json()
        assert [e["remote_id"] for e in health] == ["evt-1"]

    def test_sync_failure_maps_to_status_and_kind(
        self, auth: _Auth, provider: FakeProvider, client: TestClient
    ) -> None:
        _as_member(auth)
        provider.on("GET", PRIMARY_EVENTS_URL, (503, {"error": "backend"}))

        response = client.post("/api/v1/calendar/sync")

        assert response.status_code == 503
        assert response.json()["detail"]["kind"] == "provider_unavailable"

    def test_add_event_requires_one_time_pair(self, auth: _Auth, client: TestClient) -> None:
        _as_member(auth)
        response = client.post(
            "/api/v1/calendar/events",
            json={
                "title": "Both",
                "start_date": "2026-03-03",
                "end_date": "2026-03-04",
                "start_at": "2026-03-03T10:00:00Z",
                "end_at": "2026-03-03T11:00:00Z",
            },
        )
        assert response.status_code == 422

    def test_add_event_creates_remotely(
        self, auth: _Auth, provider: FakeProvider, client: TestClient
    ) -> None:
        _as_member(auth)
        provider.on(
            "POST", PRIMARY_EVENTS_URL,
            (200, all_day_event("new-1", "Retreat", "2026-03-06", "2026-03-08")),
        )

        response = client.post(
            "/api/v1/calendar/events",
            json={"title": "Retreat", "start_date": "2026-03-06", "end_date": "2026-03-08"},
        )

        assert response.status_code == 201
        assert response.json()["remote_id"] == "new-1"

    def test_delete_event(self, auth: _Auth, provider: FakeProvider, client: TestClient) -> None:
        _as_member(auth)
        provider.on("DELETE", f"{PRIMARY_EVENTS_URL}/evt-1", (204, None))
        assert client.delete("/api/v1/calendar/events/evt-1").status_code == 204

    def test_admin_selects_calendar(
        self, auth: _Auth, provider: FakeProvider, client: TestClient
    ) -> None:
        _as_admin(auth)
        provider.on(
            "GET", CALENDAR_LIST_URL,
            (200, {"items": [{"id": "team-calendar", "summary": "Team"}]}),
        )

        calendars = client.get("/api/v1/calendar/calendars").json()
        assert calendars == [
            {"id": "team-calendar", "name": "Team", "description": None, "primary": False,
             "access_role": None, "background_color": None}
        ]

        updated = client.put(
            "/api/v1/calendar/settings",
            json={"calendar_id": "team-calendar", "calendar_name": "Team"},
        )
        assert updated.status_code == 200
        assert updated.json()["managed_by"] == str(ADMIN_ID)

        assert client.get("/api/v1/calendar/settings").json()["calendar_id"] == "team-calendar"


class TestIntegrationRoutes:
    def test_status_reports_connected(self, auth: _Auth, client: TestClient) -> None:
        _as_member(auth)
        body = client.get("/api/v1/integrations/google/status").json()
        assert body["state"] == "connected"
        assert body["connected"] is True

    def test_unknown_provider(self, auth: _Auth, client: TestClient) -> None:
        _as_member(auth)
        assert client.get("/api/v1/integrations/myspace/status").status_code == 404

    def test_connect_is_admin_only(self, auth: _Auth, client: TestClient) -> None:
        _as_member(auth)
        assert client.post("/api/v1/integrations/google/connect").status_code == 403

    def test_connect_and_callback(
        self,
        auth: _Auth,
        provider: FakeProvider,
        client: TestClient,
        oauth_store: InMemoryCredentialStore,
    ) -> None:
        _as_admin(auth)
        provider.on("POST", GOOGLE_TOKEN_URL, (200, token_response("first-access", refresh_token="r-1")))

        started = client.post("/api/v1/integrations/google/connect").json()
        state = parse_qs(urlparse(started["authorization_url"]).query)["state"][0]

        auth.current = None
        page = client.get(
            "/api/v1/integrations/google/callback", params={"code": "auth-code", "state": state}
        )

        assert page.status_code == 200
        assert "Google Calendar connected" in page.text
        assert oauth_store.writes == 1

    def test_callback_with_provider_error(self, client: TestClient) -> None:
        page = client.get("/api/v1/integrations/google/callback", params={"error": "access_denied"})
        assert page.status_code == 400
        assert "access_denied" in page.text

    def test_callback_with_forged_state(self, client: TestClient) -> None:
        page = client.get(
            "/api/v1/integrations/google/callback", params={"code": "c", "state": "forged"}
        )
        assert page.status_code == 400
