"""Wellnest shared calendar sync engine.

One administrator connects a remote calendar; every application user gets
their own local projection of it, refreshed on demand and on a timer.

Core modules:
    base            — Credential, event and setting data models
    errors          — Typed refresh / call / sync failures
    providers       — OAuth provider registry (Google, Fitbit)
    config_loader   — Load/validate/hot-reload sync_config.yaml
    credentials     — Credential Store (Postgres)
    refresher       — Token Refresher
    executor        — Authenticated Call Executor (refresh-on-401)
    google_calendar — Google Calendar API v3 client
    storage         — Event / setting / subscription stores (Postgres)
    memory          — In-process store implementations
    reconciler      — Idempotent upsert of remote events + health tagging
    orchestrator    — CalendarSyncService
    scheduler       — Fixed-interval auto-sync
    oauth           — Authorization-code flow with signed state
"""

from src.calendar_sync.base import (
    CalendarEvent,
    ConnectionState,
    Credential,
    EventDraft,
    EventTime,
    OAuthTokens,
    RemoteCalendar,
    RemoteEvent,
    SharedCalendarSetting,
)
from src.calendar_sync.config_loader import SyncConfig, get_sync_config
from src.calendar_sync.errors import SyncError, SyncFailure

__all__ = [
    "CalendarEvent",
    "ConnectionState",
    "Credential",
    "EventDraft",
    "EventTime",
    "OAuthTokens",
    "RemoteCalendar",
    "RemoteEvent",
    "SharedCalendarSetting",
    "SyncConfig",
    "SyncError",
    "SyncFailure",
    "get_sync_config",
]
