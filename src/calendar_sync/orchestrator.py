"""Sync Orchestrator — shared calendar operations for application users.

All remote calls run as the administrative account configured at startup;
application users only ever see their own local projection of the shared
calendar.

Sync workflow:
1. Read the shared calendar selection (default "primary").
2. Fetch events from now through the rolling window via the call executor.
3. Reconcile the fetched list into each subscribed user's rows.
4. Record the outcome per user.

Failures are classified into ``SyncError`` kinds so callers can tell
"administrator must reconnect" apart from "try again shortly".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Sequence
from uuid import UUID

from src.calendar_sync.base import (
    DEFAULT_CALENDAR_ID,
    CalendarEvent,
    ConnectionState,
    EventDraft,
    RemoteCalendar,
    RemoteEvent,
    SharedCalendarSetting,
    connection_state,
    utc_now,
)
from src.calendar_sync.config_loader import get_sync_config
from src.calendar_sync.credentials import CredentialStore
from src.calendar_sync.errors import IntegrationError, SyncError, classify_failure
from src.calendar_sync.google_calendar import GoogleCalendarClient
from src.calendar_sync.providers import GOOGLE
from src.calendar_sync.reconciler import CalendarReconciler
from src.calendar_sync.storage import (
    CalendarEventStore,
    SharedSettingStore,
    SubscriptionStore,
)

logger = logging.getLogger("wellnest.calendar_sync.orchestrator")


@dataclass
class SyncResult:
    """Outcome of syncing the shared calendar into one user's rows.

    Attributes:
        user_id:       Application user whose rows were reconciled.
        calendar_id:   Remote calendar that was read.
        inserted:      New local rows.
        updated:       Existing rows overwritten.
        skipped:       Malformed remote events ignored.
        failed:        Events whose store write raised.
        total_fetched: Events returned by the provider.
        synced_at:     UTC completion time.
    """

    user_id: UUID
    calendar_id: str
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    total_fetched: int = 0
    synced_at: datetime | None = None

    @property
    def status(self) -> str:
        if self.failed and not (self.inserted or self.updated):
            return "error"
        if self.failed:
            return "partial"
        return "success"


@dataclass
class ConnectionStatus:
    provider: str
    state: ConnectionState
    expires_at: datetime | None = None
    updated_at: datetime | None = None


class CalendarSyncService:
    """Entry point for every shared-calendar operation.

    Usage::

        service = CalendarSyncService(
            calendar=GoogleCalendarClient(executor, admin_id),
            reconciler=CalendarReconciler(event_store),
            credentials=credential_store,
            events=event_store,
            settings_store=setting_store,
            subscriptions=subscription_store,
            admin_account_id=admin_id,
        )
        result = await service.sync_shared_calendar(user_id)
    """

    def __init__(
        self,
        calendar: GoogleCalendarClient,
        reconciler: CalendarReconciler,
        credentials: CredentialStore,
        events: CalendarEventStore,
        settings_store: SharedSettingStore,
        subscriptions: SubscriptionStore,
        admin_account_id: UUID,
        window_days: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        config = get_sync_config()
        self._calendar = calendar
        self._reconciler = reconciler
        self._credentials = credentials
        self._events = events
        self._settings_store = settings_store
        self._subscriptions = subscriptions
        self._admin_account_id = admin_account_id
        self._window = timedelta(days=window_days or config.sync.window_days)
        self._default_calendar_id = config.sync.default_calendar_id or DEFAULT_CALENDAR_ID
        self._buffer_seconds = config.refresh_buffer_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_shared_calendar(self, owner_user_id: UUID) -> SyncResult:
        """Fetch the shared calendar and reconcile it into one user's rows.

        Raises:
            SyncError: Classified provider or credential failure.
        """
        results = await self.sync_for_users([owner_user_id])
        return results[0]

    async def sync_for_users(self, user_ids: Sequence[UUID]) -> list[SyncResult]:
        """Fetch the shared calendar once and reconcile it for each user.

        Raises:
            SyncError: Classified provider or credential failure.  Nothing
                       is written locally when the fetch fails.
        """
        calendar_id = await self.selected_calendar_id()
        try:
            remote_events = await self._fetch_window(calendar_id)
        except IntegrationError as exc:
            error = classify_failure(exc)
            logger.warning(
                "Shared calendar sync failed (%s): %s", error.kind.value, error.detail
            )
            for user_id in user_ids:
                await self._subscriptions.record_sync(user_id, error.kind.value, self._clock())
            raise error from exc

        results: list[SyncResult] = []
        for user_id in user_ids:
            outcome = await self._reconciler.reconcile(user_id, remote_events)
            result = SyncResult(
                user_id=user_id,
                calendar_id=calendar_id,
                inserted=outcome.inserted,
                updated=outcome.updated,
                skipped=outcome.skipped,
                failed=outcome.failed,
                total_fetched=len(remote_events),
                synced_at=self._clock(),
            )
            await self._subscriptions.record_sync(user_id, result.status, result.synced_at)
            results.append(result)

        logger.info(
            "Synced calendar %s for %d user(s) (%d events fetched)",
            calendar_id,
            len(results),
            len(remote_events),
        )
        return results

    async def sync_subscribers(self) -> list[SyncResult]:
        """Sync every user who has subscribed to the shared calendar."""
        user_ids = await self._subscriptions.list_user_ids()
        if not user_ids:
            logger.debug("No calendar subscribers to sync")
            return []
        return await self.sync_for_users(user_ids)

    async def _fetch_window(self, calendar_id: str) -> list[RemoteEvent]:
        now = self._clock()
        return await self._calendar.list_events(calendar_id, now, now + self._window)

    # ------------------------------------------------------------------
    # Shared calendar selection
    # ------------------------------------------------------------------

    async def get_shared_setting(self) -> SharedCalendarSetting:
        setting = await self._settings_store.get()
        return setting or SharedCalendarSetting(calendar_id=self._default_calendar_id)

    async def selected_calendar_id(self) -> str:
        setting = await self._settings_store.get()
        if setting and setting.calendar_id:
            return setting.calendar_id
        return self._default_calendar_id

    async def select_calendar(
        self, calendar_id: str, calendar_name: str | None, managed_by: UUID
    ) -> SharedCalendarSetting:
        """Point every user at a different remote calendar.

        Remote ids are calendar-specific, so switching calendars deletes every
        local event for every user before the new selection is saved.  The
        delete and the next sync are not one transaction: a crash in between
        leaves local storage empty until the next successful sync.
        """
        current = await self.selected_calendar_id()
        if calendar_id != current:
            removed = await self._events.delete_all()
            logger.warning(
                "Shared calendar changed %s → %s; removed %d local events",
                current,
                calendar_id,
                removed,
            )
        setting = await self._settings_store.put(
            SharedCalendarSetting(
                calendar_id=calendar_id,
                calendar_name=calendar_name,
                managed_by=managed_by,
            )
        )
        return setting

    async def list_calendars(self) -> list[RemoteCalendar]:
        try:
            return await self._calendar.list_calendars()
        except IntegrationError as exc:
            raise classify_failure(exc) from exc

    # ------------------------------------------------------------------
    # Event edits (remote first)
    # ------------------------------------------------------------------

    async def add_event(self, draft: EventDraft) -> RemoteEvent:
        """Create an event in the shared calendar.

        Nothing is written locally; the next reconciliation pulls the event
        back in together with its remote id.
        """
        calendar_id = await self.selected_calendar_id()
        try:
            created = await self._calendar.create_event(calendar_id, draft)
        except IntegrationError as exc:
            raise classify_failure(exc) from exc
        logger.info("Created event %s in calendar %s", created.remote_id, calendar_id)
        return created

    async def update_event(
        self, owner_user_id: UUID, remote_id: str, draft: EventDraft
    ) -> CalendarEvent | None:
        """Update an event remotely, then reconcile the result into the caller's rows."""
        calendar_id = await self.selected_calendar_id()
        try:
            updated = await self._calendar.update_event(calendar_id, remote_id, draft)
        except IntegrationError as exc:
            raise classify_failure(exc) from exc
        await self._reconciler.reconcile(owner_user_id, [updated])
        return await self._events.get_by_remote_id(owner_user_id, remote_id)

    async def delete_event(self, owner_user_id: UUID, remote_id: str) -> bool:
        """Delete an event remotely (already-gone is fine) and locally.

        Returns:
            True if a local row was removed.
        """
        calendar_id = await self.selected_calendar_id()
        try:
            await self._calendar.delete_event(calendar_id, remote_id)
        except IntegrationError as exc:
            raise classify_failure(exc) from exc
        return await self._events.delete_by_remote_id(owner_user_id, remote_id)

    async def list_events(
        self,
        owner_user_id: UUID,
        start: date | None = None,
        end: date | None = None,
        health_only: bool = False,
    ) -> list[CalendarEvent]:
        return await self._events.list_for_user(owner_user_id, start, end, health_only)

    # ------------------------------------------------------------------
    # Connection status
    # ------------------------------------------------------------------

    async def connection_status(self, provider: str = GOOGLE) -> ConnectionStatus:
        credential = await self._credentials.get(self._admin_account_id, provider)
        return ConnectionStatus(
            provider=provider,
            state=connection_state(credential, self._clock(), self._buffer_seconds),
            expires_at=credential.expires_at if credential else None,
            updated_at=credential.updated_at if credential else None,
        )


__all__ = ["CalendarSyncService", "ConnectionStatus", "SyncError", "SyncResult"]
