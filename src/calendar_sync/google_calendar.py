"""Google Calendar API v3 client.

Every request goes through the AuthenticatedCallExecutor on behalf of the
account that owns the shared connection.

Endpoints used:
    /users/me/calendarList                  — Calendars visible to the account
    /calendars/{calendarId}/events          — List (windowed) and create events
    /calendars/{calendarId}/events/{eventId} — Update and delete one event
"""

from __future__ import annotations

import logging
from datetime import datetime
from urllib.parse import quote
from uuid import UUID

from src.calendar_sync.base import EventDraft, RemoteCalendar, RemoteEvent
from src.calendar_sync.config_loader import get_sync_config
from src.calendar_sync.errors import ProviderError, ProviderUnavailableError
from src.calendar_sync.executor import AuthenticatedCallExecutor
from src.calendar_sync.providers import GOOGLE, get_provider

logger = logging.getLogger("wellnest.calendar_sync.google")


class GoogleCalendarClient:
    """Thin wrapper over the Google Calendar REST API.

    Payload parsing is pure and lives on the model classes
    (``RemoteEvent.from_payload`` / ``RemoteCalendar.from_payload``).
    """

    def __init__(
        self,
        executor: AuthenticatedCallExecutor,
        account_id: UUID,
        max_results_per_page: int | None = None,
        max_pages: int | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            executor:             Authenticated call executor.
            account_id:           Account whose credential backs every call.
            max_results_per_page: Page size for event listing.
            max_pages:            Stop paging after this many pages.
        """
        config = get_sync_config()
        self._executor = executor
        self._account_id = account_id
        self._api_base = get_provider(GOOGLE).api_base
        self._page_size = max_results_per_page or config.sync.max_results_per_page
        self._max_pages = max_pages or config.sync.max_pages

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_calendars(self) -> list[RemoteCalendar]:
        data = await self._request("GET", f"{self._api_base}/users/me/calendarList")
        calendars = [
            RemoteCalendar.from_payload(item) for item in _items(data) if isinstance(item, dict)
        ]
        logger.info("Fetched %d calendars", len(calendars))
        return calendars

    async def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[RemoteEvent]:
        """Fetch expanded events starting within [time_min, time_max).

        Recurring events are expanded into single instances and returned in
        start order.  Follows ``nextPageToken`` up to the configured page cap.
        """
        params: dict[str, str | int] = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": self._page_size,
        }
        events: list[RemoteEvent] = []
        for _ in range(self._max_pages):
            data = await self._request("GET", self._events_url(calendar_id), params=params)
            events.extend(RemoteEvent.from_payload(item) for item in _items(data))
            next_token = data.get("nextPageToken")
            if not next_token:
                break
            params = {**params, "pageToken": next_token}
        else:
            logger.warning(
                "Stopped paging calendar %s after %d pages", calendar_id, self._max_pages
            )

        logger.info("Fetched %d events from calendar %s", len(events), calendar_id)
        return events

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_event(self, calendar_id: str, draft: EventDraft) -> RemoteEvent:
        data = await self._request(
            "POST", self._events_url(calendar_id), json=draft.to_payload()
        )
        return RemoteEvent.from_payload(data)

    async def update_event(
        self, calendar_id: str, remote_id: str, draft: EventDraft
    ) -> RemoteEvent:
        data = await self._request(
            "PUT", self._events_url(calendar_id, remote_id), json=draft.to_payload()
        )
        return RemoteEvent.from_payload(data)

    async def delete_event(self, calendar_id: str, remote_id: str) -> bool:
        """Delete a remote event.

        Returns:
            False if the event was already gone (404/410), True otherwise.
        """
        try:
            await self._executor.call(
                self._account_id, GOOGLE, "DELETE", self._events_url(calendar_id, remote_id)
            )
        except ProviderError as exc:
            if exc.status_code in (404, 410):
                logger.info("Event %s already absent from %s", remote_id, calendar_id)
                return False
            raise
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _events_url(self, calendar_id: str, remote_id: str | None = None) -> str:
        url = f"{self._api_base}/calendars/{quote(calendar_id, safe='')}/events"
        if remote_id:
            url += f"/{quote(remote_id, safe='')}"
        return url

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        response = await self._executor.call(self._account_id, GOOGLE, method, url, **kwargs)
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(
                f"Google Calendar returned a non-JSON body for {method} {url}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise ProviderUnavailableError(
                f"Google Calendar returned {type(data).__name__} instead of an object",
                status_code=response.status_code,
            )
        return data


def _items(data: dict) -> list:
    items = data.get("items")
    return items if isinstance(items, list) else []
