"""In-process store implementations.

Used for local development without a database and as fakes in tests.
Each write replaces whole objects, matching the atomic-replace contract of
the Postgres stores.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import date, datetime
from uuid import UUID

from src.calendar_sync.base import (
    CalendarEvent,
    Credential,
    EventTime,
    SharedCalendarSetting,
    utc_now,
)
from src.calendar_sync.credentials import CredentialStore
from src.calendar_sync.storage import (
    CalendarEventStore,
    SharedSettingStore,
    SubscriptionStore,
)


class InMemoryCredentialStore(CredentialStore):
    def __init__(self, credentials: list[Credential] | None = None) -> None:
        self._items: dict[tuple[UUID, str], Credential] = {}
        self.writes = 0
        for credential in credentials or []:
            self._items[(credential.account_id, credential.provider)] = credential

    async def get(self, account_id: UUID, provider: str) -> Credential | None:
        stored = self._items.get((account_id, provider))
        return replace(stored) if stored else None

    async def put(self, credential: Credential) -> None:
        self._items[(credential.account_id, credential.provider)] = replace(credential)
        self.writes += 1


def _sort_key(when: EventTime) -> tuple:
    value = when.value
    if isinstance(value, datetime):
        return (value.date(), value.timestamp())
    return (value, float("-inf"))


class InMemoryCalendarEventStore(CalendarEventStore):
    def __init__(self) -> None:
        self._rows: dict[tuple[UUID, str], CalendarEvent] = {}

    async def get_by_remote_id(self, user_id: UUID, remote_id: str) -> CalendarEvent | None:
        row = self._rows.get((user_id, remote_id))
        return replace(row) if row else None

    async def upsert(self, event: CalendarEvent) -> bool:
        key = (event.user_id, event.remote_id)
        now = utc_now()
        existing = self._rows.get(key)
        if existing is None:
            self._rows[key] = replace(
                event, event_id=event.event_id or uuid.uuid4(), created_at=now, updated_at=now
            )
            return True
        self._rows[key] = replace(
            event, event_id=existing.event_id, created_at=existing.created_at, updated_at=now
        )
        return False

    async def list_for_user(
        self,
        user_id: UUID,
        start: date | None = None,
        end: date | None = None,
        health_only: bool = False,
    ) -> list[CalendarEvent]:
        rows = []
        for row in self._rows.values():
            if row.user_id != user_id:
                continue
            if health_only and not row.is_health_related:
                continue
            day = _sort_key(row.start)[0]
            if start and day < start:
                continue
            if end and day > end:
                continue
            rows.append(replace(row))
        return sorted(rows, key=lambda r: _sort_key(r.start))

    async def delete_by_remote_id(self, user_id: UUID, remote_id: str) -> bool:
        return self._rows.pop((user_id, remote_id), None) is not None

    async def delete_all(self) -> int:
        count = len(self._rows)
        self._rows.clear()
        return count

    def __len__(self) -> int:
        return len(self._rows)


class InMemorySharedSettingStore(SharedSettingStore):
    def __init__(self, setting: SharedCalendarSetting | None = None) -> None:
        self._setting = setting

    async def get(self) -> SharedCalendarSetting | None:
        return replace(self._setting) if self._setting else None

    async def put(self, setting: SharedCalendarSetting) -> SharedCalendarSetting:
        self._setting = replace(setting, updated_at=utc_now())
        return replace(self._setting)


class InMemorySubscriptionStore(SubscriptionStore):
    def __init__(self, user_ids: list[UUID] | None = None) -> None:
        self._status: dict[UUID, tuple[str, datetime | None]] = {
            user_id: ("pending", None) for user_id in user_ids or []
        }

    async def record_sync(self, user_id: UUID, status: str, at: datetime) -> None:
        self._status[user_id] = (status, at)

    async def list_user_ids(self) -> list[UUID]:
        return list(self._status)

    def last_status(self, user_id: UUID) -> str | None:
        entry = self._status.get(user_id)
        return entry[0] if entry else None
