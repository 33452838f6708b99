"""Local persistence for calendar events, the shared calendar setting, and sync subscribers.

Uniqueness keys:
    - calendar_events:            (user_id, remote_id) — UNIQUE constraint
    - shared_calendar_settings:   (setting_key) — singleton row
    - calendar_sync_subscriptions: (user_id)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from uuid import UUID

from src.calendar_sync.base import (
    CalendarEvent,
    EventTime,
    SharedCalendarSetting,
)
from src.services import supabase

logger = logging.getLogger("wellnest.calendar_sync.storage")

SELECTED_CALENDAR_KEY = "selected_calendar"


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    returning: str | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Generates idempotent writes, safe to call multiple times with the same
    data.  On conflict, updates the non-key columns and bumps ``updated_at``.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        returning:        Optional RETURNING expression.

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(
            f"{col} = EXCLUDED.{col}" for col in update_columns
        )
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    query = (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
    if returning:
        query += f" RETURNING {returning}"
    return query


# ---------------------------------------------------------------------------
# Store contracts
# ---------------------------------------------------------------------------


class CalendarEventStore(ABC):
    """Row store for local CalendarEvent projections."""

    @abstractmethod
    async def get_by_remote_id(self, user_id: UUID, remote_id: str) -> CalendarEvent | None:
        """Return the user's row for a remote event, if any."""

    @abstractmethod
    async def upsert(self, event: CalendarEvent) -> bool:
        """Insert or overwrite the row keyed on (user_id, remote_id).

        Returns:
            True if a new row was inserted, False if an existing one was updated.
        """

    @abstractmethod
    async def list_for_user(
        self,
        user_id: UUID,
        start: date | None = None,
        end: date | None = None,
        health_only: bool = False,
    ) -> list[CalendarEvent]:
        """Return the user's events ordered by start."""

    @abstractmethod
    async def delete_by_remote_id(self, user_id: UUID, remote_id: str) -> bool:
        """Delete one user's row.  Returns True if a row was removed."""

    @abstractmethod
    async def delete_all(self) -> int:
        """Delete every event for every user.  Returns the number removed."""


class SharedSettingStore(ABC):
    """Singleton storage for the shared calendar selection."""

    @abstractmethod
    async def get(self) -> SharedCalendarSetting | None:
        """Return the current selection, or None if never set."""

    @abstractmethod
    async def put(self, setting: SharedCalendarSetting) -> SharedCalendarSetting:
        """Replace the selection and return it with its update timestamp."""


class SubscriptionStore(ABC):
    """Users who receive the shared calendar, with their last sync outcome."""

    @abstractmethod
    async def record_sync(self, user_id: UUID, status: str, at: datetime) -> None:
        """Register the user (if new) and store the outcome of their last sync."""

    @abstractmethod
    async def list_user_ids(self) -> list[UUID]:
        """Return every subscribed user."""


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _time_columns(when: EventTime) -> tuple[date | None, datetime | None, str | None]:
    if when.all_day:
        return when.value, None, None
    return None, when.value, when.time_zone


def _time_from_row(day: date | None, instant: datetime | None, tz: str | None) -> EventTime:
    if instant is not None:
        return EventTime.at(instant, tz)
    return EventTime.on(day)


def event_from_row(row) -> CalendarEvent:
    return CalendarEvent(
        event_id=row["event_id"],
        user_id=row["user_id"],
        remote_id=row["remote_id"],
        title=row["title"],
        description=row["description"],
        start=_time_from_row(row["start_date"], row["start_at"], row["start_tz"]),
        end=_time_from_row(row["end_date"], row["end_at"], row["end_tz"]),
        is_health_related=row["is_health_related"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ---------------------------------------------------------------------------
# Postgres implementations
# ---------------------------------------------------------------------------

_EVENT_COLUMNS = [
    "user_id",
    "remote_id",
    "title",
    "description",
    "start_date",
    "start_at",
    "start_tz",
    "end_date",
    "end_at",
    "end_tz",
    "is_health_related",
]


class PostgresCalendarEventStore(CalendarEventStore):
    """CalendarEvent rows in the ``calendar_events`` table.

    Reads and writes run with the owning user's RLS context.
    """

    # xmax is 0 only for freshly inserted tuples
    _UPSERT = build_upsert_query(
        "calendar_events",
        _EVENT_COLUMNS,
        conflict_columns=["user_id", "remote_id"],
        returning="(xmax = 0) AS inserted",
    )

    async def get_by_remote_id(self, user_id: UUID, remote_id: str) -> CalendarEvent | None:
        row = await supabase.fetchrow(
            "SELECT * FROM calendar_events WHERE user_id = $1 AND remote_id = $2",
            user_id,
            remote_id,
            user_id=user_id,
        )
        return event_from_row(row) if row else None

    async def upsert(self, event: CalendarEvent) -> bool:
        start_date, start_at, start_tz = _time_columns(event.start)
        end_date, end_at, end_tz = _time_columns(event.end)
        return await supabase.fetchval(
            self._UPSERT,
            event.user_id,
            event.remote_id,
            event.title,
            event.description,
            start_date,
            start_at,
            start_tz,
            end_date,
            end_at,
            end_tz,
            event.is_health_related,
            user_id=event.user_id,
        )

    async def list_for_user(
        self,
        user_id: UUID,
        start: date | None = None,
        end: date | None = None,
        health_only: bool = False,
    ) -> list[CalendarEvent]:
        conditions = ["user_id = $1"]
        params: list = [user_id]
        idx = 2

        sort_key = "COALESCE(start_at, start_date::timestamptz)"
        if start:
            conditions.append(f"{sort_key} >= ${idx}::date")
            params.append(start)
            idx += 1
        if end:
            conditions.append(f"{sort_key} < (${idx}::date + 1)")
            params.append(end)
            idx += 1
        if health_only:
            conditions.append("is_health_related")

        where = " AND ".join(conditions)
        rows = await supabase.fetch(
            f"SELECT * FROM calendar_events WHERE {where} ORDER BY {sort_key}",
            *params,
            user_id=user_id,
        )
        return [event_from_row(r) for r in rows]

    async def delete_by_remote_id(self, user_id: UUID, remote_id: str) -> bool:
        result = await supabase.execute(
            "DELETE FROM calendar_events WHERE user_id = $1 AND remote_id = $2",
            user_id,
            remote_id,
            user_id=user_id,
        )
        return result != "DELETE 0"

    async def delete_all(self) -> int:
        result = await supabase.execute("DELETE FROM calendar_events")
        # asyncpg returns the command tag, e.g. "DELETE 42"
        return int(result.split()[-1])


class PostgresSharedSettingStore(SharedSettingStore):
    """Shared selection stored as a keyed row in ``shared_calendar_settings``."""

    _UPSERT = build_upsert_query(
        "shared_calendar_settings",
        ["setting_key", "calendar_id", "calendar_name", "managed_by"],
        conflict_columns=["setting_key"],
        returning="updated_at",
    )

    async def get(self) -> SharedCalendarSetting | None:
        row = await supabase.fetchrow(
            "SELECT * FROM shared_calendar_settings WHERE setting_key = $1",
            SELECTED_CALENDAR_KEY,
        )
        if row is None:
            return None
        return SharedCalendarSetting(
            calendar_id=row["calendar_id"],
            calendar_name=row["calendar_name"],
            managed_by=row["managed_by"],
            updated_at=row["updated_at"],
        )

    async def put(self, setting: SharedCalendarSetting) -> SharedCalendarSetting:
        updated_at = await supabase.fetchval(
            self._UPSERT,
            SELECTED_CALENDAR_KEY,
            setting.calendar_id,
            setting.calendar_name,
            setting.managed_by,
        )
        setting.updated_at = updated_at
        return setting


class PostgresSubscriptionStore(SubscriptionStore):
    """Sync subscribers in ``calendar_sync_subscriptions``."""

    _UPSERT = build_upsert_query(
        "calendar_sync_subscriptions",
        ["user_id", "last_sync_status", "last_sync_at"],
        conflict_columns=["user_id"],
    )

    async def record_sync(self, user_id: UUID, status: str, at: datetime) -> None:
        await supabase.execute(self._UPSERT, user_id, status, at)

    async def list_user_ids(self) -> list[UUID]:
        rows = await supabase.fetch(
            "SELECT user_id FROM calendar_sync_subscriptions ORDER BY created_at"
        )
        return [r["user_id"] for r in rows]
