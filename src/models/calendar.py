"""Pydantic models for the shared calendar: events, sync results, calendar selection."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import Field, model_validator

from src.calendar_sync.base import (
    CalendarEvent,
    EventDraft,
    EventTime,
    RemoteCalendar,
    RemoteEvent,
    SharedCalendarSetting,
)
from src.models.base import WellnestBase


# ---------- Events ----------

class CalendarEventWrite(WellnestBase):
    """Manual add / edit body.

    All-day events set ``start_date``/``end_date``; timed events set
    ``start_at``/``end_at``.  Naive datetimes are taken as UTC.
    """

    title: str = Field(min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=8000)
    start_date: date | None = None
    end_date: date | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None

    @model_validator(mode="after")
    def _check_times(self) -> "CalendarEventWrite":
        all_day = self.start_date is not None or self.end_date is not None
        timed = self.start_at is not None or self.end_at is not None
        if all_day == timed:
            raise ValueError("Provide either start_date/end_date or start_at/end_at")
        if all_day:
            if self.start_date is None or self.end_date is None:
                raise ValueError("All-day events need both start_date and end_date")
            if self.end_date < self.start_date:
                raise ValueError("end_date must not be before start_date")
        else:
            if self.start_at is None or self.end_at is None:
                raise ValueError("Timed events need both start_at and end_at")
            if EventTime.at(self.end_at).value < EventTime.at(self.start_at).value:
                raise ValueError("end_at must not be before start_at")
        return self

    @property
    def all_day(self) -> bool:
        return self.start_date is not None

    def to_draft(self) -> EventDraft:
        if self.all_day:
            start, end = EventTime.on(self.start_date), EventTime.on(self.end_date)
        else:
            start, end = EventTime.at(self.start_at), EventTime.at(self.end_at)
        return EventDraft(
            title=self.title, start=start, end=end, description=self.description
        )


def _split(when: EventTime) -> tuple[date | None, datetime | None]:
    if when.all_day:
        return when.value, None
    return None, when.value


class CalendarEventRead(WellnestBase):
    event_id: uuid.UUID | None = None
    remote_id: str | None = None
    title: str
    description: str | None = None
    all_day: bool
    start_date: date | None = None
    end_date: date | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    time_zone: str | None = None
    is_health_related: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_event(cls, event: CalendarEvent) -> "CalendarEventRead":
        start_date, start_at = _split(event.start)
        end_date, end_at = _split(event.end)
        return cls(
            event_id=event.event_id,
            remote_id=event.remote_id,
            title=event.title,
            description=event.description,
            all_day=event.start.all_day,
            start_date=start_date,
            end_date=end_date,
            start_at=start_at,
            end_at=end_at,
            time_zone=event.start.time_zone,
            is_health_related=event.is_health_related,
            created_at=event.created_at,
            updated_at=event.updated_at,
        )


class RemoteEventRead(WellnestBase):
    """Event as created in the shared calendar (not yet reconciled locally)."""

    remote_id: str
    title: str
    html_link: str | None = None

    @classmethod
    def from_remote(cls, event: RemoteEvent) -> "RemoteEventRead":
        return cls(remote_id=event.remote_id, title=event.title, html_link=event.html_link)


# ---------- Sync ----------

class SyncResultRead(WellnestBase):
    calendar_id: str
    inserted: int
    updated: int
    skipped: int
    failed: int = 0
    total_fetched: int
    status: str
    synced_at: datetime | None = None


# ---------- Calendar selection (admin) ----------

class RemoteCalendarRead(WellnestBase):
    id: str
    name: str
    description: str | None = None
    primary: bool = False
    access_role: str | None = None
    background_color: str | None = None

    @classmethod
    def from_remote(cls, calendar: RemoteCalendar) -> "RemoteCalendarRead":
        return cls(
            id=calendar.calendar_id,
            name=calendar.name,
            description=calendar.description,
            primary=calendar.primary,
            access_role=calendar.access_role,
            background_color=calendar.background_color,
        )


class SharedCalendarSettingRead(WellnestBase):
    calendar_id: str
    calendar_name: str | None = None
    managed_by: uuid.UUID | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_setting(cls, setting: SharedCalendarSetting) -> "SharedCalendarSettingRead":
        return cls(
            calendar_id=setting.calendar_id,
            calendar_name=setting.calendar_name,
            managed_by=setting.managed_by,
            updated_at=setting.updated_at,
        )


class SharedCalendarSettingUpdate(WellnestBase):
    calendar_id: str = Field(min_length=1, max_length=1024)
    calendar_name: str | None = Field(default=None, max_length=500)
