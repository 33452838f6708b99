"""Shared calendar endpoints: local events, on-demand sync, manual edits, calendar selection."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.calendar_sync.errors import SyncError, SyncFailure
from src.dependencies import AdminUser, CurrentUser, SyncService
from src.models.base import SyncErrorDetail
from src.models.calendar import (
    CalendarEventRead,
    CalendarEventWrite,
    RemoteCalendarRead,
    RemoteEventRead,
    SharedCalendarSettingRead,
    SharedCalendarSettingUpdate,
    SyncResultRead,
)

router = APIRouter(prefix="/calendar", tags=["calendar"])

SYNC_ERROR_STATUS: dict[SyncFailure, int] = {
    SyncFailure.not_connected: 409,
    SyncFailure.auth_failed: 409,
    SyncFailure.provider_unavailable: 503,
    SyncFailure.provider_error: 502,
}


def sync_http_error(exc: SyncError) -> HTTPException:
    return HTTPException(
        status_code=SYNC_ERROR_STATUS[exc.kind],
        detail=SyncErrorDetail(kind=exc.kind.value, message=exc.message).model_dump(),
    )


# ---------- Local events ----------

@router.get("/events", response_model=list[CalendarEventRead])
async def list_events(
    user: CurrentUser,
    service: SyncService,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    health_only: bool = Query(default=False),
) -> Any:
    events = await service.list_events(user.wellnest_user_id, start_date, end_date, health_only)
    return [CalendarEventRead.from_event(e) for e in events]


@router.post("/sync", response_model=SyncResultRead)
async def sync_now(user: CurrentUser, service: SyncService) -> Any:
    try:
        result = await service.sync_shared_calendar(user.wellnest_user_id)
    except SyncError as exc:
        raise sync_http_error(exc) from exc
    return SyncResultRead(
        calendar_id=result.calendar_id,
        inserted=result.inserted,
        updated=result.updated,
        skipped=result.skipped,
        failed=result.failed,
        total_fetched=result.total_fetched,
        status=result.status,
        synced_at=result.synced_at,
    )


# ---------- Manual edits (remote first) ----------

@router.post("/events", response_model=RemoteEventRead, status_code=201)
async def add_event(user: CurrentUser, service: SyncService, body: CalendarEventWrite) -> Any:
    try:
        created = await service.add_event(body.to_draft())
    except SyncError as exc:
        raise sync_http_error(exc) from exc
    return RemoteEventRead.from_remote(created)


@router.put("/events/{remote_id}", response_model=CalendarEventRead)
async def update_event(
    remote_id: str, user: CurrentUser, service: SyncService, body: CalendarEventWrite
) -> Any:
    try:
        event = await service.update_event(user.wellnest_user_id, remote_id, body.to_draft())
    except SyncError as exc:
        raise sync_http_error(exc) from exc
    if event is None:
        raise HTTPException(status_code=502, detail="Provider returned an unusable event")
    return CalendarEventRead.from_event(event)


@router.delete("/events/{remote_id}", status_code=204)
async def delete_event(remote_id: str, user: CurrentUser, service: SyncService) -> None:
    try:
        await service.delete_event(user.wellnest_user_id, remote_id)
    except SyncError as exc:
        raise sync_http_error(exc) from exc


# ---------- Shared calendar selection (admin) ----------

@router.get("/calendars", response_model=list[RemoteCalendarRead])
async def list_calendars(admin: AdminUser, service: SyncService) -> Any:
    try:
        calendars = await service.list_calendars()
    except SyncError as exc:
        raise sync_http_error(exc) from exc
    return [RemoteCalendarRead.from_remote(c) for c in calendars]


@router.get("/settings", response_model=SharedCalendarSettingRead)
async def get_shared_setting(admin: AdminUser, service: SyncService) -> Any:
    return SharedCalendarSettingRead.from_setting(await service.get_shared_setting())


@router.put("/settings", response_model=SharedCalendarSettingRead)
async def select_calendar(
    admin: AdminUser, service: SyncService, body: SharedCalendarSettingUpdate
) -> Any:
    setting = await service.select_calendar(
        body.calendar_id, body.calendar_name, admin.wellnest_user_id
    )
    return SharedCalendarSettingRead.from_setting(setting)
