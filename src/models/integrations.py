"""Pydantic models for provider connections."""

from __future__ import annotations

from datetime import datetime

from src.calendar_sync.base import ConnectionState
from src.models.base import WellnestBase


class AuthorizationUrlRead(WellnestBase):
    provider: str
    authorization_url: str


class ConnectionStatusRead(WellnestBase):
    provider: str
    state: ConnectionState
    connected: bool
    expires_at: datetime | None = None
    updated_at: datetime | None = None
