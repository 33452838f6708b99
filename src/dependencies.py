"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.calendar_sync.oauth import OAuthFlow
from src.calendar_sync.orchestrator import CalendarSyncService
from src.config import Settings, get_settings


@dataclass(frozen=True)
class AuthContext:
    """Authenticated user context extracted from Clerk JWT."""

    user_id: str  # Clerk user ID (e.g. "user_2x...")
    wellnest_user_id: uuid.UUID | None = None  # Our internal UUID, resolved after provisioning
    email: str | None = None
    session_id: str | None = None

    def is_admin(self, settings: Settings) -> bool:
        return self.wellnest_user_id is not None and self.wellnest_user_id == settings.admin_account_id


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The Clerk auth middleware sets ``request.state.auth`` before routes run.
    Calendar rows are keyed by the internal user id, so tokens without the
    ``wellnest_user_id`` claim are rejected.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if auth.wellnest_user_id is None:
        raise HTTPException(status_code=403, detail="User is not provisioned")
    return auth


async def require_admin(
    user: Annotated[AuthContext, Depends(get_current_user)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthContext:
    """Allow only the administrator who owns the shared provider connection."""
    if not user.is_admin(settings):
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user


def get_sync_service(request: Request) -> CalendarSyncService:
    service: CalendarSyncService | None = getattr(request.app.state, "calendar_sync", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Calendar sync is not available")
    return service


def get_oauth_flow(request: Request) -> OAuthFlow:
    flow: OAuthFlow | None = getattr(request.app.state, "oauth_flow", None)
    if flow is None:
        raise HTTPException(status_code=503, detail="Provider connections are not available")
    return flow


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
AdminUser = Annotated[AuthContext, Depends(require_admin)]
AppSettings = Annotated[Settings, Depends(get_settings)]
SyncService = Annotated[CalendarSyncService, Depends(get_sync_service)]
OAuthFlowDep = Annotated[OAuthFlow, Depends(get_oauth_flow)]
