"""Provider connection endpoints: start authorization, OAuth callback, connection status.

The admin starts the flow from the dashboard, is sent to the provider's
consent screen, and lands on the public callback.  The dashboard polls
``/status`` until the connection reports ``connected``.
"""

from __future__ import annotations

import html
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import HTMLResponse

from src.calendar_sync.base import ConnectionState
from src.calendar_sync.errors import NoCredentialError, ProviderUnavailableError
from src.calendar_sync.oauth import CodeExchangeError, OAuthStateError
from src.calendar_sync.providers import PROVIDER_REGISTRY, get_provider
from src.dependencies import AdminUser, AppSettings, CurrentUser, OAuthFlowDep, SyncService
from src.models.integrations import AuthorizationUrlRead, ConnectionStatusRead

router = APIRouter(prefix="/integrations", tags=["integrations"])
logger = logging.getLogger("wellnest.integrations")


def _require_provider(provider: str) -> None:
    if provider not in PROVIDER_REGISTRY:
        raise HTTPException(status_code=404, detail=f"Unknown provider '{provider}'")


def _callback_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    body = (
        "<!doctype html><html><head><meta charset='utf-8'>"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1><p>{html.escape(message)}</p>"
        "<p>You can close this window.</p></body></html>"
    )
    return HTMLResponse(content=body, status_code=status_code)


@router.post("/{provider}/connect", response_model=AuthorizationUrlRead)
async def connect(
    provider: str, admin: AdminUser, settings: AppSettings, flow: OAuthFlowDep
) -> Any:
    _require_provider(provider)
    try:
        url = flow.authorization_url(settings.admin_account_id, provider)
    except NoCredentialError as exc:
        raise HTTPException(status_code=503, detail=exc.message) from exc
    logger.info("Authorization started for %s by %s", provider, admin.user_id)
    return AuthorizationUrlRead(provider=provider, authorization_url=url)


@router.get("/{provider}/callback", response_class=HTMLResponse)
async def callback(
    provider: str,
    flow: OAuthFlowDep,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
) -> HTMLResponse:
    _require_provider(provider)
    name = get_provider(provider).display_name

    if error:
        logger.warning("%s authorization was declined: %s", provider, error)
        return _callback_page(f"{name} not connected", f"Authorization failed: {error}", 400)
    if not code or not state:
        return _callback_page(f"{name} not connected", "Missing authorization code.", 400)

    try:
        await flow.complete(provider, code, state)
    except (OAuthStateError, CodeExchangeError) as exc:
        logger.warning("%s callback rejected: %s", provider, exc.message)
        return _callback_page(f"{name} not connected", exc.message, 400)
    except (ProviderUnavailableError, NoCredentialError) as exc:
        logger.error("%s callback failed: %s", provider, exc.message)
        return _callback_page(f"{name} not connected", "Please try again shortly.", 503)

    return _callback_page(f"{name} connected", "The connection is ready.")


@router.get("/{provider}/status", response_model=ConnectionStatusRead)
async def status(provider: str, user: CurrentUser, service: SyncService) -> Any:
    _require_provider(provider)
    current = await service.connection_status(provider)
    return ConnectionStatusRead(
        provider=provider,
        state=current.state,
        connected=current.state in (ConnectionState.connected, ConnectionState.expired_refreshable),
        expires_at=current.expires_at,
        updated_at=current.updated_at,
    )
