"""Wellnest API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.calendar_sync.config_loader import get_sync_config
from src.calendar_sync.credentials import PostgresCredentialStore
from src.calendar_sync.executor import AuthenticatedCallExecutor
from src.calendar_sync.google_calendar import GoogleCalendarClient
from src.calendar_sync.oauth import OAuthFlow
from src.calendar_sync.orchestrator import CalendarSyncService
from src.calendar_sync.reconciler import CalendarReconciler
from src.calendar_sync.refresher import TokenRefresher
from src.calendar_sync.scheduler import AutoSyncScheduler
from src.calendar_sync.storage import (
    PostgresCalendarEventStore,
    PostgresSharedSettingStore,
    PostgresSubscriptionStore,
)
from src.config import Settings, get_settings
from src.middleware.clerk_auth import ClerkAuthMiddleware
from src.routers import calendar, health, integrations
from src.services.supabase import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("wellnest")


def build_sync_service(
    settings: Settings, http_client: httpx.AsyncClient
) -> tuple[CalendarSyncService, OAuthFlow]:
    """Wire the Postgres-backed calendar sync components."""
    credentials = PostgresCredentialStore()
    events = PostgresCalendarEventStore()
    refresher = TokenRefresher(credentials, settings, http_client=http_client)
    executor = AuthenticatedCallExecutor(credentials, refresher, http_client)
    service = CalendarSyncService(
        calendar=GoogleCalendarClient(executor, settings.admin_account_id),
        reconciler=CalendarReconciler(events),
        credentials=credentials,
        events=events,
        settings_store=PostgresSharedSettingStore(),
        subscriptions=PostgresSubscriptionStore(),
        admin_account_id=settings.admin_account_id,
    )
    flow = OAuthFlow(credentials, settings, http_client=http_client)
    return service, flow


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Wellnest API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    await init_pool(settings)

    http_client = httpx.AsyncClient(timeout=get_sync_config().http_timeout_seconds)
    service, flow = build_sync_service(settings, http_client)
    app.state.calendar_sync = service
    app.state.oauth_flow = flow

    scheduler = AutoSyncScheduler(service)
    app.state.auto_sync = scheduler
    if settings.auto_sync_enabled:
        scheduler.start()

    try:
        yield
    finally:
        await scheduler.stop()
        await http_client.aclose()
        await close_pool()
        logger.info("Wellnest API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Wellnest API",
        description=(
            "Personal wellness dashboard — a shared calendar synced from one "
            "administrator's connection into every user's view."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware (last added runs first) ----------

    app.add_middleware(ClerkAuthMiddleware, settings=settings)

    # CORS is added last so preflight requests never reach auth
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(calendar.router, prefix=v1_prefix)
    app.include_router(integrations.router, prefix=v1_prefix)

    return app


app = create_app()
