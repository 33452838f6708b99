"""Application configuration loaded from environment variables."""

import uuid
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Wellnest"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Supabase ---
    supabase_url: str
    supabase_service_role_key: str  # server-side only, never expose to client
    supabase_db_url: str  # direct postgres connection string for asyncpg
    db_pool_min_size: int = 2
    db_pool_max_size: int = 20

    # --- Clerk ---
    clerk_secret_key: str
    clerk_publishable_key: str
    clerk_jwks_url: str = "https://api.clerk.com/v1/jwks"

    # --- Shared provider connection ---
    # The account whose credentials back the shared calendar for every user.
    admin_account_id: uuid.UUID

    # --- Google ---
    google_client_id: str = ""
    google_client_secret: str = ""

    # --- Fitbit ---
    fitbit_client_id: str = ""
    fitbit_client_secret: str = ""

    # --- OAuth ---
    oauth_redirect_base_url: str = "http://localhost:8000/api/v1/integrations"
    oauth_state_secret: str
    oauth_state_ttl_seconds: int = 600

    # --- Sync ---
    auto_sync_enabled: bool = True

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
