"""OAuth provider registry.

Each provider entry describes where tokens are minted and how the client
authenticates against the token endpoint.  Client ids and secrets are read
from process settings, never stored alongside user credentials.

Available providers:
    google — Google Calendar API v3 (client credentials in the form body)
    fitbit — Fitbit Web API (client credentials via HTTP Basic)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.calendar_sync.errors import NoCredentialError
from src.config import Settings, get_settings

GOOGLE = "google"
FITBIT = "fitbit"


@dataclass(frozen=True)
class ProviderSpec:
    """Static description of one OAuth2 provider.

    Attributes:
        slug:          Registry key, also the ``provider`` column in storage.
        display_name:  Human-readable name for logging and UI.
        token_url:     Token endpoint (refresh and code exchange).
        authorize_url: Interactive authorization endpoint.
        api_base:      Base URL of the resource API.
        scopes:        Scopes requested during authorization.
        basic_auth:    Send client credentials as HTTP Basic instead of form fields.
        authorize_params: Extra query parameters for the authorize URL.
    """

    slug: str
    display_name: str
    token_url: str
    authorize_url: str
    api_base: str
    scopes: tuple[str, ...] = ()
    basic_auth: bool = False
    authorize_params: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str


PROVIDER_REGISTRY: dict[str, ProviderSpec] = {
    GOOGLE: ProviderSpec(
        slug=GOOGLE,
        display_name="Google Calendar",
        token_url="https://oauth2.googleapis.com/token",
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        api_base="https://www.googleapis.com/calendar/v3",
        scopes=("https://www.googleapis.com/auth/calendar",),
        # offline + consent makes Google issue a refresh token on every grant
        authorize_params={"access_type": "offline", "prompt": "consent"},
    ),
    FITBIT: ProviderSpec(
        slug=FITBIT,
        display_name="Fitbit",
        token_url="https://api.fitbit.com/oauth2/token",
        authorize_url="https://www.fitbit.com/oauth2/authorize",
        api_base="https://api.fitbit.com",
        scopes=("activity", "heartrate", "nutrition", "profile", "sleep", "weight"),
        basic_auth=True,
    ),
}


def get_provider(slug: str) -> ProviderSpec:
    """Return the provider spec for a slug.

    Raises:
        KeyError: If the slug is not registered.
    """
    if slug not in PROVIDER_REGISTRY:
        raise KeyError(
            f"No provider registered for '{slug}'. "
            f"Available: {list(PROVIDER_REGISTRY)}"
        )
    return PROVIDER_REGISTRY[slug]


def client_credentials(slug: str, settings: Settings | None = None) -> ClientCredentials:
    """Resolve the OAuth client id/secret for a provider from settings.

    Raises:
        NoCredentialError: If the client id or secret is not configured.
    """
    s = settings or get_settings()
    client_id = getattr(s, f"{slug}_client_id", "")
    client_secret = getattr(s, f"{slug}_client_secret", "")
    if not client_id or not client_secret:
        raise NoCredentialError(f"OAuth client for '{slug}' is not configured")
    return ClientCredentials(client_id=client_id, client_secret=client_secret)
