"""Token Refresher — exchanges a stored refresh token for a new access token.

Refreshes are not serialized: several callers may refresh the same
credential at once.  Each result is independently valid and the last write
to the Credential Store wins, so callers must use the token returned to them
rather than assume it is the one currently stored.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

import httpx

from src.calendar_sync.base import OAuthTokens, utc_now
from src.calendar_sync.config_loader import get_sync_config
from src.calendar_sync.credentials import CredentialStore
from src.calendar_sync.errors import (
    InvalidRefreshTokenError,
    NoCredentialError,
    ProviderUnavailableError,
)
from src.calendar_sync.providers import (
    ClientCredentials,
    ProviderSpec,
    client_credentials,
    get_provider,
)
from src.config import Settings

logger = logging.getLogger("wellnest.calendar_sync.refresher")


async def request_tokens(
    spec: ProviderSpec,
    client: ClientCredentials,
    form: dict[str, str],
    *,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 15.0,
) -> httpx.Response:
    """POST a form-encoded grant to the provider token endpoint.

    Client credentials go in the form body, or as HTTP Basic auth for
    providers that require it.  Transport errors propagate as httpx errors.
    """
    data = dict(form)
    auth = None
    if spec.basic_auth:
        auth = httpx.BasicAuth(client.client_id, client.client_secret)
    else:
        data["client_id"] = client.client_id
        data["client_secret"] = client.client_secret

    if http_client:
        return await http_client.post(spec.token_url, data=data, auth=auth, timeout=timeout)
    async with httpx.AsyncClient(timeout=timeout) as http:
        return await http.post(spec.token_url, data=data, auth=auth)


class TokenRefresher:
    """Mint new access tokens and write them back to the Credential Store.

    Usage::

        refresher = TokenRefresher(store, settings)
        access_token = await refresher.refresh(admin_id, "google")
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the refresher.

        Args:
            store:       Credential Store to read from and write back to.
            settings:    Process settings holding OAuth client ids/secrets.
            http_client: Optional pre-configured httpx client (for testing).
            timeout:     Per-request timeout; defaults to the sync config value.
            clock:       Returns the current UTC time.
        """
        self._store = store
        self._settings = settings
        self._http_client = http_client
        self._timeout = timeout or get_sync_config().http_timeout_seconds
        self._clock = clock

    async def refresh(self, account_id: UUID, provider: str) -> str:
        """Refresh the access token for an (account, provider) credential.

        Returns:
            The new access token.

        Raises:
            NoCredentialError:        No credential, refresh token or OAuth client.
            InvalidRefreshTokenError: Provider rejected the refresh token (HTTP 400),
                                      or the credential was already marked inactive.
            ProviderUnavailableError: Any other failure talking to the token endpoint.
        """
        credential = await self._store.get(account_id, provider)
        if credential is None or not credential.refresh_token:
            raise NoCredentialError(
                f"No {provider} refresh token stored for account {account_id}"
            )
        if not credential.is_active:
            raise InvalidRefreshTokenError(
                f"{provider} credential for account {account_id} needs re-authorization"
            )

        try:
            spec = get_provider(provider)
        except KeyError as exc:
            raise NoCredentialError(str(exc)) from exc
        client = client_credentials(provider, self._settings)

        logger.info("Refreshing %s token for account %s", provider, account_id)
        try:
            response = await request_tokens(
                spec,
                client,
                {"grant_type": "refresh_token", "refresh_token": credential.refresh_token},
                http_client=self._http_client,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s token endpoint unreachable: %s", provider, exc)
            raise ProviderUnavailableError(
                f"{spec.display_name} token endpoint unreachable: {exc}"
            ) from exc

        now = self._clock()
        if response.status_code == 400:
            logger.warning(
                "%s rejected the refresh token for account %s: %s",
                provider,
                account_id,
                response.text[:200],
            )
            await self._store.put(credential.expired(now))
            raise InvalidRefreshTokenError(
                f"{spec.display_name} refresh token is invalid; re-authorization required"
            )
        if not response.is_success:
            logger.warning(
                "%s token refresh failed with HTTP %d", provider, response.status_code
            )
            raise ProviderUnavailableError(
                f"{spec.display_name} token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            tokens = OAuthTokens.from_token_response(response.json(), now)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderUnavailableError(
                f"{spec.display_name} token response was malformed"
            ) from exc

        await self._store.put(credential.with_tokens(tokens, now))
        logger.info(
            "Refreshed %s token for account %s (expires %s)",
            provider,
            account_id,
            tokens.expires_at.isoformat() if tokens.expires_at else "unknown",
        )
        return tokens.access_token
