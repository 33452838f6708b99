"""Server-side OAuth2 authorization-code flow for provider connections.

1. ``authorization_url`` returns the provider consent URL.  The ``state``
   parameter is a short-lived HS256 token naming the account and provider,
   so the callback needs no server-side session.
2. The provider redirects to ``/integrations/{provider}/callback``;
   ``complete`` verifies the state, exchanges the code at the token
   endpoint and writes an active credential.
3. The browser polls ``/integrations/{provider}/status`` until the
   connection reports ``connected``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable
from urllib.parse import urlencode
from uuid import UUID

import httpx
import jwt

from src.calendar_sync.base import Credential, OAuthTokens, utc_now
from src.calendar_sync.config_loader import get_sync_config
from src.calendar_sync.credentials import CredentialStore
from src.calendar_sync.errors import IntegrationError, ProviderUnavailableError
from src.calendar_sync.providers import client_credentials, get_provider
from src.calendar_sync.refresher import request_tokens
from src.config import Settings, get_settings

logger = logging.getLogger("wellnest.calendar_sync.oauth")

_STATE_ALGORITHM = "HS256"
_STATE_AUDIENCE = "wellnest:oauth-callback"


class OAuthStateError(IntegrationError):
    """The callback ``state`` was missing, expired, tampered with or for another provider."""


class CodeExchangeError(IntegrationError):
    """The provider refused to exchange the authorization code."""


class OAuthFlow:
    """Start and finish provider authorization for one account.

    Usage::

        flow = OAuthFlow(credential_store, settings)
        url = flow.authorization_url(admin_id, "google")
        credential = await flow.complete(code, state)
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._http_client = http_client
        self._clock = clock

    def redirect_uri(self, provider: str) -> str:
        base = self._settings.oauth_redirect_base_url.rstrip("/")
        return f"{base}/{provider}/callback"

    def authorization_url(self, account_id: UUID, provider: str) -> str:
        """Return the consent URL for ``provider``.

        Raises:
            KeyError:          Unknown provider.
            NoCredentialError: OAuth client not configured.
        """
        spec = get_provider(provider)
        client = client_credentials(provider, self._settings)
        params = {
            "client_id": client.client_id,
            "redirect_uri": self.redirect_uri(provider),
            "response_type": "code",
            "scope": " ".join(spec.scopes),
            "state": self.issue_state(account_id, provider),
            **spec.authorize_params,
        }
        return f"{spec.authorize_url}?{urlencode(params)}"

    def issue_state(self, account_id: UUID, provider: str) -> str:
        now = self._clock()
        claims = {
            "sub": str(account_id),
            "provider": provider,
            "aud": _STATE_AUDIENCE,
            "iat": now,
            "exp": now + timedelta(seconds=self._settings.oauth_state_ttl_seconds),
        }
        return jwt.encode(claims, self._settings.oauth_state_secret, algorithm=_STATE_ALGORITHM)

    def verify_state(self, state: str, provider: str) -> UUID:
        """Return the account id carried by a valid state token.

        Raises:
            OAuthStateError: Invalid signature, expired, or wrong provider.
        """
        try:
            claims = jwt.decode(
                state,
                self._settings.oauth_state_secret,
                algorithms=[_STATE_ALGORITHM],
                audience=_STATE_AUDIENCE,
                # expiry is checked against the injected clock below
                options={"require": ["exp", "sub"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as exc:
            raise OAuthStateError(f"Invalid OAuth state: {exc}") from exc

        if claims["exp"] <= self._clock().timestamp():
            raise OAuthStateError("OAuth state has expired")

        if claims.get("provider") != provider:
            raise OAuthStateError("OAuth state was issued for a different provider")
        try:
            return UUID(claims["sub"])
        except (KeyError, ValueError) as exc:
            raise OAuthStateError("OAuth state has no valid subject") from exc

    async def complete(self, provider: str, code: str, state: str) -> Credential:
        """Exchange an authorization code and store the resulting credential.

        Raises:
            OAuthStateError:          State did not verify.
            CodeExchangeError:        Provider rejected the code.
            ProviderUnavailableError: Token endpoint unreachable or erroring.
        """
        account_id = self.verify_state(state, provider)
        spec = get_provider(provider)
        client = client_credentials(provider, self._settings)

        try:
            response = await request_tokens(
                spec,
                client,
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri(provider),
                },
                http_client=self._http_client,
                timeout=get_sync_config().http_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                f"{spec.display_name} token endpoint unreachable: {exc}"
            ) from exc

        if response.status_code in (400, 401):
            logger.warning(
                "%s rejected the authorization code: %s", provider, response.text[:200]
            )
            raise CodeExchangeError(f"{spec.display_name} rejected the authorization code")
        if not response.is_success:
            raise ProviderUnavailableError(
                f"{spec.display_name} token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        now = self._clock()
        try:
            tokens = OAuthTokens.from_token_response(response.json(), now)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderUnavailableError(
                f"{spec.display_name} token response was malformed"
            ) from exc

        existing = await self._store.get(account_id, provider)
        base = existing or Credential(account_id=account_id, provider=provider)
        credential = base.with_tokens(tokens, now)
        await self._store.put(credential)

        logger.info(
            "Connected %s for account %s (refresh token %s)",
            provider,
            account_id,
            "present" if credential.refresh_token else "missing",
        )
        return credential
