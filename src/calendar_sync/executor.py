"""Authenticated Call Executor — the single path for token-protected provider calls.

For every logical call:
1. Load the credential; refresh first if the token is missing, has no expiry,
   or expires within the configured buffer.
2. Send the request with ``Authorization: Bearer <token>``.
3. On 401, refresh exactly once more and retry the request exactly once.
4. A second 401 (or a failed refresh) is ``AuthFailedError``; any other
   non-2xx status is ``ProviderError`` and is not retried.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

import httpx

from src.calendar_sync.base import utc_now
from src.calendar_sync.config_loader import get_sync_config
from src.calendar_sync.credentials import CredentialStore
from src.calendar_sync.errors import (
    AuthFailedError,
    ProviderError,
    ProviderUnavailableError,
    RefreshError,
)
from src.calendar_sync.refresher import TokenRefresher

logger = logging.getLogger("wellnest.calendar_sync.executor")


class AuthenticatedCallExecutor:
    """Wrap outbound provider calls with expiry checks and refresh-on-401.

    Usage::

        executor = AuthenticatedCallExecutor(store, refresher, http_client)
        response = await executor.call(admin_id, "google", "GET", url, params={...})
        data = response.json()
    """

    def __init__(
        self,
        store: CredentialStore,
        refresher: TokenRefresher,
        http_client: httpx.AsyncClient,
        buffer_seconds: int | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the executor.

        Args:
            store:          Credential Store holding the current access token.
            refresher:      Token Refresher used before the call and after a 401.
            http_client:    Shared httpx client for resource calls.
            buffer_seconds: Refresh tokens expiring within this window.
            timeout:        Per-request timeout.
            clock:          Returns the current UTC time.
        """
        config = get_sync_config()
        self._store = store
        self._refresher = refresher
        self._http = http_client
        self._buffer_seconds = (
            config.refresh_buffer_seconds if buffer_seconds is None else buffer_seconds
        )
        self._timeout = timeout or config.http_timeout_seconds
        self._clock = clock

    async def call(
        self,
        account_id: UUID,
        provider: str,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Issue an authenticated request on behalf of ``account_id``.

        Returns:
            The 2xx response.

        Raises:
            AuthFailedError:          Refresh failed, or 401 persisted after one retry.
            ProviderError:            Non-auth error status from the resource endpoint.
            ProviderUnavailableError: Network failure or timeout.
        """
        credential = await self._store.get(account_id, provider)
        access_token = credential.access_token if credential else None

        if credential is None or credential.needs_refresh(self._clock(), self._buffer_seconds):
            logger.debug("%s token for %s missing or expiring; refreshing", provider, account_id)
            access_token = await self._refresh(account_id, provider)

        response = await self._send(method, url, access_token, params, json, headers)

        if response.status_code == 401:
            logger.info("%s %s returned 401; refreshing once and retrying", method, url)
            access_token = await self._refresh(account_id, provider)
            response = await self._send(method, url, access_token, params, json, headers)
            if response.status_code == 401:
                raise AuthFailedError(
                    f"{provider} still rejected the request after a token refresh"
                )

        if not response.is_success:
            logger.warning(
                "%s %s failed with HTTP %d", method, url, response.status_code
            )
            raise ProviderError(response.status_code, response.text)

        return response

    async def _refresh(self, account_id: UUID, provider: str) -> str:
        try:
            return await self._refresher.refresh(account_id, provider)
        except RefreshError as exc:
            raise AuthFailedError(
                f"Could not obtain a {provider} access token: {exc.message}", cause=exc
            ) from exc

    async def _send(
        self,
        method: str,
        url: str,
        access_token: str | None,
        params: dict[str, Any] | None,
        json: Any,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        request_headers = {"Accept": "application/json", **(headers or {})}
        request_headers["Authorization"] = f"Bearer {access_token}"
        try:
            return await self._http.request(
                method,
                url,
                params=params,
                json=json,
                headers=request_headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise ProviderUnavailableError(f"{method} {url} failed: {exc}") from exc
