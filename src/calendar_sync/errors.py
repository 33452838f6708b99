"""Typed failures raised by the credential and calendar sync components.

Refresh failures:
    NoCredentialError         — nothing configured for the account/provider.
    InvalidRefreshTokenError  — provider rejected the refresh token; needs re-authorization.
    ProviderUnavailableError  — transient network/5xx failure; retry later.

Call failures:
    AuthFailedError           — refresh and single retry exhausted within one call.
    ProviderError             — non-auth error status from the resource endpoint.

Sync failures:
    SyncError                 — orchestrator-level classification shown to users.
"""

from __future__ import annotations

from enum import Enum


class IntegrationError(Exception):
    """Base class for every credential / remote provider failure."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class RefreshError(IntegrationError):
    """Token refresh did not produce a usable access token."""


class CallError(IntegrationError):
    """An authenticated call to a provider resource failed."""


class NoCredentialError(RefreshError):
    """No credential (or no refresh token) stored for the account/provider."""


class InvalidRefreshTokenError(RefreshError):
    """The provider reported the refresh token as invalid.

    Fatal for the credential until an administrator re-authorizes.
    """


class ProviderUnavailableError(RefreshError, CallError):
    """Network failure, timeout or unexpected status from the provider.

    Safe to retry on the next scheduled cycle.
    """

    def __init__(self, message: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthFailedError(CallError):
    """The call could not be authenticated.

    ``cause`` holds the refresh failure when one triggered this error, or
    None when the provider kept answering 401 after a fresh token.
    """

    def __init__(self, message: str = "", cause: RefreshError | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ProviderError(CallError):
    """A non-auth error status from the resource endpoint.  Not retried."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"Provider returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class SyncFailure(str, Enum):
    not_connected = "not_connected"
    auth_failed = "auth_failed"
    provider_unavailable = "provider_unavailable"
    provider_error = "provider_error"


_SYNC_MESSAGES: dict[SyncFailure, str] = {
    SyncFailure.not_connected: (
        "The shared calendar is not connected. Contact your administrator."
    ),
    SyncFailure.auth_failed: (
        "The calendar connection has expired. The administrator must reconnect it."
    ),
    SyncFailure.provider_unavailable: (
        "The calendar provider is temporarily unavailable. Try again shortly."
    ),
    SyncFailure.provider_error: "The calendar provider rejected the request.",
}


class SyncError(IntegrationError):
    """Orchestrator failure with a user-facing classification."""

    def __init__(self, kind: SyncFailure, detail: str = "") -> None:
        super().__init__(_SYNC_MESSAGES[kind])
        self.kind = kind
        self.detail = detail

    @property
    def needs_admin(self) -> bool:
        return self.kind in (SyncFailure.not_connected, SyncFailure.auth_failed)

    @property
    def retryable(self) -> bool:
        return self.kind is SyncFailure.provider_unavailable


def classify_failure(exc: IntegrationError) -> SyncError:
    """Map a refresh/call failure onto the user-facing sync taxonomy."""
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, AuthFailedError) and exc.cause is not None:
        return classify_failure(exc.cause)
    if isinstance(exc, NoCredentialError):
        return SyncError(SyncFailure.not_connected, exc.message)
    if isinstance(exc, (InvalidRefreshTokenError, AuthFailedError)):
        return SyncError(SyncFailure.auth_failed, exc.message)
    if isinstance(exc, ProviderUnavailableError):
        return SyncError(SyncFailure.provider_unavailable, exc.message)
    if isinstance(exc, ProviderError):
        kind = (
            SyncFailure.provider_unavailable
            if exc.status_code >= 500 or exc.status_code == 429
            else SyncFailure.provider_error
        )
        return SyncError(kind, f"HTTP {exc.status_code}: {exc.body[:200]}")
    return SyncError(SyncFailure.provider_error, exc.message)
