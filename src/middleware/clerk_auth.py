"""Clerk JWT verification middleware for FastAPI.

Validates the Bearer token on every request except public routes, and sets
``request.state.auth`` with the context that route handlers consume via
``get_current_user``.

The OAuth provider callback is public: the provider redirects the browser
there without our session token, and the signed ``state`` parameter
authenticates the request instead.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any

import jwt as pyjwt
from fastapi import Request, Response
from jwt import PyJWKClient
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.config import Settings, get_settings
from src.dependencies import AuthContext

logger = logging.getLogger("wellnest.auth")

# Paths that do not require authentication
PUBLIC_PATHS: set[str] = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}

PUBLIC_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^/api/v1/integrations/[a-z_]+/callback$"),
)


def _is_public(path: str) -> bool:
    if path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc"):
        return True
    return any(p.match(path) for p in PUBLIC_PATTERNS)


def _unauthorized(detail: str) -> Response:
    return Response(
        content=f'{{"detail":"{detail}"}}',
        status_code=401,
        media_type="application/json",
    )


def _parse_uuid(value: Any) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        logger.warning("Ignoring malformed wellnest_user_id claim")
        return None


class ClerkAuthMiddleware(BaseHTTPMiddleware):
    """Verify Clerk-issued JWTs and populate request.state.auth."""

    def __init__(self, app: Any, settings: Settings | None = None) -> None:
        super().__init__(app)
        self._settings = settings or get_settings()
        self._jwks_client = PyJWKClient(
            self._settings.clerk_jwks_url,
            cache_keys=True,
            lifespan=3600,
        )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if _is_public(request.url.path):
            return await call_next(request)

        # CORS preflight
        if request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return _unauthorized("Missing or invalid Authorization header")

        token = auth_header.removeprefix("Bearer ").strip()

        try:
            signing_key = self._jwks_client.get_signing_key_from_jwt(token)
            payload = pyjwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                options={"verify_aud": False},  # Clerk tokens use azp, not aud
            )
        except pyjwt.ExpiredSignatureError:
            return _unauthorized("Token expired")
        except (pyjwt.InvalidTokenError, pyjwt.PyJWKClientError) as exc:
            logger.warning("JWT validation failed: %s", exc)
            return _unauthorized("Invalid token")

        # wellnest_user_id is a custom claim from the Clerk session token template
        request.state.auth = AuthContext(
            user_id=payload.get("sub", ""),
            wellnest_user_id=_parse_uuid(payload.get("wellnest_user_id")),
            email=payload.get("email"),
            session_id=payload.get("sid"),
        )

        return await call_next(request)
