"""Credential Store — persisted OAuth credentials per (account, provider).

Writes replace the full record in a single statement, so concurrent writers
to the same key never interleave partial updates.  The last write wins;
overlapping refreshes are tolerated because every refreshed token is valid.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from uuid import UUID

from src.calendar_sync.base import Credential
from src.calendar_sync.storage import build_upsert_query
from src.services import supabase

logger = logging.getLogger("wellnest.calendar_sync.credentials")

_COLUMNS = [
    "account_id",
    "provider",
    "access_token",
    "refresh_token",
    "expires_at",
    "is_active",
    "scope",
]


class CredentialStore(ABC):
    """Persistence contract for OAuth credentials."""

    @abstractmethod
    async def get(self, account_id: UUID, provider: str) -> Credential | None:
        """Return the stored credential, or None if nothing is configured."""

    @abstractmethod
    async def put(self, credential: Credential) -> None:
        """Atomically replace the credential for its (account, provider) key."""


class PostgresCredentialStore(CredentialStore):
    """Credential store backed by the ``provider_credentials`` table."""

    _UPSERT = build_upsert_query(
        "provider_credentials",
        _COLUMNS,
        conflict_columns=["account_id", "provider"],
    )

    async def get(self, account_id: UUID, provider: str) -> Credential | None:
        row = await supabase.fetchrow(
            "SELECT * FROM provider_credentials WHERE account_id = $1 AND provider = $2",
            account_id,
            provider,
        )
        if row is None:
            return None
        return Credential(
            account_id=row["account_id"],
            provider=row["provider"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=row["expires_at"],
            is_active=row["is_active"],
            scope=list(row["scope"] or []),
            updated_at=row["updated_at"],
        )

    async def put(self, credential: Credential) -> None:
        await supabase.execute(
            self._UPSERT,
            credential.account_id,
            credential.provider,
            credential.access_token,
            credential.refresh_token,
            credential.expires_at,
            credential.is_active,
            credential.scope,
        )
        logger.debug(
            "Stored %s credential for account %s (active=%s)",
            credential.provider,
            credential.account_id,
            credential.is_active,
        )
