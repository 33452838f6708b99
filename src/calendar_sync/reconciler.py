"""Calendar Reconciler — merges a remote event list into local storage.

A pure upsert keyed on (owner, remote_id):
- unseen remote events are inserted,
- events whose remote_id already exists are overwritten in place,
- events with a missing or unparseable start/end are skipped.

Each event is reconciled independently; a failure on one never aborts the
rest of the batch.  Re-running with identical input yields zero inserts and
leaves every field unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence
from uuid import UUID

from src.calendar_sync.base import CalendarEvent, RemoteEvent
from src.calendar_sync.config_loader import get_sync_config
from src.calendar_sync.storage import CalendarEventStore

logger = logging.getLogger("wellnest.calendar_sync.reconciler")


def is_health_related(
    title: str, description: str | None, keywords: Iterable[str]
) -> bool:
    """Return True if any keyword occurs (case-insensitively) in title or description."""
    text = f"{title} {description or ''}".lower()
    return any(keyword in text for keyword in keywords)


@dataclass
class ReconcileResult:
    """Counts from one reconciliation pass.

    Attributes:
        inserted: New local rows.
        updated:  Existing rows overwritten.
        skipped:  Malformed remote events ignored.
        failed:   Events whose store write raised.
        errors:   First few failure messages, for logging and status.
    """

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class CalendarReconciler:
    """Upsert remote events into one user's local rows.

    Usage::

        reconciler = CalendarReconciler(event_store)
        result = await reconciler.reconcile(user_id, remote_events)
    """

    def __init__(
        self,
        store: CalendarEventStore,
        health_keywords: Sequence[str] | None = None,
    ) -> None:
        self._store = store
        self._keywords = tuple(
            k.lower() for k in (health_keywords or get_sync_config().health_keywords)
        )

    def to_local(self, owner_user_id: UUID, remote: RemoteEvent) -> CalendarEvent | None:
        """Project a remote event onto a local row, or None if it is malformed."""
        if not remote.remote_id or remote.start is None or remote.end is None:
            return None
        return CalendarEvent(
            user_id=owner_user_id,
            remote_id=remote.remote_id,
            title=remote.title,
            description=remote.description,
            start=remote.start,
            end=remote.end,
            is_health_related=is_health_related(
                remote.title, remote.description, self._keywords
            ),
        )

    async def reconcile(
        self, owner_user_id: UUID, remote_events: Iterable[RemoteEvent]
    ) -> ReconcileResult:
        result = ReconcileResult()

        for remote in remote_events:
            local = self.to_local(owner_user_id, remote)
            if local is None:
                result.skipped += 1
                logger.info(
                    "Skipping malformed remote event %r (missing id, start or end)",
                    remote.remote_id,
                )
                continue

            try:
                inserted = await self._store.upsert(local)
            except Exception as exc:
                result.failed += 1
                if len(result.errors) < 5:
                    result.errors.append(f"{remote.remote_id}: {exc}")
                logger.exception(
                    "Failed to store event %s for user %s", remote.remote_id, owner_user_id
                )
                continue

            if inserted:
                result.inserted += 1
            else:
                result.updated += 1

        logger.info(
            "Reconciled events for %s: %d inserted, %d updated, %d skipped, %d failed",
            owner_user_id,
            result.inserted,
            result.updated,
            result.skipped,
            result.failed,
        )
        return result
