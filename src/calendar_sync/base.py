"""Canonical data models for the Wellnest calendar sync engine.

Every component (credential store, token refresher, call executor, calendar
client, reconciler) exchanges these types.  They are plain dataclasses with
no I/O; persistence and wire formats are handled at the edges.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("wellnest.calendar_sync")

DEFAULT_CALENDAR_ID = "primary"
UNTITLED_EVENT = "Untitled Event"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# OAuth / Auth tokens
# ---------------------------------------------------------------------------


@dataclass
class OAuthTokens:
    """OAuth token set returned by a provider token endpoint.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: Long-lived token used to obtain a new access_token.
                       None when the provider did not issue a new one.
        expires_at:    UTC datetime when the access_token expires.
        token_type:    Token type, typically "Bearer".
        scope:         Granted OAuth scopes.
        extra:         Any additional fields returned by the provider.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: list[str] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_token_response(cls, data: dict, now: datetime) -> "OAuthTokens":
        """Build tokens from a token endpoint JSON body.

        ``expires_in`` is in seconds; providers that omit it get one hour.

        Raises:
            KeyError: If ``access_token`` is missing from the body.
            TypeError: If the body is not a JSON object.
        """
        if not isinstance(data, dict):
            raise TypeError(f"token response must be an object, got {type(data).__name__}")
        expires_in = data.get("expires_in")
        if expires_in is None:
            expires_in = 3600
        scope = data.get("scope") or ""
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=now + timedelta(seconds=int(expires_in)),
            token_type=data.get("token_type", "Bearer"),
            scope=scope.split() if isinstance(scope, str) else list(scope),
            extra={
                k: v
                for k, v in data.items()
                if k not in {"access_token", "refresh_token", "expires_in", "token_type", "scope"}
            },
        )


class ConnectionState(str, Enum):
    """Lifecycle of the shared provider connection."""

    disconnected = "disconnected"
    connected = "connected"
    expired_refreshable = "expired_refreshable"
    refresh_failed = "refresh_failed"


@dataclass
class Credential:
    """Stored OAuth credential for one (account, provider) pair.

    Attributes:
        account_id:    Owning account (the administrator for shared providers).
        provider:      Provider slug, e.g. 'google' or 'fitbit'.
        access_token:  Bearer token; may be absent or stale.
        refresh_token: Long-lived token used to mint new access tokens.
        expires_at:    When access_token expires.  None means already expired.
        is_active:     False once the refresh token is known to be rejected.
        scope:         Granted scopes.
        updated_at:    Last write time.
    """

    account_id: UUID
    provider: str
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    is_active: bool = True
    scope: list[str] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utc_now)

    def needs_refresh(self, now: datetime, buffer_seconds: int = 300) -> bool:
        """Return True if the access token must not be used without refreshing.

        A missing token or expiry counts as expired.  Tokens expiring within
        ``buffer_seconds`` of ``now`` (inclusive) are treated as expired too.
        """
        if not self.access_token or self.expires_at is None:
            return True
        return (self.expires_at - now).total_seconds() <= buffer_seconds

    def state(self, now: datetime, buffer_seconds: int = 300) -> ConnectionState:
        if not self.is_active:
            return ConnectionState.refresh_failed
        if not self.needs_refresh(now, buffer_seconds):
            return ConnectionState.connected
        if self.refresh_token:
            return ConnectionState.expired_refreshable
        return ConnectionState.disconnected

    def with_tokens(self, tokens: OAuthTokens, now: datetime) -> "Credential":
        """Return a copy carrying freshly issued tokens.

        The existing refresh token is kept unless the provider issued a new one.
        """
        return replace(
            self,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or self.refresh_token,
            expires_at=tokens.expires_at,
            is_active=True,
            scope=tokens.scope or self.scope,
            updated_at=now,
        )

    def expired(self, now: datetime) -> "Credential":
        """Return a copy marked expired after the provider rejected the refresh token."""
        return replace(
            self,
            access_token=None,
            expires_at=now,
            is_active=False,
            updated_at=now,
        )


def connection_state(
    credential: Credential | None, now: datetime, buffer_seconds: int = 300
) -> ConnectionState:
    if credential is None:
        return ConnectionState.disconnected
    return credential.state(now, buffer_seconds)


# ---------------------------------------------------------------------------
# Calendar events
# ---------------------------------------------------------------------------


def _zone(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r, reading as UTC", name)
        return timezone.utc


@dataclass(frozen=True)
class EventTime:
    """Start or end of an event, either a calendar date or an instant.

    All-day events carry a ``date``; timed events carry a timezone-aware
    ``datetime`` plus the IANA zone the provider reported, if any.
    """

    value: date | datetime
    all_day: bool = False
    time_zone: str | None = None

    @classmethod
    def on(cls, day: date) -> "EventTime":
        return cls(value=day, all_day=True)

    @classmethod
    def at(cls, instant: datetime, time_zone: str | None = None) -> "EventTime":
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return cls(value=instant, all_day=False, time_zone=time_zone)

    @classmethod
    def from_payload(cls, payload: dict | None) -> "EventTime | None":
        """Parse ``{"date": ...}`` or ``{"dateTime": ..., "timeZone": ...}``.

        Returns None when the payload is missing or unparseable.  A
        ``dateTime`` without an offset is read in ``timeZone`` when one is
        given, otherwise as UTC.
        """
        if not isinstance(payload, dict):
            if payload:
                logger.warning("Could not parse event time: %r", payload)
            return None
        raw_instant = payload.get("dateTime")
        raw_day = payload.get("date")
        time_zone = payload.get("timeZone")
        if not isinstance(time_zone, str) or not time_zone:
            time_zone = None
        try:
            if isinstance(raw_instant, str) and raw_instant:
                instant = datetime.fromisoformat(raw_instant.replace("Z", "+00:00"))
                if instant.tzinfo is None and time_zone:
                    instant = instant.replace(tzinfo=_zone(time_zone))
                return cls.at(instant, time_zone)
            if isinstance(raw_day, str) and raw_day:
                return cls.on(date.fromisoformat(raw_day))
        except ValueError:
            pass
        logger.warning("Could not parse event time: %r", payload)
        return None

    def to_payload(self) -> dict:
        if self.all_day:
            return {"date": self.value.isoformat()}
        payload = {"dateTime": self.value.isoformat()}
        if self.time_zone:
            payload["timeZone"] = self.time_zone
        return payload


@dataclass
class RemoteEvent:
    """An event as returned by the remote calendar provider.

    Attributes:
        remote_id:   Provider-assigned id, unique per remote calendar.
        title:       Event summary.
        description: Optional free text.
        start:       Parsed start, None when missing or malformed.
        end:         Parsed end, None when missing or malformed.
        html_link:   Link to the event in the provider UI.
        raw:         Original payload.
    """

    remote_id: str
    title: str = UNTITLED_EVENT
    description: str | None = None
    start: EventTime | None = None
    end: EventTime | None = None
    html_link: str | None = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> "RemoteEvent":
        """Map a provider event payload.

        Items that are not objects come back with an empty ``remote_id`` so the
        reconciler skips and counts them.
        """
        if not isinstance(payload, dict):
            logger.warning("Ignoring event payload that is not an object: %r", payload)
            return cls(remote_id="")
        remote_id = payload.get("id")
        summary = payload.get("summary")
        description = payload.get("description")
        return cls(
            remote_id=str(remote_id) if remote_id else "",
            title=summary if isinstance(summary, str) and summary else UNTITLED_EVENT,
            description=description if isinstance(description, str) and description else None,
            start=EventTime.from_payload(payload.get("start")),
            end=EventTime.from_payload(payload.get("end")),
            html_link=payload.get("htmlLink"),
            raw=payload,
        )


@dataclass
class RemoteCalendar:
    """One entry from the provider's calendar list."""

    calendar_id: str
    name: str
    description: str | None = None
    primary: bool = False
    access_role: str | None = None
    background_color: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "RemoteCalendar":
        return cls(
            calendar_id=payload["id"],
            name=payload.get("summary", payload["id"]),
            description=payload.get("description"),
            primary=bool(payload.get("primary", False)),
            access_role=payload.get("accessRole"),
            background_color=payload.get("backgroundColor"),
        )


@dataclass
class CalendarEvent:
    """Local projection of a remote event for one application user.

    Attributes:
        user_id:           Owning application user.
        remote_id:         Reconciliation key; None for rows without a remote twin.
        title:             Event title.
        description:       Optional free text.
        start:             Start (date-only or instant).
        end:               End (date-only or instant).
        is_health_related: Derived at ingestion from keyword matching.
        event_id:          Local row id, assigned by the store.
        created_at:        Row creation time.
        updated_at:        Last reconciliation time.
    """

    user_id: UUID
    remote_id: str | None
    title: str
    start: EventTime
    end: EventTime
    description: str | None = None
    is_health_related: bool = False
    event_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class EventDraft:
    """User-supplied event fields for the manual add and edit paths."""

    title: str
    start: EventTime
    end: EventTime
    description: str | None = None

    def to_payload(self) -> dict:
        """Provider request body.  Timed values are sent as UTC instants."""
        return {
            "summary": self.title,
            "description": self.description or "",
            "start": _in_utc(self.start).to_payload(),
            "end": _in_utc(self.end).to_payload(),
        }


def _in_utc(when: EventTime) -> EventTime:
    if when.all_day:
        return when
    return EventTime.at(when.value.astimezone(timezone.utc), "UTC")


@dataclass
class SharedCalendarSetting:
    """Singleton selection of the remote calendar every user sees."""

    calendar_id: str = DEFAULT_CALENDAR_ID
    calendar_name: str | None = None
    managed_by: UUID | None = None
    updated_at: datetime | None = None
