"""Tests for the background auto-sync scheduler."""

from __future__ import annotations

import asyncio

import pytest

from src.calendar_sync.errors import SyncError, SyncFailure
from src.calendar_sync.memory import InMemorySubscriptionStore
from src.calendar_sync.orchestrator import CalendarSyncService
from src.calendar_sync.reconciler import CalendarReconciler
from src.calendar_sync.scheduler import AutoSyncScheduler
from src.calendar_sync.tests.conftest import (
    ADMIN_ID,
    OTHER_USER_ID,
    PRIMARY_EVENTS_URL,
    TEST_USER_ID,
    FakeProvider,
    all_day_event,
)


@pytest.fixture
def subscription_store() -> InMemorySubscriptionStore:
    return InMemorySubscriptionStore([TEST_USER_ID, OTHER_USER_ID])


class _FailingService:
    def __init__(self, kind: SyncFailure) -> None:
        self.kind = kind
        self.calls = 0

    async def sync_subscribers(self):
        self.calls += 1
        raise SyncError(self.kind, "boom")


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_syncs_every_subscriber(
        self,
        provider: FakeProvider,
        service: CalendarSyncService,
        subscription_store: InMemorySubscriptionStore,
    ) -> None:
        provider.on(
            "GET", PRIMARY_EVENTS_URL,
            (200, {"items": [all_day_event("evt-1", "Gym", "2026-03-03", "2026-03-04")]}),
        )
        scheduler = AutoSyncScheduler(service, interval_seconds=60)

        results = await scheduler.run_once()

        assert {r.user_id for r in results} == {TEST_USER_ID, OTHER_USER_ID}
        assert all(r.status == "success" for r in results)
        assert subscription_store.last_status(TEST_USER_ID) == "success"
        assert scheduler.runs == 1

    @pytest.mark.asyncio
    async def test_no_subscribers_makes_no_remote_call(
        self, provider: FakeProvider, calendar_client, credential_store, event_store, setting_store
    ) -> None:
        service = CalendarSyncService(
            calendar=calendar_client,
            reconciler=CalendarReconciler(event_store),
            credentials=credential_store,
            events=event_store,
            settings_store=setting_store,
            subscriptions=InMemorySubscriptionStore(),
            admin_account_id=ADMIN_ID,
        )
        scheduler = AutoSyncScheduler(service, interval_seconds=60)

        assert await scheduler.run_once() == []
        assert provider.calls("GET", PRIMARY_EVENTS_URL) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", list(SyncFailure))
    async def test_sync_errors_are_logged_not_raised(self, kind: SyncFailure) -> None:
        failing = _FailingService(kind)
        scheduler = AutoSyncScheduler(failing, interval_seconds=60)

        assert await scheduler.run_once() == []
        assert failing.calls == 1

    @pytest.mark.asyncio
    async def test_failed_fetch_records_status_for_subscribers(
        self,
        provider: FakeProvider,
        service: CalendarSyncService,
        subscription_store: InMemorySubscriptionStore,
    ) -> None:
        provider.on("GET", PRIMARY_EVENTS_URL, (503, {"error": "backend"}))
        scheduler = AutoSyncScheduler(service, interval_seconds=60)

        assert await scheduler.run_once() == []
        assert subscription_store.last_status(OTHER_USER_ID) == SyncFailure.provider_unavailable.value


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_immediately_and_stop_cancels(self) -> None:
        failing = _FailingService(SyncFailure.not_connected)
        scheduler = AutoSyncScheduler(failing, interval_seconds=3600)

        scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        await scheduler.stop()

        assert scheduler.running is False
        assert failing.calls == 1

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self) -> None:
        scheduler = AutoSyncScheduler(_FailingService(SyncFailure.provider_error), interval_seconds=3600)

        scheduler.start()
        first = scheduler._task
        scheduler.start()

        assert scheduler._task is first
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_a_noop(self) -> None:
        scheduler = AutoSyncScheduler(_FailingService(SyncFailure.provider_error), interval_seconds=1)
        await scheduler.stop()
        assert scheduler.running is False

    def test_interval_defaults_to_config(self, sync_config) -> None:
        scheduler = AutoSyncScheduler(_FailingService(SyncFailure.provider_error))
        assert scheduler._interval == sync_config.sync.auto_sync_interval_seconds
