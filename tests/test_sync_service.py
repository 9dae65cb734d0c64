"""Tests for the integration sync service lifecycle, policy wiring and registry."""

import asyncio
import time
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from companion_sync.clients.types import CalendarEvent, CanvasAssignment, CanvasCourse
from companion_sync.models import AttemptStatus, DeadlineOwnership, Priority
from companion_sync.notifications.dispatcher import NotificationDispatcher
from companion_sync.sync.auto_healing import HealingState
from companion_sync.sync.config import AutoHealingConfig, SyncConfig
from companion_sync.sync.exceptions import CircuitOpenError, RemoteApiError
from companion_sync.sync.recovery import SyncFailureRecoveryTracker
from companion_sync.sync.registry import UserSyncRegistry
from companion_sync.sync.service import IntegrationSyncService, SyncResult
from companion_sync.sync.services import CanvasSyncService, TPSyncService


class Clock:
    def __init__(self, start=datetime(2026, 2, 1, 12, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeSyncService(IntegrationSyncService):
    """Service whose fetch outcomes are scripted by the test."""

    integration = "canvas"

    def __init__(self, *args, outcomes=None, delay=0.0, **kwargs):
        super().__init__(*args, **kwargs)
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.fetch_calls = 0

    def build_client(self, credentials):
        client = Mock()
        client.is_configured.return_value = True
        return client

    def fetch(self, client):
        self.fetch_calls += 1
        if self.delay:
            time.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def apply(self, payload):
        return SyncResult(self.integration, success=True, counts={"items": 1})


FAST_HEALING = AutoHealingConfig(
    base_backoff_seconds=0.05, max_backoff_seconds=1.0, circuit_failure_threshold=4, circuit_open_seconds=10.0
)
RETRY_HEALING = AutoHealingConfig(
    base_backoff_seconds=0.3, max_backoff_seconds=1.0, circuit_failure_threshold=4, circuit_open_seconds=10.0
)


def failure(message="Internal Server Error"):
    return RemoteApiError("canvas", message, status_code=500)


@pytest.fixture
def connected_db(db):
    db.set_user_connection("user-1", "canvas", {"token": "secret", "base_url": "https://canvas.example.edu"})
    return db


async def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def test_unconfigured_integration_is_a_successful_no_op(db):
    service = FakeSyncService(db, "user-1")

    result = asyncio.run(service.sync())

    assert result.success
    assert result.error == "Canvas not configured"
    assert service.fetch_calls == 0
    assert db.get_integration_sync_attempts(user_id="user-1") == []
    assert not service.is_configured()


def test_success_is_recorded_once(connected_db):
    tracker = SyncFailureRecoveryTracker()
    service = FakeSyncService(connected_db, "user-1", recovery_tracker=tracker)

    result = asyncio.run(service.sync())

    assert result.success
    attempts = connected_db.get_integration_sync_attempts(user_id="user-1")
    assert [a.status for a in attempts] == [AttemptStatus.SUCCESS]
    assert service.get_auto_healing_status()["state"] == "closed"
    assert tracker.get_snapshot().integrations[0]["last_success_at"] is not None


def test_failure_is_converted_and_recorded(connected_db):
    service = FakeSyncService(connected_db, "user-1", outcomes=[failure()])

    result = asyncio.run(service.sync())

    assert not result.success
    assert "500" in result.error
    assert service.policy.consecutive_failures == 1
    attempt = connected_db.get_integration_sync_attempts(user_id="user-1")[0]
    assert attempt.status is AttemptStatus.FAILURE
    assert attempt.root_cause.value == "provider"


def test_concurrent_triggers_share_one_run(connected_db):
    service = FakeSyncService(connected_db, "user-1", delay=0.2)

    async def run_test():
        return await asyncio.gather(service.sync(), service.trigger_sync(), service.sync())

    results = asyncio.run(run_test())

    assert service.fetch_calls == 1
    assert results[0] is results[1] is results[2]
    assert len(connected_db.get_integration_sync_attempts(user_id="user-1")) == 1


def test_auto_sync_is_skipped_during_backoff(connected_db):
    clock = Clock()
    service = FakeSyncService(connected_db, "user-1", outcomes=[failure()], now_fn=clock)

    async def run_test():
        first = await service.run_auto_sync()
        second = await service.run_auto_sync()
        return first, second

    first, second = asyncio.run(run_test())

    assert not first.success
    assert second is None
    assert service.fetch_calls == 1
    state = service.policy.get_state()
    assert state.skipped_attempts == 1
    assert state.last_skip_reason == "backoff"
    statuses = sorted(a.status.value for a in connected_db.get_integration_sync_attempts(user_id="user-1"))
    assert statuses == ["failure", "skipped"]


def test_recovery_prompt_is_delivered_after_repeated_failures(connected_db):
    notifier = Mock()
    tracker = SyncFailureRecoveryTracker(prompt_threshold=3)
    service = FakeSyncService(
        connected_db, "user-1",
        outcomes=[failure("Connection timed out")] * 3,
        recovery_tracker=tracker,
        notifier=notifier,
    )

    async def run_test():
        for _ in range(3):
            await service.trigger_sync()

    asyncio.run(run_test())

    assert notifier.deliver.call_count == 1
    user_id, prompt = notifier.deliver.call_args[0]
    assert user_id == "user-1"
    assert prompt.source == "sync-recovery"
    assert prompt.title == "Canvas sync needs attention"
    assert "timed out" not in prompt.message
    # Never synced before, so the data counts as stale
    assert prompt.priority is Priority.HIGH


def test_failed_auto_sync_arms_one_retry(connected_db):
    clock = Clock()
    service = FakeSyncService(
        connected_db, "user-1", outcomes=[failure()], auto_healing=RETRY_HEALING,
        interval_seconds=3600, now_fn=clock,
    )

    async def run_test():
        await service.start()
        await wait_for(lambda: service.retry_pending)
        clock.advance(seconds=1)
        await wait_for(lambda: service.fetch_calls == 2 and service.policy.state is HealingState.CLOSED)
        assert not service.retry_pending
        await service.stop()

    asyncio.run(run_test())

    statuses = [a.status for a in connected_db.get_integration_sync_attempts(user_id="user-1")]
    assert sorted(s.value for s in statuses) == ["failure", "success"]


def test_retry_is_not_armed_when_the_next_tick_comes_first(connected_db):
    service = FakeSyncService(
        connected_db, "user-1", outcomes=[failure()], auto_healing=FAST_HEALING,
        interval_seconds=0.01, now_fn=Clock(),
    )

    async def run_test():
        await service.start()
        await wait_for(lambda: service.fetch_calls >= 1 and not service._flight.tasks())
        assert not service.retry_pending
        await service.stop()

    asyncio.run(run_test())


def test_stop_cancels_periodic_task_and_pending_retry(connected_db):
    service = FakeSyncService(
        connected_db, "user-1", outcomes=[failure()], auto_healing=RETRY_HEALING,
        interval_seconds=3600, now_fn=Clock(),
    )

    async def run_test():
        await service.start()
        await wait_for(lambda: service.retry_pending)
        await service.stop()
        assert not service.running
        assert not service.retry_pending

    asyncio.run(run_test())


def test_stop_does_not_cancel_in_flight_sync(connected_db):
    service = FakeSyncService(connected_db, "user-1", delay=0.2, interval_seconds=3600)

    async def run_test():
        await service.start()
        await wait_for(lambda: bool(service._flight.tasks()))
        in_flight = list(service._flight.tasks().values())
        await service.stop()
        results = await asyncio.gather(*in_flight)
        return results

    results = asyncio.run(run_test())

    assert results[0].success
    attempts = connected_db.get_integration_sync_attempts(user_id="user-1")
    assert [a.status for a in attempts] == [AttemptStatus.SUCCESS]


def test_open_circuit_rejects_unforced_manual_sync(connected_db):
    config = AutoHealingConfig(base_backoff_seconds=30, max_backoff_seconds=60,
                               circuit_failure_threshold=2, circuit_open_seconds=600)
    service = FakeSyncService(connected_db, "user-1", outcomes=[failure(), failure()],
                              auto_healing=config, now_fn=Clock())

    async def run_test():
        await service.sync()
        await service.sync()
        with pytest.raises(CircuitOpenError):
            await service.trigger_sync(respect_policy=True)
        return await service.trigger_sync()

    forced = asyncio.run(run_test())

    assert forced.success
    assert service.policy.state is HealingState.CLOSED


def test_canvas_service_bridges_and_queues_notifications(db):
    db.set_user_connection("user-1", "canvas", {"token": "secret", "base_url": "https://canvas.example.edu"})
    dispatcher = NotificationDispatcher(db, "user-1")
    service = CanvasSyncService(db, "user-1", dispatcher=dispatcher)
    client = Mock()
    client.is_configured.return_value = True
    client.get_courses.return_value = [CanvasCourse(id=1, name="Algorithms")]
    client.get_all_assignments.return_value = [
        CanvasAssignment(id=101, course_id=1, name="Problem set 1", due_at="2026-03-05T23:59:00Z", points_possible=10),
        CanvasAssignment(id=102, course_id=1, name="Final project", due_at="2026-05-01T12:00:00Z", points_possible=200),
    ]
    service.build_client = lambda credentials: client

    result = asyncio.run(service.sync())

    assert result.success
    assert result.deadline_bridge.created == 2
    assert result.counts == {"courses": 1, "assignments": 2}
    queued = db.get_scheduled_notifications("user-1")
    assert sorted(item.notification.priority.value for item in queued) == ["high", "medium"]


def test_failed_fetch_never_deletes_existing_deadlines(seeded_db):
    seeded_db.set_user_connection("user-1", "canvas", {"token": "secret", "base_url": "https://canvas.example.edu"})
    service = CanvasSyncService(seeded_db, "user-1")
    client = Mock()
    client.is_configured.return_value = True
    client.get_courses.return_value = [CanvasCourse(id=1, name="Algorithms")]
    client.get_all_assignments.side_effect = RemoteApiError("canvas", "Service Unavailable", status_code=503)
    service.build_client = lambda credentials: client

    result = asyncio.run(service.sync())

    assert not result.success
    assert len(seeded_db.get_deadlines("user-1", owner="canvas")) == 1


def test_tp_service_imports_schedule_and_exams(db):
    db.set_user_connection("user-1", "tp", {"ical_url": "https://tp.example.edu/ical/abc"})
    service = TPSyncService(db, "user-1")
    client = Mock()
    client.is_configured.return_value = True
    client.get_events.return_value = [
        CalendarEvent(summary="DAT120 Lecture", start_time=datetime(2026, 5, 1, 9, 0)),
        CalendarEvent(summary="DAT120 Exam", start_time=datetime(2026, 6, 1, 9, 0), uid="x1"),
    ]
    service.build_client = lambda credentials: client

    result = asyncio.run(service.sync())

    assert result.success
    assert result.schedule.created == 2
    assert result.deadline_bridge.created == 1
    assert db.get_deadlines("user-1", owner="tp")[0].ownership == DeadlineOwnership("tp", "x1|2026-06-01T09:00:00")
    assert all(event.duration_minutes == 120 for event in db.get_schedule_events("user-1"))


def test_registry_builds_bundles_lazily(db):
    registry = UserSyncRegistry(db, SyncConfig())

    bundle = registry.get("user-1")

    assert registry.get("user-1") is bundle
    assert set(bundle.services) == {"canvas", "blackboard", "teams", "github", "tp", "timeedit"}
    assert bundle.services["canvas"].recovery_tracker is bundle.recovery_tracker
    assert registry.users() == ["user-1"]


def test_registry_start_and_teardown(db):
    db.set_user_connection("user-1", "tp", {"ical_url": "https://tp.example.edu/ical/abc"})
    registry = UserSyncRegistry(db, SyncConfig())
    client = Mock()
    client.is_configured.return_value = True
    client.get_events.return_value = []
    registry.get("user-1").services["tp"].build_client = lambda credentials: client

    async def run_test():
        bundle = await registry.start_user("user-1")
        running = {name for name, service in bundle.services.items() if service.running}
        # Let the immediate first attempt settle before tearing down
        await wait_for(lambda: client.get_events.called and not bundle.single_flight.tasks())
        existed = await registry.teardown("user-1", delete_data=True)
        return bundle, running, existed

    bundle, running, existed = asyncio.run(run_test())

    assert running == {"tp"}
    assert existed
    assert not bundle.dispatcher.running
    assert registry.users() == []
    assert db.get_user_connection("user-1", "tp") is None
