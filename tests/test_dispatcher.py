"""End-to-end tests for scheduled notification dispatch and digest batching."""

import asyncio
from datetime import datetime
from unittest.mock import Mock

from companion_sync.models import Deadline, DeadlineOwnership, NotificationDraft, Priority
from companion_sync.notifications.dispatcher import NotificationDispatcher, StoreNotifier


MORNING = datetime(2026, 2, 1, 6, 15)


def draft(source, priority=Priority.MEDIUM, title="Update"):
    return NotificationDraft(source=source, title=title, message="Something changed", priority=priority)


def test_non_urgent_notifications_wait_for_the_digest_window(db):
    dispatcher = NotificationDispatcher(db, "user-1")

    queued = dispatcher.schedule(draft("canvas"), now=MORNING)

    assert queued.scheduled_for == datetime(2026, 2, 1, 8, 0)
    assert dispatcher.process_scheduled_notifications(now=MORNING).immediate == []


def test_digest_batching_end_to_end(db):
    notifier = Mock(wraps=StoreNotifier(db))
    dispatcher = NotificationDispatcher(db, "user-1", notifier=notifier)
    for source in ("canvas", "teams", "canvas"):
        dispatcher.schedule(draft(source), now=MORNING)

    result = dispatcher.process_scheduled_notifications(now=datetime(2026, 2, 1, 8, 0))

    assert result.immediate == []
    assert result.batched == 3
    assert result.removed == 3
    assert notifier.deliver.call_count == 1
    delivered = db.get_notifications("user-1")
    assert len(delivered) == 1
    assert delivered[0].message == "3 non-urgent updates from canvas, teams."
    assert delivered[0].title == "Morning digest"
    assert db.get_scheduled_notifications("user-1") == []


def test_high_priority_bypasses_the_digest(db):
    notifier = Mock(wraps=StoreNotifier(db))
    dispatcher = NotificationDispatcher(db, "user-1", notifier=notifier)
    dispatcher.schedule(draft("canvas"), now=MORNING)
    dispatcher.schedule(draft("canvas"), now=MORNING)
    urgent = dispatcher.schedule(draft("tp", Priority.HIGH, title="Exam moved"), now=MORNING)

    assert urgent.scheduled_for == MORNING

    early = dispatcher.process_scheduled_notifications(now=MORNING)
    assert [n.title for n in early.immediate] == ["Exam moved"]
    assert early.digest is None

    later = dispatcher.process_scheduled_notifications(now=datetime(2026, 2, 1, 8, 0))
    assert later.immediate == []
    assert later.digest is not None
    assert later.batched == 2
    titles = [n.title for n in db.get_notifications("user-1")]
    assert sorted(titles) == ["Exam moved", "Morning digest"]


def test_nothing_fires_twice(db):
    dispatcher = NotificationDispatcher(db, "user-1")
    dispatcher.schedule(draft("canvas", Priority.CRITICAL), now=MORNING)

    dispatcher.process_scheduled_notifications(now=MORNING)
    second = dispatcher.process_scheduled_notifications(now=MORNING)

    assert second.immediate == []
    assert len(db.get_notifications("user-1")) == 1


def test_new_deadline_notifications(db):
    dispatcher = NotificationDispatcher(db, "user-1")
    deadlines = [
        Deadline(id="d1", user_id="user-1", course="DAT120", task="Exam", due_date=datetime(2026, 6, 1, 9, 0),
                 priority=Priority.HIGH, ownership=DeadlineOwnership("tp", "e1")),
        Deadline(id="d2", user_id="user-1", course="Algorithms", task="Problem set",
                 due_date=datetime(2026, 3, 5, 23, 59), priority=Priority.LOW,
                 ownership=DeadlineOwnership("canvas", "101")),
    ]

    queued = dispatcher.publish_new_deadline_notifications("canvas", deadlines, now=MORNING)

    assert [item.notification.priority for item in queued] == [Priority.HIGH, Priority.MEDIUM]
    assert queued[0].scheduled_for == MORNING
    assert queued[1].scheduled_for == datetime(2026, 2, 1, 8, 0)
    assert queued[0].event_id == "d1"
    assert queued[0].notification.message == "DAT120: Exam is due 2026-06-01 09:00."
    assert queued[1].notification.url == "/companion/?tab=deadlines"


def test_periodic_dispatch_start_stop(db):
    async def run_test():
        dispatcher = NotificationDispatcher(db, "user-1", tick_seconds=0.01)
        await dispatcher.start()
        assert dispatcher.running
        await asyncio.sleep(0.05)
        await dispatcher.stop()
        assert not dispatcher.running

    asyncio.run(run_test())
