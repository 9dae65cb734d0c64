"""Delivery of scheduled notifications: immediates one by one, the rest as a digest."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from ..models import Deadline, Notification, NotificationDraft, Priority, ScheduledNotification
from ..sync.interfaces import Notifier, Store
from .digest import build_digest_notification, is_digest_candidate, resolve_next_digest_window


logger = logging.getLogger(__name__)


class StoreNotifier(Notifier):
    """Delivers notifications into the store's notification feed."""

    def __init__(self, store: Store):
        self.store = store

    def deliver(self, user_id: str, notification: NotificationDraft) -> Notification:
        delivered = self.store.push_notification(user_id, notification)
        logger.debug(f"Delivered notification {delivered.id} to {user_id}: {notification.title}")
        return delivered


@dataclass
class DispatchResult:
    """Outcome of one dispatcher tick."""
    immediate: List[Notification] = field(default_factory=list)
    digest: Optional[Notification] = None
    batched: int = 0
    removed: int = 0


class NotificationDispatcher:
    """Per-user scheduled-notification queue processor."""

    def __init__(self, store: Store, user_id: str, notifier: Optional[Notifier] = None,
                 morning_hour: int = 8, evening_hour: int = 18,
                 tick_seconds: float = 60.0):
        """Initialize the dispatcher.

        Args:
            store: Store holding the scheduled-notification queue
            user_id: User whose queue is processed
            notifier: Delivery channel (defaults to the store feed)
            morning_hour: Hour of the morning digest window
            evening_hour: Hour of the evening digest window
            tick_seconds: Interval of the periodic processing task
        """
        self.store = store
        self.user_id = user_id
        self.notifier = notifier or StoreNotifier(store)
        self.morning_hour = morning_hour
        self.evening_hour = evening_hour
        self.tick_seconds = tick_seconds
        self._tick_task: Optional[asyncio.Task] = None

    def schedule(self, notification: NotificationDraft, now: Optional[datetime] = None,
                 event_id: Optional[str] = None) -> ScheduledNotification:
        """Queue a notification: digest candidates wait for the next window, others fire next tick."""
        now = now or datetime.now()
        if is_digest_candidate(notification):
            scheduled_for = resolve_next_digest_window(now, self.morning_hour, self.evening_hour)
        else:
            scheduled_for = now
        return self.store.schedule_notification(self.user_id, notification, scheduled_for, event_id)

    def process_scheduled_notifications(self, now: Optional[datetime] = None) -> DispatchResult:
        """
        Deliver every due scheduled notification.

        High and critical notifications are delivered individually and
        unchanged. All due low and medium ones are folded into exactly one
        digest. Every processed item is removed from the queue so nothing
        fires twice.
        """
        now = now or datetime.now()
        due = self.store.get_due_scheduled_notifications(self.user_id, now)
        result = DispatchResult()
        if not due:
            return result

        batch: List[ScheduledNotification] = []
        for item in due:
            if is_digest_candidate(item):
                batch.append(item)
                continue
            result.immediate.append(self.notifier.deliver(self.user_id, item.notification))
            if self.store.remove_scheduled_notification(item.id):
                result.removed += 1

        digest = build_digest_notification(batch, now, self.morning_hour, self.evening_hour)
        if digest is not None:
            result.digest = self.notifier.deliver(self.user_id, digest)
            result.batched = len(batch)
            for item in batch:
                if self.store.remove_scheduled_notification(item.id):
                    result.removed += 1

        logger.info(
            f"Processed {len(due)} scheduled notifications for {self.user_id}: "
            f"{len(result.immediate)} immediate, {result.batched} batched into a digest"
        )
        return result

    def publish_new_deadline_notifications(self, integration: str, deadlines: Sequence[Deadline],
                                           now: Optional[datetime] = None) -> List[ScheduledNotification]:
        """Queue a "New deadline" notification for each freshly created deadline."""
        queued = []
        for deadline in deadlines:
            urgent = deadline.priority in (Priority.HIGH, Priority.CRITICAL)
            notification = NotificationDraft(
                source=integration,
                title="New deadline",
                message=f"{deadline.course}: {deadline.task} is due {deadline.due_date:%Y-%m-%d %H:%M}.",
                priority=Priority.HIGH if urgent else Priority.MEDIUM,
                url="/companion/?tab=deadlines",
                actions=["view"],
            )
            queued.append(self.schedule(notification, now, event_id=deadline.id))
        if queued:
            logger.debug(f"Queued {len(queued)} new-deadline notifications from {integration}")
        return queued

    async def start(self) -> None:
        """Start the periodic processing task."""
        if self._tick_task is None:
            self._tick_task = asyncio.create_task(self._periodic_dispatch())
            logger.info(f"Notification dispatcher started for {self.user_id}")

    async def stop(self) -> None:
        """Stop the periodic processing task."""
        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
            logger.info(f"Notification dispatcher stopped for {self.user_id}")

    @property
    def running(self) -> bool:
        return self._tick_task is not None

    async def _periodic_dispatch(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.tick_seconds)
                self.process_scheduled_notifications()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error during scheduled notification dispatch: {e}", exc_info=True)
