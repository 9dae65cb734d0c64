"""Batching of low and medium priority scheduled notifications into digests."""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Union

from ..models import NotificationDraft, Priority, ScheduledNotification


DIGEST_SOURCE = "orchestrator"
DIGEST_URL = "/companion/?tab=schedule"
DIGEST_PRIORITIES = {Priority.LOW, Priority.MEDIUM}


def is_digest_candidate(item: Union[ScheduledNotification, NotificationDraft]) -> bool:
    """True for low and medium priority; high and critical are never batched."""
    notification = item.notification if isinstance(item, ScheduledNotification) else item
    return notification.priority in DIGEST_PRIORITIES


def resolve_next_digest_window(now: datetime, morning_hour: int = 8,
                               evening_hour: int = 18) -> datetime:
    """
    Next digest delivery time after ``now``.

    Before the morning hour this is today's morning window, between the two
    hours it is today's evening window, and at or after the evening hour it is
    tomorrow's morning window.
    """
    morning = now.replace(hour=morning_hour, minute=0, second=0, microsecond=0)
    evening = now.replace(hour=evening_hour, minute=0, second=0, microsecond=0)
    if now < morning:
        return morning
    if now < evening:
        return evening
    return morning + timedelta(days=1)


def digest_title(now: datetime, morning_hour: int = 8, evening_hour: int = 18) -> str:
    morning = now.replace(hour=morning_hour, minute=0, second=0, microsecond=0)
    evening = now.replace(hour=evening_hour, minute=0, second=0, microsecond=0)
    if abs(now - morning) < abs(now - evening):
        return "Morning digest"
    return "Evening digest"


def build_digest_notification(scheduled: Sequence[ScheduledNotification],
                              now: Optional[datetime] = None,
                              morning_hour: int = 8,
                              evening_hour: int = 18) -> Optional[NotificationDraft]:
    """Summarize a batch of scheduled notifications; None for an empty batch."""
    if not scheduled:
        return None

    now = now or datetime.now()
    sources: List[str] = []
    for item in scheduled:
        if item.notification.source not in sources:
            sources.append(item.notification.source)

    count = len(scheduled)
    noun = "update" if count == 1 else "updates"
    return NotificationDraft(
        source=DIGEST_SOURCE,
        title=digest_title(now, morning_hour, evening_hour),
        message=f"{count} non-urgent {noun} from {', '.join(sources)}.",
        priority=Priority.MEDIUM,
        url=DIGEST_URL,
        actions=["view"],
    )
