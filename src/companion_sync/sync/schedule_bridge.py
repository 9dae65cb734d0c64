"""Reconciles imported calendar feeds (TP, TimeEdit) with stored schedule events."""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

from ..clients.types import CalendarEvent
from ..models import (
    LectureEvent, LectureEventDraft, ScheduleEventUpdate, Workload, parse_timestamp,
)
from .diff import RecordDiff, diff_records
from .interfaces import Store
from .logging_config import log_bridge_result


logger = logging.getLogger(__name__)


TIMEEDIT_SENTINEL = "timeedit-import"
TP_SENTINEL = "tp-import"

FALLBACK_DURATION_MINUTES = {
    TIMEEDIT_SENTINEL: 90,
    TP_SENTINEL: 120,
}
MIN_DURATION_MINUTES = 15

EXAM_PATTERN = re.compile(r"exam|eksamen|tentamen", re.IGNORECASE)
LECTURE_PATTERN = re.compile(r"lecture|forelesning|föreläsning|\blab", re.IGNORECASE)
GUIDANCE_PATTERN = re.compile(r"guidance|veiledning|handledning|office hours", re.IGNORECASE)


def infer_workload(text: Optional[str]) -> Workload:
    """Estimate workload from an event title; exam terms take precedence."""
    if not text:
        return Workload.MEDIUM
    if EXAM_PATTERN.search(text):
        return Workload.HIGH
    if LECTURE_PATTERN.search(text):
        return Workload.MEDIUM
    if GUIDANCE_PATTERN.search(text):
        return Workload.LOW
    return Workload.MEDIUM


def is_exam(text: Optional[str]) -> bool:
    return bool(text) and EXAM_PATTERN.search(text) is not None


def normalize_title(title: str) -> str:
    return " ".join(title.split()).lower()


def convert_event(event: CalendarEvent, sentinel: str,
                  fallback_minutes: Optional[int] = None) -> Optional[LectureEventDraft]:
    """
    Map a calendar occurrence to a schedule event draft.

    Returns None when the event has no usable start time.
    """
    start = parse_timestamp(event.start_time)
    if start is None:
        return None

    end = parse_timestamp(event.end_time)
    if end is not None:
        duration = max(MIN_DURATION_MINUTES, round((end - start).total_seconds() / 60))
    else:
        duration = fallback_minutes or FALLBACK_DURATION_MINUTES.get(sentinel, 90)

    title = event.summary.strip()
    return LectureEventDraft(
        title=title,
        start_time=start,
        duration_minutes=duration,
        workload=infer_workload(title),
        location=(event.location or "").strip() or None,
        recurrence_parent_id=sentinel,
    )


def schedule_key(sentinel: Optional[str], title: str, start) -> Hashable:
    return (sentinel, normalize_title(title), start)


def diff_schedule_events(existing: Iterable[LectureEvent],
                         incoming: Iterable[CalendarEvent],
                         sentinel: str,
                         fallback_minutes: Optional[int] = None
                         ) -> RecordDiff[LectureEvent, LectureEventDraft]:
    """
    Diff stored events carrying ``sentinel`` against a fresh calendar fetch.

    Identity is (sentinel, normalized title, start time); a renamed or moved
    occurrence is therefore a delete plus a create.
    """
    drafts: List[Tuple[CalendarEvent, Optional[LectureEventDraft]]] = [
        (event, convert_event(event, sentinel, fallback_minutes)) for event in incoming
    ]
    converted: Dict[int, LectureEventDraft] = {id(event): draft for event, draft in drafts if draft}

    def differs(current: LectureEvent, event: CalendarEvent) -> bool:
        draft = converted[id(event)]
        return (
            current.duration_minutes != draft.duration_minutes
            or current.workload != draft.workload
            or (current.location or None) != draft.location
        )

    raw = diff_records(
        existing,
        [event for event, _ in drafts],
        existing_key=lambda current: schedule_key(current.recurrence_parent_id, current.title, current.start_time),
        incoming_key=lambda event: schedule_key(sentinel, event.summary.strip(), parse_timestamp(event.start_time)),
        is_owned=lambda current: current.recurrence_parent_id == sentinel,
        equals=lambda current, event: not differs(current, event),
        is_valid=lambda event: id(event) in converted,
    )

    return RecordDiff(
        to_create=[converted[id(event)] for event in raw.to_create],
        to_update=[(current, converted[id(event)]) for current, event in raw.to_update],
        to_delete=raw.to_delete,
        skipped=list(raw.skipped),
        unchanged=raw.unchanged,
    )


@dataclass
class ScheduleSyncResult:
    events_processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events_processed": self.events_processed,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
        }


class ScheduleBridge:
    """Applies one calendar source's events to the store in a single batch."""

    def __init__(self, store: Store, integration: str, sentinel: str,
                 fallback_minutes: Optional[int] = None):
        self.store = store
        self.integration = integration
        self.sentinel = sentinel
        self.fallback_minutes = fallback_minutes

    def apply(self, user_id: str, events: List[CalendarEvent]) -> ScheduleSyncResult:
        existing = self.store.get_schedule_events(user_id)
        diff = diff_schedule_events(existing, events, self.sentinel, self.fallback_minutes)

        updates = [
            ScheduleEventUpdate(
                id=current.id,
                duration_minutes=draft.duration_minutes,
                workload=draft.workload,
                location=draft.location,
            )
            for current, draft in diff.to_update
        ]

        result = ScheduleSyncResult(events_processed=len(events), skipped=len(diff.skipped))
        if not diff.is_empty:
            applied = self.store.upsert_schedule_events(
                user_id, diff.to_create, updates, [current.id for current in diff.to_delete]
            )
            result.created = applied.created
            result.updated = applied.updated
            result.deleted = applied.deleted

        log_bridge_result(
            logger, user_id, self.integration,
            result.created, result.updated, result.deleted, result.skipped,
        )
        return result
