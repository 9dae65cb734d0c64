"""iCalendar subscription client used for TP and TimeEdit schedules."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from icalendar import Calendar as ICalendar
from requests import Session

from ..sync.exceptions import RemoteApiError
from .base import RemoteClient
from .types import CalendarEvent


logger = logging.getLogger(__name__)


def _to_naive_utc(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def parse_ics(content: bytes) -> List[CalendarEvent]:
    """Parse VEVENTs out of an iCalendar document.

    Events without a readable DTSTART are kept with ``start_time=None`` so the
    bridges can count them as skipped.
    """
    try:
        calendar = ICalendar.from_ical(content)
    except ValueError as e:
        raise RemoteApiError("ical", f"invalid iCalendar data: {e}") from e

    events: List[CalendarEvent] = []
    for component in calendar.walk():
        if component.name != "VEVENT":
            continue

        dtstart = component.get("DTSTART")
        dtend = component.get("DTEND")
        start = _to_naive_utc(dtstart.dt) if dtstart is not None else None
        end = _to_naive_utc(dtend.dt) if dtend is not None else None

        events.append(CalendarEvent(
            summary=str(component.get("SUMMARY") or "").strip() or "Untitled event",
            start_time=start,
            end_time=end,
            uid=str(component.get("UID")) if component.get("UID") else None,
            location=str(component.get("LOCATION")).strip() if component.get("LOCATION") else None,
            description=str(component.get("DESCRIPTION")) if component.get("DESCRIPTION") else None,
        ))

    return events


def filter_by_window(events: List[CalendarEvent], past_days: Optional[int] = None,
                     future_days: Optional[int] = None,
                     now: Optional[datetime] = None) -> List[CalendarEvent]:
    """Keep events inside [now - past_days, now + future_days]; undated events pass through."""
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    lower = now - timedelta(days=past_days) if past_days is not None else None
    upper = now + timedelta(days=future_days) if future_days is not None else None

    kept = []
    for event in events:
        if event.start_time is not None:
            if lower is not None and event.start_time < lower:
                continue
            if upper is not None and event.start_time > upper:
                continue
        kept.append(event)
    return kept


class ICalClient(RemoteClient):
    """Fetches one iCal subscription URL."""

    accept = "text/calendar"

    def __init__(self, ical_url: Optional[str] = None, integration: str = "ical",
                 timeout: float = 20.0, session: Optional[Session] = None):
        if ical_url and ical_url.startswith("webcal://"):
            ical_url = "https://" + ical_url[len("webcal://"):]
        super().__init__(base_url=ical_url, token=None, timeout=timeout, session=session)
        self.integration = integration

    def is_configured(self) -> bool:
        return self.base_url.startswith(("http://", "https://"))

    def _headers(self):
        return {"Accept": self.accept}

    def get_events(self, past_days: Optional[int] = None,
                   future_days: Optional[int] = None) -> List[CalendarEvent]:
        response = self._request(self.base_url)
        events = parse_ics(response.content)
        logger.debug(f"Parsed {len(events)} events from {self.integration} calendar")
        return filter_by_window(events, past_days, future_days)
