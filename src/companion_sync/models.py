"""
Shared data model for deadlines, schedule events, sync attempts and notifications.

Internal records are plain dataclasses; anything that crosses the HTTP
boundary is converted with ``to_dict``.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Priority(Enum):
    """Priority scale shared by deadlines and notifications."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL]


class Workload(Enum):
    """Estimated workload of a schedule event."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Integration(Enum):
    """External data sources handled by the sync services."""
    CANVAS = "canvas"
    BLACKBOARD = "blackboard"
    TEAMS = "teams"
    TP = "tp"
    TIMEEDIT = "timeedit"
    GITHUB = "github"


class AttemptStatus(Enum):
    """Outcome of a single sync attempt."""
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class RootCause(Enum):
    """Coarse classification of sync failures."""
    NONE = "none"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    VALIDATION = "validation"
    PROVIDER = "provider"
    UNKNOWN = "unknown"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a remote timestamp into a naive datetime.

    Values with an offset are converted to UTC first. Anything that cannot
    be parsed yields None so callers can skip the record.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class DeadlineOwnership:
    """Tags a deadline as owned by one remote entity of one integration."""
    integration: str
    remote_id: str


@dataclass
class Deadline:
    """
    A deadline tracked for a user.

    Attributes:
        id: Store-assigned identifier, immutable
        user_id: Owning user
        course: Course display name
        task: Task title
        due_date: Effective due date (may be overridden by the user)
        priority: Priority level
        completed: Whether the task has been completed
        source_due_date: Due date last pulled from the remote integration
        ownership: Integration that owns this deadline, None for manual ones
    """
    id: str
    user_id: str
    course: str
    task: str
    due_date: datetime
    priority: Priority
    completed: bool = False
    source_due_date: Optional[datetime] = None
    ownership: Optional[DeadlineOwnership] = None

    @property
    def is_manual(self) -> bool:
        return self.ownership is None

    def is_owned_by(self, integration: str) -> bool:
        return self.ownership is not None and self.ownership.integration == integration

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "course": self.course,
            "task": self.task,
            "due_date": self.due_date.isoformat(),
            "source_due_date": self.source_due_date.isoformat() if self.source_due_date else None,
            "priority": self.priority.value,
            "completed": self.completed,
            "owner_integration": self.ownership.integration if self.ownership else None,
            "owner_remote_id": self.ownership.remote_id if self.ownership else None,
        }


@dataclass
class LectureEvent:
    """A schedule event. Imported events carry a source sentinel in recurrence_parent_id."""
    id: str
    user_id: str
    title: str
    start_time: datetime
    duration_minutes: int
    workload: Workload
    location: Optional[str] = None
    recurrence_parent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "location": self.location,
            "start_time": self.start_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "workload": self.workload.value,
            "recurrence_parent_id": self.recurrence_parent_id,
        }


@dataclass
class LectureEventDraft:
    """Field values for a schedule event that has not been stored yet."""
    title: str
    start_time: datetime
    duration_minutes: int
    workload: Workload
    location: Optional[str] = None
    recurrence_parent_id: Optional[str] = None


@dataclass
class ScheduleEventUpdate:
    """Patch for an existing schedule event."""
    id: str
    duration_minutes: int
    workload: Workload
    location: Optional[str] = None


@dataclass
class ScheduleUpsertResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0


@dataclass
class SyncAttempt:
    """One entry of the append-only integration health log."""
    user_id: str
    integration: str
    status: AttemptStatus
    latency_ms: float
    root_cause: RootCause
    attempted_at: datetime
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "integration": self.integration,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
            "root_cause": self.root_cause.value,
            "error_message": self.error_message,
            "attempted_at": self.attempted_at.isoformat(),
        }


@dataclass
class NotificationDraft:
    """Notification content before the store assigns id and timestamp."""
    source: str
    title: str
    message: str
    priority: Priority
    url: Optional[str] = None
    actions: List[str] = field(default_factory=list)


@dataclass
class Notification:
    id: str
    source: str
    title: str
    message: str
    priority: Priority
    timestamp: datetime
    url: Optional[str] = None
    actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["priority"] = self.priority.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class ScheduledNotification:
    """A notification queued for delivery at ``scheduled_for``."""
    id: str
    user_id: str
    notification: NotificationDraft
    scheduled_for: datetime
    created_at: datetime
    event_id: Optional[str] = None
