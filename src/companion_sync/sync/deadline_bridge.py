"""
Deadline bridges: map remote assignment-like entities onto stored deadlines.

Each integration gets a small adapter that knows how to name courses and
turn its assignments into ``RemoteDeadline`` values. The shared base class
runs the diff restricted to deadlines owned by that integration and applies
creates, updates and deletes through the store. Manual deadlines carry no
ownership tag and are never visible to a bridge.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..clients.types import (
    BlackboardAssignment, BlackboardCourse, CalendarEvent, CanvasAssignment,
    CanvasCourse, CourseRepo, GitHubDeadline, TeamsAssignment, TeamsClass,
)
from ..models import Deadline, DeadlineOwnership, Integration, Priority, parse_timestamp
from .diff import diff_records
from .interfaces import Store
from .logging_config import log_bridge_result
from .schedule_bridge import is_exam


logger = logging.getLogger(__name__)


COURSE_CODE_PATTERN = re.compile(r"\b[A-Z]{2,5}[- ]?\d{3,4}\b")


def priority_from_points(points: Optional[float]) -> Priority:
    """Map points possible or max grade onto the priority scale."""
    points = points or 0
    if points >= 100:
        return Priority.HIGH
    if points >= 50:
        return Priority.MEDIUM
    return Priority.LOW


@dataclass
class RemoteDeadline:
    """An assignment normalized for diffing. ``due_date`` is None when unparseable."""
    remote_id: str
    course: str
    task: str
    due_date: Optional[datetime]
    priority: Priority
    completed: bool = False


@dataclass
class BridgeResult:
    created: int = 0
    updated: int = 0
    removed: int = 0
    skipped: int = 0
    unchanged: int = 0
    created_deadlines: List[Deadline] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "removed": self.removed,
            "skipped": self.skipped,
            "unchanged": self.unchanged,
            "created_deadlines": [deadline.to_dict() for deadline in self.created_deadlines],
        }


class DeadlineBridge(ABC):
    """Base class for per-integration deadline bridges."""

    integration: str = ""
    fallback_course: str = "Unknown Course"

    def __init__(self, store: Store, user_id: str):
        self.store = store
        self.user_id = user_id

    @abstractmethod
    def course_names(self, courses: Sequence[Any]) -> Dict[str, str]:
        """Map remote course ids to display names."""
        pass

    @abstractmethod
    def to_remote(self, assignment: Any, course_names: Dict[str, str]) -> RemoteDeadline:
        pass

    def is_relevant(self, assignment: Any) -> bool:
        """Filter applied before mapping; irrelevant items are not counted at all."""
        return True

    def next_values(self, existing: Deadline, remote: RemoteDeadline) -> Dict[str, Any]:
        """
        Field values an existing deadline should have after this sync.

        ``due_date`` only follows the remote value when the remote due date
        changed and the user has not overridden it locally.
        """
        source_due = existing.source_due_date or existing.due_date
        user_overrode = existing.due_date != source_due
        source_changed = source_due != remote.due_date
        due_date = remote.due_date if source_changed and not user_overrode else existing.due_date
        return {
            "task": remote.task,
            "course": remote.course,
            "due_date": due_date,
            "source_due_date": remote.due_date,
        }

    def is_current(self, existing: Deadline, remote: RemoteDeadline) -> bool:
        wanted = self.next_values(existing, remote)
        return (
            existing.task == wanted["task"]
            and existing.course == wanted["course"]
            and existing.due_date == wanted["due_date"]
            and existing.source_due_date == wanted["source_due_date"]
        )

    def sync_assignments(self, courses: Sequence[Any], assignments: Sequence[Any]) -> BridgeResult:
        """
        Reconcile remote assignments with this integration's deadlines.

        Args:
            courses: Remote course objects used for display names
            assignments: Remote assignment objects

        Returns:
            BridgeResult with counts and the newly created deadlines

        Raises:
            StoreError: When a store mutation fails; nothing is retried here
        """
        names = self.course_names(courses)
        incoming = [self.to_remote(item, names) for item in assignments if self.is_relevant(item)]
        existing = self.store.get_deadlines(self.user_id, owner=self.integration)

        diff = diff_records(
            existing,
            incoming,
            existing_key=lambda deadline: deadline.ownership.remote_id,
            incoming_key=lambda remote: remote.remote_id,
            is_owned=lambda deadline: deadline.is_owned_by(self.integration),
            equals=self.is_current,
            is_valid=lambda remote: remote.due_date is not None,
        )

        result = BridgeResult(skipped=len(diff.skipped), unchanged=diff.unchanged)

        for remote in diff.to_create:
            created = self.store.create_deadline(self.user_id, {
                "course": remote.course,
                "task": remote.task,
                "due_date": remote.due_date,
                "source_due_date": remote.due_date,
                "priority": remote.priority,
                "completed": remote.completed,
                "ownership": DeadlineOwnership(self.integration, remote.remote_id),
            })
            result.created += 1
            result.created_deadlines.append(created)

        for existing_deadline, remote in diff.to_update:
            if self.store.update_deadline(self.user_id, existing_deadline.id,
                                          self.next_values(existing_deadline, remote)) is not None:
                result.updated += 1

        for stale in diff.to_delete:
            if self.store.delete_deadline(self.user_id, stale.id):
                result.removed += 1

        log_bridge_result(
            logger, self.user_id, self.integration,
            result.created, result.updated, result.removed, result.skipped,
        )
        return result


class CanvasDeadlineBridge(DeadlineBridge):
    integration = Integration.CANVAS.value
    fallback_course = "Canvas Course"

    def course_names(self, courses: Sequence[CanvasCourse]) -> Dict[str, str]:
        return {str(course.id): course.name or course.course_code or f"Course {course.id}" for course in courses}

    def to_remote(self, assignment: CanvasAssignment, course_names: Dict[str, str]) -> RemoteDeadline:
        return RemoteDeadline(
            remote_id=str(assignment.id),
            course=course_names.get(str(assignment.course_id), self.fallback_course),
            task=assignment.name,
            due_date=parse_timestamp(assignment.due_at),
            priority=priority_from_points(assignment.points_possible),
        )


class BlackboardDeadlineBridge(DeadlineBridge):
    integration = Integration.BLACKBOARD.value

    def course_names(self, courses: Sequence[BlackboardCourse]) -> Dict[str, str]:
        return {course.id: course.name or course.course_id or course.id for course in courses}

    def to_remote(self, assignment: BlackboardAssignment, course_names: Dict[str, str]) -> RemoteDeadline:
        return RemoteDeadline(
            remote_id=assignment.id,
            course=course_names.get(assignment.course_id or "", self.fallback_course),
            task=assignment.title,
            due_date=parse_timestamp(assignment.due),
            priority=priority_from_points(assignment.score.possible if assignment.score else None),
        )


class TeamsDeadlineBridge(DeadlineBridge):
    integration = Integration.TEAMS.value
    fallback_course = "Teams Class"

    def course_names(self, courses: Sequence[TeamsClass]) -> Dict[str, str]:
        return {cls.id: cls.display_name or cls.id for cls in courses}

    def to_remote(self, assignment: TeamsAssignment, course_names: Dict[str, str]) -> RemoteDeadline:
        max_points = assignment.grading.max_points if assignment.grading else None
        return RemoteDeadline(
            remote_id=assignment.id,
            course=course_names.get(assignment.class_id or "", self.fallback_course),
            task=assignment.display_name,
            due_date=parse_timestamp(assignment.due_date_time),
            priority=priority_from_points(max_points),
            # Submitted or returned assignments arrive already done
            completed=assignment.status is not None and assignment.status != "assigned",
        )


class GitHubDeadlineBridge(DeadlineBridge):
    integration = Integration.GITHUB.value

    def course_names(self, courses: Sequence[CourseRepo]) -> Dict[str, str]:
        return {repo.course: repo.course for repo in courses}

    def to_remote(self, assignment: GitHubDeadline, course_names: Dict[str, str]) -> RemoteDeadline:
        return RemoteDeadline(
            remote_id=assignment.remote_id,
            course=course_names.get(assignment.course, assignment.course),
            task=assignment.task,
            due_date=parse_timestamp(assignment.due),
            priority=Priority.HIGH if is_exam(assignment.task) else Priority.MEDIUM,
        )


class TPExamDeadlineBridge(DeadlineBridge):
    """Turns exam occurrences in the TP calendar into high-priority deadlines."""

    integration = Integration.TP.value
    fallback_course = "TP"

    def course_names(self, courses: Sequence[Any]) -> Dict[str, str]:
        return {}

    def is_relevant(self, assignment: CalendarEvent) -> bool:
        return is_exam(assignment.summary)

    def to_remote(self, assignment: CalendarEvent, course_names: Dict[str, str]) -> RemoteDeadline:
        start = parse_timestamp(assignment.start_time)
        summary = assignment.summary.strip()
        # Recurring VEVENTs share one UID, so the start time is part of the id
        remote_id = f"{assignment.uid or summary.lower()}|{start.isoformat() if start else ''}"

        code = COURSE_CODE_PATTERN.search(summary)
        return RemoteDeadline(
            remote_id=remote_id,
            course=code.group(0) if code else self.fallback_course,
            task=summary,
            due_date=start,
            priority=Priority.HIGH,
        )


BRIDGES = {
    bridge.integration: bridge
    for bridge in (
        CanvasDeadlineBridge, BlackboardDeadlineBridge, TeamsDeadlineBridge,
        GitHubDeadlineBridge, TPExamDeadlineBridge,
    )
}
