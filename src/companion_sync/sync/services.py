"""Concrete sync services, one per integration."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..clients.blackboard import BlackboardClient
from ..clients.canvas import CanvasClient
from ..clients.github import GitHubCourseClient
from ..clients.ical import ICalClient
from ..clients.teams import TeamsClient
from ..clients.types import CalendarEvent, CourseRepo, GitHubDeadline
from ..models import Integration
from .deadline_bridge import (
    BlackboardDeadlineBridge, BridgeResult, CanvasDeadlineBridge, DeadlineBridge,
    GitHubDeadlineBridge, TeamsDeadlineBridge, TPExamDeadlineBridge,
)
from .schedule_bridge import FALLBACK_DURATION_MINUTES, TIMEEDIT_SENTINEL, TP_SENTINEL, ScheduleBridge
from .service import IntegrationSyncService, SyncResult


logger = logging.getLogger(__name__)


def _token(credentials: Dict[str, Any]) -> Optional[str]:
    return credentials.get("access_token") or credentials.get("token")


@dataclass
class CoursePayload:
    """Courses and their assignments as fetched from an LMS."""
    courses: List[Any] = field(default_factory=list)
    assignments: List[Any] = field(default_factory=list)


class DeadlineSyncService(IntegrationSyncService):
    """Shared apply step for integrations that only produce deadlines."""

    bridge_class = DeadlineBridge

    def publish(self, bridge_result: BridgeResult) -> None:
        if self.dispatcher and bridge_result.created_deadlines:
            self.dispatcher.publish_new_deadline_notifications(
                self.integration, bridge_result.created_deadlines
            )

    def apply(self, payload: CoursePayload) -> SyncResult:
        bridge = self.bridge_class(self.store, self.user_id)
        bridge_result = bridge.sync_assignments(payload.courses, payload.assignments)
        self.publish(bridge_result)
        return SyncResult(
            self.integration,
            success=True,
            counts={"courses": len(payload.courses), "assignments": len(payload.assignments)},
            deadline_bridge=bridge_result,
        )


class CanvasSyncService(DeadlineSyncService):
    integration = Integration.CANVAS.value
    bridge_class = CanvasDeadlineBridge
    course_ids: tuple = ()

    def build_client(self, credentials):
        self.course_ids = credentials.get("course_ids") or []
        return CanvasClient(
            base_url=credentials.get("base_url"), token=_token(credentials), timeout=self.http_timeout
        )

    def fetch(self, client: CanvasClient) -> CoursePayload:
        courses = client.get_courses()
        # Optional per-user course filter
        if self.course_ids:
            wanted = {int(course_id) for course_id in self.course_ids}
            courses = [course for course in courses if course.id in wanted]
            logger.debug(f"Canvas course filter kept {len(courses)} course(s) for {self.user_id}")
        return CoursePayload(courses, client.get_all_assignments(courses))


class BlackboardSyncService(DeadlineSyncService):
    integration = Integration.BLACKBOARD.value
    bridge_class = BlackboardDeadlineBridge

    def build_client(self, credentials):
        return BlackboardClient(
            base_url=credentials.get("base_url"), token=_token(credentials), timeout=self.http_timeout
        )

    def fetch(self, client: BlackboardClient) -> CoursePayload:
        courses = client.get_courses()
        return CoursePayload(courses, client.get_all_assignments(courses))


class TeamsSyncService(DeadlineSyncService):
    integration = Integration.TEAMS.value
    bridge_class = TeamsDeadlineBridge

    def build_client(self, credentials):
        kwargs = {"token": _token(credentials), "timeout": self.http_timeout}
        if credentials.get("base_url"):
            kwargs["base_url"] = credentials["base_url"]
        return TeamsClient(**kwargs)

    def fetch(self, client: TeamsClient) -> CoursePayload:
        classes = client.get_classes()
        return CoursePayload(classes, client.get_all_assignments(classes))


class GitHubCourseSyncService(DeadlineSyncService):
    integration = Integration.GITHUB.value
    bridge_class = GitHubDeadlineBridge

    def build_client(self, credentials):
        repos = [CourseRepo.model_validate(repo) for repo in credentials.get("repos") or []]
        return GitHubCourseClient(token=_token(credentials), repos=repos, timeout=self.http_timeout)

    def fetch(self, client: GitHubCourseClient) -> CoursePayload:
        deadlines: List[GitHubDeadline] = client.get_deadlines()
        return CoursePayload(list(client.repos), deadlines)


class CalendarSyncService(IntegrationSyncService):
    """iCal-backed schedule import (TP and TimeEdit)."""

    sentinel = ""

    def __init__(self, *args, past_days: int = 7, future_days: int = 180, **kwargs):
        super().__init__(*args, **kwargs)
        self.past_days = past_days
        self.future_days = future_days

    def build_client(self, credentials):
        return ICalClient(
            ical_url=credentials.get("ical_url"), integration=self.integration, timeout=self.http_timeout
        )

    def fetch(self, client: ICalClient) -> List[CalendarEvent]:
        return client.get_events(past_days=self.past_days, future_days=self.future_days)

    def apply(self, payload: List[CalendarEvent]) -> SyncResult:
        bridge = ScheduleBridge(
            self.store, self.integration, self.sentinel, FALLBACK_DURATION_MINUTES.get(self.sentinel)
        )
        schedule = bridge.apply(self.user_id, payload)
        return SyncResult(
            self.integration,
            success=True,
            counts={"events": len(payload)},
            schedule=schedule,
        )


class TimeEditSyncService(CalendarSyncService):
    integration = Integration.TIMEEDIT.value
    sentinel = TIMEEDIT_SENTINEL


class TPSyncService(CalendarSyncService):
    """TP schedule import; exam occurrences also become deadlines."""

    integration = Integration.TP.value
    sentinel = TP_SENTINEL

    def apply(self, payload: List[CalendarEvent]) -> SyncResult:
        result = super().apply(payload)
        exams = TPExamDeadlineBridge(self.store, self.user_id).sync_assignments([], payload)
        logger.debug(f"TP exam import for {self.user_id}: {exams.created} created, {exams.removed} removed")
        if self.dispatcher and exams.created_deadlines:
            self.dispatcher.publish_new_deadline_notifications(self.integration, exams.created_deadlines)
        result.deadline_bridge = exams
        return result


SERVICES = {
    service.integration: service
    for service in (
        CanvasSyncService, BlackboardSyncService, TeamsSyncService,
        GitHubCourseSyncService, TimeEditSyncService, TPSyncService,
    )
}
