"""Blackboard Learn REST client."""

import logging
from typing import List

from pydantic import ValidationError

from ..sync.exceptions import RemoteApiError
from .base import RemoteClient
from .types import BlackboardAssignment, BlackboardCourse


logger = logging.getLogger(__name__)


class BlackboardClient(RemoteClient):
    integration = "blackboard"

    def _results(self, endpoint: str) -> List[dict]:
        data = self.get_json(endpoint)
        if not isinstance(data, dict):
            raise RemoteApiError(self.integration, f"unexpected payload from {endpoint}")
        return data.get("results") or []

    def get_courses(self) -> List[BlackboardCourse]:
        courses = []
        for item in self._results("/learn/api/public/v1/users/me/courses?availability.available=Yes"):
            # Membership rows nest the course object
            payload = item["course"] if isinstance(item.get("course"), dict) else item
            try:
                courses.append(BlackboardCourse.model_validate(payload))
            except ValidationError as e:
                logger.warning(f"Skipping malformed Blackboard course: {e}")
        return courses

    def get_course_assignments(self, course_id: str) -> List[BlackboardAssignment]:
        assignments = []
        endpoint = f"/learn/api/public/v1/courses/{course_id}/contents?contentHandler.id=resource/x-bb-assignment"
        for item in self._results(endpoint):
            item.setdefault("courseId", course_id)
            try:
                assignments.append(BlackboardAssignment.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed Blackboard assignment in {course_id}: {e}")
        return assignments

    def get_all_assignments(self, courses: List[BlackboardCourse]) -> List[BlackboardAssignment]:
        assignments: List[BlackboardAssignment] = []
        for course in courses:
            assignments.extend(self.get_course_assignments(course.id))
        return assignments
