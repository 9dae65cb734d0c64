"""Canvas LMS REST client."""

import logging
import re
from typing import List, Optional

from pydantic import ValidationError

from ..sync.exceptions import RemoteApiError
from .base import RemoteClient
from .types import CanvasAssignment, CanvasCourse


logger = logging.getLogger(__name__)

# Upper bound on followed pages so a broken Link header cannot loop forever
MAX_PAGES = 20

LINK_NEXT = re.compile(r'<([^>]+)>;\s*rel="next"')


def parse_link_next(link_header: Optional[str]) -> Optional[str]:
    """Extract the rel="next" URL from an RFC 5988 Link header."""
    if not link_header:
        return None
    for part in link_header.split(","):
        match = LINK_NEXT.search(part.strip())
        if match:
            return match.group(1)
    return None


class CanvasClient(RemoteClient):
    integration = "canvas"

    def _get_all_pages(self, endpoint: str) -> List[dict]:
        separator = "&" if "?" in endpoint else "?"
        url: Optional[str] = f"{self.base_url}{endpoint}{separator}per_page=100"
        items: List[dict] = []

        for _ in range(MAX_PAGES):
            response = self._request(url)
            page = response.json()
            if isinstance(page, list):
                items.extend(page)
            url = parse_link_next(response.headers.get("Link"))
            if not url:
                break

        return items

    def get_courses(self) -> List[CanvasCourse]:
        raw = self._get_all_pages("/api/v1/courses?enrollment_state=active&include[]=term")
        try:
            return [CanvasCourse.model_validate(item) for item in raw]
        except ValidationError as e:
            raise RemoteApiError(self.integration, f"unexpected course payload: {e}") from e

    def get_course_assignments(self, course_id: int) -> List[CanvasAssignment]:
        raw = self._get_all_pages(f"/api/v1/courses/{course_id}/assignments?include[]=submission")
        assignments = []
        for item in raw:
            item.setdefault("course_id", course_id)
            try:
                assignments.append(CanvasAssignment.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed Canvas assignment in course {course_id}: {e}")
        return assignments

    def get_all_assignments(self, courses: List[CanvasCourse]) -> List[CanvasAssignment]:
        """Assignments across courses. One failing course fails the whole fetch."""
        assignments: List[CanvasAssignment] = []
        for course in courses:
            assignments.extend(self.get_course_assignments(course.id))
        return assignments
