"""Microsoft Graph Education API client for Teams classes and assignments."""

import logging
from typing import List, Optional

from pydantic import ValidationError
from requests import Session

from .base import RemoteClient
from .types import TeamsAssignment, TeamsClass


logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"


class TeamsClient(RemoteClient):
    integration = "teams"

    def __init__(self, token: Optional[str] = None, timeout: float = 20.0,
                 session: Optional[Session] = None, base_url: str = GRAPH_BASE):
        super().__init__(base_url=base_url, token=token, timeout=timeout, session=session)

    def _values(self, endpoint: str) -> List[dict]:
        data = self.get_json(endpoint)
        return (data or {}).get("value") or []

    def get_classes(self) -> List[TeamsClass]:
        return [TeamsClass.model_validate(item) for item in self._values("/education/me/classes")]

    def get_class_assignments(self, class_id: str) -> List[TeamsAssignment]:
        assignments = []
        for item in self._values(f"/education/classes/{class_id}/assignments"):
            item["classId"] = class_id
            try:
                assignments.append(TeamsAssignment.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed Teams assignment in class {class_id}: {e}")
        return assignments

    def get_all_assignments(self, classes: List[TeamsClass]) -> List[TeamsAssignment]:
        assignments: List[TeamsAssignment] = []
        for cls in classes:
            assignments.extend(self.get_class_assignments(cls.id))
        return assignments
