"""Base interfaces for the reconciliation core's collaborators."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models import (
    Deadline, LectureEvent, LectureEventDraft, ScheduleEventUpdate,
    ScheduleUpsertResult, SyncAttempt, Notification, NotificationDraft,
    ScheduledNotification,
)


class Store(ABC):
    """CRUD over deadlines, schedule events, connections and notifications."""

    @abstractmethod
    def create_deadline(self, user_id: str, fields: Dict[str, Any]) -> Deadline:
        """Create a deadline and return it with its store-assigned id."""
        pass

    @abstractmethod
    def update_deadline(self, user_id: str, deadline_id: str,
                        patch: Dict[str, Any]) -> Optional[Deadline]:
        """Apply a partial update. Returns None if the deadline does not exist."""
        pass

    @abstractmethod
    def delete_deadline(self, user_id: str, deadline_id: str) -> bool:
        """Delete a deadline. Returns True if a row was removed."""
        pass

    @abstractmethod
    def get_deadlines(self, user_id: str, owner: Optional[str] = None) -> List[Deadline]:
        """List deadlines, optionally only those owned by one integration."""
        pass

    @abstractmethod
    def upsert_schedule_events(self, user_id: str,
                               create: List[LectureEventDraft],
                               update: List[ScheduleEventUpdate],
                               delete: List[str]) -> ScheduleUpsertResult:
        """Apply a schedule diff in one call."""
        pass

    @abstractmethod
    def get_schedule_events(self, user_id: str) -> List[LectureEvent]:
        pass

    @abstractmethod
    def record_integration_sync_attempt(self, attempt: SyncAttempt) -> None:
        """Append an entry to the integration health log."""
        pass

    @abstractmethod
    def get_integration_sync_attempts(self, user_id: Optional[str] = None,
                                      integration: Optional[str] = None,
                                      status: Optional[str] = None,
                                      hours: Optional[float] = None,
                                      limit: int = 200) -> List[SyncAttempt]:
        pass

    @abstractmethod
    def get_integration_sync_summary(self, hours: float = 24,
                                     user_id: Optional[str] = None) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete_integration_sync_attempts_before(self, cutoff: datetime) -> int:
        """Retention cleanup for the health log."""
        pass

    @abstractmethod
    def schedule_notification(self, user_id: str, notification: NotificationDraft,
                              scheduled_for: datetime,
                              event_id: Optional[str] = None) -> ScheduledNotification:
        pass

    @abstractmethod
    def get_due_scheduled_notifications(self, user_id: str,
                                        now: Optional[datetime] = None) -> List[ScheduledNotification]:
        pass

    @abstractmethod
    def remove_scheduled_notification(self, notification_id: str) -> bool:
        pass

    @abstractmethod
    def push_notification(self, user_id: str, notification: NotificationDraft) -> Notification:
        pass

    @abstractmethod
    def get_notifications(self, user_id: str, limit: int = 40) -> List[Notification]:
        pass

    @abstractmethod
    def get_user_connection(self, user_id: str, integration: str) -> Optional[Dict[str, Any]]:
        """Return stored credentials for an integration, or None if not connected."""
        pass

    @abstractmethod
    def set_user_connection(self, user_id: str, integration: str,
                            credentials: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def delete_user_data(self, user_id: str) -> None:
        """Remove everything stored for a user (account deletion)."""
        pass


class Notifier(ABC):
    """Interface for delivering a notification to a user."""

    @abstractmethod
    def deliver(self, user_id: str, notification: NotificationDraft) -> Notification:
        """Deliver a notification immediately."""
        pass
