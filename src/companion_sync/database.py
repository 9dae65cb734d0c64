"""
DuckDB-backed store for deadlines, schedule events, notifications and the
integration health log.

This module provides the concrete ``Store`` used by the bridges, sync
services and notification dispatcher. All tables are keyed by ``user_id``
so each user's data can be reconciled and deleted independently.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import duckdb

from .models import (
    AttemptStatus, Deadline, DeadlineOwnership, LectureEvent, LectureEventDraft,
    Notification, NotificationDraft, Priority, RootCause, ScheduleEventUpdate,
    ScheduleUpsertResult, ScheduledNotification, SyncAttempt, Workload,
)
from .sync.exceptions import StoreError
from .sync.interfaces import Store

logger = logging.getLogger(__name__)


DEADLINE_COLUMNS = (
    "id, user_id, course, task, due_date, source_due_date, priority, "
    "completed, owner_integration, owner_remote_id"
)
SCHEDULE_COLUMNS = (
    "id, user_id, title, location, start_time, duration_minutes, workload, "
    "recurrence_parent_id"
)
NOTIFICATION_COLUMNS = "id, source, title, message, priority, url, actions, timestamp"
SCHEDULED_COLUMNS = (
    "id, user_id, source, title, message, priority, url, actions, "
    "scheduled_for, created_at, event_id"
)
ATTEMPT_COLUMNS = (
    "user_id, integration, status, latency_ms, root_cause, error_message, attempted_at"
)

UPDATABLE_DEADLINE_FIELDS = {"course", "task", "due_date", "source_due_date", "priority", "completed"}


def make_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _priority_value(value: Union[Priority, str]) -> str:
    return value.value if isinstance(value, Priority) else Priority(value).value


class CompanionDatabase(Store):
    """
    Manages DuckDB database operations for the companion store.

    This class handles the connection lifecycle, schema creation and all
    CRUD operations the reconciliation core needs. Use it as a context
    manager; ``":memory:"`` is accepted as a path for ephemeral stores.
    """

    def __init__(self, db_path: Union[Path, str]):
        """
        Initialize database connection settings.

        Args:
            db_path: Path to the DuckDB database file
        """
        self.db_path = db_path
        self.conn: Optional[duckdb.DuckDBPyConnection] = None

    def __enter__(self) -> 'CompanionDatabase':
        """
        Context manager entry: open database connection and create schema.

        Returns:
            Self for use in with statement
        """
        try:
            self.conn = duckdb.connect(str(self.db_path))
            logger.info(f"Connected to database at {self.db_path}")
            self._create_schema()
            return self
        except Exception as e:
            logger.error(f"Failed to initialize database at {self.db_path}: {e}", exc_info=True)
            raise

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit: close database connection."""
        try:
            self.close()
        except Exception as e:
            logger.warning(f"Error while closing database connection: {e}", exc_info=True)

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self.conn is None:
            raise RuntimeError("Database connection not established")
        return self.conn

    def _create_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        conn = self._connection()

        statements = [
            """
            CREATE TABLE IF NOT EXISTS deadlines (
                id VARCHAR NOT NULL PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                course VARCHAR NOT NULL,
                task VARCHAR NOT NULL,
                due_date TIMESTAMP NOT NULL,
                source_due_date TIMESTAMP,
                priority VARCHAR NOT NULL,
                completed BOOLEAN NOT NULL DEFAULT FALSE,
                owner_integration VARCHAR,
                owner_remote_id VARCHAR,
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS schedule_events (
                id VARCHAR NOT NULL PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                title VARCHAR NOT NULL,
                location VARCHAR,
                start_time TIMESTAMP NOT NULL,
                duration_minutes INTEGER NOT NULL,
                workload VARCHAR NOT NULL,
                recurrence_parent_id VARCHAR
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS integration_sync_attempts (
                user_id VARCHAR NOT NULL,
                integration VARCHAR NOT NULL,
                status VARCHAR NOT NULL,
                latency_ms DOUBLE NOT NULL,
                root_cause VARCHAR NOT NULL,
                error_message VARCHAR,
                attempted_at TIMESTAMP NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS scheduled_notifications (
                id VARCHAR NOT NULL PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                source VARCHAR NOT NULL,
                title VARCHAR NOT NULL,
                message VARCHAR NOT NULL,
                priority VARCHAR NOT NULL,
                url VARCHAR,
                actions VARCHAR,
                scheduled_for TIMESTAMP NOT NULL,
                created_at TIMESTAMP NOT NULL,
                event_id VARCHAR
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS notifications (
                id VARCHAR NOT NULL PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                source VARCHAR NOT NULL,
                title VARCHAR NOT NULL,
                message VARCHAR NOT NULL,
                priority VARCHAR NOT NULL,
                url VARCHAR,
                actions VARCHAR,
                timestamp TIMESTAMP NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS user_connections (
                user_id VARCHAR NOT NULL,
                integration VARCHAR NOT NULL,
                credentials VARCHAR NOT NULL,
                connected_at TIMESTAMP NOT NULL,
                PRIMARY KEY (user_id, integration)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_deadlines_owner ON deadlines(user_id, owner_integration)",
            "CREATE INDEX IF NOT EXISTS idx_attempts_integration ON integration_sync_attempts(integration, attempted_at)",
            "CREATE INDEX IF NOT EXISTS idx_scheduled_due ON scheduled_notifications(user_id, scheduled_for)",
        ]

        try:
            for statement in statements:
                conn.execute(statement)
            logger.debug("Database schema created or verified")
        except Exception as e:
            logger.error(f"Failed to create database schema: {e}", exc_info=True)
            raise

    # Deadlines

    @staticmethod
    def _row_to_deadline(row) -> Deadline:
        ownership = None
        if row[8] is not None:
            ownership = DeadlineOwnership(integration=row[8], remote_id=row[9])
        return Deadline(
            id=row[0],
            user_id=row[1],
            course=row[2],
            task=row[3],
            due_date=row[4],
            source_due_date=row[5],
            priority=Priority(row[6]),
            completed=bool(row[7]),
            ownership=ownership,
        )

    def get_deadline(self, user_id: str, deadline_id: str) -> Optional[Deadline]:
        conn = self._connection()
        row = conn.execute(
            f"SELECT {DEADLINE_COLUMNS} FROM deadlines WHERE user_id = ? AND id = ?",
            [user_id, deadline_id]
        ).fetchone()
        return self._row_to_deadline(row) if row else None

    def create_deadline(self, user_id: str, fields: Dict[str, Any]) -> Deadline:
        """
        Insert a deadline.

        An integration may own at most one deadline per remote id; a second
        insert for the same ownership raises StoreError.
        """
        conn = self._connection()
        ownership: Optional[DeadlineOwnership] = fields.get("ownership")

        try:
            if ownership is not None:
                clash = conn.execute(
                    "SELECT id FROM deadlines WHERE user_id = ? AND owner_integration = ? AND owner_remote_id = ?",
                    [user_id, ownership.integration, ownership.remote_id]
                ).fetchone()
                if clash:
                    raise StoreError(
                        "create_deadline",
                        f"{ownership.integration} item {ownership.remote_id} already linked to {clash[0]}",
                        {"deadline_id": clash[0]}
                    )

            deadline = Deadline(
                id=make_id("deadline"),
                user_id=user_id,
                course=fields["course"],
                task=fields["task"],
                due_date=fields["due_date"],
                source_due_date=fields.get("source_due_date"),
                priority=Priority(_priority_value(fields.get("priority", Priority.MEDIUM))),
                completed=bool(fields.get("completed", False)),
                ownership=ownership,
            )
            conn.execute(
                f"INSERT INTO deadlines ({DEADLINE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    deadline.id,
                    deadline.user_id,
                    deadline.course,
                    deadline.task,
                    deadline.due_date,
                    deadline.source_due_date,
                    deadline.priority.value,
                    deadline.completed,
                    ownership.integration if ownership else None,
                    ownership.remote_id if ownership else None,
                ]
            )
            conn.commit()
            logger.debug(f"Created deadline {deadline.id} for user {user_id}")
            return deadline
        except duckdb.Error as e:
            logger.error(f"Failed to create deadline for user {user_id}: {e}", exc_info=True)
            raise StoreError("create_deadline", str(e)) from e

    def update_deadline(self, user_id: str, deadline_id: str,
                        patch: Dict[str, Any]) -> Optional[Deadline]:
        conn = self._connection()

        unknown = set(patch) - UPDATABLE_DEADLINE_FIELDS
        if unknown:
            raise StoreError("update_deadline", f"unknown fields {sorted(unknown)}")

        if not patch:
            return self.get_deadline(user_id, deadline_id)

        values = dict(patch)
        if "priority" in values:
            values["priority"] = _priority_value(values["priority"])

        assignments = ", ".join(f"{column} = ?" for column in values)
        try:
            updated = conn.execute(
                f"UPDATE deadlines SET {assignments} WHERE user_id = ? AND id = ? RETURNING id",
                [*values.values(), user_id, deadline_id]
            ).fetchall()
            conn.commit()
        except duckdb.Error as e:
            logger.error(f"Failed to update deadline {deadline_id}: {e}", exc_info=True)
            raise StoreError("update_deadline", str(e), {"deadline_id": deadline_id}) from e

        if not updated:
            logger.debug(f"No deadline {deadline_id} to update for user {user_id}")
            return None
        return self.get_deadline(user_id, deadline_id)

    def delete_deadline(self, user_id: str, deadline_id: str) -> bool:
        conn = self._connection()
        try:
            deleted = conn.execute(
                "DELETE FROM deadlines WHERE user_id = ? AND id = ? RETURNING id",
                [user_id, deadline_id]
            ).fetchall()
            conn.commit()
            return bool(deleted)
        except duckdb.Error as e:
            logger.error(f"Failed to delete deadline {deadline_id}: {e}", exc_info=True)
            raise StoreError("delete_deadline", str(e), {"deadline_id": deadline_id}) from e

    def get_deadlines(self, user_id: str, owner: Optional[str] = None) -> List[Deadline]:
        conn = self._connection()
        sql = f"SELECT {DEADLINE_COLUMNS} FROM deadlines WHERE user_id = ?"
        params: List[Any] = [user_id]
        if owner is not None:
            sql += " AND owner_integration = ?"
            params.append(owner)
        sql += " ORDER BY due_date, id"
        rows = conn.execute(sql, params).fetchall()
        return [self._row_to_deadline(row) for row in rows]

    # Schedule events

    @staticmethod
    def _row_to_event(row) -> LectureEvent:
        return LectureEvent(
            id=row[0],
            user_id=row[1],
            title=row[2],
            location=row[3],
            start_time=row[4],
            duration_minutes=row[5],
            workload=Workload(row[6]),
            recurrence_parent_id=row[7],
        )

    def get_schedule_event(self, user_id: str, event_id: str) -> Optional[LectureEvent]:
        conn = self._connection()
        row = conn.execute(
            f"SELECT {SCHEDULE_COLUMNS} FROM schedule_events WHERE user_id = ? AND id = ?",
            [user_id, event_id]
        ).fetchone()
        return self._row_to_event(row) if row else None

    def create_schedule_event(self, user_id: str, draft: LectureEventDraft) -> LectureEvent:
        """Create a single user-authored schedule event."""
        conn = self._connection()
        event = LectureEvent(
            id=make_id("lecture"),
            user_id=user_id,
            title=draft.title,
            location=draft.location,
            start_time=draft.start_time,
            duration_minutes=draft.duration_minutes,
            workload=draft.workload,
            recurrence_parent_id=draft.recurrence_parent_id,
        )

        try:
            conn.execute(
                f"INSERT INTO schedule_events ({SCHEDULE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    event.id,
                    event.user_id,
                    event.title,
                    event.location,
                    event.start_time,
                    event.duration_minutes,
                    event.workload.value,
                    event.recurrence_parent_id,
                ]
            )
            conn.commit()
        except duckdb.Error as e:
            logger.error(f"Failed to create schedule event for user {user_id}: {e}", exc_info=True)
            raise StoreError("create_schedule_event", str(e)) from e

        logger.debug(f"Created schedule event {event.id} for user {user_id}")
        return self.get_schedule_event(user_id, event.id)

    def upsert_schedule_events(self, user_id: str,
                               create: List[LectureEventDraft],
                               update: List[ScheduleEventUpdate],
                               delete: List[str]) -> ScheduleUpsertResult:
        """
        Apply a schedule diff inside one transaction.

        Returns:
            Counts of rows actually created, updated and deleted
        """
        conn = self._connection()
        result = ScheduleUpsertResult()

        try:
            conn.begin()
            for draft in create:
                conn.execute(
                    f"INSERT INTO schedule_events ({SCHEDULE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        make_id("lecture"),
                        user_id,
                        draft.title,
                        draft.location,
                        draft.start_time,
                        draft.duration_minutes,
                        draft.workload.value,
                        draft.recurrence_parent_id,
                    ]
                )
                result.created += 1

            for patch in update:
                rows = conn.execute(
                    """
                    UPDATE schedule_events
                    SET duration_minutes = ?, workload = ?, location = ?
                    WHERE user_id = ? AND id = ?
                    RETURNING id
                    """,
                    [patch.duration_minutes, patch.workload.value, patch.location, user_id, patch.id]
                ).fetchall()
                result.updated += len(rows)

            for event_id in delete:
                rows = conn.execute(
                    "DELETE FROM schedule_events WHERE user_id = ? AND id = ? RETURNING id",
                    [user_id, event_id]
                ).fetchall()
                result.deleted += len(rows)

            conn.commit()
        except duckdb.Error as e:
            conn.rollback()
            logger.error(f"Failed to apply schedule changes for user {user_id}: {e}", exc_info=True)
            raise StoreError("upsert_schedule_events", str(e)) from e

        logger.debug(
            f"Schedule upsert for {user_id}: {result.created} created, "
            f"{result.updated} updated, {result.deleted} deleted"
        )
        return result

    def get_schedule_events(self, user_id: str) -> List[LectureEvent]:
        conn = self._connection()
        rows = conn.execute(
            f"SELECT {SCHEDULE_COLUMNS} FROM schedule_events WHERE user_id = ? ORDER BY start_time, id",
            [user_id]
        ).fetchall()
        return [self._row_to_event(row) for row in rows]

    # Integration health log

    def record_integration_sync_attempt(self, attempt: SyncAttempt) -> None:
        conn = self._connection()
        try:
            conn.execute(
                f"INSERT INTO integration_sync_attempts ({ATTEMPT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    attempt.user_id,
                    attempt.integration,
                    attempt.status.value,
                    float(attempt.latency_ms),
                    attempt.root_cause.value,
                    attempt.error_message,
                    attempt.attempted_at,
                ]
            )
            conn.commit()
        except duckdb.Error as e:
            logger.error(f"Failed to record sync attempt for {attempt.integration}: {e}", exc_info=True)
            raise StoreError("record_integration_sync_attempt", str(e)) from e

    def get_integration_sync_attempts(self, user_id: Optional[str] = None,
                                      integration: Optional[str] = None,
                                      status: Optional[str] = None,
                                      hours: Optional[float] = None,
                                      limit: int = 200) -> List[SyncAttempt]:
        """
        Query the health log, newest first.

        Args:
            user_id: Filter by user
            integration: Filter by integration
            status: Filter by status (success, failure, skipped)
            hours: Only attempts within this trailing window
            limit: Maximum number of results
        """
        conn = self._connection()
        where_clauses = []
        params: List[Any] = []

        if user_id:
            where_clauses.append("user_id = ?")
            params.append(user_id)

        if integration:
            where_clauses.append("integration = ?")
            params.append(integration)

        if status:
            where_clauses.append("status = ?")
            params.append(AttemptStatus(status).value)

        if hours is not None:
            where_clauses.append("attempted_at >= ?")
            params.append(datetime.now() - timedelta(hours=hours))

        where_clause = " AND ".join(where_clauses) if where_clauses else "1=1"
        params.append(limit)

        rows = conn.execute(
            f"""
            SELECT {ATTEMPT_COLUMNS}
            FROM integration_sync_attempts
            WHERE {where_clause}
            ORDER BY attempted_at DESC
            LIMIT ?
            """,
            params
        ).fetchall()

        return [
            SyncAttempt(
                user_id=row[0],
                integration=row[1],
                status=AttemptStatus(row[2]),
                latency_ms=row[3],
                root_cause=RootCause(row[4]),
                error_message=row[5],
                attempted_at=row[6],
            )
            for row in rows
        ]

    def get_integration_sync_summary(self, hours: float = 24,
                                     user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Aggregate the health log over a trailing window.

        Returns:
            Dictionary with overall totals and one entry per integration,
            including failures bucketed by root cause
        """
        conn = self._connection()
        generated_at = datetime.now()
        since = generated_at - timedelta(hours=hours)

        where_clause = "attempted_at >= ?"
        params: List[Any] = [since]
        if user_id:
            where_clause += " AND user_id = ?"
            params.append(user_id)

        rows = conn.execute(
            f"""
            SELECT
                integration,
                COUNT(*) AS attempts,
                COUNT(*) FILTER (WHERE status = 'success') AS successes,
                COUNT(*) FILTER (WHERE status = 'failure') AS failures,
                COUNT(*) FILTER (WHERE status = 'skipped') AS skipped,
                AVG(latency_ms) FILTER (WHERE status <> 'skipped') AS avg_latency,
                MAX(attempted_at) AS last_attempt_at
            FROM integration_sync_attempts
            WHERE {where_clause}
            GROUP BY integration
            ORDER BY integration
            """,
            params
        ).fetchall()

        cause_rows = conn.execute(
            f"""
            SELECT integration, root_cause, COUNT(*)
            FROM integration_sync_attempts
            WHERE {where_clause} AND status = 'failure'
            GROUP BY integration, root_cause
            """,
            params
        ).fetchall()

        causes: Dict[str, Dict[str, int]] = {}
        for integration, root_cause, count in cause_rows:
            buckets = causes.setdefault(
                integration, {cause.value: 0 for cause in RootCause if cause is not RootCause.NONE}
            )
            buckets[root_cause] = buckets.get(root_cause, 0) + count

        integrations = []
        totals = {"attempts": 0, "successes": 0, "failures": 0, "skipped": 0}
        for integration, attempts, successes, failures, skipped, avg_latency, last_attempt_at in rows:
            tried = successes + failures
            integrations.append({
                "integration": integration,
                "attempts": attempts,
                "successes": successes,
                "failures": failures,
                "skipped": skipped,
                "success_rate": round(successes / tried, 3) if tried else None,
                "average_latency_ms": round(avg_latency, 2) if avg_latency is not None else None,
                "last_attempt_at": last_attempt_at.isoformat() if last_attempt_at else None,
                "failures_by_root_cause": causes.get(
                    integration, {cause.value: 0 for cause in RootCause if cause is not RootCause.NONE}
                ),
            })
            totals["attempts"] += attempts
            totals["successes"] += successes
            totals["failures"] += failures
            totals["skipped"] += skipped

        tried_total = totals["successes"] + totals["failures"]
        totals["success_rate"] = round(totals["successes"] / tried_total, 3) if tried_total else None

        return {
            "generated_at": generated_at.isoformat(),
            "window_hours": hours,
            "totals": totals,
            "integrations": integrations,
        }

    def delete_integration_sync_attempts_before(self, cutoff: datetime) -> int:
        conn = self._connection()
        try:
            deleted = conn.execute(
                "DELETE FROM integration_sync_attempts WHERE attempted_at < ? RETURNING integration",
                [cutoff]
            ).fetchall()
            conn.commit()
            return len(deleted)
        except duckdb.Error as e:
            logger.error(f"Failed to clean up sync attempts before {cutoff}: {e}", exc_info=True)
            raise StoreError("delete_integration_sync_attempts_before", str(e)) from e

    # Notifications

    @staticmethod
    def _row_to_notification(row) -> Notification:
        return Notification(
            id=row[0],
            source=row[1],
            title=row[2],
            message=row[3],
            priority=Priority(row[4]),
            url=row[5],
            actions=json.loads(row[6]) if row[6] else [],
            timestamp=row[7],
        )

    @staticmethod
    def _row_to_scheduled(row) -> ScheduledNotification:
        return ScheduledNotification(
            id=row[0],
            user_id=row[1],
            notification=NotificationDraft(
                source=row[2],
                title=row[3],
                message=row[4],
                priority=Priority(row[5]),
                url=row[6],
                actions=json.loads(row[7]) if row[7] else [],
            ),
            scheduled_for=row[8],
            created_at=row[9],
            event_id=row[10],
        )

    def schedule_notification(self, user_id: str, notification: NotificationDraft,
                              scheduled_for: datetime,
                              event_id: Optional[str] = None) -> ScheduledNotification:
        conn = self._connection()
        scheduled = ScheduledNotification(
            id=make_id("sched-notif"),
            user_id=user_id,
            notification=notification,
            scheduled_for=scheduled_for,
            created_at=datetime.now(),
            event_id=event_id,
        )
        try:
            conn.execute(
                f"INSERT INTO scheduled_notifications ({SCHEDULED_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    scheduled.id,
                    user_id,
                    notification.source,
                    notification.title,
                    notification.message,
                    notification.priority.value,
                    notification.url,
                    json.dumps(notification.actions) if notification.actions else None,
                    scheduled_for,
                    scheduled.created_at,
                    event_id,
                ]
            )
            conn.commit()
            return scheduled
        except duckdb.Error as e:
            logger.error(f"Failed to schedule notification for user {user_id}: {e}", exc_info=True)
            raise StoreError("schedule_notification", str(e)) from e

    def get_due_scheduled_notifications(self, user_id: str,
                                        now: Optional[datetime] = None) -> List[ScheduledNotification]:
        conn = self._connection()
        rows = conn.execute(
            f"""
            SELECT {SCHEDULED_COLUMNS}
            FROM scheduled_notifications
            WHERE user_id = ? AND scheduled_for <= ?
            ORDER BY scheduled_for, created_at
            """,
            [user_id, now or datetime.now()]
        ).fetchall()
        return [self._row_to_scheduled(row) for row in rows]

    def get_scheduled_notifications(self, user_id: str) -> List[ScheduledNotification]:
        """All queued notifications for a user, due or not."""
        conn = self._connection()
        rows = conn.execute(
            f"SELECT {SCHEDULED_COLUMNS} FROM scheduled_notifications WHERE user_id = ? ORDER BY scheduled_for",
            [user_id]
        ).fetchall()
        return [self._row_to_scheduled(row) for row in rows]

    def remove_scheduled_notification(self, notification_id: str) -> bool:
        conn = self._connection()
        try:
            deleted = conn.execute(
                "DELETE FROM scheduled_notifications WHERE id = ? RETURNING id",
                [notification_id]
            ).fetchall()
            conn.commit()
            return bool(deleted)
        except duckdb.Error as e:
            logger.error(f"Failed to remove scheduled notification {notification_id}: {e}", exc_info=True)
            raise StoreError("remove_scheduled_notification", str(e)) from e

    def push_notification(self, user_id: str, notification: NotificationDraft) -> Notification:
        conn = self._connection()
        full = Notification(
            id=make_id("notif"),
            source=notification.source,
            title=notification.title,
            message=notification.message,
            priority=notification.priority,
            url=notification.url,
            actions=list(notification.actions),
            timestamp=datetime.now(),
        )
        try:
            conn.execute(
                "INSERT INTO notifications (id, user_id, source, title, message, priority, url, actions, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    full.id,
                    user_id,
                    full.source,
                    full.title,
                    full.message,
                    full.priority.value,
                    full.url,
                    json.dumps(full.actions) if full.actions else None,
                    full.timestamp,
                ]
            )
            conn.commit()
            return full
        except duckdb.Error as e:
            logger.error(f"Failed to push notification for user {user_id}: {e}", exc_info=True)
            raise StoreError("push_notification", str(e)) from e

    def get_notifications(self, user_id: str, limit: int = 40) -> List[Notification]:
        conn = self._connection()
        rows = conn.execute(
            f"SELECT {NOTIFICATION_COLUMNS} FROM notifications WHERE user_id = ? ORDER BY timestamp DESC LIMIT ?",
            [user_id, limit]
        ).fetchall()
        return [self._row_to_notification(row) for row in rows]

    # Connections

    def get_user_connection(self, user_id: str, integration: str) -> Optional[Dict[str, Any]]:
        conn = self._connection()
        row = conn.execute(
            "SELECT credentials FROM user_connections WHERE user_id = ? AND integration = ?",
            [user_id, integration]
        ).fetchone()
        if row is None:
            return None
        try:
            credentials = json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"Stored {integration} credentials for user {user_id} are not valid JSON")
            return None
        return credentials if isinstance(credentials, dict) else None

    def set_user_connection(self, user_id: str, integration: str,
                            credentials: Dict[str, Any]) -> None:
        conn = self._connection()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO user_connections (user_id, integration, credentials, connected_at) "
                "VALUES (?, ?, ?, ?)",
                [user_id, integration, json.dumps(credentials), datetime.now()]
            )
            conn.commit()
            logger.info(f"Stored {integration} connection for user {user_id}")
        except duckdb.Error as e:
            logger.error(f"Failed to store {integration} connection for user {user_id}: {e}", exc_info=True)
            raise StoreError("set_user_connection", str(e)) from e

    def list_user_ids(self) -> List[str]:
        """Users with at least one stored connection."""
        conn = self._connection()
        rows = conn.execute("SELECT DISTINCT user_id FROM user_connections ORDER BY user_id").fetchall()
        return [row[0] for row in rows]

    def delete_user_data(self, user_id: str) -> None:
        conn = self._connection()
        tables = [
            "deadlines", "schedule_events", "integration_sync_attempts",
            "scheduled_notifications", "notifications", "user_connections",
        ]
        try:
            conn.begin()
            for table in tables:
                conn.execute(f"DELETE FROM {table} WHERE user_id = ?", [user_id])
            conn.commit()
            logger.info(f"Deleted all stored data for user {user_id}")
        except duckdb.Error as e:
            conn.rollback()
            logger.error(f"Failed to delete data for user {user_id}: {e}", exc_info=True)
            raise StoreError("delete_user_data", str(e)) from e

    def close(self) -> None:
        """
        Close the database connection.

        This method can be called explicitly or will be called automatically
        when using the context manager.
        """
        if self.conn is not None:
            try:
                self.conn.close()
                logger.debug("Database connection closed")
            except Exception as e:
                logger.warning(f"Error closing database connection: {e}", exc_info=True)
            finally:
                self.conn = None
