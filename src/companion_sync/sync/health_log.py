"""Append-only log of integration sync attempts and root-cause classification."""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..models import AttemptStatus, RootCause, SyncAttempt
from .interfaces import Store
from .logging_config import log_sync_attempt


logger = logging.getLogger(__name__)


# Order matters: the first matching family wins.
ROOT_CAUSE_PATTERNS = [
    (RootCause.AUTH, re.compile(
        r"\b(401|403)\b|unauthori[sz]ed|forbidden|permission|invalid[_ ]?(token|grant|credentials)|"
        r"expired[_ ]token|token (expired|revoked)|not connected|access denied|auth",
        re.IGNORECASE,
    )),
    (RootCause.RATE_LIMIT, re.compile(
        r"\b429\b|rate[ _-]?limit|too many requests|quota|throttl",
        re.IGNORECASE,
    )),
    (RootCause.NETWORK, re.compile(
        r"timed? ?out|timeout|network|econn(reset|refused|aborted)|enotfound|dns|"
        r"connection ?(error|refused|reset|aborted)|failed to establish|max retries exceeded|"
        r"unreachable|socket|fetch failed",
        re.IGNORECASE,
    )),
    (RootCause.VALIDATION, re.compile(
        r"validation|invalid|schema|parse|malformed|unexpected (token|format)|\b(400|422)\b",
        re.IGNORECASE,
    )),
    (RootCause.PROVIDER, re.compile(
        r"\b5\d\d\b|server error|bad gateway|service unavailable|upstream|maintenance",
        re.IGNORECASE,
    )),
]

ROOT_CAUSE_HINTS = {
    RootCause.AUTH: "Authentication or credentials are invalid.",
    RootCause.RATE_LIMIT: "Provider rate limit reached.",
    RootCause.NETWORK: "Network or provider API appears unreachable.",
    RootCause.VALIDATION: "The provider returned data that could not be processed.",
    RootCause.PROVIDER: "The provider is reporting an internal error.",
    RootCause.UNKNOWN: "Sync failed for an unknown reason.",
    RootCause.NONE: "No failure recorded.",
}

NOT_CONNECTED_PATTERN = re.compile(
    r"not connected|not configured|missing (credentials|config|token|api key|url)",
    re.IGNORECASE,
)
NOT_CONNECTED_HINT = "Integration is not connected or required config is missing."


def categorize_root_cause(message: Optional[str]) -> RootCause:
    """Classify a sync failure message into a root-cause bucket."""
    if not message:
        return RootCause.UNKNOWN
    for cause, pattern in ROOT_CAUSE_PATTERNS:
        if pattern.search(message):
            return cause
    return RootCause.UNKNOWN


def root_cause_hint(message: Optional[str], cause: RootCause) -> str:
    """User-facing hint for a failure; missing setup gets its own wording."""
    if message and cause in (RootCause.AUTH, RootCause.UNKNOWN) and NOT_CONNECTED_PATTERN.search(message):
        return NOT_CONNECTED_HINT
    return ROOT_CAUSE_HINTS[cause]


class IntegrationHealthLog:
    """Records every sync attempt of one user's integrations to the store."""

    def __init__(self, store: Store, user_id: str):
        self.store = store
        self.user_id = user_id

    def record_attempt(self, integration: str, success: bool, latency_ms: float,
                       error_message: Optional[str] = None,
                       attempted_at: Optional[datetime] = None) -> SyncAttempt:
        """
        Append a success or failure entry.

        Args:
            integration: Integration name
            success: Whether the attempt succeeded
            latency_ms: Attempt duration in milliseconds
            error_message: Failure message, ignored for successes
            attempted_at: Attempt time (defaults to now)

        Returns:
            The recorded SyncAttempt
        """
        attempt = SyncAttempt(
            user_id=self.user_id,
            integration=integration,
            status=AttemptStatus.SUCCESS if success else AttemptStatus.FAILURE,
            latency_ms=max(0.0, float(latency_ms)),
            root_cause=RootCause.NONE if success else categorize_root_cause(error_message),
            attempted_at=attempted_at or datetime.now(),
            error_message=None if success else error_message,
        )
        self.store.record_integration_sync_attempt(attempt)

        log_sync_attempt(
            logger, self.user_id, integration, attempt.status.value, attempt.latency_ms,
            f"{integration} sync {attempt.status.value}" + (f": {error_message}" if error_message and not success else ""),
            root_cause=None if success else attempt.root_cause.value,
        )
        return attempt

    def record_skip(self, integration: str, reason: str,
                    attempted_at: Optional[datetime] = None) -> SyncAttempt:
        """Append an entry for an attempt the auto-healing policy suppressed."""
        attempt = SyncAttempt(
            user_id=self.user_id,
            integration=integration,
            status=AttemptStatus.SKIPPED,
            latency_ms=0.0,
            root_cause=RootCause.NONE,
            attempted_at=attempted_at or datetime.now(),
            error_message=reason,
        )
        self.store.record_integration_sync_attempt(attempt)
        log_sync_attempt(
            logger, self.user_id, integration, "skipped", 0.0,
            f"{integration} sync skipped ({reason})", skip_reason=reason,
        )
        return attempt

    def attempts(self, integration: Optional[str] = None, status: Optional[str] = None,
                 hours: Optional[float] = None, limit: int = 200) -> List[SyncAttempt]:
        return self.store.get_integration_sync_attempts(
            user_id=self.user_id,
            integration=integration,
            status=status,
            hours=hours,
            limit=limit,
        )

    def summary(self, hours: float = 24) -> Dict[str, Any]:
        return self.store.get_integration_sync_summary(hours=hours, user_id=self.user_id)

    def cleanup(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """
        Delete log entries older than the retention window.

        Retention applies to the whole log, not only this user's entries.
        """
        cutoff = (now or datetime.now()) - timedelta(days=retention_days)
        deleted = self.store.delete_integration_sync_attempts_before(cutoff)
        if deleted:
            logger.info(f"Removed {deleted} sync attempts older than {cutoff.isoformat()}")
        return deleted
