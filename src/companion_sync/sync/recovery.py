"""
Turns repeated sync failures into rate-limited, user-facing recovery prompts.

The tracker observes every sync outcome across a user's integrations. A prompt
is only produced once an integration has failed several times in a row, and
at most once per cool-down window, so transient blips never reach the user.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from ..models import RootCause
from .health_log import categorize_root_cause, root_cause_hint


logger = logging.getLogger(__name__)


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


ROOT_CAUSE_SEVERITY = {
    RootCause.AUTH: Severity.HIGH,
    RootCause.PROVIDER: Severity.HIGH,
    RootCause.NETWORK: Severity.MEDIUM,
    RootCause.RATE_LIMIT: Severity.MEDIUM,
    RootCause.VALIDATION: Severity.MEDIUM,
    RootCause.UNKNOWN: Severity.LOW,
}

DISPLAY_NAMES = {
    "canvas": "Canvas",
    "blackboard": "Blackboard",
    "teams": "Teams",
    "tp": "TP",
    "timeedit": "TimeEdit",
    "github": "GitHub",
}

# Minutes without a successful sync after which data counts as stale
STALE_MINUTES = {
    "canvas": 180,
    "blackboard": 180,
    "teams": 180,
    "tp": 24 * 60,
    "timeedit": 24 * 60,
    "github": 48 * 60,
}
DEFAULT_STALE_MINUTES = 24 * 60

INTEGRATION_ACTIONS = {
    "canvas": [
        "Verify Canvas API token and base URL are correct.",
        "Check Canvas course scope filters to avoid restricted courses.",
    ],
    "blackboard": [
        "Reconnect Blackboard and verify the institution URL.",
        "Confirm your Blackboard session has not been revoked.",
    ],
    "teams": [
        "Reconnect Microsoft Teams and verify the Education scopes are granted.",
        "Retry Teams sync after reconnecting.",
    ],
    "tp": [
        "Verify TP semester/course IDs and that the iCal endpoint is reachable.",
        "Retry TP sync after confirming network connectivity.",
    ],
    "timeedit": [
        "Verify the TimeEdit iCal link is still valid.",
        "Re-import the TimeEdit calendar if your schedule link changed.",
    ],
    "github": [
        "Verify the GitHub token can read the course repositories.",
        "Check that the course repositories still exist.",
    ],
}

MAX_SNAPSHOT_PROMPTS = 6


@dataclass
class RecoveryPrompt:
    """A user-facing prompt for an integration that keeps failing."""
    id: str
    integration: str
    severity: Severity
    title: str
    message: str
    root_cause: RootCause
    root_cause_hint: str
    suggested_actions: List[str]
    failure_count: int
    last_error: str
    is_data_stale: bool
    generated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "integration": self.integration,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "root_cause": self.root_cause.value,
            "root_cause_hint": self.root_cause_hint,
            "suggested_actions": list(self.suggested_actions),
            "failure_count": self.failure_count,
            "last_error": self.last_error,
            "is_data_stale": self.is_data_stale,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass
class IntegrationFailureState:
    consecutive_failures: int = 0
    first_failure_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_prompt_at: Optional[datetime] = None


@dataclass
class RecoverySnapshot:
    generated_at: datetime
    prompts: List[RecoveryPrompt] = field(default_factory=list)
    integrations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "prompts": [prompt.to_dict() for prompt in self.prompts],
            "integrations": self.integrations,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SyncFailureRecoveryTracker:
    """Per-user aggregator of consecutive sync failures."""

    def __init__(self, prompt_threshold: int = 3,
                 prompt_cooldown_seconds: float = 6 * 60 * 60):
        """Initialize the tracker.

        Args:
            prompt_threshold: Consecutive failures before a prompt is emitted
            prompt_cooldown_seconds: Minimum gap between prompts per integration
        """
        self.prompt_threshold = prompt_threshold
        self.prompt_cooldown = timedelta(seconds=prompt_cooldown_seconds)
        self._states: Dict[str, IntegrationFailureState] = {}

    def _state(self, integration: str) -> IntegrationFailureState:
        if integration not in self._states:
            self._states[integration] = IntegrationFailureState()
        return self._states[integration]

    def record_success(self, integration: str, synced_at: Optional[datetime] = None) -> None:
        state = self._state(integration)
        if state.consecutive_failures:
            logger.info(f"{integration} recovered after {state.consecutive_failures} consecutive failures")
        state.consecutive_failures = 0
        state.first_failure_at = None
        state.last_failure_at = None
        state.last_error = None
        state.last_prompt_at = None
        state.last_success_at = synced_at or datetime.now()

    def record_failure(self, integration: str, message: Optional[str],
                       failed_at: Optional[datetime] = None) -> Optional[RecoveryPrompt]:
        """
        Record a failed sync.

        Returns:
            A RecoveryPrompt when the failure threshold is reached and no prompt
            was emitted for this integration within the cool-down window,
            otherwise None
        """
        failed_at = failed_at or datetime.now()
        state = self._state(integration)
        state.consecutive_failures += 1
        state.last_failure_at = failed_at
        state.last_error = message or "Unknown sync error"
        if state.first_failure_at is None:
            state.first_failure_at = failed_at

        if state.consecutive_failures < self.prompt_threshold:
            return None

        if state.last_prompt_at is not None and failed_at - state.last_prompt_at < self.prompt_cooldown:
            logger.debug(
                f"Suppressing {integration} recovery prompt, last one at {state.last_prompt_at.isoformat()}"
            )
            return None

        prompt = self._build_prompt(integration, state, failed_at)
        state.last_prompt_at = failed_at
        logger.warning(
            f"{integration} failed {state.consecutive_failures} times in a row, "
            f"emitting {prompt.severity.value} recovery prompt ({prompt.root_cause.value})"
        )
        return prompt

    def is_data_stale(self, integration: str, reference: Optional[datetime] = None) -> bool:
        state = self._state(integration)
        reference = reference or datetime.now()
        if state.last_success_at is None:
            return state.consecutive_failures > 0
        max_age = timedelta(minutes=STALE_MINUTES.get(integration, DEFAULT_STALE_MINUTES))
        return reference - state.last_success_at > max_age

    def get_snapshot(self, reference: Optional[datetime] = None) -> RecoverySnapshot:
        """Read-only view of every tracked integration and its active prompt."""
        reference = reference or datetime.now()
        snapshot = RecoverySnapshot(generated_at=reference)

        for integration in sorted(self._states):
            state = self._states[integration]
            snapshot.integrations.append({
                "integration": integration,
                "consecutive_failures": state.consecutive_failures,
                "first_failure_at": _iso(state.first_failure_at),
                "last_failure_at": _iso(state.last_failure_at),
                "last_success_at": _iso(state.last_success_at),
                "last_error": state.last_error,
                "is_data_stale": self.is_data_stale(integration, reference),
            })
            if state.consecutive_failures >= self.prompt_threshold and state.last_error:
                snapshot.prompts.append(self._build_prompt(integration, state, reference))

        snapshot.prompts.sort(key=lambda prompt: prompt.failure_count, reverse=True)
        del snapshot.prompts[MAX_SNAPSHOT_PROMPTS:]
        return snapshot

    def _build_prompt(self, integration: str, state: IntegrationFailureState,
                      reference: datetime) -> RecoveryPrompt:
        error = state.last_error or "Unknown sync error"
        root_cause = categorize_root_cause(error)
        stale = self.is_data_stale(integration, reference)
        severity = Severity.HIGH if stale else ROOT_CAUSE_SEVERITY[root_cause]
        name = DISPLAY_NAMES.get(integration, integration.capitalize())

        actions = ["Open Settings > Integrations and run a manual sync retry."]
        actions.extend(INTEGRATION_ACTIONS.get(integration, []))
        if root_cause is RootCause.RATE_LIMIT:
            actions.append("Wait a few minutes for provider rate limits to reset before retrying.")

        return RecoveryPrompt(
            id=f"sync-recovery-{integration}-{state.consecutive_failures}",
            integration=integration,
            severity=severity,
            title=f"{name} sync needs attention",
            message=f"{name} sync failed {state.consecutive_failures} times in a row.",
            root_cause=root_cause,
            root_cause_hint=root_cause_hint(error, root_cause),
            suggested_actions=actions,
            failure_count=state.consecutive_failures,
            last_error=error,
            is_data_stale=stale,
            generated_at=reference,
        )
