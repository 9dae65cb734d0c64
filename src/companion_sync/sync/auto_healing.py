"""Backoff and circuit breaker policy wrapping each integration's periodic sync."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .config import AutoHealingConfig


class HealingState(Enum):
    """States of the auto-healing policy."""
    CLOSED = "closed"              # Normal operation
    OPEN_BACKOFF = "open_backoff"  # Recent failure, waiting for next_attempt_at
    CIRCUIT_OPEN = "circuit_open"  # Too many failures, blocked until circuit_open_until


@dataclass(frozen=True)
class AttemptDecision:
    allowed: bool
    reason: Optional[str] = None


@dataclass
class AutoHealingState:
    """Snapshot of the policy for status endpoints."""
    integration: str
    state: HealingState
    consecutive_failures: int
    next_attempt_at: Optional[datetime]
    circuit_open_until: Optional[datetime]
    last_outcome: Optional[str]
    last_error: Optional[str]
    skipped_attempts: int
    last_skip_reason: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integration": self.integration,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "circuit_open_until": self.circuit_open_until.isoformat() if self.circuit_open_until else None,
            "last_outcome": self.last_outcome,
            "last_error": self.last_error,
            "skipped_attempts": self.skipped_attempts,
            "last_skip_reason": self.last_skip_reason,
        }


class SyncAutoHealingPolicy:
    """Decides when an integration may be polled again after failures."""

    def __init__(self, integration: str,
                 config: Optional[AutoHealingConfig] = None,
                 now_fn: Callable[[], datetime] = datetime.now):
        """Initialize the policy.

        Args:
            integration: Integration name for logging and status
            config: Backoff and circuit settings
            now_fn: Clock, replaceable in tests
        """
        self.integration = integration
        self.config = config or AutoHealingConfig()
        self._now = now_fn

        self._consecutive_failures = 0
        self._next_attempt_at: Optional[datetime] = None
        self._circuit_open_until: Optional[datetime] = None
        self._last_outcome: Optional[str] = None
        self._last_error: Optional[str] = None
        self._skipped_attempts = 0
        self._last_skip_reason: Optional[str] = None

        self.logger = logging.getLogger(f"{__name__}.{integration}")

    @property
    def state(self) -> HealingState:
        now = self._now()
        if self._circuit_open_until is not None and now < self._circuit_open_until:
            return HealingState.CIRCUIT_OPEN
        if self._consecutive_failures > 0:
            return HealingState.OPEN_BACKOFF
        return HealingState.CLOSED

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def can_attempt(self) -> AttemptDecision:
        """Check whether an interval-driven sync may run now.

        The circuit is checked before the backoff window, so a tripped circuit
        blocks attempts even after next_attempt_at has passed.
        """
        now = self._now()
        if self._circuit_open_until is not None and now < self._circuit_open_until:
            return AttemptDecision(False, "circuit_open")
        if self._next_attempt_at is not None and now < self._next_attempt_at:
            return AttemptDecision(False, "backoff")
        return AttemptDecision(True)

    def backoff_for(self, failures: int) -> timedelta:
        """Backoff delay after the given number of consecutive failures."""
        if failures < 1:
            return timedelta(0)
        # Cap the exponent so huge failure counts cannot overflow
        exponent = min(failures - 1, 62)
        seconds = min(self.config.base_backoff_seconds * (2 ** exponent), self.config.max_backoff_seconds)
        return timedelta(seconds=seconds)

    def record_success(self) -> None:
        """Handle a successful sync: close everything."""
        if self._consecutive_failures:
            self.logger.info(
                f"{self.integration} sync recovered after {self._consecutive_failures} failures"
            )
        self._consecutive_failures = 0
        self._next_attempt_at = None
        self._circuit_open_until = None
        self._last_outcome = "success"
        self._last_error = None

    def record_failure(self, message: Optional[str] = None) -> None:
        """Handle a failed sync: back off and maybe trip the circuit."""
        now = self._now()
        self._consecutive_failures += 1
        self._last_outcome = "failure"
        self._last_error = message or "Unknown error"
        self._next_attempt_at = now + self.backoff_for(self._consecutive_failures)

        circuit_open = self._circuit_open_until is not None and now < self._circuit_open_until
        if self._consecutive_failures >= self.config.circuit_failure_threshold and not circuit_open:
            self._circuit_open_until = now + timedelta(seconds=self.config.circuit_open_seconds)
            self.logger.warning(
                f"{self.integration} circuit opened after {self._consecutive_failures} failures "
                f"until {self._circuit_open_until.isoformat()}"
            )
        else:
            self.logger.info(
                f"{self.integration} sync failed ({self._consecutive_failures} in a row), "
                f"next attempt at {self._next_attempt_at.isoformat()}"
            )

    def record_skip(self, reason: str) -> None:
        """Count an attempt suppressed by the policy. Does not change state."""
        self._skipped_attempts += 1
        self._last_skip_reason = reason
        self.logger.debug(f"{self.integration} sync skipped: {reason}")

    def get_state(self) -> AutoHealingState:
        return AutoHealingState(
            integration=self.integration,
            state=self.state,
            consecutive_failures=self._consecutive_failures,
            next_attempt_at=self._next_attempt_at,
            circuit_open_until=self._circuit_open_until,
            last_outcome=self._last_outcome,
            last_error=self._last_error,
            skipped_attempts=self._skipped_attempts,
            last_skip_reason=self._last_skip_reason,
        )

    def reset(self) -> None:
        """Manually reset the policy."""
        self._consecutive_failures = 0
        self._next_attempt_at = None
        self._circuit_open_until = None
        self._last_outcome = None
        self._last_error = None
        self._skipped_attempts = 0
        self._last_skip_reason = None
        self.logger.info(f"{self.integration} auto-healing state manually reset")
