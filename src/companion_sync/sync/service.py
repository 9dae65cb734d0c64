"""
Base class for per-user integration sync services.

A service owns one periodic asyncio task and at most one pending retry
timer. Remote fetches run in a worker thread; bridges and all store writes
run on the event loop. Manual and scheduled triggers share a single in-flight
run through ``SingleFlight``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set, TYPE_CHECKING

from ..models import NotificationDraft, Priority
from .auto_healing import SyncAutoHealingPolicy
from .config import AutoHealingConfig
from .deadline_bridge import BridgeResult
from .exceptions import CircuitOpenError
from .health_log import IntegrationHealthLog
from .interfaces import Notifier, Store
from .logging_config import PerformanceTimer, get_logger
from .recovery import DISPLAY_NAMES, RecoveryPrompt, Severity, SyncFailureRecoveryTracker
from .schedule_bridge import ScheduleSyncResult
from .single_flight import SingleFlight

if TYPE_CHECKING:
    from ..notifications.dispatcher import NotificationDispatcher


logger = get_logger(__name__)


PROMPT_PRIORITY = {
    Severity.HIGH: Priority.HIGH,
    Severity.MEDIUM: Priority.MEDIUM,
    Severity.LOW: Priority.LOW,
}


@dataclass
class SyncResult:
    """Outcome of one sync run, returned to route handlers and the CLI."""
    integration: str
    success: bool
    counts: Dict[str, int] = field(default_factory=dict)
    deadline_bridge: Optional[BridgeResult] = None
    schedule: Optional[ScheduleSyncResult] = None
    error: Optional[str] = None
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integration": self.integration,
            "success": self.success,
            "counts": dict(self.counts),
            "deadline_bridge": self.deadline_bridge.to_dict() if self.deadline_bridge else None,
            "schedule": self.schedule.to_dict() if self.schedule else None,
            "error": self.error,
            "latency_ms": round(self.latency_ms, 2),
        }


def prompt_notification(prompt: RecoveryPrompt) -> NotificationDraft:
    return NotificationDraft(
        source="sync-recovery",
        title=prompt.title,
        message=f"{prompt.message} {prompt.root_cause_hint}",
        priority=PROMPT_PRIORITY[prompt.severity],
        url="/companion/?tab=settings",
        actions=["retry", "view"],
    )


class IntegrationSyncService(ABC):
    """Periodic, self-healing sync of one integration for one user."""

    integration: str = ""

    def __init__(self, store: Store, user_id: str,
                 health_log: Optional[IntegrationHealthLog] = None,
                 recovery_tracker: Optional[SyncFailureRecoveryTracker] = None,
                 notifier: Optional[Notifier] = None,
                 dispatcher: Optional["NotificationDispatcher"] = None,
                 auto_healing: Optional[AutoHealingConfig] = None,
                 single_flight: Optional[SingleFlight] = None,
                 interval_seconds: float = 30 * 60.0,
                 http_timeout: float = 20.0,
                 now_fn: Callable[[], datetime] = datetime.now):
        """Initialize the service.

        Args:
            store: Store used by the bridges and for credentials
            user_id: Owning user
            health_log: Log receiving every attempt
            recovery_tracker: Tracker deciding when to prompt the user
            notifier: Channel for recovery prompts
            dispatcher: NotificationDispatcher for new-deadline notifications
            auto_healing: Backoff and circuit settings
            single_flight: Shared in-flight registry (one per user bundle)
            interval_seconds: Default polling interval
            http_timeout: Timeout passed to remote clients
            now_fn: Clock, replaceable in tests
        """
        self.store = store
        self.user_id = user_id
        self.health_log = health_log or IntegrationHealthLog(store, user_id)
        self.recovery_tracker = recovery_tracker
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.policy = SyncAutoHealingPolicy(self.integration, auto_healing, now_fn=now_fn)
        self.http_timeout = http_timeout
        self._now = now_fn
        self._flight = single_flight or SingleFlight()
        self._interval = interval_seconds

        self._periodic_task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._retry_tasks: Set[asyncio.Task] = set()
        self._auto_sync_in_progress = False

    @property
    def display_name(self) -> str:
        return DISPLAY_NAMES.get(self.integration, self.integration)

    # Integration-specific hooks

    @abstractmethod
    def build_client(self, credentials: Dict[str, Any]):
        """Create the remote client from stored credentials."""
        pass

    @abstractmethod
    def fetch(self, client) -> Any:
        """Blocking remote fetch; runs in a worker thread and must not touch the store."""
        pass

    @abstractmethod
    def apply(self, payload: Any) -> SyncResult:
        """Bridge a fetched payload into the store; runs on the event loop."""
        pass

    # Configuration

    def credentials(self) -> Optional[Dict[str, Any]]:
        return self.store.get_user_connection(self.user_id, self.integration)

    def resolve_client(self):
        credentials = self.credentials()
        if not credentials:
            return None
        client = self.build_client(credentials)
        if client is None or not client.is_configured():
            return None
        return client

    def is_configured(self) -> bool:
        return self.resolve_client() is not None

    # Lifecycle

    async def start(self, interval_seconds: Optional[float] = None) -> None:
        """Start periodic syncing; the first attempt runs immediately."""
        if self._periodic_task is not None:
            return
        if interval_seconds is not None:
            self._interval = interval_seconds
        self._periodic_task = asyncio.create_task(self._periodic_sync())
        logger.info(f"Started {self.integration} sync for {self.user_id} every {self._interval:.0f}s")

    async def stop(self) -> None:
        """Cancel the periodic task and any pending retry. An in-flight sync still completes."""
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        if self._periodic_task:
            self._periodic_task.cancel()
            try:
                await self._periodic_task
            except asyncio.CancelledError:
                pass
            self._periodic_task = None
            logger.info(f"Stopped {self.integration} sync for {self.user_id}")

    @property
    def running(self) -> bool:
        return self._periodic_task is not None

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    # Sync

    async def sync(self) -> SyncResult:
        """Run a sync, or join the one already in flight."""
        return await self._flight.run((self.user_id, self.integration), self._execute)

    async def trigger_sync(self, respect_policy: bool = False) -> SyncResult:
        """Manual sync. With ``respect_policy`` a tripped circuit raises CircuitOpenError."""
        if respect_policy:
            decision = self.policy.can_attempt()
            if not decision.allowed and decision.reason == "circuit_open":
                state = self.policy.get_state()
                raise CircuitOpenError(self.integration, state.consecutive_failures, state.circuit_open_until)
        return await self.sync()

    async def _execute(self) -> SyncResult:
        client = self.resolve_client()
        if client is None:
            logger.debug(f"{self.integration} not configured for {self.user_id}")
            return SyncResult(self.integration, success=True, error=f"{self.display_name} not configured")

        with PerformanceTimer(logger, f"{self.integration}_sync", user_id=self.user_id) as timer:
            try:
                payload = await asyncio.to_thread(self.fetch, client)
                result = self.apply(payload)
            except Exception as e:
                logger.warning(f"{self.integration} sync failed for {self.user_id}: {e}", exc_info=True)
                result = SyncResult(self.integration, success=False, error=str(e) or type(e).__name__)
        result.latency_ms = timer.elapsed_ms

        self._record_outcome(result)
        return result

    def _record_outcome(self, result: SyncResult) -> None:
        now = self._now()
        if result.success:
            self.policy.record_success()
            if self.recovery_tracker:
                self.recovery_tracker.record_success(self.integration, now)
        else:
            self.policy.record_failure(result.error)
            if self.recovery_tracker:
                prompt = self.recovery_tracker.record_failure(self.integration, result.error, now)
                if prompt and self.notifier:
                    self.notifier.deliver(self.user_id, prompt_notification(prompt))

        try:
            self.health_log.record_attempt(
                self.integration, result.success, result.latency_ms, result.error, attempted_at=now
            )
        except Exception as e:
            logger.error(f"Failed to write {self.integration} health log entry: {e}", exc_info=True)

    async def run_auto_sync(self) -> Optional[SyncResult]:
        """Interval-driven attempt gated by the auto-healing policy."""
        if self._auto_sync_in_progress:
            return None

        decision = self.policy.can_attempt()
        if not decision.allowed:
            self.policy.record_skip(decision.reason)
            try:
                self.health_log.record_skip(self.integration, decision.reason, attempted_at=self._now())
            except Exception as e:
                logger.error(f"Failed to write {self.integration} skip entry: {e}", exc_info=True)
            return None

        self._auto_sync_in_progress = True
        try:
            result = await self.sync()
        finally:
            self._auto_sync_in_progress = False

        if not result.success:
            self._schedule_auto_retry()
        return result

    def _schedule_auto_retry(self) -> None:
        """Arm a one-shot retry at next_attempt_at when it comes before the next tick."""
        if self._periodic_task is None or self._retry_handle is not None:
            return
        next_attempt_at = self.policy.get_state().next_attempt_at
        if next_attempt_at is None:
            return
        delay = (next_attempt_at - self._now()).total_seconds()
        if delay <= 0 or delay >= self._interval:
            return

        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay, self._fire_retry)
        logger.debug(f"{self.integration} retry armed in {delay:.0f}s")

    def _fire_retry(self) -> None:
        self._retry_handle = None
        task = asyncio.create_task(self.run_auto_sync())
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _periodic_sync(self) -> None:
        while True:
            try:
                await self.run_auto_sync()
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error during periodic {self.integration} sync: {e}", exc_info=True)
                await asyncio.sleep(self._interval)

    def get_auto_healing_status(self) -> Dict[str, Any]:
        return self.policy.get_state().to_dict()

    def status(self) -> Dict[str, Any]:
        return {
            "integration": self.integration,
            "configured": self.is_configured(),
            "running": self.running,
            "in_flight": self._flight.in_flight((self.user_id, self.integration)),
            "retry_pending": self.retry_pending,
            "interval_seconds": self._interval,
            "auto_healing": self.get_auto_healing_status(),
        }
