"""Per-user bundles of sync services, tracker, health log and dispatcher."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..notifications.dispatcher import NotificationDispatcher, StoreNotifier
from .config import SyncConfig
from .health_log import IntegrationHealthLog
from .interfaces import Notifier, Store
from .recovery import SyncFailureRecoveryTracker
from .service import IntegrationSyncService, SyncResult
from .services import SERVICES
from .single_flight import SingleFlight


logger = logging.getLogger(__name__)


@dataclass
class UserSyncBundle:
    """Everything one user's sync runs share."""
    user_id: str
    health_log: IntegrationHealthLog
    recovery_tracker: SyncFailureRecoveryTracker
    dispatcher: NotificationDispatcher
    single_flight: SingleFlight
    services: Dict[str, IntegrationSyncService] = field(default_factory=dict)

    def service(self, integration: str) -> IntegrationSyncService:
        try:
            return self.services[integration]
        except KeyError:
            raise KeyError(f"Unknown integration: {integration}") from None

    def status(self) -> Dict[str, object]:
        return {
            "user_id": self.user_id,
            "dispatcher_running": self.dispatcher.running,
            "integrations": {name: service.status() for name, service in self.services.items()},
        }


class UserSyncRegistry:
    """
    Explicit map of user id to ``UserSyncBundle``.

    Bundles are built on first use and torn down explicitly; nothing here is
    module-global.
    """

    def __init__(self, store: Store, config: Optional[SyncConfig] = None,
                 notifier_factory: Optional[Callable[[Store], Notifier]] = None,
                 now_fn: Callable[[], datetime] = datetime.now):
        self.store = store
        self.config = config or SyncConfig()
        self._notifier_factory = notifier_factory or StoreNotifier
        self._now = now_fn
        self._bundles: Dict[str, UserSyncBundle] = {}

    def _build(self, user_id: str) -> UserSyncBundle:
        config = self.config
        notifier = self._notifier_factory(self.store)
        bundle = UserSyncBundle(
            user_id=user_id,
            health_log=IntegrationHealthLog(self.store, user_id),
            recovery_tracker=SyncFailureRecoveryTracker(
                prompt_threshold=config.recovery_prompt_threshold,
                prompt_cooldown_seconds=config.recovery_prompt_cooldown_seconds,
            ),
            dispatcher=NotificationDispatcher(
                self.store, user_id, notifier,
                morning_hour=config.digest_morning_hour,
                evening_hour=config.digest_evening_hour,
                tick_seconds=config.dispatcher_tick_seconds,
            ),
            single_flight=SingleFlight(),
        )

        for integration, service_class in SERVICES.items():
            kwargs = {}
            if integration in ("tp", "timeedit"):
                kwargs["past_days"] = config.integration_window_past_days
                kwargs["future_days"] = config.integration_window_future_days
            bundle.services[integration] = service_class(
                self.store, user_id,
                health_log=bundle.health_log,
                recovery_tracker=bundle.recovery_tracker,
                notifier=notifier,
                dispatcher=bundle.dispatcher,
                auto_healing=config.auto_healing_for(integration),
                single_flight=bundle.single_flight,
                interval_seconds=config.interval_for(integration),
                http_timeout=config.http_timeout_seconds,
                now_fn=self._now,
                **kwargs,
            )
        return bundle

    def get(self, user_id: str) -> UserSyncBundle:
        bundle = self._bundles.get(user_id)
        if bundle is None:
            bundle = self._build(user_id)
            self._bundles[user_id] = bundle
            logger.debug(f"Created sync bundle for {user_id}")
        return bundle

    def find(self, user_id: str) -> Optional[UserSyncBundle]:
        """Existing bundle for a user, without building one."""
        return self._bundles.get(user_id)

    def users(self) -> List[str]:
        return list(self._bundles)

    async def start_user(self, user_id: str) -> UserSyncBundle:
        """Start the dispatcher and the periodic sync of every configured integration."""
        bundle = self.get(user_id)
        await bundle.dispatcher.start()
        started = []
        for integration, service in bundle.services.items():
            if service.is_configured():
                await service.start(self.config.interval_for(integration))
                started.append(integration)
        logger.info(f"Started sync for {user_id}: {', '.join(started) or 'no configured integrations'}")
        return bundle

    async def trigger(self, user_id: str, integration: str, force: bool = True) -> SyncResult:
        """Manual sync of one integration. Without ``force`` an open circuit raises CircuitOpenError."""
        service = self.get(user_id).service(integration)
        return await service.trigger_sync(respect_policy=not force)

    async def stop_user(self, user_id: str) -> None:
        bundle = self._bundles.get(user_id)
        if bundle is None:
            return
        for service in bundle.services.values():
            await service.stop()
        await bundle.dispatcher.stop()

    async def teardown(self, user_id: str, delete_data: bool = False) -> bool:
        """Stop and forget a user's bundle, optionally deleting their stored data."""
        await self.stop_user(user_id)
        existed = self._bundles.pop(user_id, None) is not None
        if delete_data:
            self.store.delete_user_data(user_id)
            logger.info(f"Deleted stored sync data for {user_id}")
        return existed

    async def stop_all(self) -> None:
        for user_id in list(self._bundles):
            try:
                await self.stop_user(user_id)
            except Exception as e:
                logger.error(f"Error stopping sync for {user_id}: {e}", exc_info=True)
        self._bundles.clear()
