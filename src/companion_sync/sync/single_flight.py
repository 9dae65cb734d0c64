"""Deduplicates concurrent calls for the same key into one shared task."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class SingleFlight:
    """Map of key to in-progress task; callers arriving mid-flight share its outcome."""

    def __init__(self):
        self._inflight: Dict[Hashable, asyncio.Task] = {}

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``factory()`` for ``key`` unless a run is already in flight.

        The shared task is shielded: cancelling one waiter does not cancel the
        work other callers are waiting on.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug(f"Joining in-flight run for {key}")
        return await asyncio.shield(task)

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    def tasks(self) -> Dict[Hashable, asyncio.Task]:
        return dict(self._inflight)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
