"""Online/offline tracking for the host environment."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ..observers import ObserverList, Subscription

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Caches the online state and reports each transition once.

    Without any signal the monitor assumes it is online, so the sync engine
    keeps trying and discovers failures at the network call itself.
    """

    def __init__(self, initial: bool | None = None):
        """Initialize the monitor.

        Args:
            initial: Known starting state, or None for the optimistic default.
        """
        self._online = True if initial is None else bool(initial)
        self._observers = ObserverList("connectivity")
        self._task: asyncio.Task | None = None
        self._running = False

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Record the host signal, notifying subscribers on a real change."""
        online = bool(online)
        if online == self._online:
            return

        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self._observers.notify(online)

    def subscribe(self, callback: Callable[[bool], Any]) -> Subscription:
        """Register a callback invoked with the new state on every transition."""
        return self._observers.subscribe(callback)

    async def start_probing(
        self,
        probe: Callable[[], Awaitable[bool]],
        interval_seconds: float = 15.0,
    ) -> None:
        """Poll probe in the background and feed its answer to set_online.

        Args:
            probe: Async callable returning True when the remote is reachable.
            interval_seconds: Seconds between probes.
        """
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._probe_loop(probe, interval_seconds))
        logger.info(f"Connectivity probe started (interval={interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the background probe."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Connectivity probe stopped")

    async def _probe_loop(
        self, probe: Callable[[], Awaitable[bool]], interval_seconds: float
    ) -> None:
        while self._running:
            await self.check(probe)
            await asyncio.sleep(interval_seconds)

    async def check(self, probe: Callable[[], Awaitable[bool]]) -> bool:
        """Run probe once; a probe error leaves the state unchanged."""
        try:
            self.set_online(await probe())
        except Exception as e:
            logger.error(f"Connectivity probe failed: {e}")
        return self._online
