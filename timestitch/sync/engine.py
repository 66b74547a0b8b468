"""Sync engine that drains the pending change log against the remote.

Drains run on a fixed timer, on demand, and when connectivity returns.
Entries are applied strictly in the order they were appended.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from ..errors import PersistenceError, RemoteRejectedError, RemoteUnavailableError
from ..observers import ObserverList, Subscription
from .change_log import ChangeKind, ChangeLog, PendingChange
from .connectivity import ConnectivityMonitor

if TYPE_CHECKING:
    from ..local.offline_cache import OfflineCache
    from ..remote.client import RemoteClient

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Lifecycle state of the engine."""

    IDLE = "idle"  # no timer running
    SCHEDULED = "scheduled"  # timer armed
    DRAINING = "draining"


@dataclass
class SyncStatus:
    """Process-wide sync status shown to the user."""

    is_active: bool = False
    last_sync_at: datetime | None = None
    pending_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_active": self.is_active,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "pending_count": self.pending_count,
            "last_error": self.last_error,
        }


@dataclass
class DrainResult:
    """Result of one drain pass."""

    applied: int = 0
    remaining: int = 0
    error: str | None = None
    failed_change_id: str | None = None
    skipped: bool = False  # offline, nothing attempted

    @property
    def success(self) -> bool:
        return self.error is None and not self.skipped


class SyncEngine:
    """Drains the ChangeLog against the remote collaborator.

    Owns the SyncStatus. The first failure in a pass stops it: an entry is
    never applied before every entry ahead of it has been confirmed.
    """

    def __init__(
        self,
        change_log: ChangeLog,
        remote: "RemoteClient",
        monitor: ConnectivityMonitor,
        cache: "OfflineCache | None" = None,
        interval_seconds: float = 30.0,
        call_timeout_seconds: float = 10.0,
    ):
        """Initialize the engine.

        Args:
            change_log: Log of pending changes to drain.
            remote: Remote collaborator the changes are applied to.
            monitor: Connectivity monitor gating timer ticks and reconnects.
            cache: Optional offline cache where the last sync time is kept.
            interval_seconds: Seconds between timer-driven drains.
            call_timeout_seconds: Timeout for each remote call.
        """
        self.log = change_log
        self.remote = remote
        self.monitor = monitor
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.call_timeout_seconds = call_timeout_seconds

        self._status = SyncStatus(
            last_sync_at=cache.get_last_sync() if cache else None,
            pending_count=len(change_log),
        )
        self._state = SyncState.IDLE
        self._observers = ObserverList("sync status")
        self._drain_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._running = False
        self._monitor_subscription: Subscription | None = None

        # Keep pending_count equal to the log length after every mutation
        self._log_subscription = change_log.subscribe(self._on_log_changed)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def status(self) -> SyncStatus:
        """Snapshot copy of the current status."""
        return replace(self._status)

    def subscribe(self, callback: Callable[[SyncStatus], Any]) -> Subscription:
        """Register a callback receiving a status copy on every change."""
        return self._observers.subscribe(callback)

    def _notify(self) -> None:
        self._observers.notify(self.status)

    def _on_log_changed(self, length: int) -> None:
        if self._status.pending_count != length:
            self._status.pending_count = length
            self._notify()

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Arm the repeating drain timer; the first drain runs right away."""
        if self._running:
            return

        self._running = True
        self._state = SyncState.SCHEDULED
        self._status.is_active = True
        self._monitor_subscription = self.monitor.subscribe(self._on_connectivity)
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Sync engine started with {self.interval_seconds}s interval")
        self._notify()

    async def stop(self) -> None:
        """Cancel the timer and any reconnect drain."""
        if not self._running:
            return

        self._running = False
        if self._monitor_subscription:
            self._monitor_subscription.unsubscribe()
            self._monitor_subscription = None

        for task in (self._task, self._reconnect_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._reconnect_task = None

        self._state = SyncState.IDLE
        self._status.is_active = False
        logger.info("Sync engine stopped")
        self._notify()

    async def _run_loop(self) -> None:
        """Timer loop: drain, then wait one interval."""
        while self._running:
            await self._tick()
            await asyncio.sleep(self.interval_seconds)

    async def _tick(self) -> None:
        if not self.monitor.is_online():
            logger.debug("Offline, skipping scheduled sync")
            return

        try:
            result = await self.sync_now()
            if result.applied or result.error:
                logger.info(
                    f"Sync: applied={result.applied}, remaining={result.remaining}"
                    + (f", error={result.error}" if result.error else "")
                )
        except Exception as e:
            logger.error(f"Sync loop error: {e}", exc_info=True)

    def _on_connectivity(self, online: bool) -> None:
        if not online or self._status.pending_count == 0:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Back online outside the event loop, next tick will drain")
            return

        if self._reconnect_task and not self._reconnect_task.done():
            return
        logger.info(f"Back online with {self._status.pending_count} pending changes, syncing")
        self._reconnect_task = loop.create_task(self.sync_now())

    async def wait_for_pending_drain(self) -> DrainResult | None:
        """Await the drain started by a reconnect, if any."""
        task = self._reconnect_task
        if task is None:
            return None
        return await task

    # ==================== Draining ====================

    async def sync_now(self) -> DrainResult:
        """Drain the log once, in FIFO order.

        Returns:
            DrainResult describing what was applied.
        """
        async with self._drain_lock:
            self._state = SyncState.DRAINING
            try:
                return await self._drain()
            finally:
                self._state = SyncState.SCHEDULED if self._running else SyncState.IDLE

    async def _drain(self) -> DrainResult:
        changes = self.log.read_all()
        result = DrainResult()

        for change in changes:
            try:
                await asyncio.wait_for(self._apply(change), timeout=self.call_timeout_seconds)
            except asyncio.TimeoutError:
                result.error = (
                    f"Timed out after {self.call_timeout_seconds}s applying "
                    f"{change.kind.value} {change.entity_type.value} {change.entity_id}"
                )
            except (RemoteUnavailableError, RemoteRejectedError) as e:
                result.error = str(e)

            if result.error:
                result.failed_change_id = change.id
                logger.warning(f"Sync stopped at change {change.id}: {result.error}")
                break

            self.log.remove_applied([change.id])
            result.applied += 1

        result.remaining = len(self.log)
        self._status.pending_count = result.remaining

        if result.error:
            self._status.last_error = result.error
        else:
            now = datetime.now()
            self._status.last_sync_at = now
            self._status.last_error = None
            if self.cache:
                try:
                    self.cache.set_last_sync(now)
                except PersistenceError as e:
                    logger.warning(f"Could not record last sync time: {e}")

        self._notify()
        return result

    async def _apply(self, change: PendingChange) -> None:
        """Apply one change to the remote."""
        if change.kind == ChangeKind.CREATE:
            try:
                await self.remote.create_entity(change.entity_type, change.payload or {})
            except RemoteRejectedError as e:
                # Row already exists: an earlier attempt landed but was never acknowledged
                if e.status_code != 409:
                    raise
                logger.info(f"Create {change.entity_id} already applied remotely")
        elif change.kind == ChangeKind.UPDATE:
            await self.remote.update_entity(
                change.entity_type, change.entity_id, change.payload or {}
            )
        elif change.kind == ChangeKind.DELETE:
            await self.remote.delete_entity(change.entity_type, change.entity_id)

    # ==================== Operator tools ====================

    def discard(self, change_id: str) -> bool:
        """Drop one queued change that the remote keeps rejecting.

        Returns:
            True if the change was found and removed.
        """
        removed = self.log.remove_applied([change_id]) > 0
        if removed:
            logger.warning(f"Discarded pending change {change_id}")
            if self._status.last_error and not len(self.log):
                self._status.last_error = None
                self._notify()
        return removed

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status as a plain dictionary."""
        data = self.status.to_dict()
        data["state"] = self._state.value
        data["online"] = self.monitor.is_online()
        data["interval_seconds"] = self.interval_seconds
        return data

    def close(self) -> None:
        """Detach from the change log."""
        self._log_subscription.unsubscribe()
