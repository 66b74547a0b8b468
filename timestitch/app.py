"""Wires the store, change log, remote client, sync engine and journal together."""

import asyncio
import logging
from pathlib import Path

from .config import Config
from .journal.service import JournalService
from .journal.sharing import ShareLinks
from .local.kv_store import KeyValueStore
from .local.offline_cache import OfflineCache
from .remote.client import RemoteClient
from .sync.change_log import ChangeLog
from .sync.connectivity import ConnectivityMonitor
from .sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class TimeStitchApp:
    """Owns every long-lived component for one local database."""

    def __init__(
        self,
        config: Config,
        remote: RemoteClient | None = None,
        store: KeyValueStore | None = None,
    ):
        """Build the component graph.

        Args:
            config: Loaded configuration.
            remote: Remote client to use instead of one built from config.
            store: Key/value store to use instead of the configured database.
        """
        self.config = config

        if store is None:
            db_path = config.storage.db_path
            if db_path != ":memory:":
                db_path = str(Path(db_path).expanduser())
            store = KeyValueStore(db_path)
        self.store = store

        self.remote = remote or RemoteClient(
            config.remote.url,
            anon_key=config.remote.anon_key,
            access_token=config.remote.access_token,
            bucket=config.remote.bucket,
            timeout=config.remote.timeout_seconds,
        )
        self.monitor = ConnectivityMonitor()
        self.change_log = ChangeLog(self.store)
        self.cache = OfflineCache(self.store)
        self.engine = SyncEngine(
            self.change_log,
            self.remote,
            self.monitor,
            cache=self.cache,
            interval_seconds=config.sync.interval_seconds,
            call_timeout_seconds=config.sync.call_timeout_seconds,
        )
        self.journal = JournalService(
            self.remote,
            self.change_log,
            self.monitor,
            cache=self.cache,
            call_timeout_seconds=config.sync.call_timeout_seconds,
            image_max_width=config.images.max_width,
            image_quality=config.images.quality,
            max_image_bytes=config.images.max_file_size_bytes,
        )
        self.share_links = ShareLinks(self.store, base_url=config.sharing.base_url)
        self._stop_event = asyncio.Event()

    def open(self) -> None:
        """Open local storage and load the cached entities and share links."""
        self.store.connect()
        self.journal.load_cached()
        self.share_links.load()

    async def start(self) -> None:
        """Open storage, check the remote and start background sync."""
        self.open()

        if self.config.connectivity.probe_enabled:
            await self.monitor.check(self.remote.health_check)
            await self.monitor.start_probing(
                self.remote.health_check,
                self.config.connectivity.probe_interval_seconds,
            )

        await self.journal.refresh()

        if self.config.sync.enabled:
            await self.engine.start()

        logger.info(
            f"TimeStitch started: {len(self.change_log)} pending changes, "
            f"{'online' if self.monitor.is_online() else 'offline'}"
        )

    async def run_forever(self) -> None:
        """Start, then wait until request_stop() is called."""
        await self.start()
        await self._stop_event.wait()

    def request_stop(self) -> None:
        self._stop_event.set()

    async def stop(self) -> None:
        """Stop background tasks and release resources."""
        logger.info("Stopping TimeStitch...")
        await self.engine.stop()
        await self.monitor.stop()
        self.engine.close()
        await self.remote.close()
        self.store.close()
        logger.info("TimeStitch stopped")
