"""Cached entity snapshots and last-sync time for offline display."""

import json
import logging
from datetime import datetime
from typing import Any

from ..models import Memory, Project
from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)

OFFLINE_KEY = "timestitch-offline"


class OfflineCache:
    """Stores the last known projects/memories and the last sync time.

    The cache is a convenience for offline display and is never the
    source of truth; unreadable content is treated as an empty cache.
    """

    def __init__(self, store: KeyValueStore, key: str = OFFLINE_KEY):
        self._store = store
        self.key = key

    def _load(self) -> dict[str, Any]:
        raw = self._store.get(self.key)
        if not raw:
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Offline cache under '{self.key}' is unreadable, ignoring: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Offline cache under '{self.key}' has unexpected shape, ignoring")
            return {}
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self._store.set(self.key, json.dumps(data).encode("utf-8"))

    def load_snapshot(self) -> tuple[list[Project], list[Memory]]:
        """Return cached projects and memories (empty lists if none)."""
        data = self._load()
        try:
            projects = [Project.from_dict(p) for p in data.get("projects", [])]
            memories = [Memory.from_dict(m) for m in data.get("memories", [])]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Cached entities are malformed, ignoring: {e}")
            return [], []
        return projects, memories

    def save_snapshot(self, projects: list[Project], memories: list[Memory]) -> None:
        """Replace the cached entities, keeping the last sync time."""
        data = self._load()
        data["projects"] = [p.to_dict() for p in projects]
        data["memories"] = [m.to_dict() for m in memories]
        self._save(data)

    def get_last_sync(self) -> datetime | None:
        value = self._load().get("last_sync")
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except (TypeError, ValueError):
            return None

    def set_last_sync(self, when: datetime) -> None:
        data = self._load()
        data["last_sync"] = when.isoformat()
        self._save(data)

    def export_data(self) -> dict[str, Any]:
        """Return the full cached payload for backups."""
        projects, memories = self.load_snapshot()
        last_sync = self.get_last_sync()
        return {
            "projects": [p.to_dict() for p in projects],
            "memories": [m.to_dict() for m in memories],
            "last_sync": last_sync.isoformat() if last_sync else None,
        }
