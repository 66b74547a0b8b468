"""Durable local storage for TimeStitch.

Provides:
- A SQLite key/value store (the device's durable storage)
- A cache of entity snapshots for offline display
"""

from .kv_store import KeyValueStore
from .offline_cache import OFFLINE_KEY, OfflineCache

__all__ = ["KeyValueStore", "OfflineCache", "OFFLINE_KEY"]
