"""Offline change queue and sync infrastructure.

Mutations that cannot reach the remote are appended to a durable local log
and replayed in order once connectivity returns.
"""

from .change_log import ChangeKind, ChangeLog, EntityType, PendingChange
from .connectivity import ConnectivityMonitor
from .engine import DrainResult, SyncEngine, SyncState, SyncStatus

__all__ = [
    "ChangeKind",
    "ChangeLog",
    "ConnectivityMonitor",
    "DrainResult",
    "EntityType",
    "PendingChange",
    "SyncEngine",
    "SyncState",
    "SyncStatus",
]
