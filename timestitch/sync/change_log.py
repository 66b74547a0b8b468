"""Durable, append-only log of mutations waiting to reach the remote.

The whole log lives under a single key of the local key/value store as a
JSON list, oldest entry first.
"""

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

from ..local.kv_store import KeyValueStore
from ..observers import ObserverList, Subscription

logger = logging.getLogger(__name__)

PENDING_CHANGES_KEY = "timestitch-pending-changes"


class ChangeKind(str, Enum):
    """Kind of queued mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityType(str, Enum):
    """Entity a mutation applies to."""

    PROJECT = "project"
    MEMORY = "memory"


@dataclass(frozen=True)
class PendingChange:
    """A single mutation not yet acknowledged by the remote."""

    id: str
    kind: ChangeKind
    entity_type: EntityType
    entity_id: str | None
    payload: dict[str, Any] | None
    enqueued_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingChange":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            kind=ChangeKind(data["kind"]),
            entity_type=EntityType(data["entity_type"]),
            entity_id=data.get("entity_id"),
            payload=data.get("payload"),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
        )


class ChangeLog:
    """Append-only queue of PendingChange records in durable storage.

    Mutating operations hold a mutex across their read-modify-write of the
    storage blob, so an append racing a drain's removal never loses either
    update.
    """

    def __init__(self, store: KeyValueStore, key: str = PENDING_CHANGES_KEY):
        """Initialize the change log.

        Args:
            store: Durable key/value storage holding the log.
            key: Storage key for the serialized log.
        """
        self._store = store
        self.key = key
        self._lock = threading.Lock()
        self._observers = ObserverList("change log")

    def _load_records(self) -> list[dict[str, Any]]:
        """Read raw records; absent or corrupt content reads as empty."""
        raw = self._store.get(self.key)
        if not raw:
            return []

        try:
            records = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Pending change log under '{self.key}' is corrupt, treating as empty: {e}")
            return []

        if not isinstance(records, list) or not all(
            isinstance(r, dict) and "id" in r for r in records
        ):
            logger.warning(f"Pending change log under '{self.key}' has unexpected shape, treating as empty")
            return []

        return records

    def _write_records(self, records: list[dict[str, Any]]) -> None:
        self._store.set(self.key, json.dumps(records).encode("utf-8"))

    def append(
        self,
        kind: ChangeKind,
        entity_type: EntityType,
        entity_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> PendingChange:
        """Append a new change and persist it before returning.

        Args:
            kind: Create, update or delete.
            entity_type: Project or memory.
            entity_id: Id of the affected entity.
            payload: Full row for creates, partial patch for updates.

        Returns:
            The appended PendingChange.

        Raises:
            PersistenceError: The log could not be written.
        """
        change = PendingChange(
            id=str(uuid.uuid4()),
            kind=ChangeKind(kind),
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            payload=payload,
            enqueued_at=datetime.now(),
        )

        with self._lock:
            records = self._load_records()
            records.append(change.to_dict())
            self._write_records(records)
            length = len(records)

        logger.debug(
            f"Queued {change.kind.value} {change.entity_type.value} "
            f"{change.entity_id} as {change.id} ({length} pending)"
        )
        self._observers.notify(length)
        return change

    def read_all(self) -> list[PendingChange]:
        """Return all pending changes, oldest first."""
        changes = []
        for record in self._load_records():
            try:
                changes.append(PendingChange.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Pending change log under '{self.key}' is corrupt, treating as empty: {e}")
                return []
        return changes

    def remove_applied(self, ids: Iterable[str]) -> int:
        """Remove the changes with the given ids, keeping the others in order.

        Unknown ids are ignored.

        Returns:
            Number of changes removed.
        """
        wanted = set(ids)
        if not wanted:
            return 0

        with self._lock:
            records = self._load_records()
            remaining = [r for r in records if r.get("id") not in wanted]
            removed = len(records) - len(remaining)
            if removed:
                self._write_records(remaining)
            length = len(remaining)

        if removed:
            logger.debug(f"Removed {removed} applied changes ({length} pending)")
            self._observers.notify(length)
        return removed

    def clear(self) -> None:
        """Remove every pending change."""
        with self._lock:
            self._write_records([])
        logger.debug("Pending change log cleared")
        self._observers.notify(0)

    def subscribe(self, callback: Callable[[int], Any]) -> Subscription:
        """Register a callback receiving the new length after each mutation."""
        return self._observers.subscribe(callback)

    def __len__(self) -> int:
        return len(self._load_records())
