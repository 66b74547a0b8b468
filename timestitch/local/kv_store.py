"""SQLite-backed key/value store used as durable local storage."""

import logging
import sqlite3
from pathlib import Path

from ..errors import PersistenceError

logger = logging.getLogger(__name__)

# Schema for the key/value table
KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class KeyValueStore:
    """Durable key/value storage with synchronous get/set.

    Every write is committed before the call returns, so a value that was
    set survives a process restart.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self._in_memory = str(db_path) == ":memory:"
        self.db_path = Path(db_path) if self._in_memory else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open the database connection and create the schema."""
        if self._conn is not None:
            return

        try:
            if self._in_memory:
                self._conn = sqlite3.connect(":memory:", check_same_thread=False)
            else:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.executescript(KV_SCHEMA)
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Cannot open local store {self.db_path}: {e}") from e

        logger.info(f"KeyValueStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def get(self, key: str) -> bytes | None:
        """Return the stored value, or None when the key is absent."""
        conn = self._ensure_connected()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read '{key}': {e}") from e

        if row is None:
            return None
        value = row[0]
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    def set(self, key: str, value: bytes) -> None:
        """Store value under key and commit."""
        conn = self._ensure_connected()
        try:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, sqlite3.Binary(value)),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write '{key}': {e}") from e

    def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""
        conn = self._ensure_connected()
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete '{key}': {e}") from e
