"""
Key-value backends for persisted snapshots.

Plays the part of the browser's localStorage: a flat, synchronous mapping
of string keys to string values.

- MemoryKeyValueBackend: dict-backed, for tests and ephemeral sessions
- SQLiteKeyValueBackend: one ``snapshots`` table in a SQLite file
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path

from sungura.types import utc_now


class KeyValueBackend(ABC):
    """Synchronous string key-value storage."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Value for key, or None if absent."""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete key if present."""
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """All keys starting with prefix, sorted."""
        ...

    def close(self) -> None:
        """Release backend resources."""
        return None


class MemoryKeyValueBackend(KeyValueBackend):
    """Dict-backed key-value storage."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SQLiteKeyValueBackend(KeyValueBackend):
    """Key-value storage in a SQLite database file.

    Single writer, multiple readers.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the backend.

        Args:
            db_path: Path to the snapshots database file.
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._initialized = False

    def init(self) -> None:
        """Create the schema. Safe to call multiple times."""
        if self._initialized:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS snapshots (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
        self._initialized = True

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                isolation_level="DEFERRED",
            )
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._initialized = False

    def get(self, key: str) -> str | None:
        self.init()
        row = self._get_conn().execute(
            "SELECT value FROM snapshots WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        self.init()
        conn = self._get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO snapshots (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, utc_now().isoformat()),
        )
        conn.commit()

    def remove(self, key: str) -> None:
        self.init()
        conn = self._get_conn()
        conn.execute("DELETE FROM snapshots WHERE key = ?", (key,))
        conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        self.init()
        rows = self._get_conn().execute(
            "SELECT key FROM snapshots WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ).fetchall()
        return [row["key"] for row in rows]
