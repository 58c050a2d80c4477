"""SQLite key-value persistence for notifier state."""

import sqlite3
import threading
from typing import Optional


def init_db(db_path: str) -> sqlite3.Connection:
    """
    Initialize the database and create the meta table if it doesn't exist.

    Args:
        db_path: Path to the SQLite database file (":memory:" for tests).

    Returns:
        A connection to the database, usable from the scheduler thread.
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)
    conn.commit()
    return conn


def get_meta(conn: sqlite3.Connection, key: str) -> Optional[str]:
    """
    Read one persisted state value.

    Args:
        conn: Connection returned by init_db().
        key: State key, e.g. "last_fired_day".

    Returns:
        The stored string, or None when the key was never written.
    """
    cursor = conn.execute("SELECT value FROM meta WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row[0] if row else None


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    """
    Write one persisted state value, replacing any previous one.

    Args:
        conn: Connection returned by init_db().
        key: State key.
        value: String to store.
    """
    conn.execute(
        "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
        (key, value)
    )
    conn.commit()


def delete_meta(conn: sqlite3.Connection, key: str) -> None:
    """Remove a metadata key if present."""
    conn.execute("DELETE FROM meta WHERE key = ?", (key,))
    conn.commit()


class SqliteKeyValueStore:
    """get/set store scoped to one device, backed by the meta table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    @classmethod
    def open(cls, db_path: str) -> "SqliteKeyValueStore":
        return cls(init_db(db_path))

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return get_meta(self.conn, key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            set_meta(self.conn, key, value)

    def delete(self, key: str) -> None:
        with self._lock:
            delete_meta(self.conn, key)

    def close(self) -> None:
        with self._lock:
            self.conn.close()
