#!/usr/bin/env python3
"""
Local storage for cached API responses and persisted settings.

Values are stored as JSON text in a SQLite database. Entries never expire;
they live until the owning namespace is cleared.
"""

import json
import logging
import sqlite3
import threading
from typing import Any, Optional

MISSING = object()


class LocalStore:
    """Handles all database operations for the response cache and settings."""

    def __init__(self, db_path: str):
        """
        Initialize the store.

        Args:
            db_path: Path to the SQLite database file (":memory:" is accepted).
        """
        self.db_path = db_path
        self.conn = None
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def open(self):
        """Open the connection and create the tables if needed."""
        if self.conn is None:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.setup_database()

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    def setup_database(self):
        """Create the necessary tables if they don't exist."""
        try:
            with self.lock, self.conn:
                self.conn.execute("""
                    CREATE TABLE IF NOT EXISTS cache_entries (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                """)
                self.conn.execute("""
                    CREATE TABLE IF NOT EXISTS settings (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                """)
            self.logger.debug("Database setup complete.")
        except sqlite3.Error as e:
            self.logger.error(f"Database setup failed: {e}")
            raise

    def _read(self, table: str, key: str) -> Optional[str]:
        with self.lock:
            row = self.conn.execute(f"SELECT value FROM {table} WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def _write(self, table: str, key: str, text: str):
        with self.lock, self.conn:
            self.conn.execute(
                f"INSERT OR REPLACE INTO {table} (key, value) VALUES (?, ?)",
                (key, text)
            )

    def _delete(self, table: str, key: str):
        with self.lock, self.conn:
            self.conn.execute(f"DELETE FROM {table} WHERE key = ?", (key,))

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for key, or default if absent or unreadable."""
        text = self._read("cache_entries", key)
        if text is None:
            return default
        try:
            return json.loads(text)
        except ValueError as e:
            self.logger.error(f"Failed to parse cache item {key}: {e}")
            return default

    def set(self, key: str, value: Any):
        """Store value under key. Unserializable values are logged and dropped."""
        try:
            text = json.dumps(value)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Failed to set cache item {key}: {e}")
            return
        self._write("cache_entries", key, text)

    def clear_all(self, prefix: str) -> int:
        """Delete every cache entry whose key starts with prefix."""
        with self.lock, self.conn:
            cursor = self.conn.execute(
                "DELETE FROM cache_entries WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix)
            )
        self.logger.info(f"Cleared {cursor.rowcount} cache entries under '{prefix}'")
        return cursor.rowcount

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Return a persisted setting, or default if absent or unreadable."""
        text = self._read("settings", key)
        if text is None:
            return default
        try:
            return json.loads(text)
        except ValueError as e:
            self.logger.error(f"Failed to parse setting {key}: {e}")
            return default

    def set_setting(self, key: str, value: Any):
        self._write("settings", key, json.dumps(value))

    def remove_setting(self, key: str):
        self._delete("settings", key)


class CacheNamespace:
    """A view over a LocalStore that prefixes every key with a fixed namespace."""

    def __init__(self, store: LocalStore, prefix: str):
        self.store = store
        self.prefix = prefix

    def get(self, key: str, default: Any = None) -> Any:
        return self.store.get(f"{self.prefix}{key}", default)

    def set(self, key: str, value: Any):
        self.store.set(f"{self.prefix}{key}", value)

    def clear(self) -> int:
        return self.store.clear_all(self.prefix)

