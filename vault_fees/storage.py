"""Persist fee caches between restarts.

- The service stores two full snapshots: vault fees and fee batch splits
- :py:class:`JSONKeyValueStore` is a SQLite disk store, see :py:class:`KeyValueStore` for the interface
"""

import json
import logging
import sqlite3
from pathlib import Path
from threading import get_ident
from typing import Any, Protocol


logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal persistence interface.

    Values are JSON serialisable Python objects.
    """

    def get(self, key: str, default=None) -> Any:
        """Read a value or ``default`` if not stored."""

    def set(self, key: str, value: Any):
        """Store a value, overwriting the previous one."""


class MemoryKeyValueStore(dict):
    """In-process store for tests and dry runs.

    Values are JSON round-tripped, so the store behaves like the disk one.
    """

    def set(self, key: str, value: Any):
        assert type(key) == str, f"Only string keys allowed, got {key}"
        self[key] = json.loads(json.dumps(value))


class JSONKeyValueStore(dict):
    """A key-value store on SQLite, honouring Python dictionary interface.

    Based on https://stackoverflow.com/questions/47237807/use-sqlite-as-a-keyvalue-store

    - Keys are strings
    - Values are JSON encoded
    - Can be used across threads, one connection per thread
    """

    def __init__(self, filename: Path, autocommit=True):
        """
        :param filename: Path to the sqlite database

        :param autocommit: Whether to autocommit every time new entry is added to the database
        """
        super().__init__()
        assert isinstance(filename, Path), f"Got {filename}"
        self.autocommit = autocommit
        self.filename = filename
        self.thread_connection_map = {}

    def __repr__(self):
        return f"<JSONKeyValueStore {self.filename}>"

    @property
    def conn(self) -> sqlite3.Connection:
        """One connection per thread"""
        thread_id = get_ident()
        if thread_id not in self.thread_connection_map:
            self.filename.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.filename)
            conn.execute("CREATE TABLE IF NOT EXISTS kv (key text unique, value text)")
            self.thread_connection_map[thread_id] = conn
        return self.thread_connection_map[thread_id]

    def encode_value(self, value: Any) -> str:
        return json.dumps(value)

    def decode_value(self, value: str) -> Any:
        return json.loads(value)

    def close(self):
        thread_id = get_ident()
        conn = self.thread_connection_map.pop(thread_id, None)
        if conn is not None:
            conn.commit()
            conn.close()

    def commit(self):
        self.conn.commit()

    def keys(self):
        return [row[0] for row in self.conn.execute("SELECT key FROM kv")]

    def __contains__(self, key):
        return self.conn.execute("SELECT 1 FROM kv WHERE key = ?", (key,)).fetchone() is not None

    def __getitem__(self, key):
        assert type(key) == str, f"Only string keys allowed, got {key}"
        item = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if item is None:
            raise KeyError(key)
        return self.decode_value(item[0])

    def __setitem__(self, key, value):
        assert type(key) == str, f"Only string keys allowed, got {key}"
        encoded = self.encode_value(value)
        self.conn.execute("REPLACE INTO kv (key, value) VALUES (?,?)", (key, encoded))
        if self.autocommit:
            self.conn.commit()
        logger.debug("Stored %s, %d bytes", key, len(encoded))

    def __delitem__(self, key):
        if key not in self:
            raise KeyError(key)
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def __iter__(self):
        return iter(self.keys())

    def __len__(self):
        return self.conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0]

    def get(self, key, default=None):
        if key in self:
            return self[key]
        return default

    def set(self, key: str, value: Any):
        self[key] = value
