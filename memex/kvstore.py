"""An ordered, persistent key-value store with named trees, backed by SQLite."""

from __future__ import annotations

import sqlite3
import threading
from os import PathLike
from typing import Iterator, Optional, Union

KeyLike = Union[bytes, bytearray, memoryview, str]


def _as_bytes(value: KeyLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def _prefix_upper_bound(prefix: bytes) -> Optional[bytes]:
    """Smallest key greater than every key starting with ``prefix``."""
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return None
    return trimmed[:-1] + bytes([trimmed[-1] + 1])


class Store:
    """A database file holding any number of named, byte-ordered trees."""

    def __init__(self, path: Union[str, PathLike] = ":memory:") -> None:
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False, isolation_level=None
        )
        self._lock = threading.RLock()
        self._execute(
            "CREATE TABLE IF NOT EXISTS entries ("
            " tree TEXT NOT NULL,"
            " key BLOB NOT NULL,"
            " value BLOB NOT NULL,"
            " PRIMARY KEY (tree, key))"
        )

    def _execute(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def open_tree(self, name: str) -> "Tree":
        return Tree(self, name)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Tree:
    """A named keyspace inside a Store; keys iterate in byte order."""

    def __init__(self, store: Store, name: str) -> None:
        self._store = store
        self.name = name

    def get(self, key: KeyLike) -> Optional[bytes]:
        rows = self._store._execute(
            "SELECT value FROM entries WHERE tree = ? AND key = ?",
            (self.name, _as_bytes(key)),
        )
        return bytes(rows[0][0]) if rows else None

    def insert(self, key: KeyLike, value: KeyLike) -> Optional[bytes]:
        """Store ``value`` under ``key``; return the value it replaced, if any."""
        raw_key = _as_bytes(key)
        with self._store._lock:
            previous = self.get(raw_key)
            self._store._execute(
                "INSERT OR REPLACE INTO entries (tree, key, value) VALUES (?, ?, ?)",
                (self.name, raw_key, _as_bytes(value)),
            )
        return previous

    def contains(self, key: KeyLike) -> bool:
        rows = self._store._execute(
            "SELECT 1 FROM entries WHERE tree = ? AND key = ?",
            (self.name, _as_bytes(key)),
        )
        return bool(rows)

    def __contains__(self, key: KeyLike) -> bool:
        return self.contains(key)

    def iter(self) -> Iterator[tuple[bytes, bytes]]:
        """Iterate over a snapshot of all entries in key order."""
        rows = self._store._execute(
            "SELECT key, value FROM entries WHERE tree = ? ORDER BY key",
            (self.name,),
        )
        return ((bytes(k), bytes(v)) for k, v in rows)

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        return self.iter()

    def scan_prefix(self, prefix: KeyLike) -> list[tuple[bytes, bytes]]:
        """Return all entries whose key starts with ``prefix``, in key order."""
        raw_prefix = _as_bytes(prefix)
        upper = _prefix_upper_bound(raw_prefix)
        if upper is None:
            rows = self._store._execute(
                "SELECT key, value FROM entries WHERE tree = ? AND key >= ? "
                "ORDER BY key",
                (self.name, raw_prefix),
            )
        else:
            rows = self._store._execute(
                "SELECT key, value FROM entries WHERE tree = ? AND key >= ? "
                "AND key < ? ORDER BY key",
                (self.name, raw_prefix, upper),
            )
        return [
            (bytes(k), bytes(v)) for k, v in rows if bytes(k).startswith(raw_prefix)
        ]

    def last(self) -> Optional[tuple[bytes, bytes]]:
        """Return the entry with the greatest key, or None if the tree is empty."""
        rows = self._store._execute(
            "SELECT key, value FROM entries WHERE tree = ? ORDER BY key DESC LIMIT 1",
            (self.name,),
        )
        if not rows:
            return None
        key, value = rows[0]
        return bytes(key), bytes(value)