"""Ordered key-value storage engine shared by every map instance."""

from __future__ import annotations

import contextlib
import os
import sqlite3
import threading
from collections.abc import Iterator
from pathlib import Path

from vsdb.common import (
    PREFIX_SIZE,
    RESERVED_ID_CNT,
    VsdbError,
    parse_int,
    parse_prefix,
    vsdb_get_base_dir,
    vsdb_set_base_dir,
)

DB_FILE_NAME = "vsdb.sqlite3"

_DATA_SET_NUM = 2
_META_KEY_PREFIX_ALLOCATOR = bytes([0])
_META_INSTANCE_PREFIX = bytes([1])
_BATCH = 256


def _as_prefix(prefix: bytes) -> bytes:
    raw = bytes(prefix)
    if len(raw) != PREFIX_SIZE:
        raise VsdbError(f"invalid prefix length: {len(raw)}")
    return raw


def _successor(prefix: bytes) -> bytes | None:
    value = parse_int(prefix) + 1
    if value >> (8 * PREFIX_SIZE):
        return None
    return value.to_bytes(PREFIX_SIZE, "big")


class Engine:
    """A persistent ordered byte store partitioned by 8-byte instance prefixes."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._dir = Path(path)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._alloc_lock = threading.Lock()
        self._area_locks = [threading.Lock() for _ in range(self.area_count())]
        self._conn = sqlite3.connect(
            str(self._dir / DB_FILE_NAME),
            check_same_thread=False,
            isolation_level=None,
        )
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS data "
                "(k BLOB PRIMARY KEY, v BLOB NOT NULL) WITHOUT ROWID"
            )
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS meta "
                "(k BLOB PRIMARY KEY, v BLOB NOT NULL) WITHOUT ROWID"
            )
            if self._meta_get(_META_KEY_PREFIX_ALLOCATOR) is None:
                self._meta_put(
                    _META_KEY_PREFIX_ALLOCATOR,
                    RESERVED_ID_CNT.to_bytes(PREFIX_SIZE, "big"),
                )

    def _meta_get(self, key: bytes) -> bytes | None:
        with self._lock:
            row = self._conn.execute("SELECT v FROM meta WHERE k = ?", (key,)).fetchone()
        return None if row is None else bytes(row[0])

    def _meta_put(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO meta (k, v) VALUES (?, ?)", (key, value)
            )

    def alloc_prefix(self) -> int:
        """Hand out a fresh instance id, never reused."""
        with self._alloc_lock, self._lock:
            current = parse_prefix(self._meta_get(_META_KEY_PREFIX_ALLOCATOR))
            self._meta_put(
                _META_KEY_PREFIX_ALLOCATOR,
                (current + 1).to_bytes(PREFIX_SIZE, "big"),
            )
            return current

    def area_count(self) -> int:
        return _DATA_SET_NUM

    def area_idx(self, prefix: bytes) -> int:
        return bytes(prefix)[0] % self.area_count()

    def flush(self) -> None:
        """Write buffered data through to the database file."""
        with self._lock:
            self._conn.execute("PRAGMA wal_checkpoint(FULL)")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def items(
        self,
        prefix: bytes,
        start: bytes | None = None,
        end: bytes | None = None,
        *,
        include_start: bool = True,
        include_end: bool = False,
        reverse: bool = False,
    ) -> Iterator[tuple[bytes, bytes]]:
        """Iterate the (key, value) pairs of one instance in key order.

        A bound of None is open. Writes made during iteration are allowed.
        """
        prefix = _as_prefix(prefix)
        if start is not None:
            lo, lo_incl = prefix + bytes(start), include_start
        else:
            lo, lo_incl = prefix, True
        if end is not None:
            hi, hi_incl = prefix + bytes(end), include_end
        else:
            hi, hi_incl = _successor(prefix), False
        return self._scan(lo, lo_incl, hi, hi_incl, reverse)

    def _scan(
        self,
        lo: bytes,
        lo_incl: bool,
        hi: bytes | None,
        hi_incl: bool,
        reverse: bool,
    ) -> Iterator[tuple[bytes, bytes]]:
        order = "DESC" if reverse else "ASC"
        while True:
            conds = ["k >= ?" if lo_incl else "k > ?"]
            params: list[object] = [lo]
            if hi is not None:
                conds.append("k <= ?" if hi_incl else "k < ?")
                params.append(hi)
            params.append(_BATCH)
            query = (
                f"SELECT k, v FROM data WHERE {' AND '.join(conds)} "
                f"ORDER BY k {order} LIMIT ?"
            )
            with self._lock:
                rows = self._conn.execute(query, params).fetchall()
            for key, value in rows:
                yield bytes(key[PREFIX_SIZE:]), bytes(value)
            if len(rows) < _BATCH:
                return
            last = bytes(rows[-1][0])
            if reverse:
                hi, hi_incl = last, False
            else:
                lo, lo_incl = last, False

    def get(self, prefix: bytes, key: bytes) -> bytes | None:
        full = _as_prefix(prefix) + bytes(key)
        with self._lock:
            row = self._conn.execute("SELECT v FROM data WHERE k = ?", (full,)).fetchone()
        return None if row is None else bytes(row[0])

    def insert(self, prefix: bytes, key: bytes, value: bytes) -> bytes | None:
        """Store a value and return the one it replaced, if any."""
        full = _as_prefix(prefix) + bytes(key)
        with self._lock:
            old = self.get(prefix, key)
            self._conn.execute(
                "INSERT OR REPLACE INTO data (k, v) VALUES (?, ?)", (full, bytes(value))
            )
        return old

    def remove(self, prefix: bytes, key: bytes) -> bytes | None:
        """Delete a key and return its old value, if any."""
        full = _as_prefix(prefix) + bytes(key)
        with self._lock:
            old = self.get(prefix, key)
            self._conn.execute("DELETE FROM data WHERE k = ?", (full,))
        return old

    def get_instance_len_hint(self, prefix: bytes) -> int:
        raw = self._meta_get(_META_INSTANCE_PREFIX + _as_prefix(prefix))
        if raw is None:
            raise VsdbError("unknown instance prefix")
        return parse_int(raw)

    def set_instance_len_hint(self, prefix: bytes, new_len: int) -> None:
        self._meta_put(
            _META_INSTANCE_PREFIX + _as_prefix(prefix),
            int(new_len).to_bytes(8, "big"),
        )

    def increase_instance_len_hint(self, prefix: bytes) -> None:
        with self._area_locks[self.area_idx(prefix)]:
            self.set_instance_len_hint(prefix, self.get_instance_len_hint(prefix) + 1)

    def decrease_instance_len_hint(self, prefix: bytes) -> None:
        with self._area_locks[self.area_idx(prefix)]:
            current = self.get_instance_len_hint(prefix)
            self.set_instance_len_hint(prefix, max(0, current - 1))


_engine: Engine | None = None
_engine_lock = threading.Lock()


def get_engine() -> Engine:
    """Return the process-wide engine, opening it in the base directory."""
    global _engine
    with _engine_lock:
        if _engine is None:
            path = vsdb_get_base_dir()
            with contextlib.suppress(VsdbError):
                vsdb_set_base_dir(path)
            _engine = Engine(path)
        return _engine


def vsdb_flush() -> None:
    """Flush data to disk."""
    get_engine().flush()