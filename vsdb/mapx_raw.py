"""A map of raw byte keys to raw byte values kept in the on-disk engine."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import Any

from vsdb.common import PREFIX_SIZE, VsdbError
from vsdb.storage import get_engine


def _raw(data: Any) -> bytes:
    """Accept any bytes-like object; reject ints, strings and the like."""
    try:
        return bytes(memoryview(data))
    except TypeError as exc:
        raise TypeError(f"expected a bytes-like object, got {type(data).__name__}") from exc


class ValueMut:
    """A value taken out of a map for editing; written back by commit()."""

    def __init__(self, hdr: MapxRaw, key: bytes, value: bytes) -> None:
        self._hdr = hdr
        self.key = _raw(key)
        self.value = _raw(value)

    def __enter__(self) -> ValueMut:
        return self

    def __exit__(self, *args: object) -> None:
        self.commit()

    def commit(self) -> None:
        """Store the current value under the key."""
        self._hdr.insert(self.key, _raw(self.value))

    def __bytes__(self) -> bytes:
        return _raw(self.value)

    def __repr__(self) -> str:
        return f"ValueMut(key={self.key!r}, value={self.value!r})"


class Entry:
    """A view of one key of a map, which may or may not be present."""

    def __init__(self, hdr: MapxRaw, key: bytes) -> None:
        self._hdr = hdr
        self._key = _raw(key)

    def or_insert(self, default: bytes) -> ValueMut:
        """Return the stored value, inserting the default first if missing."""
        return self.or_insert_with(lambda: default)

    def or_insert_with(self, factory: Callable[[], bytes]) -> ValueMut:
        """Return the stored value, inserting factory() first if missing."""
        existing = self._hdr.get_mut(self._key)
        if existing is not None:
            return existing
        value = _raw(factory())
        self._hdr.insert(self._key, value)
        return ValueMut(self._hdr, self._key, value)


class MapxRaw:
    """An ordered map whose keys and values are stored as given, unencoded."""

    __hash__ = None  # type: ignore[assignment]

    def __init__(self) -> None:
        self._prefix: bytes | None = None

    @property
    def _pre(self) -> bytes:
        if self._prefix is None:
            engine = get_engine()
            prefix = engine.alloc_prefix().to_bytes(PREFIX_SIZE, "big")
            engine.set_instance_len_hint(prefix, 0)
            self._prefix = prefix
        return self._prefix

    @classmethod
    def _recovered(cls, prefix: bytes) -> MapxRaw:
        prefix = _raw(prefix)
        if len(prefix) != PREFIX_SIZE:
            raise VsdbError(f"invalid prefix length: {len(prefix)}")
        instance = cls()
        instance._prefix = prefix
        return instance

    def shadow(self) -> MapxRaw:
        """Return another handle on the very same stored instance."""
        return self._recovered(self._pre)

    def copy(self) -> MapxRaw:
        """Return a new, independent instance holding the same entries."""
        new = MapxRaw()
        for key, value in self.iter():
            new.insert(key, value)
        return new

    def get(self, key: bytes) -> bytes | None:
        return get_engine().get(self._pre, _raw(key))

    def get_mut(self, key: bytes) -> ValueMut | None:
        key = _raw(key)
        value = self.get(key)
        if value is None:
            return None
        return ValueMut(self, key, value)

    def contains_key(self, key: bytes) -> bool:
        return self.get(key) is not None

    def __contains__(self, key: object) -> bool:
        try:
            return self.contains_key(key)  # type: ignore[arg-type]
        except TypeError:
            return False

    def get_le(self, key: bytes) -> tuple[bytes, bytes] | None:
        """Return the entry with the largest key not above the given one."""
        return next(self.range(None, key, include_end=True, reverse=True), None)

    def get_ge(self, key: bytes) -> tuple[bytes, bytes] | None:
        """Return the entry with the smallest key not below the given one."""
        return next(self.range(key, None), None)

    def __len__(self) -> int:
        return get_engine().get_instance_len_hint(self._pre)

    def is_empty(self) -> bool:
        return len(self) == 0

    def entry(self, key: bytes) -> Entry:
        return Entry(self, key)

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        return self.iter()

    def iter(self, reverse: bool = False) -> Iterator[tuple[bytes, bytes]]:
        return get_engine().items(self._pre, reverse=reverse)

    def range(
        self,
        start: bytes | None = None,
        end: bytes | None = None,
        *,
        include_start: bool = True,
        include_end: bool = False,
        reverse: bool = False,
    ) -> Iterator[tuple[bytes, bytes]]:
        """Iterate entries between two keys; a bound of None is open."""
        return get_engine().items(
            self._pre,
            None if start is None else _raw(start),
            None if end is None else _raw(end),
            include_start=include_start,
            include_end=include_end,
            reverse=reverse,
        )

    def _editable(
        self, items: Iterable[tuple[bytes, bytes]]
    ) -> Iterator[tuple[bytes, ValueMut]]:
        for key, value in items:
            handle = ValueMut(self, key, value)
            try:
                yield key, handle
            finally:
                handle.commit()

    def iter_mut(self, reverse: bool = False) -> Iterator[tuple[bytes, ValueMut]]:
        """Iterate entries as editable values, each written back once passed."""
        return self._editable(self.iter(reverse))

    def range_mut(
        self,
        start: bytes | None = None,
        end: bytes | None = None,
        *,
        include_start: bool = True,
        include_end: bool = False,
        reverse: bool = False,
    ) -> Iterator[tuple[bytes, ValueMut]]:
        """Like range(), yielding editable values written back once passed."""
        return self._editable(
            self.range(
                start,
                end,
                include_start=include_start,
                include_end=include_end,
                reverse=reverse,
            )
        )

    def last(self) -> tuple[bytes, bytes] | None:
        return next(self.iter(reverse=True), None)

    def insert(self, key: bytes, value: bytes) -> bytes | None:
        """Store a value and return the one it replaced, if any."""
        engine = get_engine()
        prefix = self._pre
        old = engine.insert(prefix, _raw(key), _raw(value))
        if old is None:
            engine.increase_instance_len_hint(prefix)
        return old

    def remove(self, key: bytes) -> bytes | None:
        """Delete a key and return its old value, if any."""
        engine = get_engine()
        prefix = self._pre
        old = engine.remove(prefix, _raw(key))
        if old is not None:
            engine.decrease_instance_len_hint(prefix)
        return old

    def clear(self) -> None:
        engine = get_engine()
        prefix = self._pre
        for key in [k for k, _ in engine.items(prefix)]:
            engine.remove(prefix, key)
        engine.set_instance_len_hint(prefix, 0)

    @classmethod
    def from_bytes(cls, s: bytes) -> MapxRaw:
        """Reopen an instance from the bytes given by as_bytes()."""
        return cls.from_prefix_slice(s)

    @classmethod
    def from_prefix_slice(cls, s: bytes) -> MapxRaw:
        return cls._recovered(s)

    def as_bytes(self) -> bytes:
        return self.as_prefix_slice()

    def as_prefix_slice(self) -> bytes:
        return self._pre

    def is_the_same_instance(self, other: MapxRaw) -> bool:
        return self._pre == other._pre

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MapxRaw):
            return NotImplemented
        if len(self) != len(other):
            return False
        return all(a == b for a, b in zip(self.iter(), other.iter()))

    def __reduce__(self) -> tuple[Any, tuple[bytes]]:
        return (MapxRaw.from_bytes, (self.as_bytes(),))

    def __repr__(self) -> str:
        return f"MapxRaw(prefix={self._prefix!r})"