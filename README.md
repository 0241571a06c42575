# vsdb

Building blocks for storage and indexing:

- `vsdb.mapx_raw.MapxRaw`: an ordered map from raw `bytes` keys to raw `bytes`
  values. Its contents are kept on disk in a shared storage engine, not in
  process memory.
- `vsdb.slot_db.SlotDB`: an index keyed by integer slots and built like a skip
  list. It answers paged queries such as "page N of size S, newest first"
  quickly. It lives in memory.
- `vsdb.node_codec`: the compact node encoding for a radix-16 Merkle trie
  without extension nodes. It covers node headers, child bitmaps, compact
  integers, leaf and branch nodes, and a stream that builds node encodings.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Where data is stored

`vsdb.storage.get_engine()` opens one engine per process. The engine is an
SQLite database file named `vsdb.sqlite3` inside the base directory. The base
directory is the first of these that is set:

1. `$VSDB_BASE_DIR`
2. `$HOME/.vsdb`
3. `/tmp/.vsdb`

You can choose the directory yourself. Do it once, before anything touches
storage:

```python
from vsdb.common import vsdb_set_base_dir, vsdb_get_base_dir

vsdb_set_base_dir("/tmp/my_vsdb_data")
print(vsdb_get_base_dir())
```

Calling it a second time raises `vsdb.common.VsdbError`. The same happens once
the engine has been opened. `vsdb.common.vsdb_get_custom_dir()` returns a
`__CUSTOM__` subdirectory of the base directory, for your own files.
`vsdb.storage.vsdb_flush()` checkpoints pending writes into the database file.

## MapxRaw

```python
from vsdb.mapx_raw import MapxRaw

m = MapxRaw()
m.insert(b"\x01", b"\x00")     # returns the replaced value, or None
m.insert(b"\x02", b"\x00")
assert len(m) == 2
assert m.get(b"\x01") == b"\x00"
assert b"\x02" in m

# Ordered iteration and ranges (start inclusive, end exclusive by default)
for key, value in m.iter():
    ...
first_in_range = next(m.range(b"\x02", b"\x10"), None)
newest = m.last()

# Nearest neighbours
m.get_ge(b"\x00")   # (b"\x01", b"\x00")
m.get_le(b"\xff")   # (b"\x02", b"\x00")

# Mutable handles are written back when the block ends
with m.get_mut(b"\x01") as v:
    v.value = b"\x09"

with m.entry(b"\x03").or_insert(b"\x07") as v:
    pass

# iter_mut() / range_mut() yield editable values, written back as you go
for key, v in m.iter_mut():
    v.value = v.value + b"!"

m.remove(b"\x02")
m.clear()
assert m.is_empty()
```

Keys and values may be any bytes-like object. Each map is identified by an
8-byte prefix. `as_bytes()` returns that prefix, and `MapxRaw.from_bytes(...)`
reopens the same map later. Pickling a map stores only this prefix.
`shadow()` gives a second handle on the same data. `copy()` makes an
independent map with the same entries. Two maps compare equal when they hold
the same entries in the same order.

## SlotDB

```python
from vsdb.slot_db import SlotDB

db = SlotDB(8, False)
for i in range(1000):
    db.insert(i, i)

db.total()                                           # 1000
db.get_entries_by_page(10, 0, True)                  # [999, 998, ..., 990]
db.get_entries_by_page_slot(100, 199, 10, 2, False)  # [120, ..., 129]
db.entry_cnt_within_two_slots(10, 19)                # 10
db.total_by_slot(10, 19)                             # 10
db.remove(5, 5)
db.clear()
```

Slots are unsigned 64-bit integers. Page sizes go up to 65535, and page
indexes start at 0. Values outside these ranges raise `ValueError`. Entries
in a slot form a set. Inserting an entry that is already there changes
nothing. Within a slot, entries are kept in sorted order, so they must be
hashable and comparable with each other.

Pass `swap_order=True` when most queries run newest first. The results stay
the same, but the internal layout is mirrored so those queries run faster.

A `SlotDB` is held in memory only and is not saved to disk.

## Trie node codec

```python
import hashlib
from vsdb.node_codec import NodeCodec, InlineValue, LeafPlan, compact_encode

codec = NodeCodec(lambda data: hashlib.sha256(data).digest(), 32)
leaf = codec.leaf_node(iter([0x12]), 2, InlineValue(b"hello"))
plan = codec.decode_plan(leaf)
assert isinstance(plan, LeafPlan)
assert plan.value == InlineValue(b"hello")

compact_encode(64)   # b"\x01\x01"
```

`NodeCodec()` and `TrieStream()` hash with 32-byte BLAKE2b by default. When
decoding fails, or when an extension node or a branch without a partial key is
requested, `vsdb.node_codec.CodecError` is raised. It is a subclass of
`VsdbError`.

## What this package does not do

- It has no trie database. The node codec encodes and decodes single nodes,
  but nothing here stores trie nodes, computes trie roots from key-value sets
  or keeps trie versions.
- `MapxRaw` stores raw bytes only. There are no typed maps that encode keys and
  values for you, and no versioned maps.
- There is no server and no command-line tool. Everything is used as a library
  inside one process.