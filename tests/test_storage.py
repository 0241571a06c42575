import pytest

from vsdb import common, storage
from vsdb.common import RESERVED_ID_CNT, VsdbError
from vsdb.storage import Engine, get_engine, vsdb_flush


def _prefix(n):
    return n.to_bytes(8, "big")


@pytest.fixture
def engine(tmp_path):
    e = Engine(tmp_path / "db")
    yield e
    e.close()


def test_alloc_prefix_is_sequential(engine):
    first = engine.alloc_prefix()
    second = engine.alloc_prefix()
    assert first == RESERVED_ID_CNT
    assert second == first + 1


def test_alloc_prefix_persists(tmp_path):
    e = Engine(tmp_path / "db")
    e.alloc_prefix()
    last = e.alloc_prefix()
    e.close()
    reopened = Engine(tmp_path / "db")
    try:
        assert reopened.alloc_prefix() == last + 1
    finally:
        reopened.close()


def test_insert_get_remove(engine):
    p = _prefix(engine.alloc_prefix())
    assert engine.get(p, b"k") is None
    assert engine.insert(p, b"k", b"v0") is None
    assert engine.insert(p, b"k", b"v1") == b"v0"
    assert engine.get(p, b"k") == b"v1"
    assert engine.remove(p, b"k") == b"v1"
    assert engine.get(p, b"k") is None
    assert engine.remove(p, b"k") is None


def test_data_persists(tmp_path):
    e = Engine(tmp_path / "db")
    p = _prefix(e.alloc_prefix())
    e.insert(p, b"key", b"value")
    e.flush()
    e.close()
    reopened = Engine(tmp_path / "db")
    try:
        assert reopened.get(p, b"key") == b"value"
    finally:
        reopened.close()


def test_prefix_isolation(engine):
    a = _prefix(engine.alloc_prefix())
    b = _prefix(engine.alloc_prefix())
    engine.insert(a, b"x", b"1")
    engine.insert(b, b"y", b"2")
    assert list(engine.items(a)) == [(b"x", b"1")]
    assert list(engine.items(b)) == [(b"y", b"2")]
    assert engine.get(a, b"y") is None


def test_ranges(engine):
    p = _prefix(engine.alloc_prefix())
    for k in ([1], [4], [6], [80]):
        engine.insert(p, bytes(k), bytes(k))
    assert list(engine.items(p, b"", b"\x01")) == []
    assert next(engine.items(p, b"\x02", b"\x0a"))[1] == bytes([4])
    assert next(engine.items(p, b"\x02", b"\x0a", reverse=True))[1] == bytes([6])
    assert [k for k, _ in engine.items(p, b"\x04", b"\x50", include_end=True)] == [
        bytes([4]),
        bytes([6]),
        bytes([80]),
    ]
    assert [k for k, _ in engine.items(p, b"\x04", include_start=False)] == [
        bytes([6]),
        bytes([80]),
    ]
    assert next(engine.items(p, end=b"\x50", include_end=True, reverse=True))[1] == bytes(
        [80]
    )


def test_items_many_keys_ordered(engine):
    p = _prefix(engine.alloc_prefix())
    keys = [i.to_bytes(8, "big") for i in range(600)]
    for k in reversed(keys):
        engine.insert(p, k, k)
    forward = [k for k, _ in engine.items(p)]
    backward = [k for k, _ in engine.items(p, reverse=True)]
    assert forward == keys
    assert backward == list(reversed(keys))


def test_write_during_iteration(engine):
    p = _prefix(engine.alloc_prefix())
    for i in range(300):
        engine.insert(p, i.to_bytes(8, "big"), b"v")
    for k, v in engine.items(p):
        engine.insert(p, k, v + b"x")
    values = [v for _, v in engine.items(p)]
    assert len(values) == 300
    assert all(v == b"vx" for v in values)


def test_len_hints(engine):
    p = _prefix(engine.alloc_prefix())
    engine.set_instance_len_hint(p, 0)
    engine.increase_instance_len_hint(p)
    engine.increase_instance_len_hint(p)
    assert engine.get_instance_len_hint(p) == 2
    for _ in range(3):
        engine.decrease_instance_len_hint(p)
    assert engine.get_instance_len_hint(p) == 0


def test_missing_len_hint_raises(engine):
    with pytest.raises(VsdbError):
        engine.get_instance_len_hint(_prefix(engine.alloc_prefix()))


def test_bad_prefix_raises(engine):
    with pytest.raises(VsdbError):
        engine.get(b"\x00", b"k")
    with pytest.raises(VsdbError):
        engine.insert(b"\x00" * 9, b"k", b"v")


def test_area_idx(engine):
    count = engine.area_count()
    for first in range(5):
        idx = engine.area_idx(bytes([first]) + b"\x00" * 7)
        assert 0 <= idx < count
        assert idx == engine.area_idx(bytes([first + count]) + b"\x00" * 7)


def test_get_engine_singleton(monkeypatch, tmp_path):
    monkeypatch.setattr(common, "_state", common._State())
    monkeypatch.setattr(storage, "_engine", None)
    monkeypatch.setenv("VSDB_BASE_DIR", str(tmp_path))
    e = get_engine()
    try:
        assert e is get_engine()
        assert (tmp_path / storage.DB_FILE_NAME).exists()
        with pytest.raises(VsdbError):
            common.vsdb_set_base_dir(tmp_path / "else")
        p = _prefix(e.alloc_prefix())
        e.insert(p, b"a", b"b")
        vsdb_flush()
        assert e.get(p, b"a") == b"b"
    finally:
        e.close()