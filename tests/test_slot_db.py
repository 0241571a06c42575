import itertools
import random

import pytest

from vsdb.slot_db import SLOT_MAX, SlotDB

SIZE = 3000


class RefDB:
    """Plain reference: entries ordered by slot, then by insertion."""

    _ids = itertools.count()

    def __init__(self):
        self.data = []

    def insert(self, slot, v):
        self.data.append(((slot, next(self._ids)), v))
        self.data.sort(key=lambda x: x[0]) if len(self.data) < 2 or self.data[-2][0] > self.data[-1][0] else None

    def get_entries_by_page_slot(self, slot_start, slot_end, page_size, page_index, reverse):
        slot_start = 0 if slot_start is None else slot_start
        slot_end = SLOT_MAX if slot_end is None else slot_end
        vals = [v for (s, _), v in self.data if slot_start <= s <= slot_end]
        if reverse:
            vals.reverse()
        begin = page_size * page_index
        return vals[begin : begin + page_size]


def _assert_queryable(db, ref, slot_min, slot_max, rng):
    for _ in range(16):
        page_size = 1 + rng.randrange(1 << 16) % 128
        max_page = 100 + db.total() // page_size
        page_number = rng.randrange(1 << 32) % max_page

        for rev in (True, False):
            assert ref.get_entries_by_page_slot(
                None, None, page_size, page_number, rev
            ) == db.get_entries_by_page(page_size, page_number, rev)

        smin = rng.randrange(1 << 64) % (slot_min + 100)
        smax = smin + rng.randrange(1 << 64) % ((slot_max - slot_min) + 100)
        for rev in (True, False):
            assert ref.get_entries_by_page_slot(
                smin, smax, page_size, page_number, rev
            ) == db.get_entries_by_page_slot(smin, smax, page_size, page_number, rev)


def _workflow(mn, swap):
    rng = random.Random(mn * 2 + int(swap))
    db = SlotDB(mn, swap)
    ref = RefDB()
    for i in range(SIZE):
        db.insert(i, i)
        ref.insert(i, i)
    assert db.total() == SIZE
    _assert_queryable(db, ref, 0, SIZE - 1, rng)
    db.clear()
    assert db.total() == 0
    assert db.get_entries_by_page(10, 0, True) == []
    assert db.get_entries_by_page(10, 0, False) == []


@pytest.mark.parametrize("mn", [32, 16, 8])
def test_workflow_normal(mn):
    _workflow(mn, False)


@pytest.mark.parametrize("mn", [32, 16, 8])
def test_workflow_swap_order(mn):
    _workflow(mn, True)


def test_data_container():
    db = SlotDB(16, False)
    db.insert(0, 0)
    for i in range(100):
        db.insert(0, i)
    assert db.total() == 100
    all_entries = db.get_entries_by_page(200, 0, False)
    assert len(all_entries) == 100
    assert all_entries[0] == 0
    assert all_entries[-1] == 99
    db.clear()
    assert db.total() == 0


def _ten(swap=False):
    db = SlotDB(4, swap)
    for i in range(10):
        db.insert(i, i)
    return db


def test_pinned_pages():
    db = _ten()
    assert db.get_entries_by_page(3, 0, False) == [0, 1, 2]
    assert db.get_entries_by_page(3, 0, True) == [9, 8, 7]
    assert db.get_entries_by_page(3, 1, True) == [6, 5, 4]
    assert db.get_entries_by_page(3, 3, False) == [9]
    assert db.get_entries_by_page(3, 3, True) == [0]
    assert db.get_entries_by_page(3, 4, False) == []
    assert db.get_entries_by_page_slot(2, 5, 10, 0, False) == [2, 3, 4, 5]
    assert db.get_entries_by_page_slot(2, 5, 10, 0, True) == [5, 4, 3, 2]


def test_pinned_pages_swapped():
    db = _ten(True)
    assert db.get_entries_by_page(3, 0, False) == [0, 1, 2]
    assert db.get_entries_by_page(3, 0, True) == [9, 8, 7]
    assert db.get_entries_by_page_slot(2, 5, 10, 0, False) == [2, 3, 4, 5]


def test_empty_cases():
    db = _ten()
    assert db.get_entries_by_page(0, 0, False) == []
    assert db.get_entries_by_page_slot(5, 2, 10, 0, False) == []
    assert SlotDB().get_entries_by_page(10, 0, True) == []


def test_duplicate_insert_not_counted():
    db = SlotDB()
    db.insert(5, "a")
    db.insert(5, "a")
    db.insert(5, "b")
    assert db.total() == 2
    assert db.get_entries_by_page(10, 0, False) == ["a", "b"]


def test_remove():
    db = _ten()
    db.remove(3, 3)
    db.remove(3, 3)
    db.remove(100, 1)
    assert db.total() == 9
    assert db.get_entries_by_page(10, 0, False) == [0, 1, 2, 4, 5, 6, 7, 8, 9]
    assert db.entry_cnt_within_two_slots(0, 5) == 5


@pytest.mark.parametrize("swap", [False, True])
def test_counts_by_slot(swap):
    db = _ten(swap)
    assert db.entry_cnt_within_two_slots(2, 5) == 4
    assert db.entry_cnt_within_two_slots(5, 2) == 0
    assert db.total_by_slot(None, 4) == 5
    assert db.total_by_slot(7, None) == 3
    assert db.total_by_slot() == 10


def test_invalid_arguments():
    with pytest.raises(ValueError):
        SlotDB(0, False)
    db = SlotDB()
    with pytest.raises(ValueError):
        db.insert(-1, 1)
    with pytest.raises(ValueError):
        db.insert(SLOT_MAX + 1, 1)
    with pytest.raises(ValueError):
        db.get_entries_by_page(1 << 16, 0, False)
    with pytest.raises(TypeError):
        db.insert("1", 1)