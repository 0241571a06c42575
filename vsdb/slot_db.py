"""A skip-list-like index over slotted entries, built for fast paged queries."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from typing import Any

from sortedcontainers import SortedDict, SortedSet

SLOT_MAX = (1 << 64) - 1
PAGE_SIZE_MAX = (1 << 16) - 1
PAGE_INDEX_MAX = (1 << 32) - 1


def _check_range(name: str, value: int, upper: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if not 0 <= value <= upper:
        raise ValueError(f"{name} out of range [0, {upper}]: {value}")
    return value


def _swap_order(slot: int) -> int:
    return SLOT_MAX ^ slot


@dataclass
class _Level:
    floor_base: int
    data: SortedDict = field(default_factory=SortedDict)

    @classmethod
    def new(cls, level_idx: int, multiple_step: int) -> _Level:
        return cls(floor_base=multiple_step ** (1 + level_idx))

    def floor(self, slot: int) -> int:
        return slot // self.floor_base * self.floor_base

    def add(self, slot_floor: int, cnt: int) -> None:
        self.data[slot_floor] = self.data.get(slot_floor, 0) + cnt


def _walk(
    keys: Iterable[int],
    count_of: Callable[[int], int],
    slot_start: int | None,
    local_idx: int,
) -> tuple[int | None, int]:
    """Step over whole buckets while they fit inside the remaining skip count."""
    it = iter(keys)
    cur = next(it, None)
    while cur is not None:
        cnt = count_of(cur)
        if cnt > local_idx:
            break
        nxt = next(it, None)
        slot_start = nxt
        local_idx -= cnt
        cur = nxt
    return slot_start, local_idx


class SlotDB:
    """Entries grouped by an unsigned 64-bit slot, with paged range queries.

    ``swap_order`` flips the internal slot direction, which favours
    queries made mostly in reverse order.
    """

    def __init__(self, multiple_step: int = 8, swap_order: bool = False) -> None:
        _check_range("multiple_step", multiple_step, SLOT_MAX)
        if multiple_step == 0:
            raise ValueError("multiple_step must be positive")
        self._data: SortedDict = SortedDict()
        self._total = 0
        self._levels: list[_Level] = []
        self._multiple_step = multiple_step
        self._swap_order = bool(swap_order)

    def insert(self, slot: int, t: Hashable) -> None:
        """Add an entry to a slot; adding an existing entry again changes nothing."""
        _check_range("slot", slot, SLOT_MAX)
        if self._swap_order:
            slot = _swap_order(slot)

        if self._levels:
            top = self._levels[-1]
            if len(top.data) > self._multiple_step:
                newtop = _Level.new(len(self._levels), self._multiple_step)
                for s, cnt in top.data.items():
                    newtop.add(newtop.floor(s), cnt)
                self._levels.append(newtop)
        else:
            newtop = _Level.new(len(self._levels), self._multiple_step)
            for s, entries in self._data.items():
                newtop.add(newtop.floor(s), len(entries))
            self._levels.append(newtop)

        entries = self._data.get(slot)
        if entries is None:
            entries = SortedSet()
            self._data[slot] = entries
        if t in entries:
            return
        entries.add(t)
        for level in self._levels:
            level.add(level.floor(slot), 1)
        self._total += 1

    def remove(self, slot: int, t: Any) -> None:
        """Remove an entry from a slot, if it is there."""
        _check_range("slot", slot, SLOT_MAX)
        if self._swap_order:
            slot = _swap_order(slot)

        while self._levels and len(self._levels[-1].data) < 2:
            self._levels.pop()

        entries = self._data.get(slot)
        if entries is None:
            return
        exist = t in entries
        if exist:
            entries.discard(t)
        if not entries:
            del self._data[slot]

        if exist:
            for level in self._levels:
                slot_floor = level.floor(slot)
                cnt = level.data[slot_floor]
                if cnt == 1:
                    del level.data[slot_floor]
                else:
                    level.data[slot_floor] = cnt - 1
            self._total -= 1

    def clear(self) -> None:
        self._total = 0
        self._data.clear()
        self._levels.clear()

    def get_entries_by_page(
        self, page_size: int, page_index: int, reverse_order: bool
    ) -> list[Any]:
        """Return one page of all entries; pages are numbered from 0."""
        return self.get_entries_by_page_slot(
            None, None, page_size, page_index, reverse_order
        )

    def get_entries_by_page_slot(
        self,
        slot_left_bound: int | None,
        slot_right_bound: int | None,
        page_size: int,
        page_index: int,
        reverse_order: bool,
    ) -> list[Any]:
        """Return one page of the entries whose slots lie in the inclusive bounds."""
        slot_min = 0 if slot_left_bound is None else slot_left_bound
        slot_max = SLOT_MAX if slot_right_bound is None else slot_right_bound
        _check_range("slot_left_bound", slot_min, SLOT_MAX)
        _check_range("slot_right_bound", slot_max, SLOT_MAX)
        _check_range("page_size", page_size, PAGE_SIZE_MAX)
        _check_range("page_index", page_index, PAGE_INDEX_MAX)
        reverse_order = bool(reverse_order)

        if self._swap_order:
            slot_min, slot_max = _swap_order(slot_max), _swap_order(slot_min)
            reverse_order = not reverse_order

        if slot_max < slot_min:
            return []
        if page_size == 0 or self.total() == 0:
            return []

        return self._get_entries(slot_min, slot_max, page_size, page_index, reverse_order)

    def _slot_entry_cnt(self, slot: int) -> int:
        entries = self._data.get(slot)
        return 0 if entries is None else len(entries)

    def _distance_to_the_leftmost_slot(self, slot: int) -> int:
        """Count entries in slots strictly left of the given one."""
        left_bound = 0
        ret = 0
        for level in reversed(self._levels):
            right_bound = level.floor(slot)
            ret += sum(
                level.data[k]
                for k in level.data.irange(left_bound, right_bound, inclusive=(True, False))
            )
            left_bound = right_bound
        ret += sum(
            len(self._data[k])
            for k in self._data.irange(left_bound, slot, inclusive=(True, False))
        )
        return ret

    def _offsets_from_the_leftmost_slot(
        self,
        slot_start: int,
        slot_end: int,
        page_size: int,
        page_index: int,
        reverse: bool,
    ) -> tuple[int, int]:
        if slot_start > slot_end:
            return 0, 0

        if not reverse:
            skip_n = self._distance_to_the_leftmost_slot(slot_start) + page_size * page_index
            return skip_n, page_size

        skip_n = (
            self._distance_to_the_leftmost_slot(slot_end)
            + self._slot_entry_cnt(slot_end)
            - page_size * (1 + page_index)
        )
        distance_of_slot_start = self._distance_to_the_leftmost_slot(slot_start)
        if distance_of_slot_start <= skip_n:
            take_n = page_size
        else:
            back_shift = min(distance_of_slot_start - skip_n, PAGE_SIZE_MAX)
            skip_n = distance_of_slot_start
            take_n = max(0, page_size - back_shift)
        return skip_n, take_n

    def _get_local_skip_num(self, global_skip_num: int) -> tuple[int | None, int]:
        """Find the first slot to read from and how many of its entries to skip.

        A slot of None means the skip runs past every entry.
        """
        slot_start: int | None = 0
        local_idx = global_skip_num

        for level in reversed(self._levels):
            if slot_start is None:
                break
            counts = level.data
            slot_start, local_idx = _walk(
                counts.irange(minimum=slot_start), counts.__getitem__, slot_start, local_idx
            )

        if slot_start is not None:
            data = self._data
            slot_start, local_idx = _walk(
                data.irange(minimum=slot_start),
                lambda k: len(data[k]),
                slot_start,
                local_idx,
            )

        return slot_start, local_idx

    def _get_entries(
        self,
        slot_start: int,
        slot_end: int,
        page_size: int,
        page_index: int,
        reverse: bool,
    ) -> list[Any]:
        ret: list[Any] = []
        if slot_end < slot_start:
            return ret

        global_skip_n, take_n = self._offsets_from_the_leftmost_slot(
            slot_start, slot_end, page_size, page_index, reverse
        )
        slot_start_actual, skip_n = self._get_local_skip_num(global_skip_n)

        if slot_start_actual is not None and slot_start_actual <= slot_end:
            for slot in self._data.irange(slot_start_actual, slot_end):
                entries = self._data[slot]
                want = take_n - len(ret)
                ret.extend(entries[skip_n : skip_n + want])
                skip_n = 0
                if len(ret) >= take_n:
                    break

        if reverse:
            ret.reverse()
        return ret

    def entry_cnt_within_two_slots(self, slot_start: int, slot_end: int) -> int:
        """Count entries whose slots lie in the inclusive range."""
        _check_range("slot_start", slot_start, SLOT_MAX)
        _check_range("slot_end", slot_end, SLOT_MAX)
        if self._swap_order:
            slot_start, slot_end = _swap_order(slot_end), _swap_order(slot_start)

        if slot_start > slot_end:
            return 0
        return (
            self._distance_to_the_leftmost_slot(slot_end)
            - self._distance_to_the_leftmost_slot(slot_start)
            + self._slot_entry_cnt(slot_end)
        )

    def total_by_slot(self, slot_start: int | None = None, slot_end: int | None = None) -> int:
        start = 0 if slot_start is None else slot_start
        end = SLOT_MAX if slot_end is None else slot_end
        if start == 0 and end == SLOT_MAX:
            return self._total
        return self.entry_cnt_within_two_slots(start, end)

    def total(self) -> int:
        return self.total_by_slot(None, None)