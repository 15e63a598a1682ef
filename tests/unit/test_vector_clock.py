"""Unit tests for VectorClock ordering and merge laws."""

import pytest
from pydantic import ValidationError

from intake_gateway.models.vector_clock import ClockOrdering, VectorClock


def clock(node: str, **counters: int) -> VectorClock:
    return VectorClock(node_id=node, counters=dict(counters))


class TestVectorClockBasics:
    """Construction and local events."""

    def test_own_entry_always_present(self):
        assert VectorClock(node_id="a").counters == {"a": 0}

    def test_negative_counters_rejected(self):
        with pytest.raises(ValidationError):
            clock("a", a=-1)

    def test_tick_only_advances_own_entry(self):
        c = clock("a", a=1, b=4)
        c.tick()
        assert c.counters == {"a": 2, "b": 4}

    def test_update_ticks_then_takes_maximum(self):
        local = clock("a", a=1, b=1)
        local.update(clock("b", a=0, b=5, c=2))
        assert local.counters == {"a": 2, "b": 5, "c": 2}

    def test_copy_clock_is_independent(self):
        original = clock("a", a=3)
        copy = original.copy_clock("b")
        copy.tick()

        assert original.counters == {"a": 3}
        assert copy.counters == {"a": 3, "b": 1}

    def test_repr_lists_entries(self):
        assert repr(clock("a", a=1, b=2)) == "VectorClock(a: a=1, b=2)"


class TestVectorClockCompare:
    """Ordering over the union of node entries."""

    def test_equal(self):
        assert clock("a", a=1, b=2).compare(clock("b", a=1, b=2)) == ClockOrdering.EQUAL

    def test_missing_entries_count_as_zero(self):
        assert clock("a", a=1).compare(clock("b", a=1, b=0)) == ClockOrdering.EQUAL

    def test_before_and_after(self):
        older = clock("a", a=1)
        newer = clock("a", a=2, b=1)
        assert older.compare(newer) == ClockOrdering.BEFORE
        assert newer.compare(older) == ClockOrdering.AFTER

    def test_independent_ticks_are_concurrent(self):
        node_a = VectorClock(node_id="a")
        node_b = VectorClock(node_id="b")
        node_a.tick()
        node_b.tick()

        assert node_a.compare(node_b) == ClockOrdering.CONCURRENT
        assert node_b.compare(node_a) == ClockOrdering.CONCURRENT


class TestVectorClockMerge:
    """Join laws of merge()."""

    @pytest.fixture
    def a(self):
        return clock("a", a=3, b=1)

    @pytest.fixture
    def b(self):
        return clock("b", a=1, b=4, c=2)

    def test_merge_is_commutative(self, a, b):
        assert a.merge(b).counters == b.merge(a).counters

    def test_merge_is_idempotent(self, a, b):
        once = a.merge(b)
        twice = once.merge(b)
        assert once.counters == twice.counters

    def test_merge_dominates_inputs(self, a, b):
        merged = a.merge(b)
        assert merged.compare(a) in (ClockOrdering.AFTER, ClockOrdering.EQUAL)
        assert merged.compare(b) in (ClockOrdering.AFTER, ClockOrdering.EQUAL)

    def test_merge_with_self_is_equal(self, a):
        assert a.merge(a).compare(a) == ClockOrdering.EQUAL

    def test_merge_does_not_mutate(self, a, b):
        a.merge(b)
        assert a.counters == {"a": 3, "b": 1}

    def test_update_result_follows_both_inputs(self, a, b):
        remote = b.copy_clock()
        a.update(remote)
        assert a.compare(remote) == ClockOrdering.AFTER
