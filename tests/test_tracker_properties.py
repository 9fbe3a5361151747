#!/usr/bin/env python3
"""
Property-based tests for cycle time tracking and the message table using hypothesis

Tests invariants including:
- Latest-by-identifier equals the last event per identifier in timestamp order
- Cycle time is zero on first occurrence and equals consecutive deltas after
- Cycle times are never negative
"""

import pytest
from hypothesis import given, strategies as st, settings

from socketcan_mon.model import BusEvent
from socketcan_mon.table import MessageTable
from socketcan_mon.tracker import CycleTimeTracker

identifiers = st.integers(min_value=0, max_value=0x7FF)
gaps = st.floats(min_value=0.0, max_value=10.0, allow_nan=False, allow_infinity=False)


class TestTrackerProperties:

    @given(st.lists(st.tuples(identifiers, gaps), min_size=1, max_size=60))
    def test_cycle_time_equals_consecutive_delta(self, steps):
        tracker = CycleTimeTracker()
        now = 0.0
        previous = {}
        for cid, gap in steps:
            now += gap
            cycle = tracker.record(cid, now)
            if cid in previous:
                assert cycle == pytest.approx(now - previous[cid])
            else:
                assert cycle == 0.0
            previous[cid] = now

    @given(st.lists(st.tuples(identifiers, st.floats(min_value=0, max_value=1e6, allow_nan=False)), max_size=60))
    def test_cycle_time_never_negative(self, events):
        tracker = CycleTimeTracker()
        for cid, ts in events:
            assert tracker.record(cid, ts) >= 0.0


class TestTableProperties:

    @given(st.lists(st.tuples(identifiers, st.binary(max_size=8)), min_size=1, max_size=80))
    @settings(max_examples=50)
    def test_latest_is_last_event_per_identifier(self, frames):
        table = MessageTable()
        expected = {}
        for i, (cid, payload) in enumerate(frames):
            event = BusEvent(identifier=cid, payload=payload, timestamp=float(i))
            table.publish(event)
            expected[cid] = (float(i), payload)

        snapshot = table.snapshot()
        assert [e.identifier for e in snapshot] == sorted(expected)
        for event in snapshot:
            assert (event.timestamp, event.payload) == expected[event.identifier]

    @given(st.lists(st.tuples(identifiers, gaps), min_size=1, max_size=40), st.randoms())
    @settings(max_examples=50)
    def test_shuffled_arrival_keeps_newest(self, steps, rnd):
        events = []
        now = 0.0
        for cid, gap in steps:
            now += gap + 0.001
            events.append(BusEvent(identifier=cid, payload=b'', timestamp=now))
        shuffled = list(events)
        rnd.shuffle(shuffled)

        table = MessageTable()
        for event in shuffled:
            table.publish(event)

        newest = {}
        for event in events:
            newest[event.identifier] = event.timestamp
        for event in table.snapshot():
            assert event.timestamp == newest[event.identifier]
