# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Shared message table: latest event per identifier plus the visibility filter.

Every event, received or self-sent, goes through ``MessageTable.publish``.
Echo classification, cycle-time tracking, the table update and the hand-off
to the event sink all happen under one lock, so events for an identifier
reach the sink in the order their producers published them. The lock is
never held across transport I/O.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .model import BusEvent, Direction, FilterMode
from .tracker import CycleTimeTracker, EchoPolicy, classify_echo

logger = logging.getLogger(__name__)


class FilterSet:
    """Identifier set plus whitelist/blacklist mode. Not thread-safe on its own."""

    def __init__(self, mode: FilterMode = FilterMode.OFF, identifiers: Iterable[int] = ()):
        self.mode = FilterMode(mode)
        self.identifiers: Set[int] = set(identifiers)

    def is_visible(self, identifier: int) -> bool:
        if self.mode is FilterMode.WHITELIST:
            return identifier in self.identifiers
        if self.mode is FilterMode.BLACKLIST:
            return identifier not in self.identifiers
        return True

    def toggle(self, identifier: int) -> bool:
        """Add or remove an identifier. Returns True if it is now in the set."""
        if identifier in self.identifiers:
            self.identifiers.discard(identifier)
            return False
        self.identifiers.add(identifier)
        return True

    def copy(self) -> "FilterSet":
        return FilterSet(self.mode, self.identifiers)


class MessageTable:
    """Lock-guarded LatestByIdentifier, cycle-time tracker and filter.

    Args:
        sink: Called with each visible stored event, under the table lock.
              Must not block (an unbounded ``queue.Queue.put`` is fine).
        echo_policy: Rule used to decide whether a received frame is an echo
    """

    def __init__(self, sink: Optional[Callable[[BusEvent], None]] = None,
                 echo_policy: EchoPolicy = EchoPolicy.IDENTIFIER):
        self._lock = threading.Lock()
        self._latest: Dict[int, BusEvent] = {}
        self._tracker = CycleTimeTracker()
        self._filters = FilterSet()
        self._sink = sink
        self.echo_policy = echo_policy

    def publish(self, event: BusEvent) -> Tuple[BusEvent, bool]:
        """Classify, track and store an event, then forward it if visible.

        Returns:
            (stored event, visible) where ``stored`` carries the computed
            cycle time and echo flags
        """
        with self._lock:
            prev = self._latest.get(event.identifier)

            if event.direction is Direction.RECEIVED:
                if classify_echo(event, prev, self.echo_policy):
                    # Keep the bus-confirmed content, but not its timing
                    stored = replace(event, self_originated=True, echo=True, cycle_time=prev.cycle_time)
                else:
                    cycle = self._tracker.record(event.identifier, event.timestamp)
                    stored = replace(event, cycle_time=cycle)
            else:
                # Sent events carry their own cycle time (0 or the period)
                self._tracker.record(event.identifier, event.timestamp)
                stored = event

            if prev is None or stored.timestamp >= prev.timestamp:
                self._latest[event.identifier] = stored
            else:
                logger.debug("Out-of-order event for 0x%X not stored (%.6f < %.6f)",
                             event.identifier, stored.timestamp, prev.timestamp)

            visible = self._filters.is_visible(event.identifier)
            if visible and self._sink is not None:
                self._sink(stored)
            return stored, visible

    def latest(self, identifier: int) -> Optional[BusEvent]:
        with self._lock:
            return self._latest.get(identifier)

    def snapshot(self, visible_only: bool = True) -> List[BusEvent]:
        """Latest event per identifier, sorted by identifier."""
        with self._lock:
            return [
                self._latest[cid] for cid in sorted(self._latest)
                if not visible_only or self._filters.is_visible(cid)
            ]

    def clear(self) -> None:
        with self._lock:
            self._latest.clear()
            self._tracker.forget()

    def set_filter_mode(self, mode: FilterMode) -> None:
        with self._lock:
            self._filters.mode = FilterMode(mode)
        logger.info("Filter mode set to %s", FilterMode(mode).name)

    def cycle_filter_mode(self) -> FilterMode:
        """Advance Off -> Whitelist -> Blacklist -> Off."""
        with self._lock:
            self._filters.mode = FilterMode((self._filters.mode + 1) % len(FilterMode))
            mode = self._filters.mode
        logger.info("Filter mode set to %s", mode.name)
        return mode

    def toggle_filter_id(self, identifier: int) -> bool:
        with self._lock:
            return self._filters.toggle(identifier)

    def filters(self) -> FilterSet:
        """Return a copy of the current filter."""
        with self._lock:
            return self._filters.copy()

    def is_filtered(self, identifier: int) -> bool:
        """True if the identifier is in the filter set (regardless of mode)."""
        with self._lock:
            return identifier in self._filters.identifiers

    def __len__(self) -> int:
        with self._lock:
            return len(self._latest)
