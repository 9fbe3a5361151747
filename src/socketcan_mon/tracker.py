# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Per-identifier cycle time tracking and echo classification.

Echo detection is a heuristic: once this process has sent a frame on an
identifier, a frame later received on that identifier is taken to be the
bus reflecting our own traffic. It cannot tell a second, genuine transmitter
on the same identifier from an echo, so the matching rule is a policy.
"""

from __future__ import annotations

import enum
from typing import Dict, Optional

from .model import BusEvent, Direction


class EchoPolicy(enum.Enum):
    IDENTIFIER = "identifier"                     # same identifier is enough
    IDENTIFIER_AND_PAYLOAD = "identifier+payload"  # payload must match too


def classify_echo(event: BusEvent, previous: Optional[BusEvent],
                  policy: EchoPolicy = EchoPolicy.IDENTIFIER) -> bool:
    """Return True if a received event is an echo of our own transmission.

    Args:
        event: Newly received event
        previous: Currently stored event for the same identifier, if any
        policy: Matching rule applied on top of the identifier

    Returns:
        True if the event should be treated as an echo
    """
    if event.direction is not Direction.RECEIVED or previous is None:
        return False
    if not previous.self_originated or previous.identifier != event.identifier:
        return False
    if policy is EchoPolicy.IDENTIFIER_AND_PAYLOAD:
        return previous.payload == event.payload
    return True


class CycleTimeTracker:
    """Inter-arrival time per identifier, on monotonic timestamps.

    Only non-suppressed events advance the tracker, so the cycle time of the
    Nth real event is always the delta from the (N-1)th real event.
    """

    def __init__(self):
        self._last: Dict[int, float] = {}

    def record(self, identifier: int, timestamp: float, suppressed: bool = False) -> float:
        """Record an event and return its cycle time in seconds.

        Returns 0.0 on the first occurrence, for a suppressed echo, and for a
        timestamp older than the last one recorded (out-of-order arrival).
        """
        if suppressed:
            return 0.0
        last = self._last.get(identifier)
        if last is None:
            self._last[identifier] = timestamp
            return 0.0
        if timestamp < last:
            return 0.0
        self._last[identifier] = timestamp
        return timestamp - last

    def last_seen(self, identifier: int) -> Optional[float]:
        return self._last.get(identifier)

    def forget(self) -> None:
        self._last.clear()

    def __len__(self) -> int:
        return len(self._last)
