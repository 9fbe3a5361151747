# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Cyclic transmission scheduler.

Every running outgoing message owns one thread and one cancellation token
(a ``threading.Event`` created for that run only). The thread waits on the
token until the next tick deadline, so a stop is observed within one period
and never triggers another send. Ticks follow a monotonic deadline schedule;
when a tick is late the schedule is realigned to now instead of bursting.

A failed send is logged and counted, and the task carries on with its next
tick. A transmit that hangs delays only its own thread: ``stop_cyclic``
waits at most one period plus the send timeout before returning.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Dict, Final, List

from .errors import InvalidSpec, SendFailed
from .model import BusEvent, Direction, OutgoingMessageSpec, TriggerKind
from .transport import SEND_TIMEOUT

logger = logging.getLogger(__name__)

JOIN_MARGIN: Final[float] = 0.05   # Slack on top of period + send timeout when joining


class _CyclicTask:
    __slots__ = ("spec", "cancel", "thread")

    def __init__(self, spec: OutgoingMessageSpec, cancel: threading.Event, thread: threading.Thread):
        self.spec = spec
        self.cancel = cancel
        self.thread = thread


class CyclicScheduler:
    """Runs at most one periodic sender per outgoing message.

    Args:
        transport: Object with ``send(identifier, payload, is_extended_id, is_fd)``
        publish: Called with every successfully sent event
        clock: Monotonic time source for event timestamps and tick deadlines
        wall_clock: Wall time source for display timestamps
    """

    def __init__(self, transport, publish: Callable[[BusEvent], object],
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time,
                 send_timeout: float = SEND_TIMEOUT):
        self.transport = transport
        self.publish = publish
        self.clock = clock
        self.wall_clock = wall_clock
        self.send_timeout = send_timeout
        self.send_failures = 0
        self._lock = threading.Lock()
        self._tasks: Dict[uuid.UUID, _CyclicTask] = {}

    def _count_failure(self) -> None:
        with self._lock:
            self.send_failures += 1

    def _transmit(self, spec: OutgoingMessageSpec, trigger: TriggerKind, cycle_time: float) -> BusEvent:
        self.transport.send(spec.identifier, spec.payload, is_extended_id=spec.is_extended_id, is_fd=spec.is_fd)
        return BusEvent(
            identifier=spec.identifier,
            payload=bytes(spec.payload),
            timestamp=self.clock(),
            direction=Direction.TRANSMITTED,
            cycle_time=cycle_time,
            self_originated=True,
            trigger=trigger,
            wall_time=self.wall_clock(),
            is_extended_id=bool(spec.is_extended_id),
            is_fd=spec.is_fd,
        )

    def send_once(self, spec: OutgoingMessageSpec) -> BusEvent:
        """Transmit the frame exactly once and publish it.

        Raises:
            InvalidSpec: If the spec does not validate
            SendFailed: If the transmission fails; nothing is published
        """
        spec.validate()
        spec.trigger = TriggerKind.MANUAL
        try:
            event = self._transmit(spec, TriggerKind.MANUAL, 0.0)
        except SendFailed as e:
            self._count_failure()
            logger.error("One-shot send of 0x%X failed: %s", spec.identifier, e)
            raise
        self.publish(event)
        return event

    def start_cyclic(self, spec: OutgoingMessageSpec) -> bool:
        """Start periodic transmission.

        Returns:
            True if a task was started, False if one is already running

        Raises:
            InvalidSpec: If the spec does not validate or has no period
        """
        spec.validate()
        if spec.period <= 0:
            raise InvalidSpec(f"0x{spec.identifier:X}: cyclic send needs a period > 0")

        with self._lock:
            if spec.id in self._tasks:
                logger.debug("Cyclic 0x%X already running", spec.identifier)
                return False

            cancel = threading.Event()
            thread = threading.Thread(target=self._run, args=(spec, cancel),
                                      name=f"can-cyclic-{spec.identifier:X}", daemon=True)
            self._tasks[spec.id] = _CyclicTask(spec, cancel, thread)
            spec.active = True
            spec.trigger = TriggerKind.PERIODIC
            thread.start()

        logger.info("Cyclic start: 0x%X every %.1fms", spec.identifier, spec.period * 1000.0)
        return True

    def _run(self, spec: OutgoingMessageSpec, cancel: threading.Event) -> None:
        period = spec.period
        next_tick = self.clock() + period
        try:
            while not cancel.wait(max(0.0, next_tick - self.clock())):
                try:
                    event = self._transmit(spec, TriggerKind.PERIODIC, period)
                except SendFailed as e:
                    self._count_failure()
                    logger.warning("Cyclic send of 0x%X failed: %s", spec.identifier, e)
                else:
                    self.publish(event)

                next_tick += period
                now = self.clock()
                if next_tick < now:
                    # Late: realign instead of sending a burst
                    next_tick = now
        except Exception:
            logger.exception("Cyclic task for 0x%X crashed", spec.identifier)
            raise
        finally:
            with self._lock:
                task = self._tasks.get(spec.id)
                if task is not None and task.cancel is cancel:
                    del self._tasks[spec.id]
                    spec.active = False

    def _join(self, task: _CyclicTask) -> None:
        if task.thread is threading.current_thread():
            return
        task.thread.join(timeout=task.spec.period + self.send_timeout + JOIN_MARGIN)
        if task.thread.is_alive():
            logger.warning("Cyclic 0x%X still finishing a send after stop", task.spec.identifier)

    def stop_cyclic(self, spec: OutgoingMessageSpec) -> bool:
        """Stop periodic transmission. Returns False if it was not running."""
        with self._lock:
            task = self._tasks.pop(spec.id, None)
            if task is None:
                return False
            task.cancel.set()
            task.spec.active = False
        self._join(task)
        logger.info("Cyclic stop: 0x%X", spec.identifier)
        return True

    def stop_all(self) -> int:
        """Stop every running task. Returns how many were stopped."""
        with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()
            for task in tasks:
                task.cancel.set()
                task.spec.active = False
        for task in tasks:
            self._join(task)
        if tasks:
            logger.info("Stopped %d cyclic task(s)", len(tasks))
        return len(tasks)

    def is_running(self, spec: OutgoingMessageSpec) -> bool:
        with self._lock:
            return spec.id in self._tasks

    def running(self) -> List[OutgoingMessageSpec]:
        with self._lock:
            return [task.spec for task in self._tasks.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
