# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Monitor session: one bus interface, its message table and its workers.

A ``BusMonitor`` is built once per session and torn down with ``close()``:

    with BusMonitor(config=MonitorConfig(interface="vcan0")) as mon:
        mon.start_cyclic(spec)
        event = mon.next_event(timeout=1.0)

Received and self-sent events flow through the shared ``MessageTable`` into a
single ``queue.Queue`` (``events``), which is the only ordered stream the view
layer consumes. The queue is bounded: when nobody drains it, the oldest
event is dropped for each new one and counted in ``dropped_events``. Health
snapshots are polled with ``health()``.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from collections import deque
from typing import Callable, Deque, Final, Iterable, List, Optional

from .config import MonitorConfig
from .errors import TransportUnavailable
from .health import BusHealthSampler
from .ingest import IngestionLoop
from .logs import MemoryLogHandler
from .model import BusEvent, BusHealthSnapshot, FilterMode, OutgoingMessageSpec
from .scheduler import CyclicScheduler
from .table import FilterSet, MessageTable
from .transport import SocketCANTransport

logger = logging.getLogger(__name__)

MAX_QUEUED_EVENTS: Final[int] = 10_000   # Event stream capacity before the oldest events are dropped


class EventLog:
    """Append-only rows for the log view.

    Echoes of our own transmissions are not appended, so one sent frame shows
    up as one row even when the bus reflects it back.
    """

    def __init__(self, maxlen: Optional[int] = 10_000):
        self._rows: Deque[BusEvent] = deque(maxlen=maxlen)

    def append(self, event: BusEvent) -> bool:
        if event.echo:
            return False
        self._rows.append(event)
        return True

    def rows(self) -> List[BusEvent]:
        return list(self._rows)

    def clear(self) -> None:
        self._rows.clear()

    def __len__(self) -> int:
        return len(self._rows)


class BusMonitor:
    """Ingestion, cyclic transmission and health sampling for one interface.

    Args:
        transport: Frame transport; defaults to a ``SocketCANTransport`` for
                   ``config.interface``
        config: Session settings
        specs: Initial outgoing messages
        log_handler: Optional in-memory log store exposed to the view layer
        max_events: Event stream capacity; the oldest event is dropped when full
    """

    def __init__(self, transport=None, config: Optional[MonitorConfig] = None,
                 specs: Iterable[OutgoingMessageSpec] = (),
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time,
                 log_handler: Optional[MemoryLogHandler] = None,
                 max_events: int = MAX_QUEUED_EVENTS):
        self.config = config or MonitorConfig()
        self.transport = transport or SocketCANTransport(self.config.interface, self.config.interface_type)
        self.clock = clock
        self.wall_clock = wall_clock
        self.log_handler = log_handler

        self.events: "queue.Queue[BusEvent]" = queue.Queue(maxsize=max_events)
        self.dropped_events = 0
        self.table = MessageTable(sink=self._enqueue, echo_policy=self.config.echo_policy)
        self.scheduler = CyclicScheduler(self.transport, self.table.publish, clock=clock, wall_clock=wall_clock)
        self.ingestion = IngestionLoop(self.transport, self.table, clock=clock, wall_clock=wall_clock)

        self._sampler: Optional[BusHealthSampler] = None
        self._last_health = BusHealthSnapshot(interface=self.config.interface)
        self._specs: List[OutgoingMessageSpec] = list(specs)
        self._specs_lock = threading.Lock()

    # -- lifecycle -----------------------------------------------------

    def start(self) -> "BusMonitor":
        """Open the transport and start ingesting.

        Raises:
            TransportUnavailable: If the interface cannot be opened
        """
        try:
            self.transport.open()
        except TransportUnavailable as e:
            logger.error("%s", e)
            raise
        self.ingestion.start()
        return self

    def close(self) -> None:
        """Stop every cyclic task and the sampler, then release the transport."""
        self.stop_all_cyclic()
        self.close_health()
        self.ingestion.stop()
        self.transport.close()

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.close()

    # -- event stream --------------------------------------------------

    def _enqueue(self, event: BusEvent) -> None:
        # Called under the table lock, so there is a single producer at a time
        while True:
            try:
                self.events.put_nowait(event)
                return
            except queue.Full:
                pass
            try:
                self.events.get_nowait()
            except queue.Empty:
                continue
            self.dropped_events += 1
            if self.dropped_events == 1:
                logger.warning("Event stream full; dropping oldest events")

    def next_event(self, timeout: Optional[float] = None) -> Optional[BusEvent]:
        """Next visible event, or None if none arrives within ``timeout``."""
        try:
            return self.events.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain_events(self) -> List[BusEvent]:
        """All visible events currently queued, oldest first."""
        out = []
        while True:
            try:
                out.append(self.events.get_nowait())
            except queue.Empty:
                return out

    def snapshot(self) -> List[BusEvent]:
        """Visible latest event per identifier, sorted by identifier."""
        return self.table.snapshot(visible_only=True)

    def reset(self) -> None:
        """Clear received messages and stop all cyclic sends."""
        self.stop_all_cyclic()
        self.table.clear()

    # -- filter --------------------------------------------------------

    def set_filter_mode(self, mode: FilterMode) -> None:
        self.table.set_filter_mode(mode)

    def cycle_filter_mode(self) -> FilterMode:
        return self.table.cycle_filter_mode()

    def toggle_filter_id(self, identifier: int) -> bool:
        return self.table.toggle_filter_id(identifier)

    def filters(self) -> FilterSet:
        return self.table.filters()

    # -- transmission --------------------------------------------------

    def send_once(self, spec: OutgoingMessageSpec) -> BusEvent:
        return self.scheduler.send_once(spec)

    def start_cyclic(self, spec: OutgoingMessageSpec) -> bool:
        return self.scheduler.start_cyclic(spec)

    def stop_cyclic(self, spec: OutgoingMessageSpec) -> bool:
        return self.scheduler.stop_cyclic(spec)

    def stop_all_cyclic(self) -> int:
        return self.scheduler.stop_all()

    def toggle_send(self, spec: OutgoingMessageSpec) -> None:
        """Send a one-shot spec, or start/stop a periodic one."""
        if spec.period > 0:
            if self.scheduler.is_running(spec):
                self.scheduler.stop_cyclic(spec)
            else:
                self.scheduler.start_cyclic(spec)
        else:
            self.scheduler.send_once(spec)

    # -- health --------------------------------------------------------

    def open_health(self) -> BusHealthSnapshot:
        """Start a fresh health sampler if none is running."""
        if self._sampler is None:
            sampler = BusHealthSampler(self.transport, bitrate=self.config.bitrate,
                                       interval=self.config.health_interval,
                                       clock=self.clock, wall_clock=self.wall_clock,
                                       initial=self._last_health)
            sampler.start()
            self._sampler = sampler
        return self._sampler.snapshot

    def close_health(self) -> None:
        sampler, self._sampler = self._sampler, None
        if sampler is not None:
            sampler.stop()
            self._last_health = sampler.snapshot

    def health(self) -> BusHealthSnapshot:
        sampler = self._sampler
        return sampler.snapshot if sampler is not None else self._last_health

    @property
    def health_open(self) -> bool:
        return self._sampler is not None

    # -- outgoing message list -----------------------------------------

    def list_specs(self) -> List[OutgoingMessageSpec]:
        with self._specs_lock:
            return list(self._specs)

    def get_spec(self, spec_id: uuid.UUID) -> Optional[OutgoingMessageSpec]:
        with self._specs_lock:
            return next((s for s in self._specs if s.id == spec_id), None)

    def replace_specs(self, specs: Iterable[OutgoingMessageSpec]) -> None:
        """Replace the whole list, e.g. after loading from storage."""
        new = [spec.validate() for spec in specs]
        with self._specs_lock:
            old, self._specs = self._specs, new
        for spec in old:
            self.scheduler.stop_cyclic(spec)

    def add_spec(self, spec: OutgoingMessageSpec) -> OutgoingMessageSpec:
        spec.validate()
        with self._specs_lock:
            self._specs.append(spec)
        return spec

    def update_spec(self, spec: OutgoingMessageSpec) -> bool:
        """Replace the stored spec with the same id; a running send is stopped."""
        spec.validate()
        with self._specs_lock:
            for i, old in enumerate(self._specs):
                if old.id == spec.id:
                    self._specs[i] = spec
                    break
            else:
                return False
        if old is not spec:
            self.scheduler.stop_cyclic(old)
        return True

    def remove_spec(self, spec_id: uuid.UUID) -> Optional[OutgoingMessageSpec]:
        with self._specs_lock:
            spec = next((s for s in self._specs if s.id == spec_id), None)
            if spec is None:
                return None
            self._specs.remove(spec)
        self.scheduler.stop_cyclic(spec)
        return spec

    def clear_specs(self) -> None:
        self.replace_specs([])
