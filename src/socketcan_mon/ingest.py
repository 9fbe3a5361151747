# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Ingestion loop: receive frames from the transport and publish them.

Each received frame becomes a ``BusEvent`` stamped with the monotonic time of
receipt and is handed to the ``MessageTable``, which classifies echoes,
computes the cycle time, stores the event and forwards it to the event
stream if the filter allows.

The loop runs on a daemon thread and polls with a short receive timeout so
that ``stop()`` is observed promptly. A failing receive ends the loop; there
is no reconnect, a supervisor may start a new loop.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .errors import ReceiveTerminated
from .model import BusEvent
from .table import MessageTable
from .transport import RECV_TIMEOUT

logger = logging.getLogger(__name__)


class IngestionLoop:
    """Receive-side worker owning the transport's receive path."""

    def __init__(self, transport, table: MessageTable,
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time,
                 recv_timeout: float = RECV_TIMEOUT):
        self.transport = transport
        self.table = table
        self.clock = clock
        self.wall_clock = wall_clock
        self.recv_timeout = recv_timeout
        self.received = 0
        self.error: Optional[ReceiveTerminated] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def process(self, msg) -> Optional[BusEvent]:
        """Turn one received frame into a published event.

        Error frames are skipped here; the health sampler reads them from its
        own channel.
        """
        if getattr(msg, "is_error_frame", False):
            return None
        event = BusEvent.from_message(msg, timestamp=self.clock(), wall_time=self.wall_clock())
        stored, _ = self.table.publish(event)
        self.received += 1
        return stored

    def run(self) -> None:
        """Blocking receive loop; returns on stop or receive failure."""
        try:
            while not self._stop.is_set():
                msg = self.transport.receive(timeout=self.recv_timeout)
                if msg is not None:
                    self.process(msg)
        except ReceiveTerminated as e:
            if not self._stop.is_set():
                self.error = e
                logger.error("Ingestion stopped: %s", e)
        logger.debug("Ingestion loop exited after %d frames", self.received)

    def start(self) -> "IngestionLoop":
        if self._thread is not None and self._thread.is_alive():
            return self
        self._stop.clear()
        self.error = None
        self._thread = threading.Thread(target=self.run, name="can-ingest", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Ingestion thread did not exit within %.1fs", timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
