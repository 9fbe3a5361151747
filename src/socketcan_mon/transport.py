# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Frame transport over a python-can bus (SocketCAN by default).

Two bus handles are used:
- the main bus, shared by the ingestion loop (receive) and the scheduler
  (send); python-can socket sends and receives may run on different threads
- an optional monitor bus, opened by the health sampler, which is drained
  without blocking to collect error frames and count payload bytes

Error frames are decoded into ``ErrorFrame`` with the error flag restored,
since python-can strips it from ``arbitration_id`` and reports
``is_error_frame`` instead.
"""

from __future__ import annotations

import logging
from typing import Final, List, Optional, Tuple

try:
    import can
except ImportError as e:
    raise SystemExit("python-can is required. Install with: pip install python-can") from e

import psutil

from .errors import ReceiveTerminated, SendFailed, TransportUnavailable
from .model import CAN_ERR_FLAG, MAX_STD_ID, ErrorFrame

logger = logging.getLogger(__name__)

# Configuration constants
RECV_TIMEOUT: Final[float] = 0.1        # 100ms receive timeout keeps the loop responsive to stop
SEND_TIMEOUT: Final[float] = 0.1        # 100ms timeout for CAN frame transmission
MAX_DRAIN: Final[int] = 10_000          # Upper bound on frames drained per monitor poll


class SocketCANTransport:
    """python-can backed transport for a single bus interface.

    Args:
        channel: Interface name (e.g., 'can0', 'vcan0')
        interface: python-can interface type (default 'socketcan')
        **bus_kwargs: Extra keyword arguments passed to ``can.interface.Bus``
    """

    def __init__(self, channel: str = "can0", interface: str = "socketcan", **bus_kwargs):
        self.channel = channel
        self.interface = interface
        self.bus_kwargs = bus_kwargs
        self._bus = None
        self._monitor = None
        self._monitor_bytes = 0

    # -- lifecycle -----------------------------------------------------

    def _open_bus(self):
        try:
            return can.interface.Bus(channel=self.channel, interface=self.interface, **self.bus_kwargs)
        except Exception as e:
            raise TransportUnavailable(f"Failed to open CAN interface '{self.channel}': {e}") from e

    def open(self) -> "SocketCANTransport":
        """Open the main bus. Single attempt; raises TransportUnavailable."""
        if self._bus is None:
            self._bus = self._open_bus()
            logger.info("Opened %s interface %s", self.interface, self.channel)
        return self

    @property
    def is_open(self) -> bool:
        return self._bus is not None

    def close(self) -> None:
        """Shut down both bus handles. Safe to call more than once."""
        self.close_monitor()
        bus, self._bus = self._bus, None
        if bus is not None:
            bus.shutdown()
            logger.info("Closed interface %s", self.channel)

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    # -- frame I/O -----------------------------------------------------

    def receive(self, timeout: Optional[float] = RECV_TIMEOUT):
        """Receive one frame, or None on timeout.

        Raises:
            ReceiveTerminated: If the bus is closed or the receive fails
        """
        bus = self._bus
        if bus is None:
            raise ReceiveTerminated(f"Interface {self.channel} is not open")
        try:
            return bus.recv(timeout=timeout)
        except (can.CanError, OSError, ValueError) as e:
            raise ReceiveTerminated(f"Receive on {self.channel} failed: {e}") from e

    def send(self, identifier: int, payload: bytes, is_extended_id: Optional[bool] = None,
             is_fd: bool = False, timeout: float = SEND_TIMEOUT) -> None:
        """Transmit one frame.

        Raises:
            SendFailed: If the bus is closed or the send fails
        """
        bus = self._bus
        if bus is None:
            raise SendFailed(f"Interface {self.channel} is not open")
        if is_extended_id is None:
            is_extended_id = identifier > MAX_STD_ID
        msg = can.Message(
            arbitration_id=identifier,
            data=payload,
            is_extended_id=is_extended_id,
            is_fd=is_fd,
        )
        try:
            bus.send(msg, timeout=timeout)
        except (can.CanError, OSError, ValueError) as e:
            raise SendFailed(f"Send of 0x{identifier:X} on {self.channel} failed: {e}") from e

    # -- health monitoring ---------------------------------------------

    def open_monitor(self) -> None:
        """Open the dedicated error/monitor channel."""
        if self._monitor is None:
            self._monitor = self._open_bus()
            self._monitor_bytes = 0

    def close_monitor(self) -> None:
        mon, self._monitor = self._monitor, None
        if mon is not None:
            mon.shutdown()

    def read_error_frames(self) -> List[ErrorFrame]:
        """Drain pending frames from the monitor channel without blocking.

        Error frames are returned; the payload length of every other frame is
        added to the byte count returned by ``take_byte_count``.
        """
        mon = self._monitor
        if mon is None:
            return []
        errors: List[ErrorFrame] = []
        for _ in range(MAX_DRAIN):
            try:
                msg = mon.recv(timeout=0.0)
            except (can.CanError, OSError, ValueError) as e:
                logger.warning("Monitor channel read failed: %s", e)
                break
            if msg is None:
                break
            if getattr(msg, "is_error_frame", False):
                errors.append(ErrorFrame(can_id=CAN_ERR_FLAG | msg.arbitration_id, payload=bytes(msg.data)))
            else:
                self._monitor_bytes += len(msg.data)
        return errors

    def take_byte_count(self) -> int:
        """Return payload bytes seen on the monitor channel since the last call."""
        count, self._monitor_bytes = self._monitor_bytes, 0
        return count

    def interface_statistics(self) -> Optional[Tuple[int, int]]:
        """Return (rx_errors, tx_errors) for the interface, or None if unknown."""
        try:
            counters = psutil.net_io_counters(pernic=True).get(self.channel)
        except (OSError, RuntimeError) as e:
            logger.debug("Interface statistics unavailable for %s: %s", self.channel, e)
            return None
        if counters is None:
            return None
        return counters.errin, counters.errout
