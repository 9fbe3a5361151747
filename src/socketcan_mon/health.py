# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Bus health sampler: error frame classification and a bus load estimate.

Every tick (1 second by default) the sampler
  - reads the interface rx/tx error counters
  - drains pending frames from the transport's monitor channel (non-blocking)
  - classifies each error frame by its class bits; the last one wins
  - estimates bus load from the payload bytes seen since the previous tick

Notes:
  - Bus load is an approximation: payload bytes times a fixed bits-per-byte
    figure over a nominal bitrate. It ignores bit stuffing, inter-frame
    spacing and arbitration, so do not treat it as calibrated telemetry.
  - A stopped sampler is not restarted; create a new one. Only the last
    published snapshot survives.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Final, Optional

from .model import BusHealthSnapshot, BusStatus, ErrorFrame

logger = logging.getLogger(__name__)

# Error class bits (low 13 bits of an error frame's identifier)
CAN_ERR_PROT: Final[int] = 0x00000002     # Protocol violations (bit, stuff, form errors)
CAN_ERR_CRTL: Final[int] = 0x00000004     # Controller problems (error passive)
CAN_ERR_TRX: Final[int] = 0x00000008      # Transceiver status
CAN_ERR_ACK: Final[int] = 0x00000040      # No acknowledge on transmission
CAN_ERR_BUSOFF: Final[int] = 0x00000080   # Controller went bus-off

ERROR_CLASSES: Final[Dict[int, BusStatus]] = {
    CAN_ERR_BUSOFF: BusStatus.BUS_OFF,
    CAN_ERR_CRTL: BusStatus.ERROR_PASSIVE,
    CAN_ERR_ACK: BusStatus.ACK_ERROR,
    CAN_ERR_PROT: BusStatus.PROTOCOL_ERROR,
    CAN_ERR_TRX: BusStatus.TRANSCEIVER_ERROR,
}

DEFAULT_BITRATE: Final[int] = 500_000     # Nominal bitrate in bps
BITS_PER_BYTE: Final[int] = 10            # Rough on-wire bits per payload byte, overhead included
HEALTH_INTERVAL: Final[float] = 1.0       # Sampling tick in seconds


def classify_error_frame(frame: ErrorFrame) -> BusStatus:
    """Map an error frame's class bits to a bus status.

    The class must match one of the known constants exactly; combined or
    unknown bits map to GENERIC_ERROR.
    """
    return ERROR_CLASSES.get(frame.error_class, BusStatus.GENERIC_ERROR)


def estimate_load(byte_count: int, elapsed: float, bitrate: int = DEFAULT_BITRATE) -> float:
    """Estimate bus load in percent for a sampling window.

    Args:
        byte_count: Payload bytes seen in the window
        elapsed: Window length in seconds
        bitrate: Nominal bus bitrate in bps

    Returns:
        Load estimate clamped to [0, 100]
    """
    if elapsed <= 0 or bitrate <= 0:
        return 0.0
    load = (byte_count * BITS_PER_BYTE) / (bitrate * elapsed) * 100.0
    return max(0.0, min(100.0, load))


class BusHealthSampler:
    """Periodic health sampler running on its own thread.

    Args:
        transport: Object with ``interface_statistics``, ``read_error_frames``,
                   ``take_byte_count``, ``open_monitor`` and ``close_monitor``
        bitrate: Nominal bitrate used for the load estimate
        interval: Tick interval in seconds
        on_snapshot: Optional callback invoked with each new snapshot
    """

    def __init__(self, transport, bitrate: int = DEFAULT_BITRATE, interval: float = HEALTH_INTERVAL,
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time,
                 on_snapshot: Optional[Callable[[BusHealthSnapshot], None]] = None,
                 initial: Optional[BusHealthSnapshot] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.transport = transport
        self.bitrate = bitrate
        self.interval = interval
        self.clock = clock
        self.wall_clock = wall_clock
        self.on_snapshot = on_snapshot
        self._lock = threading.Lock()
        self._snapshot = initial or BusHealthSnapshot(interface=getattr(transport, "channel", ""))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_tick = self.clock()

    @property
    def snapshot(self) -> BusHealthSnapshot:
        with self._lock:
            return self._snapshot

    def sample(self) -> BusHealthSnapshot:
        """Run one sampling tick and publish the resulting snapshot."""
        now = self.clock()
        elapsed = now - self._last_tick
        self._last_tick = now

        stats = self.transport.interface_statistics()
        rx_errors, tx_errors = stats if stats is not None else (0, 0)
        status = BusStatus.UP if stats is not None else BusStatus.UNKNOWN

        error_frames = 0
        for frame in self.transport.read_error_frames():
            if not frame.is_error:
                continue
            error_frames += 1
            status = classify_error_frame(frame)

        load = estimate_load(self.transport.take_byte_count(), elapsed, self.bitrate)
        snap = BusHealthSnapshot(
            status=status,
            rx_error_count=rx_errors,
            tx_error_count=tx_errors,
            bus_error_frame_count=error_frames,
            load_estimate_percent=load,
            interface=getattr(self.transport, "channel", ""),
            sampled_at=self.wall_clock(),
        )
        with self._lock:
            self._snapshot = snap
        if error_frames:
            logger.warning("%d error frame(s) on %s, status %s", error_frames, snap.interface, status.value)
        if self.on_snapshot is not None:
            self.on_snapshot(snap)
        return snap

    def run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sample()
            except Exception:
                # Keep ticking; the next sample replaces the stale snapshot
                logger.exception("Health sample on %s failed", getattr(self.transport, "channel", ""))

    def start(self) -> "BusHealthSampler":
        """Open the monitor channel and start ticking.

        Raises:
            TransportUnavailable: If the monitor channel cannot be opened
            RuntimeError: If this sampler was already started
        """
        if self._thread is not None:
            raise RuntimeError("sampler already started; create a new BusHealthSampler")
        self.transport.open_monitor()
        self.transport.take_byte_count()
        self._last_tick = self.clock()
        self._thread = threading.Thread(target=self.run, name="can-health", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop ticking and close the monitor channel."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout if timeout is not None else self.interval + 1.0)
        self.transport.close_monitor()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()
