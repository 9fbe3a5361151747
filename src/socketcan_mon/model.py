# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Data model shared by the ingestion, scheduling and health components.

Timestamps on events are monotonic seconds (``time.monotonic()``) so that
cycle times never go negative when the wall clock is adjusted; ``wall_time``
is carried alongside for display only.
"""

from __future__ import annotations

import enum
import math
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union

from .errors import InvalidSpec

MAX_STD_ID = 0x7FF         # 11-bit identifier
MAX_CAN_ID = 0x1FFFFFFF    # 29-bit (covers 11-bit too)
CAN_MAX_DLEN = 8           # CAN 2.0 max payload size
CANFD_MAX_DLEN = 64        # CAN FD max payload size
CANFD_LENGTHS = (0, 1, 2, 3, 4, 5, 6, 7, 8, 12, 16, 20, 24, 32, 48, 64)

# Error frame layout: high bit flags an error frame, low 13 bits carry the class
CAN_ERR_FLAG = 0x80000000
CAN_ERR_MASK = 0x1FFF


class Direction(enum.Enum):
    RECEIVED = "RX"
    TRANSMITTED = "TX"


class TriggerKind(enum.Enum):
    MANUAL = "manual"
    PERIODIC = "timer"


class FilterMode(enum.IntEnum):
    OFF = 0
    WHITELIST = 1
    BLACKLIST = 2


class BusStatus(enum.Enum):
    UNKNOWN = "UNKNOWN"
    UP = "UP"
    BUS_OFF = "BUS-OFF"
    ERROR_PASSIVE = "ERROR-PASSIVE"
    ACK_ERROR = "ACK-ERROR"
    PROTOCOL_ERROR = "PROTOCOL-ERROR"
    TRANSCEIVER_ERROR = "TRANSCEIVER-ERROR"
    GENERIC_ERROR = "ERROR"


def parse_can_id(val: Any, *, field: str = "identifier") -> int:
    """Parse a CAN ID from an int, a hex string or a decimal string.

    Args:
        val: Input value (int, hex string with 0x prefix, decimal string)
        field: Field name for error messages

    Returns:
        Parsed CAN ID as integer

    Raises:
        InvalidSpec: If parsing fails or the ID is out of range
    """
    if isinstance(val, bool):
        raise InvalidSpec(f"{field}: CAN ID must be int or hex/dec string, got bool")
    if isinstance(val, int):
        cid = val
    elif isinstance(val, str):
        s = val.strip().lower().replace("_", "")
        try:
            if s.startswith("0x"):
                cid = int(s, 16)
            else:
                cid = int(s, 10)
        except ValueError:
            raise InvalidSpec(f"{field}: invalid CAN ID format '{val}'")
    else:
        raise InvalidSpec(f"{field}: CAN ID must be int or hex/dec string, got {type(val).__name__}")

    if not (0 <= cid <= MAX_CAN_ID):
        raise InvalidSpec(f"{field}: CAN ID 0x{cid:X} out of range [0, 0x{MAX_CAN_ID:X}]")

    return cid


def parse_payload(val: Union[str, bytes, Sequence[int], None], *, field: str = "data") -> bytes:
    """Parse payload bytes from a hex string ("01 A2 ff" or "01A2FF") or a list of ints."""
    if val is None:
        return b""
    if isinstance(val, (bytes, bytearray)):
        return bytes(val)
    if isinstance(val, str):
        s = re.sub(r"[\s:,_-]", "", val)
        if s.lower().startswith("0x"):
            s = s[2:]
        if len(s) % 2:
            s = "0" + s
        try:
            return bytes.fromhex(s)
        except ValueError:
            raise InvalidSpec(f"{field}: invalid hex payload '{val}'")
    try:
        return bytes(int(b) for b in val)
    except (TypeError, ValueError):
        raise InvalidSpec(f"{field}: payload must be hex string or list of bytes 0..255")


@dataclass(frozen=True)
class BusEvent:
    """One observed or self-generated frame instance."""

    identifier: int
    payload: bytes
    timestamp: float
    direction: Direction = Direction.RECEIVED
    cycle_time: float = 0.0
    self_originated: bool = False
    trigger: Optional[TriggerKind] = None
    echo: bool = False
    wall_time: float = 0.0
    is_extended_id: bool = False
    is_fd: bool = False

    @property
    def dlc(self) -> int:
        return len(self.payload)

    @classmethod
    def from_message(cls, msg, timestamp: float, wall_time: float) -> "BusEvent":
        """Build a received event from a python-can ``Message``."""
        return cls(
            identifier=msg.arbitration_id,
            payload=bytes(msg.data),
            timestamp=timestamp,
            direction=Direction.RECEIVED,
            wall_time=wall_time,
            is_extended_id=bool(getattr(msg, "is_extended_id", False)),
            is_fd=bool(getattr(msg, "is_fd", False)),
        )


@dataclass(eq=False)
class OutgoingMessageSpec:
    """A user-configured frame to transmit once or periodically.

    ``period`` is in seconds; zero means one-shot only. ``active`` and
    ``trigger`` are maintained by the scheduler.
    """

    identifier: int
    payload: bytes = b""
    period: float = 0.0
    is_extended_id: Optional[bool] = None
    is_fd: bool = False
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    active: bool = False
    trigger: Optional[TriggerKind] = None

    def __post_init__(self):
        if self.is_extended_id is None:
            self.is_extended_id = isinstance(self.identifier, int) and self.identifier > MAX_STD_ID

    @property
    def dlc(self) -> int:
        return len(self.payload)

    def validate(self) -> "OutgoingMessageSpec":
        """Check identifier, payload length and period.

        Raises:
            InvalidSpec: If any field is malformed
        """
        if isinstance(self.identifier, bool) or not isinstance(self.identifier, int):
            raise InvalidSpec(f"identifier must be int, got {type(self.identifier).__name__}")
        limit = MAX_CAN_ID if self.is_extended_id else MAX_STD_ID
        if not (0 <= self.identifier <= limit):
            raise InvalidSpec(f"identifier 0x{self.identifier:X} out of range [0, 0x{limit:X}]")

        if not isinstance(self.payload, (bytes, bytearray)):
            raise InvalidSpec(f"payload must be bytes, got {type(self.payload).__name__}")
        if self.is_fd:
            if len(self.payload) not in CANFD_LENGTHS:
                raise InvalidSpec(f"payload length {len(self.payload)} is not a valid CAN FD length")
        elif len(self.payload) > CAN_MAX_DLEN:
            raise InvalidSpec(f"payload length {len(self.payload)} exceeds {CAN_MAX_DLEN}")

        if isinstance(self.period, bool) or not isinstance(self.period, (int, float)):
            raise InvalidSpec(f"period must be a number, got {type(self.period).__name__}")
        if not math.isfinite(self.period) or self.period < 0:
            raise InvalidSpec(f"period must be >= 0, got {self.period}")
        return self

    @classmethod
    def from_fields(cls, identifier: str, dlc: str, period_ms: str = "", data: Union[str, Sequence[str]] = "",
                    spec_id: Optional[uuid.UUID] = None) -> "OutgoingMessageSpec":
        """Build a spec from editor text fields.

        Args:
            identifier: Hex identifier, with or without ``0x``
            dlc: Decimal data length 0..8
            period_ms: Cycle time in milliseconds; empty or ``0`` means one-shot
            data: Hex bytes as one string or one string per byte; missing bytes are zero
            spec_id: Keep this UUID when editing an existing spec

        Raises:
            InvalidSpec: If any field does not parse
        """
        ident = identifier.strip()
        if not ident.lower().startswith("0x"):
            ident = "0x" + ident
        cid = parse_can_id(ident)

        try:
            length = int(dlc.strip() or "0", 10)
        except ValueError:
            raise InvalidSpec(f"dlc: invalid length '{dlc}'")
        if not (0 <= length <= CAN_MAX_DLEN):
            raise InvalidSpec(f"dlc: {length} out of range [0, {CAN_MAX_DLEN}]")

        try:
            period = float(period_ms.strip() or "0") / 1000.0
        except ValueError:
            raise InvalidSpec(f"cycle time: invalid value '{period_ms}'")

        if isinstance(data, str):
            raw = parse_payload(data)
        else:
            values = []
            # One input per byte; only the first ``dlc`` inputs count
            for i, b in enumerate(list(data)[:length]):
                if not b.strip():
                    values.append(0)
                    continue
                try:
                    values.append(int(b.strip(), 16))
                except ValueError:
                    raise InvalidSpec(f"data[{i}]: invalid hex byte '{b}'")
                if not 0 <= values[-1] <= 0xFF:
                    raise InvalidSpec(f"data[{i}]: byte 0x{values[-1]:X} out of range")
            raw = bytes(values)
        if len(raw) > length:
            raise InvalidSpec(f"data: {len(raw)} bytes given for dlc {length}")
        payload = raw + bytes(length - len(raw))

        spec = cls(identifier=cid, payload=payload, period=period)
        if spec_id is not None:
            spec.id = spec_id
        return spec.validate()


@dataclass(frozen=True)
class BusHealthSnapshot:
    """Bus health as of one sampling tick. Replaced wholesale, never patched."""

    status: BusStatus = BusStatus.UNKNOWN
    rx_error_count: int = 0
    tx_error_count: int = 0
    bus_error_frame_count: int = 0
    load_estimate_percent: float = 0.0
    interface: str = ""
    sampled_at: float = 0.0


@dataclass(frozen=True)
class ErrorFrame:
    """A raw error frame: ``can_id`` carries the error flag and class bits."""

    can_id: int
    payload: bytes = b""

    @property
    def error_class(self) -> int:
        return self.can_id & CAN_ERR_MASK

    @property
    def is_error(self) -> bool:
        return bool(self.can_id & CAN_ERR_FLAG)
