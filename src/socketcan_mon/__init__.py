"""
SocketCAN Monitor

A Python package for live monitoring of a CAN bus with cyclic transmission,
echo suppression, identifier filtering and bus health sampling.
"""

__version__ = "0.1.0"

# Import main modules for easier access
from . import health
from . import monitor
from . import scheduler

# Export key public classes and functions
from .config import MonitorConfig, load_config
from .errors import (
    ConfigError,
    InvalidSpec,
    MonitorError,
    ReceiveTerminated,
    SendFailed,
    TransportUnavailable,
)
from .health import BusHealthSampler, classify_error_frame, estimate_load
from .model import (
    BusEvent,
    BusHealthSnapshot,
    BusStatus,
    Direction,
    FilterMode,
    OutgoingMessageSpec,
    TriggerKind,
)
from .monitor import BusMonitor, EventLog
from .scheduler import CyclicScheduler
from .storage import load_specs, save_specs
from .table import FilterSet, MessageTable
from .tracker import CycleTimeTracker, EchoPolicy, classify_echo
from .transport import SocketCANTransport

__all__ = [
    # Modules
    "health", "monitor", "scheduler",
    # Key functions and classes
    "BusMonitor", "EventLog", "MonitorConfig", "load_config",
    "BusEvent", "BusHealthSnapshot", "BusStatus", "Direction", "FilterMode",
    "OutgoingMessageSpec", "TriggerKind",
    "CyclicScheduler", "BusHealthSampler", "classify_error_frame", "estimate_load",
    "MessageTable", "FilterSet", "CycleTimeTracker", "EchoPolicy", "classify_echo",
    "SocketCANTransport", "load_specs", "save_specs",
    "MonitorError", "TransportUnavailable", "SendFailed", "ReceiveTerminated",
    "InvalidSpec", "ConfigError",
]
