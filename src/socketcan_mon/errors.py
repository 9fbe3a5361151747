# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Exception taxonomy for the monitor core.

None of these are fatal to the process: they are logged where they occur
and raised to (or recorded for) the caller, which decides what to do.
"""


class MonitorError(Exception):
    """Base class for all monitor errors."""
    pass


class TransportUnavailable(MonitorError):
    """Raised when the bus interface cannot be opened or bound."""
    pass


class SendFailed(MonitorError):
    """Raised when a single frame transmission fails."""
    pass


class ReceiveTerminated(MonitorError):
    """Raised when the receive side of the transport closes or fails."""
    pass


class InvalidSpec(MonitorError, ValueError):
    """Raised when an outgoing message has a malformed identifier, length or period."""
    pass


class ConfigError(MonitorError, ValueError):
    """Raised when a config or message file cannot be parsed or validated."""
    pass
