# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

#!/usr/bin/env python3
"""
Monitor configuration loader.

YAML schema (every key optional):

interface: can0             # bus interface name
interface_type: socketcan   # python-can interface type
bitrate: 500000             # nominal bitrate for the load estimate, bps
health_interval: 1.0        # health sampling tick, seconds
echo_policy: identifier     # identifier | identifier+payload
messages: messages.yaml     # outgoing message store
overwrite: true             # table view (true) or append-only log view (false)

Returns a ``MonitorConfig`` with defaults filled in.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError
from .health import DEFAULT_BITRATE, HEALTH_INTERVAL
from .tracker import EchoPolicy


@dataclass(frozen=True)
class MonitorConfig:
    interface: str = "can0"
    interface_type: str = "socketcan"
    bitrate: int = DEFAULT_BITRATE
    health_interval: float = HEALTH_INTERVAL
    echo_policy: EchoPolicy = EchoPolicy.IDENTIFIER
    messages_path: str = "messages.yaml"
    overwrite: bool = True

    def merged(self, **overrides: Any) -> "MonitorConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _parse_echo_policy(val: Any) -> EchoPolicy:
    if isinstance(val, EchoPolicy):
        return val
    try:
        return EchoPolicy(str(val).strip().lower())
    except ValueError:
        choices = ", ".join(p.value for p in EchoPolicy)
        raise ConfigError(f"echo_policy: must be one of {choices}, got '{val}'")


def parse_config(data: Dict[str, Any]) -> MonitorConfig:
    """Validate a config mapping and build a ``MonitorConfig``.

    Raises:
        ConfigError: On unknown keys or invalid values
    """
    if not isinstance(data, dict):
        raise ConfigError("Top-level YAML must be a mapping")

    known = {f.name for f in fields(MonitorConfig)} | {"messages"}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config key(s): {', '.join(sorted(map(str, unknown)))}")

    values: Dict[str, Any] = {}

    for key in ("interface", "interface_type"):
        if key in data:
            if not isinstance(data[key], str) or not data[key].strip():
                raise ConfigError(f"{key}: must be a non-empty string")
            values[key] = data[key].strip()

    if "bitrate" in data:
        bitrate = data["bitrate"]
        if isinstance(bitrate, bool) or not isinstance(bitrate, int) or bitrate <= 0:
            raise ConfigError(f"bitrate: must be a positive integer, got {bitrate}")
        values["bitrate"] = bitrate

    if "health_interval" in data:
        interval = data["health_interval"]
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
            raise ConfigError(f"health_interval: must be > 0, got {interval}")
        values["health_interval"] = float(interval)

    if "echo_policy" in data:
        values["echo_policy"] = _parse_echo_policy(data["echo_policy"])

    path = data.get("messages", data.get("messages_path"))
    if path is not None:
        if not isinstance(path, str) or not path.strip():
            raise ConfigError("messages: must be a file path")
        values["messages_path"] = path

    if "overwrite" in data:
        if not isinstance(data["overwrite"], bool):
            raise ConfigError(f"overwrite: must be true or false, got {data['overwrite']}")
        values["overwrite"] = data["overwrite"]

    return MonitorConfig(**values)


def load_config(path: Optional[str]) -> MonitorConfig:
    """Load a YAML config file; ``None`` gives the defaults.

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    if path is None:
        return MonitorConfig()
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config from {path}: {e}")
    return parse_config(data)
