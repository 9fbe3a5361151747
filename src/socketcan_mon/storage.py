# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Outgoing message store (YAML).

messages:
  - uuid: "5f0c2c1e-3a0e-4c65-9b0e-5a3f3c8f7d10"
    id: "0x123"             # int or hex/dec string
    dlc: 4                  # optional, defaults to len(data)
    cycle_time_ms: 100      # 0 or missing: one-shot only
    data: "01 02 03 04"     # hex string or list of ints
    extended: false         # optional, defaults to id > 0x7FF

A missing file loads as an empty list. Entries with an unreadable UUID are
skipped with a warning; any other malformed entry raises ConfigError.
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .errors import ConfigError, InvalidSpec
from .model import OutgoingMessageSpec, parse_can_id, parse_payload

logger = logging.getLogger(__name__)


def _spec_from_entry(item: Dict[str, Any], index: int, spec_id: Optional[uuid.UUID] = None) -> OutgoingMessageSpec:
    field = f"messages[{index}]"
    if not isinstance(item, dict):
        raise ConfigError(f"{field}: must be a mapping")
    if "id" not in item:
        raise ConfigError(f"{field}: missing 'id' field")

    try:
        cid = parse_can_id(item["id"], field=f"{field}.id")
        payload = parse_payload(item.get("data"), field=f"{field}.data")

        dlc = item.get("dlc", len(payload))
        if isinstance(dlc, bool) or not isinstance(dlc, int) or dlc < 0:
            raise InvalidSpec(f"{field}.dlc: must be a non-negative integer, got {dlc}")
        if len(payload) > dlc:
            raise InvalidSpec(f"{field}.data: {len(payload)} bytes given for dlc {dlc}")
        payload = payload + bytes(dlc - len(payload))

        cycle_ms = item.get("cycle_time_ms", 0) or 0
        if isinstance(cycle_ms, bool) or not isinstance(cycle_ms, (int, float)):
            raise InvalidSpec(f"{field}.cycle_time_ms: must be a number, got {cycle_ms}")

        spec = OutgoingMessageSpec(
            identifier=cid,
            payload=payload,
            period=cycle_ms / 1000.0,
            is_extended_id=item.get("extended"),
            is_fd=bool(item.get("fd", False)),
        )
        if spec_id is not None:
            spec.id = spec_id
        return spec.validate()
    except InvalidSpec as e:
        raise ConfigError(str(e)) from e


def load_specs(path: str) -> List[OutgoingMessageSpec]:
    """Load outgoing messages from a YAML file.

    Raises:
        ConfigError: If the file cannot be parsed or contains invalid entries
    """
    if not os.path.exists(path):
        return []
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load messages from {path}: {e}")

    if isinstance(data, dict):
        data = data.get("messages") or []
    if not isinstance(data, list):
        raise ConfigError("messages: must be a list")

    specs = []
    seen = set()
    for index, item in enumerate(data):
        spec_id = None
        if isinstance(item, dict) and item.get("uuid") is not None:
            try:
                spec_id = uuid.UUID(str(item["uuid"]))
            except ValueError:
                logger.warning("Skipping messages[%d]: invalid uuid %r", index, item["uuid"])
                continue
        spec = _spec_from_entry(item, index, spec_id)
        if spec.id in seen:
            raise ConfigError(f"messages[{index}]: duplicate uuid {spec.id}")
        seen.add(spec.id)
        specs.append(spec)
    return specs


def save_specs(path: str, specs: Sequence[OutgoingMessageSpec]) -> None:
    """Write outgoing messages to a YAML file (runtime state is not saved)."""
    entries = []
    for spec in specs:
        entry = {
            "uuid": str(spec.id),
            "id": f"0x{spec.identifier:X}",
            "dlc": spec.dlc,
            "cycle_time_ms": round(spec.period * 1000.0, 3),
            "data": " ".join(f"{b:02X}" for b in spec.payload),
        }
        if spec.is_extended_id:
            entry["extended"] = True
        if spec.is_fd:
            entry["fd"] = True
        entries.append(entry)

    tmp = f"{path}.tmp"
    try:
        with open(tmp, 'w', encoding='utf-8') as f:
            yaml.safe_dump({"messages": entries}, f, sort_keys=False)
        os.replace(tmp, path)
    except OSError as e:
        raise ConfigError(f"Failed to save messages to {path}: {e}")
