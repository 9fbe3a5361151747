# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

#!/usr/bin/env python3
"""
Headless console front end for the monitor.

Prints received and sent frames either as an append-only log or as a
periodically refreshed table of the latest frame per identifier, optionally
with a bus health line every tick. Stored outgoing messages can be started
from the command line.

Usage:
    socketcan-mon --if vcan0
    socketcan-mon --if vcan0 --log-mode --health
    socketcan-mon --if can0 --messages messages.yaml --send 0 --send 3f2a --duration 10
"""

import argparse
import logging
import time
from datetime import datetime
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import load_config
from .errors import ConfigError, InvalidSpec, SendFailed, TransportUnavailable
from .logs import MemoryLogHandler, setup_logging
from .model import BusEvent, BusHealthSnapshot, Direction, OutgoingMessageSpec
from .monitor import BusMonitor, EventLog
from .storage import load_specs
from .tracker import EchoPolicy

POLL_TIMEOUT = 0.2          # Event queue poll timeout, seconds
DEFAULT_REFRESH = 1.0       # Table / health refresh interval, seconds

ROW_COLUMNS = ["", "ID", "DLC", "Cycle", "Data", "Time"]
NEW_ERRORS_MARK = " [bold red]● new errors[/bold red]"


def event_row(event: BusEvent, filtered: bool = False) -> List[str]:
    """Format an event like the receive table: marker, id, dlc, cycle, data, time."""
    indicator = "• " if filtered else "  "
    arrow = "▲" if event.direction is Direction.TRANSMITTED else "▼"
    wall = datetime.fromtimestamp(event.wall_time).strftime("%H:%M:%S.%f")[:-3]
    return [
        f"{indicator}{arrow}",
        f"0x{event.identifier:03X}",
        str(event.dlc),
        f"{event.cycle_time * 1000.0:.3f}ms",
        " ".join(f"{b:02X}" for b in event.payload),
        wall,
    ]


def health_line(snap: BusHealthSnapshot, new_errors: bool = False) -> str:
    line = (f"[bold blue]{snap.interface}[/bold blue] status={snap.status.value} "
            f"load≈{snap.load_estimate_percent:.2f}% rx_err={snap.rx_error_count} "
            f"tx_err={snap.tx_error_count} err_frames={snap.bus_error_frame_count}")
    return line + NEW_ERRORS_MARK if new_errors else line


def select_specs(specs: List[OutgoingMessageSpec], selectors: List[str]) -> List[OutgoingMessageSpec]:
    """Resolve selectors (list index or UUID prefix) to stored specs."""
    chosen = []
    for sel in selectors:
        if sel.isdigit() and int(sel) < len(specs):
            chosen.append(specs[int(sel)])
            continue
        matches = [s for s in specs if str(s.id).startswith(sel.lower())]
        if len(matches) != 1:
            raise SystemExit(f"--send {sel}: expected one matching message, found {len(matches)}")
        chosen.append(matches[0])
    return chosen


def has_new_errors(monitor: BusMonitor) -> bool:
    return monitor.log_handler is not None and monitor.log_handler.has_new_errors


def render_table(monitor: BusMonitor) -> Table:
    title = f"{monitor.config.interface} ({len(monitor.table)} msgs)"
    if has_new_errors(monitor):
        title += NEW_ERRORS_MARK
    table = Table(*ROW_COLUMNS, title=title)
    for event in monitor.snapshot():
        table.add_row(*event_row(event, monitor.table.is_filtered(event.identifier)))
    return table


def print_error_log(console: Console, handler: MemoryLogHandler) -> int:
    """Print the stored log records and clear the new-errors flag. Returns rows printed."""
    entries = handler.entries()
    if entries:
        console.print("[bold]Log:[/bold]")
    for entry in entries:
        wall = datetime.fromtimestamp(entry.created).strftime("%H:%M:%S.%f")[:-3]
        style = "red" if entry.level in ("ERROR", "CRITICAL") else "dim"
        console.print(f"[{style}]{wall} {entry.level:<8} {entry.file}:{entry.line}[/{style}] {escape(entry.message)}",
                      highlight=False)
    handler.acknowledge()
    return len(entries)


def run(monitor: BusMonitor, console: Console, log_mode: bool = False, show_health: bool = False,
        duration: Optional[float] = None, refresh: float = DEFAULT_REFRESH) -> int:
    """Print events until interrupted or ``duration`` elapses. Returns log rows printed."""
    log = EventLog()
    shown = 0
    start = last_refresh = time.monotonic()
    try:
        while duration is None or time.monotonic() - start < duration:
            event = monitor.next_event(timeout=POLL_TIMEOUT)
            if event is not None and log_mode and log.append(event):
                filtered = monitor.table.is_filtered(event.identifier)
                console.print("  ".join(event_row(event, filtered)), highlight=False)
                shown += 1

            now = time.monotonic()
            if now - last_refresh >= refresh:
                if not log_mode:
                    console.print(render_table(monitor))
                if show_health:
                    console.print(health_line(monitor.health(), has_new_errors(monitor)))
                last_refresh = now
    except KeyboardInterrupt:
        console.print("\nStopped.")
    return shown


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        description="Live CAN bus monitor with cyclic transmission",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --if vcan0
  %(prog)s --if vcan0 --log-mode --health
  %(prog)s --if can0 --messages messages.yaml --send 0 --duration 10

Testing:
  sudo modprobe vcan
  sudo ip link add vcan0 type vcan && sudo ip link set vcan0 up
  cangen vcan0 -v
        """
    )
    ap.add_argument("--if", dest="iface", default=None, help="CAN interface (default: can0)")
    ap.add_argument("--bitrate", type=int, default=None, help="Nominal bitrate for the load estimate (default: 500000)")
    ap.add_argument("--config", default=None, help="YAML config file")
    ap.add_argument("--messages", default=None, help="YAML file with outgoing messages (default: messages.yaml)")
    ap.add_argument("--log-mode", action="store_true", help="Append every frame instead of refreshing a table")
    ap.add_argument("--health", action="store_true", help="Print bus health every tick")
    ap.add_argument("--echo-policy", choices=[p.value for p in EchoPolicy], default=None,
                    help="How received frames are matched as echoes of our own sends")
    ap.add_argument("--send", action="append", default=[], metavar="SEL",
                    help="Send a stored message (index or UUID prefix); repeatable")
    ap.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    ap.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = ap.parse_args(argv)

    if args.bitrate is not None and args.bitrate <= 0:
        ap.error("Bitrate must be positive")
    if args.duration is not None and args.duration <= 0:
        ap.error("Duration must be positive")

    try:
        config = load_config(args.config).merged(
            interface=args.iface,
            bitrate=args.bitrate,
            messages_path=args.messages,
            echo_policy=EchoPolicy(args.echo_policy) if args.echo_policy else None,
            overwrite=False if args.log_mode else None,
        )
        specs = load_specs(config.messages_path)
    except ConfigError as e:
        raise SystemExit(str(e)) from e

    console = Console()
    memory = MemoryLogHandler()
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, memory=memory)

    monitor = BusMonitor(config=config, specs=specs, log_handler=memory)
    try:
        monitor.start()
    except TransportUnavailable as e:
        raise SystemExit(f"Failed to open CAN interface: {e}") from e

    try:
        for spec in select_specs(monitor.list_specs(), args.send):
            try:
                monitor.toggle_send(spec)
            except (InvalidSpec, SendFailed) as e:
                console.print(f"[red]send 0x{spec.identifier:X} failed:[/red] {e}")
        if args.health:
            try:
                monitor.open_health()
            except TransportUnavailable as e:
                console.print(f"[red]health monitor unavailable:[/red] {e}")

        console.print(f"Monitoring interface={config.interface}. Press Ctrl+C to stop.")
        run(monitor, console, log_mode=not config.overwrite, show_health=args.health, duration=args.duration)
    finally:
        monitor.close()
        if memory.has_new_errors:
            print_error_log(console, memory)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
