# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: 2025 Ahmed Khaled

"""
Logging helpers: an in-memory record store for an error log view, and the
console setup used by the command line front end.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "socketcan_mon"


@dataclass(frozen=True)
class LogEntry:
    level: str
    file: str
    line: int
    message: str
    created: float


class MemoryLogHandler(logging.Handler):
    """Keeps the most recent log records in memory.

    ``has_new_errors`` turns true when an ERROR or worse record arrives and
    stays true until ``acknowledge()`` is called (the log view was opened).
    """

    def __init__(self, capacity: int = 1000, level: int = logging.DEBUG):
        super().__init__(level)
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)
        self._new_errors = False
        self._entries_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry(
                level=record.levelname,
                file=os.path.basename(record.pathname),
                line=record.lineno,
                message=record.getMessage(),
                created=record.created,
            )
        except Exception:
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)
            if record.levelno >= logging.ERROR:
                self._new_errors = True

    def entries(self) -> List[LogEntry]:
        with self._entries_lock:
            return list(self._entries)

    @property
    def has_new_errors(self) -> bool:
        with self._entries_lock:
            return self._new_errors

    def acknowledge(self) -> None:
        with self._entries_lock:
            self._new_errors = False

    def clear(self) -> None:
        with self._entries_lock:
            self._entries.clear()
            self._new_errors = False


def setup_logging(level: int = logging.INFO, console: Optional[Console] = None,
                  memory: Optional[MemoryLogHandler] = None) -> logging.Logger:
    """Attach a rich console handler (and optionally a memory handler) to the package logger."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    logger.addHandler(RichHandler(console=console or Console(stderr=True), show_path=False))
    if memory is not None and memory not in logger.handlers:
        logger.addHandler(memory)
    return logger
