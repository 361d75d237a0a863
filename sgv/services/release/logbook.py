"""Timestamped log of one release run, saved next to the project."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from sgv.output.console import ConsoleProtocol, Style
from sgv.platform.files import atomic_write_text


class ReleaseLog:
    """Collects ``[HH:MM:SS.fff] message`` lines for a release run.

    Each line is mirrored to the console as it is logged. :meth:`save` writes
    everything to ``<log_dir>/version_log_YYYYMMDD_HHMMSS.txt``.
    """

    def __init__(
        self,
        log_dir: Path,
        console: ConsoleProtocol,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._clock = clock
        self._console = console
        self._entries: list[str] = []
        self._lock = threading.Lock()
        self.error_occurred = False
        started = clock()
        self.path = log_dir / f"version_log_{started:%Y%m%d_%H%M%S}.txt"
        self.log("Versioning process started")
        self.log(f"Timestamp: {started:%Y-%m-%d %H:%M:%S}")

    @property
    def entries(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    @property
    def content(self) -> str:
        return "\n".join(self.entries)

    def _stamp(self) -> str:
        now = self._clock()
        return f"[{now:%H:%M:%S}.{now.microsecond // 1000:03d}]"

    def log(self, message: str) -> None:
        entry = f"{self._stamp()} {message}"
        with self._lock:
            self._entries.append(entry)
        self._console.print(entry, Style.DIM)

    def error(self, message: str) -> None:
        entry = f"{self._stamp()} ERROR: {message}"
        with self._lock:
            self._entries.append(entry)
            self.error_occurred = True
        self._console.error(entry)

    def save(self) -> Path | None:
        """Write the log file; returns its path, or None if writing failed."""
        try:
            atomic_write_text(self.path, self.content + "\n")
        except OSError as e:
            self._console.error(f"Failed to save log file: {e}")
            return None
        return self.path
