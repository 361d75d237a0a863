"""Progress reporting for long-running work (compression, hashing, uploads).

Workers report ``(done, total)`` through plain callbacks; this module turns
those into Rich progress bars. Callbacks may fire from upload worker threads
and at a very high rate (every chunk), so updates are throttled per task and
guarded by a lock.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol

__all__ = ["NullProgress", "ProgressCallback", "ProgressSink", "RichProgress"]

ProgressCallback = Callable[[int, int], None]

_MIN_INTERVAL_SECONDS = 0.1


class ProgressSink(Protocol):
    def task(self, description: str) -> ProgressCallback:
        """Register a task and return its ``(done, total)`` callback."""
        ...


class NullProgress:
    """Progress sink that drops every update."""

    def task(self, description: str) -> ProgressCallback:
        def _noop(done: int, total: int) -> None:
            return None

        return _noop


class RichProgress:
    """Thread-safe, throttled Rich progress display.

    Use as a context manager via :meth:`live`; tasks registered outside the
    live block are still tracked but nothing is rendered.
    """

    def __init__(self, console: object | None = None) -> None:
        from rich.progress import (
            BarColumn,
            DownloadColumn,
            Progress,
            TextColumn,
            TimeRemainingColumn,
        )

        kwargs: dict[str, object] = {}
        if console is not None:
            kwargs["console"] = console
        self._progress = Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TimeRemainingColumn(),
            transient=True,
            **kwargs,
        )
        self._lock = threading.Lock()

    @contextmanager
    def live(self) -> Iterator[RichProgress]:
        with self._progress:
            yield self

    def task(self, description: str) -> ProgressCallback:
        with self._lock:
            task_id = self._progress.add_task(description, total=None)
        last = [0.0]

        def _update(done: int, total: int) -> None:
            now = time.monotonic()
            finished = total > 0 and done >= total
            if not finished and now - last[0] < _MIN_INTERVAL_SECONDS:
                return
            last[0] = now
            with self._lock:
                self._progress.update(task_id, completed=done, total=total or None)

        return _update
