"""Filesystem helpers."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

__all__ = ["atomic_write_text", "backup_file", "clear_directory", "recreate_directory"]


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write text to path atomically using temp file + replace."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )
    tmp_path = Path(tmp_name)

    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def backup_file(path: Path) -> Path:
    """Copy ``path`` to ``<path>.backup`` (overwriting) and return the copy."""
    target = path.with_name(path.name + ".backup")
    shutil.copy2(path, target)
    return target


def clear_directory(path: Path) -> None:
    """Delete ``path`` and everything below it. Missing paths are fine."""
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()


def recreate_directory(path: Path) -> None:
    """Delete ``path`` if present and create it empty."""
    clear_directory(path)
    path.mkdir(parents=True, exist_ok=True)
