"""Platform layer: subprocesses and filesystem helpers."""

from .files import atomic_write_text, backup_file, clear_directory, recreate_directory
from .process import ProcessError, run

__all__ = [
    # files
    "atomic_write_text",
    "backup_file",
    "clear_directory",
    "recreate_directory",
    # process
    "ProcessError",
    "run",
]
