"""Zip a build output directory for upload.

Archives are deterministic (sorted entries, fixed timestamps) so a rebuild of
identical files hashes identically. Windows-targeted archives use ``\\`` in
entry names; Linux-targeted ones use ``/`` and carry Unix permission bits so
executables survive extraction.
"""

from __future__ import annotations

import zipfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from sgv.core.result import Err, Ok, Result
from sgv.services.release.model import CompressingResult, CompressionPlatform
from sgv.services.release.timeouts import ZIP_CHUNK_BYTES

DEFAULT_FILTERS: tuple[str, ...] = ("DoNotShip",)

# Already-compressed payloads: deflating them only costs time.
STORED_EXTENSIONS = frozenset(
    {
        ".png", ".jpg", ".jpeg", ".gif", ".webp",
        ".mp3", ".ogg", ".wav", ".aac", ".m4a",
        ".mp4", ".webm", ".mov",
        ".zip", ".gz", ".7z", ".rar", ".xz", ".bz2",
        ".bundle", ".assets", ".ress",
    }
)

_EXECUTABLE_EXTENSIONS = frozenset({"", ".sh", ".bin", ".run"})
_FIXED_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
_MODE_EXECUTABLE = 0o100755
_MODE_REGULAR = 0o100644

CompressErrorKind = Literal["source_missing", "no_files_found", "integrity", "write_failed"]


@dataclass(frozen=True, slots=True)
class CompressError:
    kind: CompressErrorKind
    message: str
    path: Path | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class ZipProgress:
    files_done: int
    files_total: int
    bytes_done: int
    bytes_total: int
    current_path: str

    @property
    def fraction(self) -> float:
        if self.bytes_total <= 0:
            return 1.0 if self.files_done >= self.files_total else 0.0
        return min(1.0, self.bytes_done / self.bytes_total)


def is_excluded(relative: Path, filters: Sequence[str]) -> bool:
    """True when any path segment equals a filter (case-insensitive)."""
    lowered = {f.lower() for f in filters}
    return any(part.lower() in lowered for part in relative.parts)


def collect_files(source_dir: Path, filters: Sequence[str]) -> list[Path]:
    """Files under ``source_dir`` that survive the filters, sorted by relative path."""
    out: list[Path] = []
    for p in source_dir.rglob("*"):
        if not p.is_file():
            continue
        if is_excluded(p.relative_to(source_dir), filters):
            continue
        out.append(p)
    out.sort(key=lambda p: p.relative_to(source_dir).as_posix())
    return out


def entry_name(relative: Path, platform: CompressionPlatform) -> str:
    posix = relative.as_posix()
    if platform == CompressionPlatform.WINDOWS:
        return posix.replace("/", "\\")
    return posix


def _zip_info(
    name: str,
    relative: Path,
    size: int,
    platform: CompressionPlatform,
    level: int,
) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=_FIXED_TIMESTAMP)
    # Lets zipfile pick zip64 headers up front for large entries.
    info.file_size = size
    if relative.suffix.lower() in STORED_EXTENSIONS:
        info.compress_type = zipfile.ZIP_STORED
    else:
        info.compress_type = zipfile.ZIP_DEFLATED
        # ZipInfo only exposes a public level attribute from 3.13 on.
        info._compresslevel = level
    if platform == CompressionPlatform.LINUX:
        info.create_system = 3
        mode = (
            _MODE_EXECUTABLE
            if relative.suffix.lower() in _EXECUTABLE_EXTENSIONS
            else _MODE_REGULAR
        )
        info.external_attr = mode << 16
    return info


def zip_directory(
    source_dir: Path,
    output_path: Path | None = None,
    *,
    exclusion_filters: Sequence[str] | None = None,
    compression_level: int = 6,
    platform: CompressionPlatform = CompressionPlatform.WINDOWS,
    on_progress: Callable[[ZipProgress], None] | None = None,
) -> Result[CompressingResult, CompressError]:
    """Compress ``source_dir`` into a zip archive.

    Args:
        source_dir: Directory to archive.
        output_path: Archive path; defaults to ``<source_dir>.zip``. An
            existing file there is replaced.
        exclusion_filters: Path segment names to skip; defaults to
            ``["DoNotShip"]``.
        compression_level: Deflate level (0-9).
        platform: Archive flavour (entry separators and permissions).
        on_progress: Called after every chunk and every file.

    Returns:
        Ok(CompressingResult), or Err(CompressError). A partial archive is
        never left on disk.
    """
    if not source_dir.is_dir():
        return Err(
            CompressError("source_missing", f"directory does not exist: {source_dir}", source_dir)
        )

    filters = list(exclusion_filters) if exclusion_filters is not None else list(DEFAULT_FILTERS)
    zip_path = output_path or source_dir.with_name(source_dir.name + ".zip")

    files = collect_files(source_dir, filters)
    if not files:
        return Err(
            CompressError("no_files_found", f"no files to compress in {source_dir}", source_dir)
        )

    try:
        zip_path.parent.mkdir(parents=True, exist_ok=True)
        zip_path.unlink(missing_ok=True)
        sizes = [p.stat().st_size for p in files]
    except OSError as e:
        return Err(CompressError("write_failed", f"cannot prepare archive: {e}", zip_path))

    total_bytes = sum(sizes)
    done_bytes = 0

    def _report(files_done: int, current: str) -> None:
        if on_progress is not None:
            on_progress(ZipProgress(files_done, len(files), done_bytes, total_bytes, current))

    try:
        with zipfile.ZipFile(zip_path, "w", allowZip64=True) as zf:
            for index, (src, size) in enumerate(zip(files, sizes)):
                relative = src.relative_to(source_dir)
                name = entry_name(relative, platform)
                info = _zip_info(name, relative, size, platform, compression_level)
                with src.open("rb") as fin, zf.open(info, "w") as fout:
                    while chunk := fin.read(ZIP_CHUNK_BYTES):
                        fout.write(chunk)
                        done_bytes += len(chunk)
                        _report(index, relative.as_posix())
                _report(index + 1, relative.as_posix())
    except (OSError, zipfile.BadZipFile, ValueError) as e:
        zip_path.unlink(missing_ok=True)
        return Err(CompressError("write_failed", f"failed to create zip file: {e}", zip_path))
    except BaseException:
        zip_path.unlink(missing_ok=True)
        raise

    integrity = verify_archive(zip_path, expected_entries=len(files))
    if isinstance(integrity, Err):
        zip_path.unlink(missing_ok=True)
        return integrity

    return Ok(
        CompressingResult(
            output_path=zip_path,
            size_compressed=zip_path.stat().st_size,
            size_uncompressed=total_bytes,
            file_count=len(files),
            platform=platform,
        )
    )


def verify_archive(zip_path: Path, *, expected_entries: int) -> Result[None, CompressError]:
    """Re-open the archive and check it holds the expected number of entries."""
    try:
        with zipfile.ZipFile(zip_path) as zf:
            count = len(zf.infolist())
    except (OSError, zipfile.BadZipFile) as e:
        return Err(CompressError("integrity", f"archive unreadable: {e}", zip_path))
    if count != expected_entries:
        return Err(
            CompressError(
                "integrity",
                f"archive has {count} entries, expected {expected_entries}",
                zip_path,
            )
        )
    return Ok(None)
