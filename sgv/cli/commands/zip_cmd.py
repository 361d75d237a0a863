from __future__ import annotations

from contextlib import nullcontext
from pathlib import Path

import typer

from sgv.cli.commands._helpers import exit_with_code
from sgv.cli.context import build_context
from sgv.core.errors import ErrorCode
from sgv.core.result import Err
from sgv.output.console import RichConsole, Style
from sgv.output.progress import RichProgress
from sgv.services.release.compressor import ZipProgress, zip_directory
from sgv.services.release.model import CompressionPlatform


def zip_cmd(
    source: Path = typer.Argument(..., help="Directory to archive"),
    out: Path | None = typer.Option(None, "--out", help="Archive path (default: <source>.zip)"),
    platform: str = typer.Option("windows", "--platform", help="windows|linux"),
    exclude: list[str] | None = typer.Option(
        None, "--exclude", help="Path segment to skip (repeatable; default: DoNotShip)"
    ),
    level: int = typer.Option(6, "--level", min=0, max=9, help="Deflate level"),
) -> None:
    """Zip a build folder the way release archives are made."""
    ctx = build_context()
    try:
        target = CompressionPlatform(platform.strip().lower())
    except ValueError:
        ctx.console.error(f"unknown platform: {platform!r} (expected windows or linux)")
        exit_with_code(int(ErrorCode.USER_ERROR))

    source_dir = source if source.is_absolute() else ctx.project_root / source
    output = None
    if out is not None:
        output = out if out.is_absolute() else ctx.project_root / out

    progress = RichProgress(ctx.console.rich) if isinstance(ctx.console, RichConsole) else None
    on_progress = None
    if progress is not None:
        update = progress.task(f"zip {source_dir.name}")

        def on_progress(p: ZipProgress) -> None:
            update(p.bytes_done, p.bytes_total)

    with progress.live() if progress is not None else nullcontext():
        result = zip_directory(
            source_dir,
            output,
            exclusion_filters=exclude or None,
            compression_level=level,
            platform=target,
            on_progress=on_progress,
        )

    if isinstance(result, Err):
        ctx.console.error(result.error.message)
        code = ErrorCode.IO_ERROR if result.error.kind != "no_files_found" else ErrorCode.USER_ERROR
        exit_with_code(int(code))

    archive = result.value
    ctx.console.success(str(archive.output_path))
    ctx.console.print(
        f"{archive.file_count} files, {archive.size_uncompressed} -> {archive.size_compressed} bytes",
        Style.DIM,
    )

