"""Platform builds.

The engine build itself is an external command (for Unity, a ``-batchmode``
editor invocation) configured in ``sgv.toml``. This module runs it once per
build setup, then archives the output folder next to it:

    <builds_dir>/<Product>.v1_2_3.windows/<Product>.v1_2_3.exe
    <builds_dir>/<Product>.v1_2_3.windows.zip
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Protocol

from sgv.core.config import DEFAULT_EXCLUSION_FILTERS
from sgv.core.result import Err
from sgv.platform.files import recreate_directory
from sgv.platform.process import run as run_process
from sgv.services.release.compressor import ZipProgress, zip_directory
from sgv.services.release.model import (
    BuildPlatform,
    BuildSetup,
    CompressionPlatform,
    LocalBuildResult,
)

_EXECUTABLE_SUFFIX = {
    BuildPlatform.WINDOWS: ".exe",
    BuildPlatform.LINUX: ".x86_64",
    BuildPlatform.MACOS: ".app",
    BuildPlatform.ANDROID: ".apk",
}

_UNSAFE_NAME = re.compile(r"[^0-9A-Za-z._-]+")


def base_name(product_name: str, version: str) -> str:
    """``Product.v1_2_3`` (spaces and path-hostile characters removed)."""
    product = _UNSAFE_NAME.sub("", product_name.replace(" ", "")) or "Game"
    return f"{product}.v{version.replace('.', '_')}"


def build_folder_name(product_name: str, version: str, platform: BuildPlatform) -> str:
    return f"{base_name(product_name, version)}.{platform.label}"


def executable_name(product_name: str, version: str, platform: BuildPlatform) -> str:
    return base_name(product_name, version) + _EXECUTABLE_SUFFIX.get(platform, "")


def archive_name(product_name: str, version: str, platform: BuildPlatform) -> str:
    return f"{build_folder_name(product_name, version, platform)}.zip"


class BuildRunner(Protocol):
    def build(self, setup: BuildSetup, builds_dir: Path, version: str) -> LocalBuildResult:
        """Build one target into ``builds_dir`` and archive it.

        Failures are reported in the returned result, never raised.
        """
        ...


@dataclass(frozen=True, slots=True)
class CommandBuildRunner:
    """Run the configured external build command, then zip its output.

    Attributes:
        project_root: Working directory for the build command.
        product_name: Used for folder, executable and archive names.
        command: Argument template; ``{platform}``, ``{profile}``,
            ``{output}`` (build folder), ``{executable}`` (full executable
            path) and ``{version}`` are substituted.
        timeout: Seconds before the build is killed.
        exclusion_filters: Path segments never shipped.
    """

    project_root: Path
    product_name: str
    command: tuple[str, ...]
    timeout: float | None = None
    exclusion_filters: tuple[str, ...] = DEFAULT_EXCLUSION_FILTERS
    on_zip_progress: Callable[[BuildSetup, ZipProgress], None] | None = None

    def build(self, setup: BuildSetup, builds_dir: Path, version: str) -> LocalBuildResult:
        platform = setup.platform
        if not self.command:
            return LocalBuildResult.failed(
                product_name=self.product_name,
                platform=platform,
                error="no build command configured ([build].command in sgv.toml)",
            )

        build_dir = builds_dir / build_folder_name(self.product_name, version, platform)
        exe = executable_name(self.product_name, version, platform)
        exe_path = build_dir / exe
        try:
            build_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return LocalBuildResult.failed(
                product_name=self.product_name, platform=platform, error=str(e)
            )

        values = {
            "platform": platform.label,
            "profile": setup.profile,
            "output": str(build_dir),
            "executable": str(exe_path),
            "version": version,
        }
        try:
            cmd = [part.format(**values) for part in self.command]
        except (KeyError, IndexError, ValueError) as e:
            return LocalBuildResult.failed(
                product_name=self.product_name,
                platform=platform,
                error=f"invalid build command template: {e}",
            )

        built = run_process(cmd, cwd=self.project_root, timeout=self.timeout)
        if isinstance(built, Err):
            tail = f": {built.error.last_line}" if built.error.last_line else ""
            return LocalBuildResult.failed(
                product_name=self.product_name,
                platform=platform,
                error=f"Build failed for profile {setup.profile} ({built.error}){tail}",
            )

        progress = partial(self.on_zip_progress, setup) if self.on_zip_progress else None

        compressed = zip_directory(
            build_dir,
            builds_dir / archive_name(self.product_name, version, platform),
            exclusion_filters=self.exclusion_filters,
            platform=CompressionPlatform.for_build(platform),
            on_progress=progress,
        )
        if isinstance(compressed, Err):
            return LocalBuildResult.failed(
                product_name=self.product_name,
                platform=platform,
                error=f"compression failed: {compressed.error.message}",
            )

        return LocalBuildResult(
            success=True,
            product_name=self.product_name,
            platform=platform,
            path=build_dir,
            executable_name=exe,
            compression=compressed.value,
            built_at=int(time.time()),
        )


def perform_builds(
    runner: BuildRunner,
    setups: Sequence[BuildSetup],
    builds_dir: Path,
    version: str,
    *,
    product_name: str = "",
    on_result: Callable[[int, LocalBuildResult], None] | None = None,
) -> list[LocalBuildResult]:
    """Build every setup sequentially into a freshly emptied ``builds_dir``.

    One result per setup, in order. A runner that raises yields a failed
    result for that setup; later setups still build.
    """
    recreate_directory(builds_dir)

    results: list[LocalBuildResult] = []
    for index, setup in enumerate(setups):
        try:
            result = runner.build(setup, builds_dir, version)
        except Exception as e:  # noqa: BLE001
            result = LocalBuildResult.failed(
                product_name=product_name,
                platform=setup.platform,
                error=f"Error building {setup.profile}: {e}",
            )
        results.append(result)
        if on_result is not None:
            on_result(index, result)
    return results
