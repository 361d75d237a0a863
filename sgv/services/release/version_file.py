"""Project version storage.

The version lives in the ``"version"`` field of ``package.json`` and is
mirrored to the ``bundleVersion`` entry of the player settings asset when that
file exists. Both are edited by regex substitution so the rest of the file is
left untouched, and a ``.backup`` copy is made before each write.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from sgv.core.config import ProjectConfig
from sgv.core.result import Err, Ok, Result
from sgv.platform.files import atomic_write_text, backup_file
from sgv.services.release.errors import ReleaseError
from sgv.services.release.semver import DEFAULT_VERSION

_VERSION_FIELD = re.compile(r'"version"\s*:\s*"(?P<version>\d+\.\d+\.\d+[^"]*)"')
_BUNDLE_VERSION = re.compile(r"^(?P<prefix>[ \t]*bundleVersion:[ \t]*)(?P<version>[^\r\n]*)$", re.M)

_DEFAULT_PACKAGE_JSON = """{
  "name": "com.yourcompany.yourpackage",
  "version": "%s",
  "displayName": "Your Package",
  "description": "Package description"
}
"""


@dataclass(frozen=True, slots=True)
class VersionFiles:
    package_json: Path
    player_settings: Path

    @classmethod
    def for_project(cls, project_root: Path, project: ProjectConfig) -> VersionFiles:
        return cls(
            package_json=project_root / project.version_file,
            player_settings=project_root / project.player_settings_file,
        )

    def stage_paths(self, project_root: Path) -> list[str]:
        """Paths to ``git add`` after a version change, relative to the root."""
        paths = [self.package_json]
        if self.player_settings.exists():
            paths.append(self.player_settings)
        return [_relative(p, project_root) for p in paths]


def _relative(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def ensure_version_file(path: Path) -> Result[bool, ReleaseError]:
    """Create a default ``package.json`` at ``path`` if missing.

    Returns Ok(True) when a file was created.
    """
    if path.exists():
        return Ok(False)
    try:
        atomic_write_text(path, _DEFAULT_PACKAGE_JSON % DEFAULT_VERSION)
    except OSError as e:
        return Err(ReleaseError(kind="io_failed", message=f"failed to create {path.name}: {e}"))
    return Ok(True)


def read_version(path: Path) -> Result[str, ReleaseError]:
    """Current version from ``path``.

    A missing file or a file without a version field yields ``0.0.0``.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return Ok(DEFAULT_VERSION)
    except (OSError, UnicodeDecodeError) as e:
        return Err(
            ReleaseError(kind="io_failed", message=f"failed to read {path.name}: {e}", hint=str(path))
        )

    m = _VERSION_FIELD.search(text)
    return Ok(m.group("version") if m else DEFAULT_VERSION)


def write_version(files: VersionFiles, version: str) -> Result[list[Path], ReleaseError]:
    """Write ``version`` to every version file.

    Returns the files that changed (empty when the version is already set).
    """
    current = read_version(files.package_json)
    if isinstance(current, Err):
        return current
    if current.value == version and files.package_json.exists():
        return Ok([])

    created = ensure_version_file(files.package_json)
    if isinstance(created, Err):
        return created

    changed: list[Path] = []
    pkg = _replace_in_file(files.package_json, _VERSION_FIELD, f'"version": "{version}"')
    if isinstance(pkg, Err):
        return pkg
    if not pkg.value:
        return Err(
            ReleaseError(
                kind="io_failed",
                message=f"no version field to update in {files.package_json.name}",
                hint=str(files.package_json),
            )
        )
    changed.append(files.package_json)

    if files.player_settings.exists():
        settings = _replace_in_file(
            files.player_settings,
            _BUNDLE_VERSION,
            lambda m: f"{m.group('prefix')}{version}",
        )
        if isinstance(settings, Err):
            return settings
        if settings.value:
            changed.append(files.player_settings)

    return Ok(changed)


def _replace_in_file(path: Path, pattern: re.Pattern[str], repl) -> Result[bool, ReleaseError]:  # noqa: ANN001
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return Err(
            ReleaseError(kind="io_failed", message=f"failed to read {path.name}: {e}", hint=str(path))
        )

    updated, count = pattern.subn(repl, text, count=1)
    if count == 0:
        return Ok(False)
    if updated == text:
        return Ok(True)

    try:
        backup_file(path)
        atomic_write_text(path, updated)
    except OSError as e:
        return Err(
            ReleaseError(kind="io_failed", message=f"failed to write {path.name}: {e}", hint=str(path))
        )
    return Ok(True)
