"""Persisted state of the interactive, four-step versioning process.

The process survives restarts: every mutation goes through
:class:`VersioningSession`, which writes the new state to its
:class:`ProcessStore` before notifying observers.

Steps, in order:

1. DEFINE_TARGET_VERSION: choose the version to release.
2. START_VERSION_IN_REMOTE: open that version on the remote side.
3. BUILDS: build every target and upload the archives.
4. CLOSE_VERSION: end the remote version and write the local version files.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import IntEnum
from pathlib import Path
from typing import Protocol

from sgv.core.result import Err, Ok, Result
from sgv.core.structured import (
    as_obj_list,
    as_str_dict,
    get_bool,
    get_int,
    get_str,
    get_table,
)
from sgv.platform.files import atomic_write_text, clear_directory
from sgv.services.release.errors import ReleaseError
from sgv.services.release.model import (
    BuildPlatform,
    CompressingResult,
    CompressionPlatform,
    LocalBuildResult,
    VersionBuildEntry,
)
from sgv.services.release.semver import SemVer, parse_semver

SCHEMA = 1
STATE_RELATIVE_PATH = Path(".sgv") / "versioning-process.json"


class VersioningStep(IntEnum):
    DEFINE_TARGET_VERSION = 0
    START_VERSION_IN_REMOTE = 1
    BUILDS = 2
    CLOSE_VERSION = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @property
    def title(self) -> str:
        return {
            VersioningStep.DEFINE_TARGET_VERSION: "Define target version",
            VersioningStep.START_VERSION_IN_REMOTE: "Start version in remote",
            VersioningStep.BUILDS: "Generate and upload builds",
            VersioningStep.CLOSE_VERSION: "Close version",
        }[self]


@dataclass(frozen=True, slots=True)
class VersioningProcess:
    current_step: VersioningStep = VersioningStep.DEFINE_TARGET_VERSION
    target_version: SemVer | None = None
    started_in_remote: bool = False
    remote_semver: str | None = None
    version_builds: tuple[VersionBuildEntry, ...] = ()

    @property
    def is_initial(self) -> bool:
        return self == VersioningProcess()


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------


def _build_to_dict(build: LocalBuildResult) -> dict[str, object]:
    compression = build.compression
    return {
        "success": build.success,
        "product_name": build.product_name,
        "platform": build.platform.label,
        "path": str(build.path) if build.path else None,
        "executable_name": build.executable_name,
        "built_at": build.built_at,
        "error_message": build.error_message,
        "compression": (
            {
                "output_path": str(compression.output_path),
                "size_compressed": compression.size_compressed,
                "size_uncompressed": compression.size_uncompressed,
                "file_count": compression.file_count,
                "platform": compression.platform.value,
            }
            if compression
            else None
        ),
    }


def _build_from_dict(data: Mapping[str, object]) -> LocalBuildResult:
    comp = get_table(data, "compression")
    compression = None
    if comp is not None:
        compression = CompressingResult(
            output_path=Path(get_str(comp, "output_path") or ""),
            size_compressed=get_int(comp, "size_compressed") or 0,
            size_uncompressed=get_int(comp, "size_uncompressed") or 0,
            file_count=get_int(comp, "file_count") or 0,
            platform=CompressionPlatform(get_str(comp, "platform") or "windows"),
        )
    path = get_str(data, "path")
    return LocalBuildResult(
        success=bool(get_bool(data, "success")),
        product_name=get_str(data, "product_name") or "",
        platform=BuildPlatform.from_label(get_str(data, "platform") or ""),
        path=Path(path) if path else None,
        executable_name=get_str(data, "executable_name"),
        compression=compression,
        built_at=get_int(data, "built_at") or 0,
        error_message=get_str(data, "error_message"),
    )


def process_to_dict(process: VersioningProcess) -> dict[str, object]:
    return {
        "schema": SCHEMA,
        "current_step": process.current_step.label,
        "target_version": process.target_version.raw if process.target_version else None,
        "started_in_remote": process.started_in_remote,
        "remote_semver": process.remote_semver,
        "version_builds": [
            {
                "build": _build_to_dict(e.build),
                "uploaded": e.uploaded,
                "remote_url": e.remote_url,
                "checksum": e.checksum,
                "upload_error": e.upload_error,
                "uploaded_at": e.uploaded_at,
            }
            for e in process.version_builds
        ],
    }


def process_from_dict(data: Mapping[str, object]) -> VersioningProcess:
    """Rebuild a process from its JSON form.

    Raises:
        ValueError: on unknown schema, step or platform, or bad versions.
    """
    if get_int(data, "schema") != SCHEMA:
        raise ValueError(f"unsupported schema: {data.get('schema')!r}")

    step_label = get_str(data, "current_step") or ""
    try:
        step = VersioningStep[step_label.upper()]
    except KeyError:
        raise ValueError(f"unknown step: {step_label!r}") from None

    target: SemVer | None = None
    raw_target = get_str(data, "target_version")
    if raw_target:
        parsed = parse_semver(raw_target)
        if isinstance(parsed, Err):
            raise ValueError(parsed.error.message)
        target = parsed.value

    entries: list[VersionBuildEntry] = []
    for item in as_obj_list(data.get("version_builds")) or []:
        entry = as_str_dict(item)
        build = get_table(entry, "build") if entry else None
        if entry is None or build is None:
            raise ValueError("invalid version_builds entry")
        entries.append(
            VersionBuildEntry(
                build=_build_from_dict(build),
                uploaded=bool(get_bool(entry, "uploaded")),
                remote_url=get_str(entry, "remote_url"),
                checksum=get_str(entry, "checksum"),
                upload_error=get_str(entry, "upload_error"),
                uploaded_at=get_int(entry, "uploaded_at"),
            )
        )

    return VersioningProcess(
        current_step=step,
        target_version=target,
        started_in_remote=bool(get_bool(data, "started_in_remote")),
        remote_semver=get_str(data, "remote_semver"),
        version_builds=tuple(entries),
    )


# -----------------------------------------------------------------------------
# Stores
# -----------------------------------------------------------------------------


class ProcessStore(Protocol):
    def load(self) -> Result[VersioningProcess, ReleaseError]: ...

    def save(self, process: VersioningProcess) -> Result[None, ReleaseError]: ...


class JsonProcessStore:
    """Process state as JSON under ``<project>/.sgv/versioning-process.json``."""

    def __init__(self, project_root: Path) -> None:
        self.path = project_root / STATE_RELATIVE_PATH
        self._lock = threading.Lock()

    def load(self) -> Result[VersioningProcess, ReleaseError]:
        if not self.path.exists():
            return Ok(VersioningProcess())
        try:
            obj: object = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            return Err(self._corrupt(str(e)))

        data = as_str_dict(obj)
        if data is None:
            return Err(self._corrupt("root must be an object"))
        try:
            return Ok(process_from_dict(data))
        except ValueError as e:
            return Err(self._corrupt(str(e)))

    def save(self, process: VersioningProcess) -> Result[None, ReleaseError]:
        text = json.dumps(process_to_dict(process), indent=2) + "\n"
        with self._lock:
            try:
                atomic_write_text(self.path, text)
            except OSError as e:
                return Err(
                    ReleaseError(
                        kind="io_failed",
                        message=f"failed to save versioning process: {e}",
                        hint=str(self.path),
                    )
                )
        return Ok(None)

    def _corrupt(self, reason: str) -> ReleaseError:
        return ReleaseError(
            kind="io_failed",
            message=f"invalid versioning process state: {reason}",
            hint=f"run `sgv process reset` or delete {self.path}",
        )


@dataclass
class MemoryProcessStore:
    process: VersioningProcess = field(default_factory=VersioningProcess)
    saves: int = 0

    def load(self) -> Result[VersioningProcess, ReleaseError]:
        return Ok(self.process)

    def save(self, process: VersioningProcess) -> Result[None, ReleaseError]:
        self.process = process
        self.saves += 1
        return Ok(None)


# -----------------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------------


class ProcessObserver(Protocol):
    def step_changed(self, step: VersioningStep) -> None: ...

    def target_version_defined(self, version: SemVer | None) -> None: ...

    def builds_changed(self, builds: Sequence[VersionBuildEntry]) -> None: ...

    def process_ended(self) -> None: ...


class NullObserver:
    def step_changed(self, step: VersioningStep) -> None:
        return None

    def target_version_defined(self, version: SemVer | None) -> None:
        return None

    def builds_changed(self, builds: Sequence[VersionBuildEntry]) -> None:
        return None

    def process_ended(self) -> None:
        return None


class VersioningSession:
    """Mutations of a :class:`VersioningProcess`, each persisted then announced."""

    def __init__(
        self,
        store: ProcessStore,
        process: VersioningProcess,
        observer: ProcessObserver | None = None,
    ) -> None:
        self._store = store
        self._process = process
        self._observer: ProcessObserver = observer or NullObserver()
        self._lock = threading.RLock()

    @classmethod
    def open(
        cls,
        store: ProcessStore,
        observer: ProcessObserver | None = None,
    ) -> Result[VersioningSession, ReleaseError]:
        loaded = store.load()
        if isinstance(loaded, Err):
            return loaded
        return Ok(cls(store, loaded.value, observer))

    @property
    def process(self) -> VersioningProcess:
        return self._process

    def _commit(self, process: VersioningProcess) -> Result[None, ReleaseError]:
        saved = self._store.save(process)
        if isinstance(saved, Err):
            return saved
        self._process = process
        return Ok(None)

    # Step navigation

    def advance(self) -> Result[bool, ReleaseError]:
        """Move to the next step.

        Returns Ok(False) without any notification at the last step.
        """
        with self._lock:
            step = self._process.current_step
            if step == VersioningStep.CLOSE_VERSION:
                return Ok(False)
            if step == VersioningStep.DEFINE_TARGET_VERSION and self._process.target_version is None:
                return Err(
                    ReleaseError(
                        kind="precondition_failed",
                        message="define a target version before continuing",
                    )
                )
            nxt = VersioningStep(step + 1)
            saved = self._commit(replace(self._process, current_step=nxt))
            if isinstance(saved, Err):
                return saved
        self._observer.step_changed(nxt)
        return Ok(True)

    def retreat(self) -> Result[bool, ReleaseError]:
        """Move to the previous step; Ok(False) at the first step."""
        with self._lock:
            step = self._process.current_step
            if step == VersioningStep.DEFINE_TARGET_VERSION:
                return Ok(False)
            prev = VersioningStep(step - 1)
            saved = self._commit(replace(self._process, current_step=prev))
            if isinstance(saved, Err):
                return saved
        self._observer.step_changed(prev)
        return Ok(True)

    # Field updates

    def set_target_version(self, version: SemVer | None) -> Result[None, ReleaseError]:
        with self._lock:
            saved = self._commit(replace(self._process, target_version=version))
            if isinstance(saved, Err):
                return saved
        self._observer.target_version_defined(version)
        return Ok(None)

    def set_remote_started(
        self,
        started: bool,
        remote_semver: str | None = None,
    ) -> Result[None, ReleaseError]:
        with self._lock:
            return self._commit(
                replace(
                    self._process,
                    started_in_remote=started,
                    remote_semver=remote_semver if started else None,
                )
            )

    def set_version_builds(
        self,
        builds: Sequence[VersionBuildEntry],
    ) -> Result[None, ReleaseError]:
        with self._lock:
            saved = self._commit(replace(self._process, version_builds=tuple(builds)))
            if isinstance(saved, Err):
                return saved
        self._observer.builds_changed(self._process.version_builds)
        return Ok(None)

    def replace_version_build(
        self,
        index: int,
        entry: VersionBuildEntry,
    ) -> Result[bool, ReleaseError]:
        """Replace the entry at ``index``; Ok(False) when out of range."""
        with self._lock:
            builds = list(self._process.version_builds)
            if not 0 <= index < len(builds):
                return Ok(False)
            builds[index] = entry
            saved = self._commit(replace(self._process, version_builds=tuple(builds)))
            if isinstance(saved, Err):
                return saved
        self._observer.builds_changed(self._process.version_builds)
        return Ok(True)

    def clear_version_builds(
        self,
        *,
        builds_dir: Path | None = None,
    ) -> Result[None, ReleaseError]:
        """Forget all build entries; with ``builds_dir`` also delete it from disk."""
        if builds_dir is not None:
            try:
                clear_directory(builds_dir)
            except OSError as e:
                return Err(
                    ReleaseError(
                        kind="io_failed",
                        message=f"failed to delete builds directory: {e}",
                        hint=str(builds_dir),
                    )
                )
        return self.set_version_builds(())

    # Lifecycle

    def reset(self) -> Result[None, ReleaseError]:
        with self._lock:
            previous = self._process.current_step
            saved = self._commit(VersioningProcess())
            if isinstance(saved, Err):
                return saved
        if previous != VersioningStep.DEFINE_TARGET_VERSION:
            self._observer.step_changed(VersioningStep.DEFINE_TARGET_VERSION)
        return Ok(None)

    def end_process(self) -> Result[None, ReleaseError]:
        reset = self.reset()
        if isinstance(reset, Err):
            return reset
        self._observer.process_ended()
        return Ok(None)
