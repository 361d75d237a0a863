"""Step handlers for the interactive versioning process.

Each :class:`VersioningStep` has one handler in :data:`STEP_HANDLERS`. A
handler answers whether its step is complete (``is_ready``) and carries the
actions a user can take while the process sits on that step. Moving between
steps is done by :func:`try_advance` and :func:`retreat`.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from sgv.core.config import ReadyPolicy
from sgv.core.result import Err, Ok, Result
from sgv.output.console import ConsoleProtocol, Style
from sgv.services.release.api import RemoteVersionClient
from sgv.services.release.builder import BuildRunner, perform_builds
from sgv.services.release.errors import ReleaseError
from sgv.services.release.model import BuildSetup, VersionBuildEntry
from sgv.services.release.process import VersioningSession, VersioningStep
from sgv.services.release.semver import SemVer, VersionUpdateType, resolve_target_version
from sgv.services.release.uploader import BuildUploader, upload_all
from sgv.services.release.version_file import VersionFiles, read_version, write_version


@dataclass(frozen=True, slots=True)
class StepContext:
    """Collaborators a step needs; built once per CLI invocation."""

    session: VersioningSession
    remote: RemoteVersionClient
    uploader: BuildUploader
    runner: BuildRunner
    setups: tuple[BuildSetup, ...]
    builds_dir: Path
    version_files: VersionFiles
    console: ConsoleProtocol
    ready_policy: ReadyPolicy = "all_uploaded"
    max_workers: int = 4
    progress_factory: Callable[[VersionBuildEntry], Callable[[int, int], None] | None] | None = None


def builds_ready(entries: Sequence[VersionBuildEntry], policy: ReadyPolicy) -> bool:
    """Whether the builds step is complete under ``policy``.

    ``all_uploaded``: at least one entry, and every entry built, on disk and
    uploaded without error. ``any_built``: at least one successful build
    whose archive is on disk.
    """
    if not entries:
        return False
    if policy == "any_built":
        return any(e.is_build_usable() for e in entries)
    return all(e.is_build_usable() and e.uploaded and not e.upload_error for e in entries)


class StepHandler(Protocol):
    step: VersioningStep

    def is_ready(self, ctx: StepContext) -> bool: ...


# -----------------------------------------------------------------------------
# 1. Define target version
# -----------------------------------------------------------------------------


class DefineTargetVersionStep:
    step = VersioningStep.DEFINE_TARGET_VERSION

    def is_ready(self, ctx: StepContext) -> bool:
        return ctx.session.process.target_version is not None

    def define(
        self,
        ctx: StepContext,
        update: VersionUpdateType,
        specific: str | None = None,
    ) -> Result[SemVer, ReleaseError]:
        """Derive the target from the local version file (or ``specific``)."""
        current = read_version(ctx.version_files.package_json)
        if isinstance(current, Err):
            return current
        target = resolve_target_version(current.value, update, specific)
        if isinstance(target, Err):
            return target
        saved = ctx.session.set_target_version(target.value)
        if isinstance(saved, Err):
            return saved
        ctx.console.success(f"Target version: {current.value} -> {target.value}")
        return target

    def clear(self, ctx: StepContext) -> Result[None, ReleaseError]:
        return ctx.session.set_target_version(None)


# -----------------------------------------------------------------------------
# 2. Start version in remote
# -----------------------------------------------------------------------------


class StartVersionInRemoteStep:
    step = VersioningStep.START_VERSION_IN_REMOTE

    def is_ready(self, ctx: StepContext) -> bool:
        process = ctx.session.process
        if process.started_in_remote and process.remote_semver:
            return True
        found = ctx.remote.version_in_preparation()
        if isinstance(found, Err) or found.value is None:
            return False
        saved = ctx.session.set_remote_started(True, found.value.semver)
        return isinstance(saved, Ok)

    def start(self, ctx: StepContext) -> Result[str, ReleaseError]:
        target = ctx.session.process.target_version
        if target is None:
            return Err(
                ReleaseError(kind="precondition_failed", message="no target version defined")
            )
        started = ctx.remote.start_version(target.raw)
        if isinstance(started, Err):
            return Err(started.error.to_release_error("Failed to start version in remote"))
        semver = started.value.semver or target.raw
        saved = ctx.session.set_remote_started(True, semver)
        if isinstance(saved, Err):
            return saved
        ctx.console.success(f"Remote version {semver} is in preparation")
        return Ok(semver)

    def cancel(self, ctx: StepContext) -> Result[None, ReleaseError]:
        """Cancel the remote version in preparation and drop local builds."""
        cancelled = ctx.remote.cancel_preparation()
        if isinstance(cancelled, Err):
            return Err(cancelled.error.to_release_error("Failed to cancel version preparation"))
        saved = ctx.session.set_remote_started(False)
        if isinstance(saved, Err):
            return saved
        cleared = ctx.session.clear_version_builds(builds_dir=ctx.builds_dir)
        if isinstance(cleared, Err):
            return cleared
        ctx.console.success("Remote version preparation cancelled")
        return Ok(None)


# -----------------------------------------------------------------------------
# 3. Builds
# -----------------------------------------------------------------------------


class BuildsStep:
    step = VersioningStep.BUILDS

    def is_ready(self, ctx: StepContext) -> bool:
        return builds_ready(ctx.session.process.version_builds, ctx.ready_policy)

    def generate(self, ctx: StepContext) -> Result[list[VersionBuildEntry], ReleaseError]:
        """Build every configured target; previous entries are replaced."""
        target = ctx.session.process.target_version
        if target is None:
            return Err(
                ReleaseError(kind="precondition_failed", message="no target version defined")
            )
        if not ctx.setups:
            return Err(
                ReleaseError(
                    kind="invalid_config",
                    message="no build targets configured",
                    hint="add [[build.targets]] entries to sgv.toml",
                )
            )

        try:
            results = perform_builds(ctx.runner, ctx.setups, ctx.builds_dir, target.raw)
        except OSError as e:
            return Err(ReleaseError(kind="io_failed", message=f"cannot prepare builds directory: {e}"))
        entries = [VersionBuildEntry.from_build(r) for r in results]
        saved = ctx.session.set_version_builds(entries)
        if isinstance(saved, Err):
            return saved

        for entry in entries:
            build = entry.build
            if build.success:
                ctx.console.success(f"{build.platform.label}: {build.artifact_path}")
            else:
                ctx.console.error(f"{build.platform.label}: {build.error_message}")
        return Ok(entries)

    def upload(
        self,
        ctx: StepContext,
        index: int,
        *,
        cancel: threading.Event | None = None,
    ) -> Result[VersionBuildEntry, ReleaseError]:
        builds = ctx.session.process.version_builds
        if not 0 <= index < len(builds):
            return Err(
                ReleaseError(kind="invalid_config", message=f"no build entry at index {index}")
            )
        entry = builds[index]
        progress = ctx.progress_factory(entry) if ctx.progress_factory else None
        updated = ctx.uploader.upload(
            entry,
            ctx.session.process.remote_semver,
            cancel=cancel,
            upload_progress=progress,
        )
        saved = ctx.session.replace_version_build(index, updated)
        if isinstance(saved, Err):
            return saved
        _report_upload(ctx.console, updated)
        return Ok(updated)

    def upload_pending(
        self,
        ctx: StepContext,
        *,
        cancel: threading.Event | None = None,
    ) -> Result[list[VersionBuildEntry], ReleaseError]:
        """Upload every entry not yet uploaded, concurrently."""
        session = ctx.session

        def _done(index: int, entry: VersionBuildEntry) -> None:
            session.replace_version_build(index, entry)
            _report_upload(ctx.console, entry)

        updated = upload_all(
            ctx.uploader,
            session.process.version_builds,
            session.process.remote_semver,
            max_workers=ctx.max_workers,
            cancel=cancel,
            on_done=_done,
            progress_factory=ctx.progress_factory,
        )
        saved = session.set_version_builds(updated)
        if isinstance(saved, Err):
            return saved
        return Ok(updated)


def _report_upload(console: ConsoleProtocol, entry: VersionBuildEntry) -> None:
    label = entry.build.platform.label
    if entry.uploaded:
        console.success(f"{label}: uploaded (sha256 {entry.checksum})")
    else:
        console.error(f"{label}: {entry.upload_error}")


# -----------------------------------------------------------------------------
# 4. Close version
# -----------------------------------------------------------------------------


class CloseVersionStep:
    step = VersioningStep.CLOSE_VERSION

    def is_ready(self, ctx: StepContext) -> bool:
        return ctx.session.process.started_in_remote

    def close(self, ctx: StepContext) -> Result[str, ReleaseError]:
        """End the remote version, write it locally, and end the process."""
        process = ctx.session.process
        target = process.target_version
        if target is None:
            return Err(
                ReleaseError(kind="precondition_failed", message="no target version defined")
            )
        semver = process.remote_semver or target.raw

        ended = ctx.remote.end_version(semver)
        if isinstance(ended, Err):
            return Err(ended.error.to_release_error("Failed to end version"))

        written = write_version(ctx.version_files, target.raw)
        if isinstance(written, Err):
            return written
        for path in written.value:
            ctx.console.print(f"updated {path}", Style.DIM)

        finished = ctx.session.end_process()
        if isinstance(finished, Err):
            return finished
        ctx.console.success(f"Version {semver} closed")
        return Ok(semver)


STEP_HANDLERS: dict[VersioningStep, StepHandler] = {
    VersioningStep.DEFINE_TARGET_VERSION: DefineTargetVersionStep(),
    VersioningStep.START_VERSION_IN_REMOTE: StartVersionInRemoteStep(),
    VersioningStep.BUILDS: BuildsStep(),
    VersioningStep.CLOSE_VERSION: CloseVersionStep(),
}


def handler_for(step: VersioningStep) -> StepHandler:
    return STEP_HANDLERS[step]


def try_advance(ctx: StepContext) -> Result[bool, ReleaseError]:
    """Advance when the current step is ready.

    Ok(False) at the last step; Err when the current step is not ready.
    """
    step = ctx.session.process.current_step
    if step == VersioningStep.CLOSE_VERSION:
        return Ok(False)
    if not STEP_HANDLERS[step].is_ready(ctx):
        return Err(
            ReleaseError(
                kind="precondition_failed",
                message=f"step '{step.title}' is not complete yet",
            )
        )
    return ctx.session.advance()


def retreat(ctx: StepContext) -> Result[bool, ReleaseError]:
    return ctx.session.retreat()
