"""One-shot release pipeline.

``ReleaseOrchestrator.run`` takes a clean ``develop`` checkout all the way to a
published version: next version from commit history, builds, remote version,
uploads, git commit/tag/merge/push, remote version closed. Every step is
logged to a :class:`ReleaseLog`. The first failing step aborts the run and a
best-effort rollback puts the project back where it started.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from sgv.core.result import Err, Ok, Result
from sgv.git.repository import Repository
from sgv.platform.files import clear_directory
from sgv.services.release.api import RemoteVersionClient
from sgv.services.release.builder import BuildRunner, perform_builds
from sgv.services.release.commit import release_commit
from sgv.services.release.errors import ReleaseError, ReleaseErrorKind
from sgv.services.release.logbook import ReleaseLog
from sgv.services.release.model import BuildSetup, LocalBuildResult, VersionBuildEntry
from sgv.services.release.semver import VersionReport, compute_next_version
from sgv.services.release.uploader import BuildUploader, UploadCancelled, upload_all
from sgv.services.release.version_file import VersionFiles, read_version, write_version

ProgressFactory = Callable[[VersionBuildEntry], Callable[[int, int], None] | None]


@dataclass
class ReleaseState:
    """What the run has changed so far; drives the rollback."""

    original_version: str | None = None
    version_updated_locally: bool = False
    started_remotely: bool = False
    remote_semver: str | None = None
    builds: list[LocalBuildResult] = field(default_factory=list)
    entries: list[VersionBuildEntry] = field(default_factory=list)
    report: VersionReport | None = None


@dataclass(frozen=True, slots=True)
class ReleaseSummary:
    previous_version: str
    version: str
    entries: tuple[VersionBuildEntry, ...]
    log_path: Path | None = None


class ReleaseOrchestrator:
    """Run the release pipeline against injected collaborators."""

    def __init__(
        self,
        *,
        repo: Repository,
        remote: RemoteVersionClient,
        uploader: BuildUploader,
        runner: BuildRunner,
        setups: Sequence[BuildSetup],
        version_files: VersionFiles,
        builds_dir: Path,
        log: ReleaseLog,
        token: str | None,
        develop_branch: str = "develop",
        main_branch: str = "main",
        max_workers: int = 4,
        cancel: threading.Event | None = None,
        progress_factory: ProgressFactory | None = None,
    ) -> None:
        self.repo = repo
        self.remote = remote
        self.uploader = uploader
        self.runner = runner
        self.setups = tuple(setups)
        self.version_files = version_files
        self.builds_dir = builds_dir
        self.log = log
        self.token = token
        self.develop = develop_branch
        self.main = main_branch
        self.max_workers = max_workers
        self.cancel = cancel or threading.Event()
        self.progress_factory = progress_factory
        self.state = ReleaseState()

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def run(self) -> Result[ReleaseSummary, ReleaseError]:
        self.state = ReleaseState()
        self.log.log("Starting versioning process...")

        validated = self._step("Validating release conditions", self._validate)
        if isinstance(validated, Err):
            self.log.save()
            return validated

        try:
            outcome = self._pipeline()
        except KeyboardInterrupt:
            self.cancel.set()
            outcome = Err(ReleaseError(kind="cancelled", message="release interrupted"))
        if isinstance(outcome, Err):
            self.log.error(f"Versioning process failed: {outcome.error.message}")
            self._step("Performing rollback", self._rollback, cancellable=False)
            self.log.log("Rollback completed")
            self.log.save()
            return outcome

        self.log.log("Versioning process completed successfully!")
        log_path = self.log.save()
        report = self.state.report
        assert report is not None
        return Ok(
            ReleaseSummary(
                previous_version=report.current_version,
                version=report.new_version,
                entries=tuple(self.state.entries),
                log_path=log_path,
            )
        )

    def _pipeline(self) -> Result[None, ReleaseError]:
        original = read_version(self.version_files.package_json)
        if isinstance(original, Err):
            return original
        self.state.original_version = original.value
        self.log.log(f"Original version: {original.value}")

        steps: list[tuple[str, Callable[[], Result[None, ReleaseError]]]] = [
            ("Calculating and updating version", self._calculate_and_update_version),
            ("Building all platforms", self._build_all),
            ("Preparing remote version", self._prepare_remote_version),
            ("Uploading builds", self._upload_builds),
            ("Cleaning up working directory", self._discard_working_changes),
            ("Cleaning builds directory", self._clean_builds_directory),
            ("Committing version update", self._commit_version),
            ("Ending version", self._end_remote_version),
            ("Final cleanup", self._final_cleanup),
        ]
        for name, action in steps:
            result = self._step(name, action)
            if isinstance(result, Err):
                return result
        return Ok(None)

    def _step(
        self,
        name: str,
        action: Callable[[], Result[None, ReleaseError]],
        *,
        cancellable: bool = True,
    ) -> Result[None, ReleaseError]:
        self.log.log(f"Starting step: {name}")
        if cancellable and self.cancel.is_set():
            error = ReleaseError(kind="cancelled", message="release cancelled")
            self.log.error(f"Failed during step '{name}': {error.message}")
            return Err(error)
        try:
            result = action()
        except Exception as e:  # noqa: BLE001 - a raising step still has to reach the rollback
            result = Err(_step_exception(name, e))
        if isinstance(result, Err):
            self.log.error(f"Failed during step '{name}': {result.error.message}")
            for line in result.error.details:
                self.log.error(line)
            return result
        self.log.log(f"Completed step: {name}")
        return result

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _validate(self) -> Result[None, ReleaseError]:
        self.log.log("Validating game management token...")
        if not self.token:
            return Err(
                ReleaseError(
                    kind="precondition_failed",
                    message="Cannot increment version with no game management token defined.",
                    hint="set SGV_TOKEN or [api].token in sgv.toml",
                )
            )
        valid = self.remote.validate_token()
        if isinstance(valid, Err):
            return Err(valid.error.to_release_error("Failed to validate token", kind="precondition_failed"))

        if not self.setups:
            return Err(
                ReleaseError(
                    kind="precondition_failed",
                    message="Cannot increment version with no build setups defined.",
                    hint="add [[build.targets]] entries to sgv.toml",
                )
            )

        self.log.log("Checking repository status...")
        if not self.repo.is_clean():
            return Err(
                ReleaseError(
                    kind="precondition_failed",
                    message="Cannot increment version with uncommitted changes. "
                    "Please commit or stash changes first.",
                )
            )

        branch = self.repo.current_branch()
        if branch != self.develop:
            return Err(
                ReleaseError(
                    kind="precondition_failed",
                    message=f"Cannot increment version. Please checkout {self.develop} branch first.",
                    hint=f"current branch: {branch or '<detached>'}",
                )
            )

        self.log.log(f"Pulling latest changes from {self.develop} branch...")
        pulled = self.repo.pull(self.develop)
        if isinstance(pulled, Err):
            return Err(
                ReleaseError(
                    kind="precondition_failed",
                    message=f"Failed to pull latest changes from {self.develop} branch",
                    details=(pulled.error.message,),
                )
            )
        return Ok(None)

    def _calculate_and_update_version(self) -> Result[None, ReleaseError]:
        self.log.log("Calculating new version...")
        messages = self.repo.commit_messages_since_last_version()
        if isinstance(messages, Err):
            return Err(
                ReleaseError(kind="vcs_failed", message=f"failed to read commit history: {messages.error}")
            )

        current = self.state.original_version or ""
        report = compute_next_version(current, messages.value)
        self.state.report = report
        if not report.success:
            return Err(ReleaseError(kind="precondition_failed", message=report.message))

        self.log.log(
            f"Version {report.current_version} -> {report.new_version} "
            f"({report.increment}, {report.commit_count} commits)"
        )
        written = write_version(self.version_files, report.new_version)
        if isinstance(written, Err):
            return written
        self.state.version_updated_locally = True
        return Ok(None)

    def _build_all(self) -> Result[None, ReleaseError]:
        version = self._new_version()
        self.log.log(f"Starting builds for version {version}...")
        try:
            results = perform_builds(self.runner, self.setups, self.builds_dir, version)
        except OSError as e:
            return Err(ReleaseError(kind="io_failed", message=f"cannot prepare builds directory: {e}"))
        self.state.builds = results
        self.state.entries = [VersionBuildEntry.from_build(r) for r in results]

        failed = [r for r in results if not r.success]
        for r in results:
            if r.success:
                self.log.log(f"Built {r.platform.label}: {r.artifact_path}")
            else:
                self.log.error(f"Build failed for {r.platform.label}: {r.error_message}")
        if failed:
            return Err(
                ReleaseError(
                    kind="build_failed",
                    message="Build process failed",
                    details=tuple(f"{r.platform.label}: {r.error_message}" for r in failed),
                )
            )
        return Ok(None)

    def _prepare_remote_version(self) -> Result[None, ReleaseError]:
        self.log.log("Cancelling any version in preparation...")
        existing = self.remote.version_in_preparation()
        if isinstance(existing, Err):
            return Err(existing.error.to_release_error("Failed to query version in preparation"))
        if existing.value is not None:
            cancelled = self.remote.cancel_preparation()
            if isinstance(cancelled, Err):
                return Err(cancelled.error.to_release_error("Failed to cancel version in preparation"))

        version = self._new_version()
        self.log.log(f"Starting remote version for {version}...")
        started = self.remote.start_version(version)
        if isinstance(started, Err):
            return Err(started.error.to_release_error("Failed to start version"))
        self.state.started_remotely = True
        self.state.remote_semver = started.value.semver or version
        self.log.log(f"Remote version prepared: {self.state.remote_semver}")
        return Ok(None)

    def _upload_builds(self) -> Result[None, ReleaseError]:
        try:
            entries = upload_all(
                self.uploader,
                self.state.entries,
                self.state.remote_semver,
                max_workers=self.max_workers,
                cancel=self.cancel,
                on_done=self._log_upload,
                progress_factory=self.progress_factory,
            )
        except UploadCancelled:
            return Err(ReleaseError(kind="cancelled", message="upload cancelled"))
        self.state.entries = entries

        failed = [e for e in entries if not e.uploaded]
        if failed:
            return Err(
                ReleaseError(
                    kind="upload_failed",
                    message="Build upload failed",
                    details=tuple(f"{e.build.platform.label}: {e.upload_error}" for e in failed),
                )
            )
        return Ok(None)

    def _log_upload(self, index: int, entry: VersionBuildEntry) -> None:
        label = entry.build.platform.label
        if entry.uploaded:
            self.log.log(f"Uploaded {label} (sha256 {entry.checksum})")
        else:
            self.log.error(f"Failed to upload {label}: {entry.upload_error}")

    def _discard_working_changes(self) -> Result[None, ReleaseError]:
        discarded = self.repo.discard_all()
        if isinstance(discarded, Err):
            return Err(ReleaseError(kind="vcs_failed", message=str(discarded.error)))
        return Ok(None)

    def _clean_builds_directory(self) -> Result[None, ReleaseError]:
        try:
            clear_directory(self.builds_dir)
        except OSError as e:
            return Err(ReleaseError(kind="io_failed", message=f"failed to clean builds directory: {e}"))
        return Ok(None)

    def _commit_version(self) -> Result[None, ReleaseError]:
        version = self._new_version()
        committed = release_commit(
            self.repo,
            version,
            self.version_files,
            develop=self.develop,
            main=self.main,
        )
        if isinstance(committed, Err):
            failure = committed.error
            self.log.error(f"Version commit failed at step: {failure.step}")
            if failure.git_output.strip():
                self.log.error(f"Git Output: {failure.git_output.strip()}")
            if failure.git_error.strip():
                self.log.error(f"Git Error: {failure.git_error.strip()}")
            if failure.step.startswith("Merge"):
                self._log_branch_heads()
            return Err(failure.to_release_error())
        self.log.log("Version changes committed successfully")
        return Ok(None)

    def _log_branch_heads(self) -> None:
        for branch in (self.main, self.develop):
            heads = self.repo.recent_log(branch, 3)
            if isinstance(heads, Ok):
                self.log.error(f"{branch} branch last commits:\n" + "\n".join(heads.value))

    def _end_remote_version(self) -> Result[None, ReleaseError]:
        semver = self.state.remote_semver or self._new_version()
        ended = self.remote.end_version(semver)
        if isinstance(ended, Err):
            return Err(ended.error.to_release_error("Failed to end version"))
        self.state.started_remotely = False
        return Ok(None)

    def _final_cleanup(self) -> Result[None, ReleaseError]:
        self.log.log("Performing final cleanup...")
        self._return_to_develop()
        return Ok(None)

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    def _rollback(self) -> Result[None, ReleaseError]:
        """Undo what the run changed. Problems are logged, never returned."""
        self.log.log("Starting rollback process...")
        state = self.state

        if state.version_updated_locally and state.original_version:
            self.log.log(f"Reverting to original version: {state.original_version}")
            restored = write_version(self.version_files, state.original_version)
            if isinstance(restored, Err):
                self.log.error(f"Error during rollback: {restored.error.message}")

        if state.started_remotely and state.remote_semver:
            self.log.log(f"Cancelling remote version: {state.remote_semver}")
            cancelled = self.remote.cancel_preparation()
            if isinstance(cancelled, Err):
                self.log.error(f"Error during rollback: {cancelled.error}")

        self._return_to_develop()
        return Ok(None)

    def _return_to_develop(self) -> None:
        if self.repo.current_branch() != self.develop:
            self.log.log(f"Checking out to {self.develop} branch")
            checked_out = self.repo.checkout(self.develop)
            if isinstance(checked_out, Err):
                self.log.error(f"Failed to checkout {self.develop}: {checked_out.error.message}")

        self.log.log("Discarding all changes in working directory")
        discarded = self.repo.discard_all()
        if isinstance(discarded, Err):
            self.log.error(f"Failed to discard changes: {discarded.error.message}")

        self.log.log("Cleaning builds directory")
        try:
            clear_directory(self.builds_dir)
        except OSError as e:
            self.log.error(f"Failed to clean builds directory: {e}")

    def _new_version(self) -> str:
        report = self.state.report
        assert report is not None
        return report.new_version


def _step_exception(name: str, error: Exception) -> ReleaseError:
    kind: ReleaseErrorKind = "io_failed" if isinstance(error, OSError) else "unexpected"
    return ReleaseError(kind=kind, message=f"{name}: {type(error).__name__}: {error}")
