from __future__ import annotations

from collections.abc import Sequence
from contextlib import nullcontext

import typer

from sgv.cli.commands._helpers import exit_on_error, exit_release_error, require_token
from sgv.cli.context import CLIContext, build_context
from sgv.core.result import Ok
from sgv.output.console import ConsoleProtocol, RichConsole, Style
from sgv.output.progress import RichProgress
from sgv.services.release.errors import ReleaseError
from sgv.services.release.model import VersionBuildEntry
from sgv.services.release.process import (
    JsonProcessStore,
    VersioningProcess,
    VersioningSession,
    VersioningStep,
)
from sgv.services.release.semver import SemVer, VersionUpdateType
from sgv.services.release.steps import (
    BuildsStep,
    CloseVersionStep,
    DefineTargetVersionStep,
    StartVersionInRemoteStep,
    StepContext,
    handler_for,
    retreat,
    try_advance,
)

process_app = typer.Typer(add_completion=False, no_args_is_help=True)

_UPDATE_TYPES = {
    "patch": VersionUpdateType.PATCH,
    "minor": VersionUpdateType.MINOR,
    "major": VersionUpdateType.MAJOR,
    "specific": VersionUpdateType.SPECIFIC,
}


class ConsoleObserver:
    """Print process events as they happen."""

    def __init__(self, console: ConsoleProtocol) -> None:
        self._console = console

    def step_changed(self, step: VersioningStep) -> None:
        self._console.info(f"step {int(step) + 1}/4: {step.title}")

    def target_version_defined(self, version: SemVer | None) -> None:
        if version is None:
            self._console.print("target version cleared", Style.DIM)

    def builds_changed(self, builds: Sequence[VersionBuildEntry]) -> None:
        return None

    def process_ended(self) -> None:
        self._console.success("versioning process finished")


def _step_context(ctx: CLIContext, progress: RichProgress | None = None) -> StepContext:
    session = exit_on_error(
        VersioningSession.open(JsonProcessStore(ctx.project_root), ConsoleObserver(ctx.console)),
        ctx,
    )
    progress_factory = None
    if progress is not None:
        progress_factory = lambda entry: progress.task(f"upload {entry.build.platform.label}")  # noqa: E731
    return StepContext(
        session=session,
        remote=ctx.remote(),
        uploader=ctx.uploader(),
        runner=ctx.build_runner(),
        setups=ctx.setups,
        builds_dir=ctx.builds_dir,
        version_files=ctx.version_files,
        console=ctx.console,
        ready_policy=ctx.config.upload.ready_policy,
        max_workers=ctx.config.upload.max_workers,
        progress_factory=progress_factory,
    )


def _require_step(ctx: CLIContext, steps: StepContext, step: VersioningStep) -> None:
    current = steps.session.process.current_step
    if current != step:
        exit_release_error(
            ReleaseError(
                kind="precondition_failed",
                message=f"current step is '{current.title}', not '{step.title}'",
                hint="use `sgv process next` / `sgv process back` to move between steps",
            ),
            ctx,
        )


@process_app.command("status")
def status_cmd() -> None:
    """Show the versioning process state."""
    ctx = build_context()
    steps = _step_context(ctx)
    process = steps.session.process
    console = ctx.console

    console.header("Versioning process")
    for step in VersioningStep:
        marker = ">" if step == process.current_step else " "
        console.print(f"{marker} {int(step) + 1}. {step.title}")
    console.newline()
    console.print(f"target version: {process.target_version or '-'}")
    console.print(f"remote version: {process.remote_semver if process.started_in_remote else '-'}")

    if process.version_builds:
        console.newline()
        for index, entry in enumerate(process.version_builds):
            build = entry.build
            if not build.success:
                state = f"build failed: {build.error_message}"
            elif entry.uploaded:
                state = f"uploaded (sha256 {entry.checksum})"
            elif entry.upload_error:
                state = f"upload failed: {entry.upload_error}"
            elif not build.artifact_exists():
                state = "archive missing"
            else:
                state = "ready to upload"
            console.print(f"  [{index}] {build.platform.label}: {state}")

    console.newline()
    if process.current_step == VersioningStep.START_VERSION_IN_REMOTE and not ctx.config.api.token:
        console.print("step complete: unknown (no API token)", Style.DIM)
        return
    ready = handler_for(process.current_step).is_ready(steps)
    console.print(f"step complete: {'yes' if ready else 'no'}", Style.DIM)


@process_app.command("define")
def define_cmd(
    update: str = typer.Argument(..., help="patch|minor|major|specific"),
    version: str | None = typer.Option(None, "--version", help="Version for 'specific'"),
) -> None:
    """Define the target version from the local version file."""
    ctx = build_context()
    update_type = _UPDATE_TYPES.get(update.strip().lower())
    if update_type is None:
        exit_release_error(
            ReleaseError(kind="invalid_config", message=f"unknown update type: {update!r}"), ctx
        )
    steps = _step_context(ctx)
    _require_step(ctx, steps, VersioningStep.DEFINE_TARGET_VERSION)
    exit_on_error(DefineTargetVersionStep().define(steps, update_type, version), ctx)


@process_app.command("clear-target")
def clear_target_cmd() -> None:
    """Unset the target version."""
    ctx = build_context()
    steps = _step_context(ctx)
    _require_step(ctx, steps, VersioningStep.DEFINE_TARGET_VERSION)
    exit_on_error(DefineTargetVersionStep().clear(steps), ctx)


@process_app.command("start-remote")
def start_remote_cmd() -> None:
    """Start the target version on the remote side."""
    ctx = build_context()
    require_token(ctx)
    steps = _step_context(ctx)
    _require_step(ctx, steps, VersioningStep.START_VERSION_IN_REMOTE)
    exit_on_error(StartVersionInRemoteStep().start(steps), ctx)


@process_app.command("cancel-remote")
def cancel_remote_cmd() -> None:
    """Cancel the remote version in preparation and delete local builds."""
    ctx = build_context()
    require_token(ctx)
    steps = _step_context(ctx)
    exit_on_error(StartVersionInRemoteStep().cancel(steps), ctx)


@process_app.command("build")
def build_cmd() -> None:
    """Build every configured target."""
    ctx = build_context()
    steps = _step_context(ctx)
    _require_step(ctx, steps, VersioningStep.BUILDS)
    exit_on_error(BuildsStep().generate(steps), ctx)


@process_app.command("upload")
def upload_cmd(
    index: int | None = typer.Option(None, "--index", help="Upload only this build entry"),
) -> None:
    """Upload builds to the remote version (all pending by default)."""
    ctx = build_context()
    require_token(ctx)
    progress = RichProgress(ctx.console.rich) if isinstance(ctx.console, RichConsole) else None
    steps = _step_context(ctx, progress)
    _require_step(ctx, steps, VersioningStep.BUILDS)
    handler = BuildsStep()

    live = progress.live() if progress is not None else nullcontext()
    with live:
        if index is not None:
            entries = [exit_on_error(handler.upload(steps, index), ctx)]
        else:
            entries = exit_on_error(handler.upload_pending(steps), ctx)

    failed = [e for e in entries if not e.uploaded]
    if failed:
        exit_release_error(
            ReleaseError(
                kind="upload_failed",
                message=f"{len(failed)} of {len(entries)} uploads failed",
                details=tuple(f"{e.build.platform.label}: {e.upload_error}" for e in failed),
            ),
            ctx,
        )


@process_app.command("close")
def close_cmd() -> None:
    """End the remote version and write the new version locally."""
    ctx = build_context()
    require_token(ctx)
    steps = _step_context(ctx)
    _require_step(ctx, steps, VersioningStep.CLOSE_VERSION)
    exit_on_error(CloseVersionStep().close(steps), ctx)


@process_app.command("next")
def next_cmd() -> None:
    """Move to the next step once the current one is complete."""
    ctx = build_context()
    steps = _step_context(ctx)
    moved = exit_on_error(try_advance(steps), ctx)
    if not moved:
        ctx.console.warning("already at the last step")


@process_app.command("back")
def back_cmd() -> None:
    """Move to the previous step."""
    ctx = build_context()
    steps = _step_context(ctx)
    moved = exit_on_error(retreat(steps), ctx)
    if not moved:
        ctx.console.warning("already at the first step")


@process_app.command("reset")
def reset_cmd() -> None:
    """Forget the process state and start over."""
    ctx = build_context()
    store = JsonProcessStore(ctx.project_root)
    loaded = store.load()
    current = loaded.value if isinstance(loaded, Ok) else VersioningProcess()
    session = VersioningSession(store, current, ConsoleObserver(ctx.console))
    exit_on_error(session.reset(), ctx)
    ctx.console.success("versioning process reset")

