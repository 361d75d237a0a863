from __future__ import annotations

import typer

from sgv.cli.commands._helpers import exit_on_error, exit_release_error, exit_with_code
from sgv.cli.context import build_context
from sgv.core.errors import ErrorCode
from sgv.core.result import Err
from sgv.output.console import RichConsole, Style
from sgv.output.progress import NullProgress, ProgressSink, RichProgress
from sgv.services.release.errors import ReleaseError
from sgv.services.release.logbook import ReleaseLog
from sgv.services.release.orchestrator import ReleaseOrchestrator
from sgv.services.release.semver import compute_next_version
from sgv.services.release.version_file import read_version

release_app = typer.Typer(add_completion=False, no_args_is_help=True)


@release_app.command("next-version")
def next_version_cmd() -> None:
    """Show the version the next release would publish (no changes made)."""
    ctx = build_context()
    repo = ctx.repository()

    current = exit_on_error(read_version(ctx.version_files.package_json), ctx)
    messages = repo.commit_messages_since_last_version()
    if isinstance(messages, Err):
        exit_release_error(
            ReleaseError(kind="vcs_failed", message=f"failed to read commit history: {messages.error}"),
            ctx,
        )

    report = compute_next_version(current, messages.value)
    if not report.success:
        ctx.console.warning(report.message)
        return

    ctx.console.print(f"current: {report.current_version}", Style.DIM)
    ctx.console.print(f"commits: {report.commit_count}", Style.DIM)
    ctx.console.print(f"increment: {report.increment}", Style.DIM)
    ctx.console.success(f"next: {report.new_version}")


@release_app.command("run")
def run_cmd(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Build, upload, tag and publish the next version in one go."""
    ctx = build_context()
    config = ctx.config

    if not yes:
        develop = config.project.develop_branch
        main = config.project.main_branch
        if not typer.confirm(f"Release from '{develop}' to '{main}'?", default=False):
            ctx.console.print("aborted", Style.DIM)
            exit_with_code(int(ErrorCode.USER_ERROR))

    sink: ProgressSink = NullProgress()
    if isinstance(ctx.console, RichConsole):
        sink = RichProgress(ctx.console.rich)

    log = ReleaseLog(ctx.log_dir, ctx.console)
    orchestrator = ReleaseOrchestrator(
        repo=ctx.repository(),
        remote=ctx.remote(),
        uploader=ctx.uploader(),
        runner=ctx.build_runner(),
        setups=ctx.setups,
        version_files=ctx.version_files,
        builds_dir=ctx.builds_dir,
        log=log,
        token=config.api.token,
        develop_branch=config.project.develop_branch,
        main_branch=config.project.main_branch,
        max_workers=config.upload.max_workers,
        progress_factory=lambda entry: sink.task(f"upload {entry.build.platform.label}"),
    )

    if isinstance(sink, RichProgress):
        with sink.live():
            result = orchestrator.run()
    else:
        result = orchestrator.run()

    if isinstance(result, Err):
        if log.path.is_file():
            ctx.console.print(f"log: {log.path}", Style.DIM)
        exit_release_error(result.error, ctx)

    summary = result.value
    ctx.console.success(f"released {summary.previous_version} -> {summary.version}")
    if summary.log_path is not None:
        ctx.console.print(f"log: {summary.log_path}", Style.DIM)
