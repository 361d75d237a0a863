from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer

from sgv.core.config import CONFIG_FILENAME, SgvConfig, load_config_or_default
from sgv.core.errors import ErrorCode
from sgv.core.result import Err
from sgv.git.repository import Repository
from sgv.output.console import ConsoleProtocol, RichConsole
from sgv.services.release.api import BuildUploadApi, GameManagementApi, RemoteVersionClient
from sgv.services.release.builder import CommandBuildRunner
from sgv.services.release.model import BuildSetup
from sgv.services.release.storage import PresignedUploader
from sgv.services.release.timeouts import UPLOAD_TIMEOUT_SECONDS
from sgv.services.release.uploader import BuildUploader
from sgv.services.release.version_file import VersionFiles
from sgv.tools.http import HttpClient, RealHttpClient

PROJECT_ENV_VAR = "SGV_PROJECT_ROOT"


@dataclass(frozen=True, slots=True)
class CLIContext:
    project_root: Path
    config: SgvConfig
    console: ConsoleProtocol
    http: HttpClient | None = None

    @property
    def builds_dir(self) -> Path:
        return self.project_root / self.config.project.builds_dir

    @property
    def log_dir(self) -> Path:
        return self.project_root / self.config.project.log_dir

    @property
    def version_files(self) -> VersionFiles:
        return VersionFiles.for_project(self.project_root, self.config.project)

    @property
    def setups(self) -> tuple[BuildSetup, ...]:
        return tuple(BuildSetup.from_config(t) for t in self.config.build.targets)

    def repository(self) -> Repository:
        return Repository(self.project_root)

    def http_client(self) -> HttpClient:
        if self.http is not None:
            return self.http
        return RealHttpClient(timeout=self.config.api.timeout, upload_timeout=UPLOAD_TIMEOUT_SECONDS)

    def api(self, http: HttpClient | None = None) -> GameManagementApi:
        return GameManagementApi(
            http or self.http_client(),
            base_url=self.config.api.base_url,
            token=self.config.api.token or "",
        )

    def remote(self, http: HttpClient | None = None) -> RemoteVersionClient:
        return RemoteVersionClient(self.api(http))

    def uploader(self, http: HttpClient | None = None) -> BuildUploader:
        client = http or self.http_client()
        return BuildUploader(
            uploads=BuildUploadApi(self.api(client)),
            storage=PresignedUploader(client, max_attempts=self.config.upload.max_attempts),
        )

    def build_runner(self) -> CommandBuildRunner:
        return CommandBuildRunner(
            project_root=self.project_root,
            product_name=self.config.project.product_name,
            command=self.config.build.command,
            timeout=self.config.build.timeout,
            exclusion_filters=self.config.upload.exclusion_filters,
        )


def resolve_project_root() -> Path:
    raw = os.environ.get(PROJECT_ENV_VAR, "").strip()
    root = Path(raw).expanduser() if raw else Path.cwd()
    try:
        return root.resolve()
    except OSError as e:
        typer.echo(f"error: invalid project root: {e}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))


def build_context() -> CLIContext:
    root = resolve_project_root()
    if not root.is_dir():
        typer.echo(f"error: project root '{root}' is not a directory", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    config_result = load_config_or_default(root / CONFIG_FILENAME)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    return CLIContext(
        project_root=root,
        config=config_result.value.with_token_from_env(),
        console=RichConsole(),
    )
