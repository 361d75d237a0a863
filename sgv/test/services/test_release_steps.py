"""Tests for services/release/steps.py."""

from __future__ import annotations

import json
from pathlib import Path

from sgv.core.result import Err, Ok
from sgv.output.console import MockConsole
from sgv.services.release.api import BuildUploadApi, GameManagementApi, RemoteVersionClient
from sgv.services.release.model import (
    BuildPlatform,
    BuildSetup,
    CompressingResult,
    CompressionPlatform,
    LocalBuildResult,
    VersionBuildEntry,
)
from sgv.services.release.process import (
    MemoryProcessStore,
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
    builds_ready,
    retreat,
    try_advance,
)
from sgv.services.release.storage import PresignedUploader
from sgv.services.release.uploader import BuildUploader
from sgv.services.release.version_file import VersionFiles
from sgv.tools.http import HttpError, MockHttpClient

BASE = "https://api.test/v1"


def _url(endpoint: str) -> str:
    return f"{BASE}/game-management/{endpoint}"


class ArchiveRunner:
    """Writes a small archive per target; ``failing`` platforms fail."""

    def __init__(self, failing: frozenset[BuildPlatform] = frozenset()) -> None:
        self.failing = failing

    def build(self, setup: BuildSetup, builds_dir: Path, version: str) -> LocalBuildResult:
        if setup.platform in self.failing:
            return LocalBuildResult.failed(
                product_name="Game", platform=setup.platform, error="compile error"
            )
        archive = builds_dir / f"Game.{setup.platform.label}.zip"
        archive.write_bytes(b"PK" + version.encode())
        return LocalBuildResult(
            success=True,
            product_name="Game",
            platform=setup.platform,
            executable_name="Game",
            compression=CompressingResult(
                output_path=archive,
                size_compressed=archive.stat().st_size,
                size_uncompressed=100,
                file_count=1,
                platform=CompressionPlatform.for_build(setup.platform),
            ),
        )


def _usable(tmp_path: Path, platform: BuildPlatform, *, uploaded: bool = False) -> VersionBuildEntry:
    archive = tmp_path / f"{platform.label}.zip"
    archive.write_bytes(b"PK")
    build = LocalBuildResult(
        success=True,
        product_name="Game",
        platform=platform,
        compression=CompressingResult(archive, 2, 2, 1, CompressionPlatform.for_build(platform)),
    )
    entry = VersionBuildEntry.from_build(build)
    return entry.mark_uploaded(None, "abc") if uploaded else entry


def _failed(platform: BuildPlatform) -> VersionBuildEntry:
    return VersionBuildEntry.from_build(
        LocalBuildResult.failed(product_name="Game", platform=platform, error="boom")
    )


def _context(
    tmp_path: Path,
    http: MockHttpClient,
    process: VersioningProcess | None = None,
    *,
    runner: ArchiveRunner | None = None,
    policy: str = "all_uploaded",
) -> StepContext:
    store = MemoryProcessStore(process or VersioningProcess())
    api = GameManagementApi(http, base_url=BASE, token="tok")
    return StepContext(
        session=VersioningSession(store, store.process),
        remote=RemoteVersionClient(api),
        uploader=BuildUploader(
            uploads=BuildUploadApi(api),
            storage=PresignedUploader(http, max_attempts=1, sleep=lambda _: None),
        ),
        runner=runner or ArchiveRunner(),
        setups=(BuildSetup(BuildPlatform.WINDOWS, "Win"), BuildSetup(BuildPlatform.LINUX, "Lin")),
        builds_dir=tmp_path / "Builds",
        version_files=VersionFiles(
            package_json=tmp_path / "package.json",
            player_settings=tmp_path / "ProjectSettings.asset",
        ),
        console=MockConsole(),
        ready_policy=policy,  # type: ignore[arg-type]
        max_workers=2,
    )


def _script_upload(http: MockHttpClient) -> None:
    http.set_json(
        "POST",
        _url("start-build-upload"),
        {"data": {"upload_token": "t", "signed_url": {"url": "https://bucket/k"}}},
    )
    http.set_json("PUT", "https://bucket/k", None)
    http.set_json("POST", _url("confirm-build-upload"), {"data": None})


# =============================================================================
# Readiness
# =============================================================================


class TestBuildsReady:
    def test_empty_never_ready(self) -> None:
        assert not builds_ready([], "all_uploaded")
        assert not builds_ready([], "any_built")

    def test_mixed_entries(self, tmp_path: Path) -> None:
        entries = [_usable(tmp_path, BuildPlatform.WINDOWS, uploaded=True), _failed(BuildPlatform.LINUX)]

        assert not builds_ready(entries, "all_uploaded")
        assert builds_ready(entries, "any_built")

    def test_all_uploaded(self, tmp_path: Path) -> None:
        entries = [
            _usable(tmp_path, BuildPlatform.WINDOWS, uploaded=True),
            _usable(tmp_path, BuildPlatform.LINUX, uploaded=True),
        ]
        assert builds_ready(entries, "all_uploaded")

    def test_built_not_uploaded(self, tmp_path: Path) -> None:
        entries = [_usable(tmp_path, BuildPlatform.WINDOWS)]

        assert not builds_ready(entries, "all_uploaded")
        assert builds_ready(entries, "any_built")

    def test_only_failures(self) -> None:
        assert not builds_ready([_failed(BuildPlatform.WEB)], "any_built")


# =============================================================================
# Step 1
# =============================================================================


class TestDefineTargetVersion:
    def test_define_from_version_file(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text('{"version": "1.4.2"}', encoding="utf-8")
        ctx = _context(tmp_path, MockHttpClient())

        result = DefineTargetVersionStep().define(ctx, VersionUpdateType.MINOR)

        assert result == Ok(SemVer(1, 5, 0))
        assert ctx.session.process.target_version == SemVer(1, 5, 0)
        assert DefineTargetVersionStep().is_ready(ctx)

    def test_define_invalid_specific(self, tmp_path: Path) -> None:
        ctx = _context(tmp_path, MockHttpClient())

        result = DefineTargetVersionStep().define(ctx, VersionUpdateType.SPECIFIC, "v2")

        assert isinstance(result, Err)
        assert ctx.session.process.target_version is None

    def test_clear(self, tmp_path: Path) -> None:
        ctx = _context(tmp_path, MockHttpClient(), VersioningProcess(target_version=SemVer(1, 0, 0)))

        DefineTargetVersionStep().clear(ctx)

        assert not DefineTargetVersionStep().is_ready(ctx)


# =============================================================================
# Step 2
# =============================================================================


class TestStartVersionInRemote:
    def test_start(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_json("POST", _url("start-new-version"), {"data": {"semver": "1.5.0", "state": 1}})
        ctx = _context(
            tmp_path,
            http,
            VersioningProcess(
                current_step=VersioningStep.START_VERSION_IN_REMOTE, target_version=SemVer(1, 5, 0)
            ),
        )

        assert StartVersionInRemoteStep().start(ctx) == Ok("1.5.0")
        assert ctx.session.process.started_in_remote
        assert ctx.session.process.remote_semver == "1.5.0"

    def test_start_rejected(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_error(
            "POST",
            _url("start-new-version"),
            HttpError(
                url=_url("start-new-version"),
                status=409,
                message="HTTP 409",
                body=json.dumps({"messages": ["a version is already in preparation"]}),
            ),
        )
        ctx = _context(tmp_path, http, VersioningProcess(target_version=SemVer(1, 5, 0)))

        result = StartVersionInRemoteStep().start(ctx)

        assert isinstance(result, Err)
        assert result.error.kind == "remote_rejected"
        assert "already in preparation" in result.error.message
        assert not ctx.session.process.started_in_remote

    def test_ready_adopts_remote_preparation(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_json("GET", _url("version-in-preparation"), {"data": {"semver": "1.5.0", "state": 1}})
        ctx = _context(tmp_path, http)

        assert StartVersionInRemoteStep().is_ready(ctx)
        assert ctx.session.process.remote_semver == "1.5.0"

    def test_not_ready_without_preparation(self, tmp_path: Path) -> None:
        assert not StartVersionInRemoteStep().is_ready(_context(tmp_path, MockHttpClient()))

    def test_cancel_drops_builds(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_json("DELETE", _url("cancel-version-in-preparation"), {"data": None})
        builds = tmp_path / "Builds"
        builds.mkdir()
        ctx = _context(
            tmp_path,
            http,
            VersioningProcess(
                started_in_remote=True,
                remote_semver="1.5.0",
                version_builds=(_failed(BuildPlatform.WINDOWS),),
            ),
        )

        assert StartVersionInRemoteStep().cancel(ctx) == Ok(None)
        assert not ctx.session.process.started_in_remote
        assert ctx.session.process.version_builds == ()
        assert not builds.exists()


# =============================================================================
# Step 3
# =============================================================================


class TestBuildsStep:
    def _process(self) -> VersioningProcess:
        return VersioningProcess(
            current_step=VersioningStep.BUILDS,
            target_version=SemVer(1, 5, 0),
            started_in_remote=True,
            remote_semver="1.5.0",
        )

    def test_generate(self, tmp_path: Path) -> None:
        ctx = _context(
            tmp_path,
            MockHttpClient(),
            self._process(),
            runner=ArchiveRunner(failing=frozenset({BuildPlatform.LINUX})),
        )

        result = BuildsStep().generate(ctx)

        assert isinstance(result, Ok)
        assert [e.build.success for e in result.value] == [True, False]
        assert len(ctx.session.process.version_builds) == 2
        assert isinstance(ctx.console, MockConsole)
        assert ctx.console.has_error()

    def test_generate_needs_target(self, tmp_path: Path) -> None:
        result = BuildsStep().generate(_context(tmp_path, MockHttpClient()))
        assert isinstance(result, Err)

    def test_upload_pending_then_ready(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        _script_upload(http)
        ctx = _context(tmp_path, http, self._process())
        BuildsStep().generate(ctx)
        assert not BuildsStep().is_ready(ctx)

        result = BuildsStep().upload_pending(ctx)

        assert isinstance(result, Ok)
        assert all(e.uploaded for e in ctx.session.process.version_builds)
        assert BuildsStep().is_ready(ctx)

    def test_upload_single_index(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        _script_upload(http)
        ctx = _context(tmp_path, http, self._process())
        BuildsStep().generate(ctx)

        result = BuildsStep().upload(ctx, 1)

        assert isinstance(result, Ok)
        builds = ctx.session.process.version_builds
        assert [e.uploaded for e in builds] == [False, True]

    def test_upload_bad_index(self, tmp_path: Path) -> None:
        ctx = _context(tmp_path, MockHttpClient(), self._process())

        result = BuildsStep().upload(ctx, 3)

        assert isinstance(result, Err)
        assert result.error.kind == "invalid_config"

    def test_any_built_policy(self, tmp_path: Path) -> None:
        ctx = _context(tmp_path, MockHttpClient(), self._process(), policy="any_built")
        BuildsStep().generate(ctx)

        assert BuildsStep().is_ready(ctx)


# =============================================================================
# Step 4 and navigation
# =============================================================================


class TestCloseVersion:
    def test_close(self, tmp_path: Path) -> None:
        http = MockHttpClient()
        http.set_json("POST", _url("end-version"), {"data": None})
        (tmp_path / "package.json").write_text('{"version": "1.4.2"}', encoding="utf-8")
        ctx = _context(
            tmp_path,
            http,
            VersioningProcess(
                current_step=VersioningStep.CLOSE_VERSION,
                target_version=SemVer(1, 5, 0),
                started_in_remote=True,
                remote_semver="1.5.0",
            ),
        )

        assert CloseVersionStep().close(ctx) == Ok("1.5.0")
        assert '"version": "1.5.0"' in (tmp_path / "package.json").read_text(encoding="utf-8")
        assert ctx.session.process.is_initial
        assert http.calls_to("POST", _url("end-version"))[0].body == {"semver": "1.5.0"}

    def test_remote_failure_leaves_files(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text('{"version": "1.4.2"}', encoding="utf-8")
        ctx = _context(
            tmp_path,
            MockHttpClient(),
            VersioningProcess(
                current_step=VersioningStep.CLOSE_VERSION,
                target_version=SemVer(1, 5, 0),
                started_in_remote=True,
                remote_semver="1.5.0",
            ),
        )

        assert isinstance(CloseVersionStep().close(ctx), Err)
        assert '"version": "1.4.2"' in (tmp_path / "package.json").read_text(encoding="utf-8")
        assert ctx.session.process.current_step == VersioningStep.CLOSE_VERSION


class TestNavigation:
    def test_refuses_incomplete_step(self, tmp_path: Path) -> None:
        ctx = _context(tmp_path, MockHttpClient())

        result = try_advance(ctx)

        assert isinstance(result, Err)
        assert result.error.kind == "precondition_failed"
        assert "Define target version" in result.error.message

    def test_advances_ready_step(self, tmp_path: Path) -> None:
        ctx = _context(tmp_path, MockHttpClient(), VersioningProcess(target_version=SemVer(1, 0, 0)))

        assert try_advance(ctx) == Ok(True)
        assert ctx.session.process.current_step == VersioningStep.START_VERSION_IN_REMOTE

    def test_last_step(self, tmp_path: Path) -> None:
        ctx = _context(
            tmp_path, MockHttpClient(), VersioningProcess(current_step=VersioningStep.CLOSE_VERSION)
        )
        assert try_advance(ctx) == Ok(False)

    def test_retreat(self, tmp_path: Path) -> None:
        ctx = _context(tmp_path, MockHttpClient(), VersioningProcess(current_step=VersioningStep.BUILDS))

        assert retreat(ctx) == Ok(True)
        assert ctx.session.process.current_step == VersioningStep.START_VERSION_IN_REMOTE

