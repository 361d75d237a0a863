from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import pytest
import typer

from sgv.cli.context import CLIContext
from sgv.core.config import ApiConfig, BuildConfig, BuildTargetConfig, SgvConfig
from sgv.core.result import Ok, Result
from sgv.output.console import MockConsole
from sgv.platform.process import ProcessError
from sgv.tools.http import MockHttpClient

BASE = "https://api.test/v1"
BUCKET = "https://bucket.test/put"

GIT = {
    ("status", "--porcelain"): "",
    ("rev-parse", "--abbrev-ref", "HEAD"): "develop\n",
    ("tag", "--sort=-creatordate"): "v1.0.0\n",
    ("log", "v1.0.0..HEAD", "--pretty=format:%s"): "feat: leaderboard\nchore: deps",
}


def _fake_run(
    cmd: list[str],
    cwd: Path,
    env: Mapping[str, str] | None = None,
    *,
    timeout: float | None = None,
) -> Result[str, ProcessError]:
    if cmd[0] == "git":
        return Ok(GIT.get(tuple(cmd[3:]), ""))
    Path(cmd[1]).write_bytes(b"binary")
    return Ok("")


def _context(root: Path, *, token: str | None = "tok") -> CLIContext:
    (root / "package.json").write_text('{\n  "version": "1.0.0"\n}\n', encoding="utf-8")
    config = SgvConfig(
        api=ApiConfig(base_url=BASE, token=token),
        build=BuildConfig(
            command=("engine", "{executable}"),
            targets=(BuildTargetConfig(platform="windows", profile="Windows"),),
        ),
    )
    return CLIContext(project_root=root, config=config, console=MockConsole(), http=MockHttpClient())


@pytest.fixture
def patched(monkeypatch: pytest.MonkeyPatch) -> None:
    import sgv.git.repository as repository_mod
    import sgv.services.release.builder as builder_mod

    monkeypatch.setattr(repository_mod, "run_process", _fake_run)
    monkeypatch.setattr(builder_mod, "run_process", _fake_run)


def test_next_version(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, patched: None) -> None:
    import sgv.cli.commands.release_cmd as release_cmd

    ctx = _context(tmp_path)
    monkeypatch.setattr(release_cmd, "build_context", lambda: ctx)

    release_cmd.next_version_cmd()

    assert isinstance(ctx.console, MockConsole)
    assert ctx.console.find("OK next: 1.1.0")
    assert ctx.console.find("commits: 2")
    assert '"version": "1.0.0"' in (tmp_path / "package.json").read_text(encoding="utf-8")


def test_run_declined(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import sgv.cli.commands.release_cmd as release_cmd

    ctx = _context(tmp_path)
    monkeypatch.setattr(release_cmd, "build_context", lambda: ctx)
    monkeypatch.setattr(release_cmd.typer, "confirm", lambda *_a, **_k: False)

    with pytest.raises(typer.Exit) as exc:
        release_cmd.run_cmd(yes=False)

    assert exc.value.exit_code == 1
    assert isinstance(ctx.console, MockConsole)
    assert ctx.console.find("aborted")


def test_run_without_token(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, patched: None) -> None:
    import sgv.cli.commands.release_cmd as release_cmd

    ctx = _context(tmp_path, token=None)
    monkeypatch.setattr(release_cmd, "build_context", lambda: ctx)

    with pytest.raises(typer.Exit) as exc:
        release_cmd.run_cmd(yes=True)

    assert exc.value.exit_code == 2
    logs = list((tmp_path / "Versioning").glob("version_log_*.txt"))
    assert len(logs) == 1
    assert isinstance(ctx.console, MockConsole)
    assert ctx.console.find(f"log: {logs[0]}")


def test_run_releases(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, patched: None) -> None:
    import sgv.cli.commands.release_cmd as release_cmd

    ctx = _context(tmp_path)
    monkeypatch.setattr(release_cmd, "build_context", lambda: ctx)
    http = ctx.http
    assert isinstance(http, MockHttpClient)
    gm = f"{BASE}/game-management"
    http.set_json("GET", f"{gm}/validate-token", {"data": None})
    http.set_json("POST", f"{gm}/start-new-version", {"data": {"semver": "1.1.0", "state": 1}})
    http.set_json(
        "POST", f"{gm}/start-build-upload", {"data": {"upload_token": "u", "signed_url": {"url": BUCKET}}}
    )
    http.set_json("PUT", BUCKET, None)
    http.set_json("POST", f"{gm}/confirm-build-upload", {"data": None})
    http.set_json("POST", f"{gm}/end-version", {"data": None})

    release_cmd.run_cmd(yes=True)

    assert isinstance(ctx.console, MockConsole)
    assert ctx.console.find("OK released 1.0.0 -> 1.1.0")
    assert '"version": "1.1.0"' in (tmp_path / "package.json").read_text(encoding="utf-8")
