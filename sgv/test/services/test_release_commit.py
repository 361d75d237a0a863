"""Tests for services/release/commit.py."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import pytest

from sgv.core.result import Err, Ok, Result
from sgv.git import repository as repository_mod
from sgv.git.repository import Repository
from sgv.platform.process import ProcessError
from sgv.services.release.commit import CommitStepFailure, release_commit
from sgv.services.release.version_file import VersionFiles

MERGE_DEVELOP = ("merge", "develop", "-m", "Merge develop into main for version 1.3.0")
MERGE_MAIN = ("merge", "main", "-m", "Merge main into develop after version update to 1.3.0")


class FakeGit:
    """Records ``git`` invocations; scripted failures by argument tuple."""

    def __init__(self, responses: Mapping[tuple[str, ...], Result[str, ProcessError]] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, ...]] = []

    def __call__(
        self,
        cmd: list[str],
        cwd: Path,
        env: Mapping[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> Result[str, ProcessError]:
        args = tuple(cmd[3:])
        self.calls.append(args)
        return self.responses.get(args, Ok(""))


def _fail(args: tuple[str, ...], stderr: str, stdout: str = "") -> Err[ProcessError]:
    return Err(ProcessError(command=("git", *args), returncode=1, stdout=stdout, stderr=stderr))


@pytest.fixture
def project(tmp_path: Path) -> tuple[Repository, VersionFiles]:
    (tmp_path / "package.json").write_text('{\n  "version": "1.2.0"\n}\n', encoding="utf-8")
    files = VersionFiles(
        package_json=tmp_path / "package.json",
        player_settings=tmp_path / "ProjectSettings" / "ProjectSettings.asset",
    )
    return Repository(tmp_path), files


class TestReleaseCommit:
    def test_full_sequence(
        self, project: tuple[Repository, VersionFiles], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        repo, files = project
        git = FakeGit()
        monkeypatch.setattr(repository_mod, "run_process", git)

        result = release_commit(repo, "1.3.0", files)

        assert result == Ok(None)
        assert git.calls == [
            ("checkout", "main"),
            ("add", "--", "package.json"),
            MERGE_DEVELOP,
            ("status", "--porcelain"),
            ("tag", "-a", "v1.3.0", "-m", "Version 1.3.0"),
            ("push", "origin", "v1.3.0"),
            ("push", "origin", "main"),
            ("checkout", "develop"),
            MERGE_MAIN,
            ("push", "origin", "develop"),
        ]
        assert '"version": "1.3.0"' in files.package_json.read_text(encoding="utf-8")

    def test_commits_leftover_changes(
        self, project: tuple[Repository, VersionFiles], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        repo, files = project
        git = FakeGit({("status", "--porcelain"): Ok(" M package.json\n")})
        monkeypatch.setattr(repository_mod, "run_process", git)

        assert release_commit(repo, "1.3.0", files) == Ok(None)

        commit_index = git.calls.index(("commit", "-m", "Update version to 1.3.0"))
        assert git.calls[commit_index - 1] == ("status", "--porcelain")
        assert ("add", ".") not in git.calls

    def test_merge_conflict_stops_before_tag(
        self, project: tuple[Repository, VersionFiles], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        repo, files = project
        git = FakeGit(
            {
                MERGE_DEVELOP: _fail(
                    MERGE_DEVELOP,
                    "Automatic merge failed; fix conflicts and then commit the result.",
                    stdout="CONFLICT (content): Merge conflict in package.json",
                )
            }
        )
        monkeypatch.setattr(repository_mod, "run_process", git)

        result = release_commit(repo, "1.3.0", files)

        assert isinstance(result, Err)
        failure = result.error
        assert failure.step == "Merge develop into main"
        assert "CONFLICT" in failure.git_output
        assert "Automatic merge failed" in failure.git_error
        assert not any(call[0] == "tag" for call in git.calls)

    def test_checkout_failure_names_current_branch(
        self, project: tuple[Repository, VersionFiles], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        repo, files = project
        git = FakeGit(
            {
                ("checkout", "main"): _fail(("checkout", "main"), "error: pathspec 'main' did not match"),
                ("rev-parse", "--abbrev-ref", "HEAD"): Ok("develop\n"),
            }
        )
        monkeypatch.setattr(repository_mod, "run_process", git)

        result = release_commit(repo, "1.3.0", files)

        assert isinstance(result, Err)
        assert result.error.step == "Checkout main"
        assert "current branch: develop" in result.error.message
        assert '"version": "1.2.0"' in files.package_json.read_text(encoding="utf-8")

    def test_push_develop_failure(
        self, project: tuple[Repository, VersionFiles], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        repo, files = project
        push = ("push", "origin", "develop")
        monkeypatch.setattr(
            repository_mod, "run_process", FakeGit({push: _fail(push, "rejected (fetch first)")})
        )

        result = release_commit(repo, "1.3.0", files)

        assert isinstance(result, Err)
        assert result.error.step == "Push develop branch"

    def test_custom_branch_names(
        self, project: tuple[Repository, VersionFiles], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        repo, files = project
        git = FakeGit()
        monkeypatch.setattr(repository_mod, "run_process", git)

        release_commit(repo, "1.3.0", files, develop="dev", main="release")

        assert git.calls[0] == ("checkout", "release")
        assert git.calls[-1] == ("push", "origin", "dev")


class TestCommitStepFailure:
    def test_to_release_error(self) -> None:
        error = CommitStepFailure(
            step="Push main branch",
            message="failed to push main",
            git_output="",
            git_error="  remote: permission denied  ",
        ).to_release_error()

        assert error.kind == "vcs_failed"
        assert error.message == "Push main branch: failed to push main"
        assert error.details == ("remote: permission denied",)
