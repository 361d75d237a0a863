"""Git side of a release: version commit, tag, and branch sync.

Sequence (develop is the working branch, main the release branch):

1. checkout main and re-apply the version to the version files
2. stage them and merge develop into main
3. commit if anything is left, tag ``vX.Y.Z`` and push the tag
4. push main, go back to develop, merge main into it and push develop
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from sgv.core.result import Err, Ok, Result
from sgv.git.repository import GitError, GitOutput, Repository
from sgv.services.release.errors import ReleaseError
from sgv.services.release.version_file import VersionFiles, write_version


@dataclass(frozen=True, slots=True)
class CommitStepFailure:
    """The release-commit step that failed, with whatever git printed."""

    step: str
    message: str
    git_output: str = ""
    git_error: str = ""

    def to_release_error(self) -> ReleaseError:
        details = tuple(t.strip() for t in (self.git_output, self.git_error) if t.strip())
        return ReleaseError(
            kind="vcs_failed",
            message=f"{self.step}: {self.message}",
            hint="resolve the repository state manually, then retry",
            details=details,
        )


def _from_git(step: str, message: str, error: GitError) -> CommitStepFailure:
    return CommitStepFailure(
        step=step,
        message=message,
        git_output=error.stdout,
        git_error=error.stderr or error.message,
    )


def release_commit(
    repo: Repository,
    version: str,
    files: VersionFiles,
    *,
    develop: str = "develop",
    main: str = "main",
) -> Result[None, CommitStepFailure]:
    """Commit, tag and publish ``version`` on ``main``, then sync ``develop``."""
    checked_out = repo.checkout(main)
    if isinstance(checked_out, Err):
        branch = repo.current_branch() or "<unknown>"
        return Err(
            _from_git(
                "Checkout main",
                f"failed to checkout {main}; current branch: {branch}",
                checked_out.error,
            )
        )

    written = write_version(files, version)
    if isinstance(written, Err):
        return Err(CommitStepFailure(step="Update version files", message=written.error.message))

    staged = repo.add(files.stage_paths(repo.path))
    if isinstance(staged, Err):
        return Err(_from_git("Stage version changes", "failed to stage version files", staged.error))

    merged = repo.merge(develop, f"Merge {develop} into {main} for version {version}")
    if isinstance(merged, Err):
        return Err(
            _from_git(f"Merge {develop} into {main}", "merge conflict or other merge error", merged.error)
        )

    dirty = repo.has_changes()
    if isinstance(dirty, Err):
        return Err(_from_git("Check git status", "failed to check repository status", dirty.error))
    if dirty.value:
        committed = repo.commit(f"Update version to {version}", all_changes=False)
        if isinstance(committed, Err):
            return Err(_from_git("Create commit", "failed to create version commit", committed.error))

    tagged = repo.tag_version(version)
    if isinstance(tagged, Err):
        return Err(_from_git("Create and push tag", "failed to create or push version tag", tagged.error))

    publish: list[tuple[str, str, Callable[[], Result[GitOutput, GitError]]]] = [
        (f"Push {main} branch", f"failed to push {main}", lambda: repo.push(main)),
        (f"Checkout {develop}", f"failed to checkout {develop}", lambda: repo.checkout(develop)),
        (
            f"Merge {main} into {develop}",
            "merge conflict or other merge error",
            lambda: repo.merge(main, f"Merge {main} into {develop} after version update to {version}"),
        ),
        (f"Push {develop} branch", f"failed to push {develop}", lambda: repo.push(develop)),
    ]
    for step, message, action in publish:
        result = action()
        if isinstance(result, Err):
            return Err(_from_git(step, message, result.error))

    return Ok(None)
