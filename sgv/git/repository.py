"""Git repository abstraction.

Thin, synchronous wrapper over the ``git`` CLI for the operations the release
pipeline needs. Every operation returns ``Result[GitOutput, GitError]``.

Some git commands exit non-zero for outcomes the pipeline treats as success
(``merge`` with nothing to merge, ``stash`` with nothing to stash, ``commit``
with nothing to commit). Those are recognised by their output and reported as
``Ok`` with ``benign=True``.

Usage:
    repo = Repository(Path("/path/to/project"))

    match repo.checkout("main"):
        case Ok(_):
            ...
        case Err(e):
            print(f"{e.command}: {e.message}")
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from sgv.core.result import Err, Ok, Result
from sgv.platform.process import ProcessError
from sgv.platform.process import run as run_process

_GIT_TIMEOUT_SECONDS = 30.0
_GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0
_NETWORK_COMMANDS = frozenset({"fetch", "pull", "push", "clone"})

BENIGN_MARKERS = (
    "already up to date",
    "already up-to-date",
    "no local changes to save",
    "nothing to commit",
)

VERSION_TAG_PATTERN = re.compile(r"^v\d+\.\d+\.\d+(-[0-9A-Za-z.\-]+)?(\+[0-9A-Za-z.\-]+)?$")
_PLAIN_VERSION = re.compile(r"^\d+\.\d+\.\d+$")

__all__ = [
    "BENIGN_MARKERS",
    "GitError",
    "GitOutput",
    "GitStatus",
    "Repository",
    "StatusEntry",
    "VERSION_TAG_PATTERN",
]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git command that failed (without the ``git`` prefix)
        message: Error message (stderr, else stdout)
        returncode: Process return code
        stdout: Raw standard output
        stderr: Raw standard error
    """

    command: str
    message: str
    returncode: int = 1
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"git {self.command}: {self.message}"


@dataclass(frozen=True, slots=True)
class GitOutput:
    stdout: str
    stderr: str = ""
    benign: bool = False

    @property
    def text(self) -> str:
        return self.stdout.strip()


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """A ``git status --porcelain`` line: two-letter code and path."""

    xy: str
    path: str

    @property
    def is_untracked(self) -> bool:
        return self.xy == "??"


@dataclass(frozen=True, slots=True)
class GitStatus:
    branch: str
    entries: tuple[StatusEntry, ...] = field(default_factory=tuple)

    @property
    def is_clean(self) -> bool:
        return len(self.entries) == 0


def _is_benign(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in BENIGN_MARKERS)


class Repository:
    """Git repository abstraction.

    Attributes:
        path: Path to the repository root
        remote: Remote used for pull/push/fetch
    """

    def __init__(self, path: Path, *, remote: str = "origin") -> None:
        self.path = path
        self.remote = remote

    def exists(self) -> bool:
        return (self.path / ".git").exists()

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def status(self) -> Result[GitStatus, GitError]:
        """Run ``git status --porcelain=v1 -b`` and parse it."""
        result = self._git(["status", "--porcelain=v1", "-b"])
        if isinstance(result, Err):
            return result
        return Ok(_parse_status(result.value.stdout))

    def is_clean(self) -> bool:
        """True if the working tree has no changes. False if unknown."""
        result = self._git(["status", "--porcelain"])
        match result:
            case Ok(out):
                return out.text == ""
            case Err(_):
                return False

    def has_changes(self) -> Result[bool, GitError]:
        result = self._git(["status", "--porcelain"])
        if isinstance(result, Err):
            return result
        return Ok(result.value.text != "")

    def current_branch(self) -> str | None:
        """Current branch name; None for detached HEAD or on error."""
        result = self._git(["rev-parse", "--abbrev-ref", "HEAD"])
        match result:
            case Ok(out):
                branch = out.text
                return None if branch in ("", "HEAD") else branch
            case Err(_):
                return None

    def recent_log(self, ref: str = "HEAD", limit: int = 20) -> Result[list[str], GitError]:
        """Subjects of the last ``limit`` commits on ``ref``."""
        result = self._git(["log", ref, f"-{limit}", "--pretty=format:%s"])
        if isinstance(result, Err):
            return result
        return Ok([ln for ln in result.value.stdout.splitlines() if ln.strip()])

    # -------------------------------------------------------------------------
    # Tags and history
    # -------------------------------------------------------------------------

    def fetch_tags(self) -> Result[GitOutput, GitError]:
        return self._git(["fetch", self.remote, "--tags", "--prune"])

    def latest_version_tag(self) -> Result[str | None, GitError]:
        """Newest ``vX.Y.Z`` tag by creation date, or None.

        Tags are fetched first; a failed fetch (offline, no remote) falls back
        to local tags.
        """
        self.fetch_tags()
        result = self._git(["tag", "--sort=-creatordate"])
        if isinstance(result, Err):
            return result
        for line in result.value.stdout.splitlines():
            tag = line.strip()
            if VERSION_TAG_PATTERN.match(tag):
                return Ok(tag)
        return Ok(None)

    def commit_messages_since(self, tag: str) -> Result[list[str], GitError]:
        """Commit subjects in ``tag..HEAD``, newest first."""
        result = self._git(["log", f"{tag}..HEAD", "--pretty=format:%s"])
        if isinstance(result, Err):
            return result
        return Ok([ln for ln in result.value.stdout.splitlines() if ln.strip()])

    def commit_messages_since_last_version(self) -> Result[list[str], GitError]:
        """Subjects since the latest version tag; empty if there is no tag."""
        tag = self.latest_version_tag()
        if isinstance(tag, Err):
            return tag
        if tag.value is None:
            return Ok([])
        return self.commit_messages_since(tag.value)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def checkout(self, branch: str) -> Result[GitOutput, GitError]:
        return self._git(["checkout", branch])

    def pull(self, branch: str) -> Result[GitOutput, GitError]:
        return self._git(["pull", self.remote, branch])

    def push(self, ref: str) -> Result[GitOutput, GitError]:
        return self._git(["push", self.remote, ref])

    def merge(self, branch: str, message: str) -> Result[GitOutput, GitError]:
        return self._git(["merge", branch, "-m", message])

    def add(self, paths: Sequence[str]) -> Result[GitOutput, GitError]:
        return self._git(["add", "--", *paths])

    def commit(self, message: str, *, all_changes: bool = True) -> Result[GitOutput, GitError]:
        """Commit; with ``all_changes`` stage everything first (``git add .``)."""
        if all_changes:
            added = self._git(["add", "."])
            if isinstance(added, Err):
                return added
        return self._git(["commit", "-m", message])

    def stash(self, message: str | None = None) -> Result[GitOutput, GitError]:
        args = ["stash", "push", "--include-untracked"]
        if message:
            args += ["-m", message]
        return self._git(args)

    def discard_all(self) -> Result[GitOutput, GitError]:
        """Drop tracked changes (``reset --hard``) then untracked files (``clean -fd``)."""
        reset = self._git(["reset", "--hard", "HEAD"])
        if isinstance(reset, Err):
            return reset
        return self._git(["clean", "-fd"])

    def tag_version(self, version: str, *, push: bool = True) -> Result[GitOutput, GitError]:
        """Create annotated tag ``v<version>`` and push it.

        ``version`` must be plain ``X.Y.Z``.
        """
        if not _PLAIN_VERSION.match(version):
            return Err(
                GitError(
                    command="tag",
                    message=f"invalid version format for tag: {version!r} (expected X.Y.Z)",
                )
            )
        tag = f"v{version}"
        created = self._git(["tag", "-a", tag, "-m", f"Version {version}"])
        if isinstance(created, Err) or not push:
            return created
        return self.push(tag)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _git(self, args: list[str]) -> Result[GitOutput, GitError]:
        label = " ".join(args[:2]) if args else ""
        result = self._run(args)
        match result:
            case Ok(stdout):
                return Ok(GitOutput(stdout=stdout))
            case Err(e):
                combined = f"{e.stdout}\n{e.stderr}"
                if e.returncode > 0 and _is_benign(combined):
                    return Ok(GitOutput(stdout=e.stdout, stderr=e.stderr, benign=True))
                return Err(
                    GitError(
                        command=label,
                        message=e.stderr.strip() or e.stdout.strip() or f"git {label} failed",
                        returncode=e.returncode,
                        stdout=e.stdout,
                        stderr=e.stderr,
                    )
                )

    def _run(self, args: list[str]) -> Result[str, ProcessError]:
        command = args[0] if args else ""
        timeout = (
            _GIT_NETWORK_TIMEOUT_SECONDS if command in _NETWORK_COMMANDS else _GIT_TIMEOUT_SECONDS
        )
        return run_process(["git", "-C", str(self.path), *args], cwd=self.path, timeout=timeout)


def _parse_status(output: str) -> GitStatus:
    lines = [ln for ln in output.splitlines() if ln.strip()]
    if not lines:
        return GitStatus(branch="")

    branch = ""
    entries: list[StatusEntry] = []
    for line in lines:
        if line.startswith("##"):
            head = line[2:].strip().split(" [", 1)[0]
            branch = head.split("...", 1)[0].strip()
            continue
        if len(line) < 4:
            continue
        entries.append(StatusEntry(xy=line[:2], path=line[3:]))
    return GitStatus(branch=branch, entries=tuple(entries))
