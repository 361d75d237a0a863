from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import IntEnum
from typing import Literal

from sgv.core.result import Err, Ok, Result
from sgv.services.release.errors import ReleaseError

IncrementKind = Literal["none", "patch", "minor", "major"]
Bump = Literal["patch", "minor", "major"]

DEFAULT_VERSION = "0.0.0"
# Used when the current version cannot be parsed but commits ask for a bump.
RESET_VERSION = "1.0.0"

NO_COMMITS_MESSAGE = "No new commits or version tags found. Version remains unchanged."

_SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z][0-9A-Za-z.\-]*))?$")
_TAG_RE = re.compile(r"^v(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.\-]+))?(?:\+[0-9A-Za-z.\-]+)?$")

_MAJOR_RE = re.compile(r"^(breaking|major)(\(.*\))?:", re.MULTILINE | re.IGNORECASE)
_MINOR_RE = re.compile(r"^(feat|minor)(\(.*\))?:", re.MULTILINE | re.IGNORECASE)
_PATCH_RE = re.compile(r"^(fix|patch)(\(.*\))?:", re.MULTILINE | re.IGNORECASE)


class VersionUpdateType(IntEnum):
    """How the next version is derived; values match the remote API."""

    PATCH = 1
    MINOR = 2
    MAJOR = 3
    SPECIFIC = 4

    @property
    def bump(self) -> Bump | None:
        match self:
            case VersionUpdateType.PATCH:
                return "patch"
            case VersionUpdateType.MINOR:
                return "minor"
            case VersionUpdateType.MAJOR:
                return "major"
            case _:
                return None


@dataclass(frozen=True, slots=True)
class SemVer:
    major: int
    minor: int
    patch: int
    prerelease: str | None = None

    def __post_init__(self) -> None:
        if self.major < 0 or self.minor < 0 or self.patch < 0:
            raise ValueError("version components must be non-negative")

    @property
    def core(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def raw(self) -> str:
        if self.prerelease:
            return f"{self.core}-{self.prerelease}"
        return self.core

    def __str__(self) -> str:
        return self.raw

    def increment(self, kind: Bump) -> SemVer:
        """Next version for ``kind``; the prerelease tag is dropped."""
        match kind:
            case "major":
                return SemVer(self.major + 1, 0, 0)
            case "minor":
                return SemVer(self.major, self.minor + 1, 0)
            case "patch":
                return SemVer(self.major, self.minor, self.patch + 1)
            case _:
                raise AssertionError(f"unexpected increment kind: {kind}")

    def to_tag(self) -> str:
        return f"v{self.raw}"


def parse_semver(text: str) -> Result[SemVer, ReleaseError]:
    """Parse ``MAJOR.MINOR.PATCH[-PRERELEASE]``."""
    m = _SEMVER_RE.match(text.strip())
    if m is None:
        return Err(
            ReleaseError(
                kind="invalid_version",
                message=f"invalid semantic version: {text!r}",
                hint="Expected MAJOR.MINOR.PATCH[-PRERELEASE]",
            )
        )
    return Ok(SemVer(int(m.group(1)), int(m.group(2)), int(m.group(3)), m.group(4)))


def parse_version_tag(tag: str) -> SemVer | None:
    """Parse a ``vX.Y.Z[-pre][+build]`` tag; build metadata is discarded."""
    m = _TAG_RE.match(tag.strip())
    if m is None:
        return None
    return SemVer(int(m.group(1)), int(m.group(2)), int(m.group(3)), m.group(4))


def classify_commits(messages: Iterable[str]) -> IncrementKind:
    """Highest increment requested by conventional commit prefixes.

    ``breaking:``/``major:`` beat ``feat:``/``minor:`` beat
    ``fix:``/``patch:``, regardless of order. Matching is case-insensitive and
    anchored at the start of each line.
    """
    text = "\n".join(messages)
    if _MAJOR_RE.search(text):
        return "major"
    if _MINOR_RE.search(text):
        return "minor"
    if _PATCH_RE.search(text):
        return "patch"
    return "none"


@dataclass(frozen=True, slots=True)
class VersionReport:
    """Outcome of deriving the next version from commit history."""

    current_version: str
    new_version: str
    increment: IncrementKind
    success: bool
    message: str = ""
    commit_count: int = 0

    @property
    def changed(self) -> bool:
        return self.success and self.new_version != self.current_version


def compute_next_version(current: str, messages: Sequence[str]) -> VersionReport:
    """Derive the next version from commit subjects since the last version tag.

    An empty history is reported as unsuccessful and keeps ``current``.
    """
    if not messages:
        return VersionReport(
            current_version=current,
            new_version=current,
            increment="none",
            success=False,
            message=NO_COMMITS_MESSAGE,
        )

    kind = classify_commits(messages)
    parsed = parse_semver(current)
    if isinstance(parsed, Err):
        new_version = RESET_VERSION
    elif kind == "none":
        new_version = current
    else:
        new_version = parsed.value.increment(kind).raw

    return VersionReport(
        current_version=current,
        new_version=new_version,
        increment=kind,
        success=True,
        commit_count=len(messages),
    )


def resolve_target_version(
    current: str,
    update: VersionUpdateType,
    specific: str | None = None,
) -> Result[SemVer, ReleaseError]:
    """Target version for an explicit update request.

    ``SPECIFIC`` parses ``specific`` wholesale; the others increment
    ``current``.
    """
    if update == VersionUpdateType.SPECIFIC:
        if not specific:
            return Err(
                ReleaseError(
                    kind="invalid_version",
                    message="a specific version is required for a specific update",
                )
            )
        return parse_semver(specific)

    parsed = parse_semver(current)
    if isinstance(parsed, Err):
        return parsed
    bump = update.bump
    assert bump is not None
    return Ok(parsed.value.increment(bump))
