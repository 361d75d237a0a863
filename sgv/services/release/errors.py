"""Error payload for the release pipeline and versioning process.

Component errors (GitError, HttpError, ApiError, CompressError,
ProcessError) are converted to :class:`ReleaseError` where they cross into
the pipeline, so the orchestrator and CLI only deal with one shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from sgv.core.errors import ErrorCode

ReleaseErrorKind = Literal[
    "invalid_version",
    "invalid_config",
    "precondition_failed",
    "remote_rejected",
    "network",
    "vcs_failed",
    "build_failed",
    "upload_failed",
    "cancelled",
    "io_failed",
    "unexpected",
]


@dataclass(frozen=True, slots=True)
class ReleaseError:
    """Canonical release error.

    Attributes:
        kind: Machine-readable category (drives the exit code).
        message: One-line human message.
        hint: Optional suggestion for the user.
        details: Extra lines (server messages, git stderr).
    """

    kind: ReleaseErrorKind
    message: str
    hint: str | None = None
    details: tuple[str, ...] = ()

    def pretty(self) -> str:
        text = self.message
        if self.hint:
            text = f"{text} (hint: {self.hint})"
        if self.details:
            text += "\n" + "\n".join(f"  - {line}" for line in self.details)
        return text


def release_error_code(kind: str) -> ErrorCode:
    """Map an error kind to the CLI exit code."""
    if kind in {"invalid_version", "invalid_config"}:
        return ErrorCode.USER_ERROR
    if kind in {"precondition_failed"}:
        return ErrorCode.ENV_ERROR
    if kind in {"build_failed"}:
        return ErrorCode.BUILD_ERROR
    if kind in {"remote_rejected", "network", "upload_failed"}:
        return ErrorCode.NETWORK_ERROR
    if kind in {"io_failed"}:
        return ErrorCode.IO_ERROR
    if kind in {"vcs_failed"}:
        return ErrorCode.VCS_ERROR
    return ErrorCode.USER_ERROR
