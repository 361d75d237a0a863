from __future__ import annotations

import time
from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from pathlib import Path

from sgv.core.config import BuildTargetConfig


class BuildPlatform(IntEnum):
    """Build targets; values are the remote API wire ints."""

    WINDOWS = 1
    MACOS = 2
    LINUX = 3
    ANDROID = 4
    IOS = 5
    WEB = 6

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> BuildPlatform:
        try:
            return cls[label.strip().upper()]
        except KeyError:
            raise ValueError(f"unknown build platform: {label!r}") from None


class CompressionPlatform(Enum):
    """Archive flavour: path separator and Unix permission bits."""

    WINDOWS = "windows"
    LINUX = "linux"

    @classmethod
    def for_build(cls, platform: BuildPlatform) -> CompressionPlatform:
        return cls.LINUX if platform == BuildPlatform.LINUX else cls.WINDOWS


@dataclass(frozen=True, slots=True)
class BuildSetup:
    platform: BuildPlatform
    profile: str

    @classmethod
    def from_config(cls, target: BuildTargetConfig) -> BuildSetup:
        return cls(platform=BuildPlatform.from_label(target.platform), profile=target.profile)


@dataclass(frozen=True, slots=True)
class CompressingResult:
    output_path: Path
    size_compressed: int
    size_uncompressed: int
    file_count: int
    platform: CompressionPlatform


@dataclass(frozen=True, slots=True)
class LocalBuildResult:
    """Outcome of building one platform target."""

    success: bool
    product_name: str
    platform: BuildPlatform
    path: Path | None = None
    executable_name: str | None = None
    compression: CompressingResult | None = None
    built_at: int = 0
    error_message: str | None = None

    @property
    def artifact_path(self) -> Path | None:
        return self.compression.output_path if self.compression else None

    def artifact_exists(self) -> bool:
        path = self.artifact_path
        return path is not None and path.is_file()

    @classmethod
    def failed(cls, *, product_name: str, platform: BuildPlatform, error: str) -> LocalBuildResult:
        return cls(
            success=False,
            product_name=product_name,
            platform=platform,
            built_at=int(time.time()),
            error_message=error,
        )


@dataclass(frozen=True, slots=True)
class VersionBuildEntry:
    """A local build plus its upload status.

    Entries are immutable; the ``mark_*`` transitions return new entries and
    callers replace the entry in its list.
    """

    build: LocalBuildResult
    uploaded: bool = False
    remote_url: str | None = None
    checksum: str | None = None
    upload_error: str | None = None
    uploaded_at: int | None = None

    def __post_init__(self) -> None:
        if self.uploaded and not self.checksum:
            raise ValueError("an uploaded build entry must carry a checksum")

    def is_build_usable(self) -> bool:
        """Build succeeded and its archive is on disk."""
        return self.build.success and self.build.artifact_exists()

    def can_upload(self) -> bool:
        return self.is_build_usable() and not self.uploaded

    def mark_uploaded(self, remote_url: str | None, checksum: str) -> VersionBuildEntry:
        return replace(
            self,
            uploaded=True,
            remote_url=remote_url,
            checksum=checksum,
            upload_error=None,
            uploaded_at=int(time.time()),
        )

    def mark_upload_failed(
        self,
        error: str,
        *,
        checksum: str | None = None,
    ) -> VersionBuildEntry:
        """Record a failed attempt; earlier url and checksum are kept.

        A checksum computed during the failed attempt replaces the old one.
        """
        return replace(
            self,
            uploaded=False,
            upload_error=error or "upload failed",
            checksum=checksum if checksum is not None else self.checksum,
        )

    @classmethod
    def from_build(cls, build: LocalBuildResult) -> VersionBuildEntry:
        return cls(build=build)
