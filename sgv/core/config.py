"""Typed configuration loading for ``sgv.toml``.

The file lives at the project root. Every section is optional; missing keys
fall back to the defaults below. The API token may also come from the
``SGV_TOKEN`` environment variable, which wins over the file so that CI never
needs the secret on disk.

Example:

    [api]
    base_url = "https://streaminggames.io/v1"

    [project]
    product_name = "Skyline"
    builds_dir = "SGUnitySDKBuilds"

    [build]
    command = ["unity", "-batchmode", "-quit", "-buildTarget", "{platform}",
               "-activeBuildProfile", "{profile}", "-buildPath", "{executable}"]

    [[build.targets]]
    platform = "windows"
    profile = "Assets/Settings/Build Profiles/Windows.asset"

    [upload]
    ready_policy = "all_uploaded"
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_float,
    get_int,
    get_list,
    get_str,
    get_str_list,
    get_table,
)

__all__ = [
    "ApiConfig",
    "BuildConfig",
    "BuildTargetConfig",
    "CONFIG_FILENAME",
    "ConfigError",
    "DEFAULT_API_BASE_URL",
    "DEFAULT_EXCLUSION_FILTERS",
    "PLATFORM_NAMES",
    "ProjectConfig",
    "ReadyPolicy",
    "SgvConfig",
    "TOKEN_ENV_VAR",
    "UploadConfig",
    "load_config",
    "load_config_or_default",
]

CONFIG_FILENAME = "sgv.toml"
TOKEN_ENV_VAR = "SGV_TOKEN"
DEFAULT_API_BASE_URL = "https://streaminggames.io/v1"

PLATFORM_NAMES = ("windows", "macos", "linux", "android", "ios", "web")

# Files and folders a build may leave behind that never ship.
DEFAULT_EXCLUSION_FILTERS: tuple[str, ...] = (
    "DoNotShip",
    "BackUp",
    "Temp",
    "~",
    ".tmp",
    ".bak",
    ".git",
    ".svn",
    ".vs",
    ".idea",
    "Logs",
    "Obj",
    "Library",
    "ProjectSettings~",
    "csc.rsp",
    "mcs.rsp",
    "gmcs.rsp",
    "smcs.rsp",
    "Thumbs.db",
    ".DS_Store",
)

ReadyPolicy = Literal["all_uploaded", "any_built"]


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ApiConfig:
    base_url: str = DEFAULT_API_BASE_URL
    token: str | None = None
    timeout: float = 30.0


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    """Project layout relative to the project root."""

    product_name: str = "Game"
    version_file: str = "package.json"
    player_settings_file: str = "ProjectSettings/ProjectSettings.asset"
    builds_dir: str = "SGUnitySDKBuilds"
    log_dir: str = "Versioning"
    develop_branch: str = "develop"
    main_branch: str = "main"


@dataclass(frozen=True, slots=True)
class BuildTargetConfig:
    platform: str
    profile: str


@dataclass(frozen=True, slots=True)
class BuildConfig:
    """External build command and the targets to build.

    ``command`` items may contain ``{platform}``, ``{profile}``, ``{output}``,
    ``{executable}`` and ``{version}`` placeholders.
    """

    command: tuple[str, ...] = ()
    timeout: float = 60 * 60.0
    targets: tuple[BuildTargetConfig, ...] = ()


@dataclass(frozen=True, slots=True)
class UploadConfig:
    max_attempts: int = 3
    max_workers: int = 4
    ready_policy: ReadyPolicy = "all_uploaded"
    exclusion_filters: tuple[str, ...] = DEFAULT_EXCLUSION_FILTERS


@dataclass(frozen=True, slots=True)
class SgvConfig:
    """Main configuration container."""

    api: ApiConfig = field(default_factory=ApiConfig)
    project: ProjectConfig = field(default_factory=ProjectConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SgvConfig:
        """Create a config from parsed TOML.

        Raises:
            ValueError: on values that parse but make no sense (unknown
                platform, unknown ready policy, non-positive limits).
        """
        api: StrDict = get_table(data, "api") or {}
        project: StrDict = get_table(data, "project") or {}
        build: StrDict = get_table(data, "build") or {}
        upload: StrDict = get_table(data, "upload") or {}

        defaults = ProjectConfig()
        upload_defaults = UploadConfig()

        policy = get_str(upload, "ready_policy") or upload_defaults.ready_policy
        if policy not in ("all_uploaded", "any_built"):
            raise ValueError(f"unknown upload.ready_policy: {policy!r}")

        max_attempts = get_int(upload, "max_attempts") or upload_defaults.max_attempts
        max_workers = get_int(upload, "max_workers") or upload_defaults.max_workers
        if max_attempts < 1 or max_workers < 1:
            raise ValueError("upload.max_attempts and upload.max_workers must be >= 1")

        filters = get_str_list(upload, "exclusion_filters")

        return cls(
            api=ApiConfig(
                base_url=(get_str(api, "base_url") or DEFAULT_API_BASE_URL).rstrip("/"),
                token=get_str(api, "token"),
                timeout=get_float(api, "timeout") or ApiConfig().timeout,
            ),
            project=ProjectConfig(
                product_name=get_str(project, "product_name") or defaults.product_name,
                version_file=get_str(project, "version_file") or defaults.version_file,
                player_settings_file=get_str(project, "player_settings_file")
                or defaults.player_settings_file,
                builds_dir=get_str(project, "builds_dir") or defaults.builds_dir,
                log_dir=get_str(project, "log_dir") or defaults.log_dir,
                develop_branch=get_str(project, "develop_branch") or defaults.develop_branch,
                main_branch=get_str(project, "main_branch") or defaults.main_branch,
            ),
            build=BuildConfig(
                command=tuple(get_str_list(build, "command") or ()),
                timeout=get_float(build, "timeout") or BuildConfig().timeout,
                targets=_parse_targets(build),
            ),
            upload=UploadConfig(
                max_attempts=max_attempts,
                max_workers=max_workers,
                ready_policy=policy,
                exclusion_filters=(
                    tuple(filters) if filters is not None else DEFAULT_EXCLUSION_FILTERS
                ),
            ),
        )

    def with_token_from_env(self, env: Mapping[str, str] | None = None) -> SgvConfig:
        """Return a copy whose token is overridden by ``SGV_TOKEN`` when set."""
        source = os.environ if env is None else env
        token = source.get(TOKEN_ENV_VAR, "").strip()
        if not token:
            return self
        return SgvConfig(
            api=ApiConfig(base_url=self.api.base_url, token=token, timeout=self.api.timeout),
            project=self.project,
            build=self.build,
            upload=self.upload,
        )


def _parse_targets(build: StrDict) -> tuple[BuildTargetConfig, ...]:
    items = get_list(build, "targets") or []
    targets: list[BuildTargetConfig] = []
    for index, item in enumerate(items):
        table = as_str_dict(item)
        if table is None:
            raise ValueError(f"build.targets[{index}] must be a table")
        platform = (get_str(table, "platform") or "").lower()
        if platform not in PLATFORM_NAMES:
            raise ValueError(
                f"build.targets[{index}].platform must be one of {', '.join(PLATFORM_NAMES)}"
            )
        profile = get_str(table, "profile")
        if profile is None:
            raise ValueError(f"build.targets[{index}].profile is required")
        targets.append(BuildTargetConfig(platform=platform, profile=profile))
    return tuple(targets)


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    import tomllib

    try:
        data_obj: object = tomllib.loads(path.read_bytes().decode("utf-8"))
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))

    data = as_str_dict(data_obj)
    if data is None:
        return Err(ConfigError("Config root must be a TOML table", path=path))
    return Ok(data)


def load_config(path: Path) -> Result[SgvConfig, ConfigError]:
    """Load and validate ``sgv.toml``.

    Args:
        path: Path to the config file.

    Returns:
        Ok(SgvConfig) on success, Err(ConfigError) on failure.
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(SgvConfig.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config: {e}", path=path))


def load_config_or_default(path: Path) -> Result[SgvConfig, ConfigError]:
    """Like load_config, but a missing file yields the default config."""
    if not path.exists():
        return Ok(SgvConfig())
    return load_config(path)
