"""Tests for sgv.core.config."""

from __future__ import annotations

from pathlib import Path

from sgv.core.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_EXCLUSION_FILTERS,
    SgvConfig,
    load_config,
    load_config_or_default,
)
from sgv.core.result import Err, Ok


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "sgv.toml"
    path.write_text(text, encoding="utf-8")
    return path


# =============================================================================
# Loading
# =============================================================================


class TestLoadConfig:
    """Tests for load_config / load_config_or_default."""

    def test_full_config(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
[api]
base_url = "https://api.example.test/v1/"
token = "secret"
timeout = 10

[project]
product_name = "Space Game"
builds_dir = "out/builds"
develop_branch = "dev"

[build]
command = ["unity", "-batchmode", "-buildTarget", "{platform}", "-out", "{output}"]
timeout = 120

[[build.targets]]
platform = "windows"
profile = "Win64"

[[build.targets]]
platform = "Linux"
profile = "Linux64"

[upload]
max_attempts = 5
max_workers = 2
ready_policy = "any_built"
exclusion_filters = ["DoNotShip", "Temp"]
""",
        )

        result = load_config(path)

        assert isinstance(result, Ok)
        config = result.value
        assert config.api.base_url == "https://api.example.test/v1"
        assert config.api.token == "secret"
        assert config.api.timeout == 10.0
        assert config.project.product_name == "Space Game"
        assert config.project.builds_dir == "out/builds"
        assert config.project.develop_branch == "dev"
        assert config.project.main_branch == "main"
        assert config.build.command[0] == "unity"
        assert config.build.timeout == 120.0
        assert [(t.platform, t.profile) for t in config.build.targets] == [
            ("windows", "Win64"),
            ("linux", "Linux64"),
        ]
        assert config.upload.max_attempts == 5
        assert config.upload.max_workers == 2
        assert config.upload.ready_policy == "any_built"
        assert config.upload.exclusion_filters == ("DoNotShip", "Temp")

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        result = load_config(_write(tmp_path, ""))

        assert isinstance(result, Ok)
        assert result.value == SgvConfig()
        assert result.value.api.base_url == DEFAULT_API_BASE_URL
        assert result.value.upload.ready_policy == "all_uploaded"
        assert result.value.upload.exclusion_filters == DEFAULT_EXCLUSION_FILTERS

    def test_missing_file(self, tmp_path: Path) -> None:
        result = load_config(tmp_path / "sgv.toml")

        assert isinstance(result, Err)
        assert "not found" in result.error.message

    def test_missing_file_defaults(self, tmp_path: Path) -> None:
        assert load_config_or_default(tmp_path / "sgv.toml") == Ok(SgvConfig())

    def test_invalid_toml(self, tmp_path: Path) -> None:
        result = load_config(_write(tmp_path, "[api\nbase_url = "))

        assert isinstance(result, Err)
        assert "Invalid TOML" in result.error.message

    def test_unknown_platform(self, tmp_path: Path) -> None:
        path = _write(tmp_path, '[[build.targets]]\nplatform = "amiga"\nprofile = "x"\n')

        result = load_config(path)

        assert isinstance(result, Err)
        assert "platform" in result.error.message

    def test_unknown_ready_policy(self, tmp_path: Path) -> None:
        result = load_config(_write(tmp_path, '[upload]\nready_policy = "sometimes"\n'))

        assert isinstance(result, Err)
        assert "ready_policy" in result.error.message


# =============================================================================
# Environment
# =============================================================================


class TestTokenFromEnv:
    def test_env_overrides_token(self) -> None:
        config = SgvConfig().with_token_from_env({"SGV_TOKEN": " abc "})
        assert config.api.token == "abc"

    def test_blank_env_keeps_config(self) -> None:
        config = SgvConfig()
        assert config.with_token_from_env({"SGV_TOKEN": "  "}) is config
