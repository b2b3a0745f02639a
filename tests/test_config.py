"""
Tests for configuration module.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from kmm.config import Settings, clear_settings_cache, get_settings
from kmm.exceptions import ConfigurationError


def _settings_without_key(config_file: Path, **overrides: str) -> Settings:
    """Build settings with no API key in the environment."""
    env = {"KLAVIYO_CONFIG_FILE": str(config_file), **overrides}
    with patch.dict(os.environ, env, clear=True):
        return Settings(_env_file=None)


class TestSettingsValidation:
    """Tests for Settings validation."""

    def test_settings_loads_from_env(self, mock_env_vars: dict[str, str]) -> None:
        """Test that settings correctly loads from environment variables."""
        settings = get_settings()

        assert settings.KLAVIYO_API_KEY == "pk_test_fake_klaviyo_key_1234567890"
        assert settings.REQUEST_TIMEOUT_SECONDS == 12.5
        assert settings.REPORT_TIMEOUT_SECONDS == 45.0
        assert settings.CACHE_DISABLED is False
        assert settings.MAX_PAGES is None
        assert settings.LOG_LEVEL == "WARNING"

    def test_defaults(self, temp_dir: Path) -> None:
        """Test default values with an empty environment."""
        settings = _settings_without_key(temp_dir / "none.json")

        assert settings.REQUEST_TIMEOUT_SECONDS == 30.0
        assert settings.REPORT_TIMEOUT_SECONDS == 60.0
        assert settings.LOG_LEVEL == "WARNING"
        assert settings.LOG_FILE is None

    def test_timeout_must_be_positive(self) -> None:
        """Test that a zero timeout is rejected."""
        with patch.dict(os.environ, {"REQUEST_TIMEOUT_SECONDS": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_max_pages_must_be_at_least_one(self) -> None:
        """Test MAX_PAGES lower bound."""
        with patch.dict(os.environ, {"MAX_PAGES": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_get_settings_is_cached(self, mock_env_vars: dict[str, str]) -> None:
        """Test that get_settings returns the same instance until cleared."""
        first = get_settings()
        assert get_settings() is first

        clear_settings_cache()
        assert get_settings() is not first


class TestResolveApiKey:
    """Tests for API key lookup."""

    def test_environment_wins(self, mock_env_vars: dict[str, str]) -> None:
        """Test that KLAVIYO_API_KEY is used when set."""
        assert get_settings().resolve_api_key() == "pk_test_fake_klaviyo_key_1234567890"

    def test_reads_config_file(self, temp_dir: Path) -> None:
        """Test the current config.json format."""
        config_file = temp_dir / "config.json"
        config_file.write_text(json.dumps({"klaviyo": {"apiKey": "pk_from_file"}}))

        settings = _settings_without_key(config_file)

        assert settings.resolve_api_key() == "pk_from_file"

    def test_reads_legacy_mcp_config(self, temp_dir: Path) -> None:
        """Test the legacy MCP server config format."""
        config_file = temp_dir / "config.json"
        config_file.write_text(
            json.dumps({"mcpServer": {"env": {"PRIVATE_API_KEY": "pk_legacy"}}})
        )

        settings = _settings_without_key(config_file)

        assert settings.resolve_api_key() == "pk_legacy"

    def test_file_without_key(self, temp_dir: Path) -> None:
        """Test a config file that has neither key format."""
        config_file = temp_dir / "config.json"
        config_file.write_text(json.dumps({"klaviyo": {}}))

        settings = _settings_without_key(config_file)

        with pytest.raises(ConfigurationError) as exc_info:
            settings.resolve_api_key()
        assert "klaviyo.apiKey" in str(exc_info.value)

    def test_invalid_json(self, temp_dir: Path) -> None:
        """Test that a malformed config file is reported."""
        config_file = temp_dir / "config.json"
        config_file.write_text("{not json")

        settings = _settings_without_key(config_file)

        with pytest.raises(ConfigurationError) as exc_info:
            settings.resolve_api_key()
        assert exc_info.value.context["path"] == str(config_file)

    def test_not_found_lists_paths(self, temp_dir: Path, monkeypatch) -> None:
        """Test the error when no key source exists."""
        monkeypatch.chdir(temp_dir)
        missing = temp_dir / "missing.json"
        settings = _settings_without_key(missing)

        with patch("kmm.config._PACKAGE_DIR", temp_dir / "pkg"), patch(
            "kmm.config._PROJECT_ROOT", temp_dir / "root"
        ):
            with pytest.raises(ConfigurationError) as exc_info:
                settings.resolve_api_key()

        assert str(missing) in exc_info.value.context["tried"]

    def test_candidates_start_with_explicit_file(self, temp_dir: Path) -> None:
        """Test search order."""
        explicit = temp_dir / "explicit.json"
        settings = _settings_without_key(explicit)

        candidates = settings.config_file_candidates()

        assert candidates[0] == explicit
        assert Path.cwd() / "config.json" in candidates


class TestRedactedDisplay:
    """Tests for redacted_display."""

    def test_api_key_is_redacted(self, mock_env_vars: dict[str, str]) -> None:
        """Test that the key is masked."""
        display = get_settings().redacted_display()

        assert display["KLAVIYO_API_KEY"] == "pk_test_...7890"
        assert display["REQUEST_TIMEOUT_SECONDS"] == 12.5

    def test_short_key_fully_masked(self) -> None:
        """Test that short keys are not partially shown."""
        with patch.dict(os.environ, {"KLAVIYO_API_KEY": "short"}, clear=True):
            display = Settings(_env_file=None).redacted_display()

        assert display["KLAVIYO_API_KEY"] == "***"

    def test_log_file_is_shown(self, temp_dir: Path) -> None:
        """Test that LOG_FILE is loaded and displayed as a path string."""
        log_file = temp_dir / "kmm.jsonl"
        settings = _settings_without_key(temp_dir / "none.json", LOG_FILE=str(log_file))

        assert settings.LOG_FILE == log_file
        assert settings.redacted_display()["LOG_FILE"] == str(log_file)
