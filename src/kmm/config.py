"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files. The Klaviyo
private API key may also come from a JSON config file, either in the
current format ``{"klaviyo": {"apiKey": ...}}`` or the legacy MCP server
format ``{"mcpServer": {"env": {"PRIVATE_API_KEY": ...}}}``.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kmm.exceptions import ConfigurationError

_PACKAGE_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _PACKAGE_DIR.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional:
        KLAVIYO_API_KEY: Private API key (otherwise read from a config file)
        KLAVIYO_CONFIG_FILE: Explicit path to a JSON config file
        REQUEST_TIMEOUT_SECONDS: Default timeout for API requests
        REPORT_TIMEOUT_SECONDS: Timeout for report requests
        CACHE_DISABLED: Bypass the response cache
        MAX_PAGES: Upper bound on pages fetched when paginating
        LOG_LEVEL: Logging level
        LOG_FILE: Append JSON Lines logs to this file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    KLAVIYO_API_KEY: str | None = Field(default=None, description="Klaviyo private API key")
    KLAVIYO_CONFIG_FILE: Path | None = Field(
        default=None, description="Path to a JSON config file holding the API key"
    )

    REQUEST_TIMEOUT_SECONDS: float = Field(
        default=30.0, gt=0.0, description="Default request timeout in seconds"
    )
    REPORT_TIMEOUT_SECONDS: float = Field(
        default=60.0, gt=0.0, description="Report request timeout in seconds"
    )

    CACHE_DISABLED: bool = Field(default=False, description="Bypass the response cache")
    MAX_PAGES: int | None = Field(
        default=None, ge=1, description="Maximum pages fetched by --all requests"
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="Path for JSON Lines log output")

    def config_file_candidates(self) -> list[Path]:
        """Return config file locations in search order."""
        candidates: list[Path] = []
        if self.KLAVIYO_CONFIG_FILE is not None:
            candidates.append(self.KLAVIYO_CONFIG_FILE)
        candidates.extend([
            Path.cwd() / "config.json",
            _PACKAGE_DIR / "config.json",
            _PROJECT_ROOT / "config.json",
        ])

        unique: list[Path] = []
        for path in candidates:
            if path not in unique:
                unique.append(path)
        return unique

    def resolve_api_key(self) -> str:
        """Find the Klaviyo API key.

        The environment wins; otherwise the first readable config file is used.

        Raises:
            ConfigurationError: If no config file is found, a file is not valid
                JSON, or the file has no API key.
        """
        if self.KLAVIYO_API_KEY:
            return self.KLAVIYO_API_KEY

        tried = self.config_file_candidates()
        for path in tried:
            if not path.is_file():
                continue
            data = _read_config_file(path)
            api_key = _api_key_from_config(data)
            if not api_key:
                raise ConfigurationError(
                    "Missing required config: klaviyo.apiKey or mcpServer.env.PRIVATE_API_KEY",
                    context={"path": str(path)},
                )
            return api_key

        raise ConfigurationError(
            "Config file not found and KLAVIYO_API_KEY is not set",
            context={"tried": [str(p) for p in tried]},
        )

    def redacted_display(self) -> dict[str, str | int | float | bool | None]:
        """Return settings with the API key redacted for display."""
        key = self.KLAVIYO_API_KEY
        if key is not None:
            key = f"{key[:8]}...{key[-4:]}" if len(key) > 12 else "***"

        return {
            "KLAVIYO_API_KEY": key,
            "KLAVIYO_CONFIG_FILE": str(self.KLAVIYO_CONFIG_FILE) if self.KLAVIYO_CONFIG_FILE else None,
            "REQUEST_TIMEOUT_SECONDS": self.REQUEST_TIMEOUT_SECONDS,
            "REPORT_TIMEOUT_SECONDS": self.REPORT_TIMEOUT_SECONDS,
            "CACHE_DISABLED": self.CACHE_DISABLED,
            "MAX_PAGES": self.MAX_PAGES,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Could not read config file: {e}",
            context={"path": str(path)},
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            "Config file must contain a JSON object",
            context={"path": str(path)},
        )
    return data


def _api_key_from_config(data: dict[str, Any]) -> str | None:
    klaviyo = data.get("klaviyo") or {}
    if isinstance(klaviyo, dict) and klaviyo.get("apiKey"):
        return str(klaviyo["apiKey"])

    # Legacy MCP server config
    mcp_server = data.get("mcpServer") or {}
    env = mcp_server.get("env") if isinstance(mcp_server, dict) else None
    if isinstance(env, dict) and env.get("PRIVATE_API_KEY"):
        return str(env["PRIVATE_API_KEY"])

    return None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are present but invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
