"""Configuration management for OpenPact.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached; the resulting object is frozen.
"""

import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Optional

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_WORKSPACE = "/workspace"
PATH_FIELDS = ("workspace_path", "data_dir", "scripts_dir", "ai_data_dir")


class ConfigError(Exception):
    """Startup configuration is invalid."""
    pass


def parse_features(value: Any) -> frozenset[str]:
    """Parse a comma-separated feature string (or iterable) into a set."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = list(value)
    return frozenset(p.strip() for p in parts if p and p.strip())


class ServerConfig(BaseSettings):
    """Process configuration shared by the MCP server and the admin gateway."""
    workspace_path: Path = Field(default=Path(DEFAULT_WORKSPACE))
    data_dir: Path
    scripts_dir: Path
    ai_data_dir: Path
    features: Annotated[frozenset[str], NoDecode] = Field(default_factory=frozenset)

    # Admin gateway
    bind_address: str = Field(default="localhost:8080")
    dev_mode: bool = Field(default=False)
    access_expiry: timedelta = Field(default=timedelta(minutes=15))
    refresh_expiry: timedelta = Field(default=timedelta(hours=72))
    jwt_secret: Optional[str] = Field(default=None, repr=False)
    max_auth_retries: int = Field(default=1, ge=0, le=5)

    # MCP engine
    max_concurrency: int = Field(default=8, gt=0)
    shutdown_grace_seconds: float = Field(default=5.0, ge=0)
    audit_enabled: bool = Field(default=True)

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_prefix="OPENPACT_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _derive_paths(cls, data: Any) -> Any:
        """Fill unset directories relative to the workspace root."""
        if not isinstance(data, dict):
            return data
        workspace = Path(data.get("workspace_path") or DEFAULT_WORKSPACE)
        data = dict(data)
        data["workspace_path"] = workspace
        if not data.get("data_dir"):
            data["data_dir"] = workspace / "secure" / "data"
        if not data.get("ai_data_dir"):
            data["ai_data_dir"] = workspace / "ai-data"
        if not data.get("scripts_dir"):
            data["scripts_dir"] = Path(data["ai_data_dir"]) / "scripts"
        return data

    @field_validator("features", mode="before")
    @classmethod
    def _split_features(cls, value: Any) -> frozenset[str]:
        return parse_features(value)

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def _check_expiry(self) -> "ServerConfig":
        if self.access_expiry <= timedelta(0):
            raise ValueError("access_expiry must be positive")
        if self.access_expiry >= self.refresh_expiry:
            raise ValueError("access_expiry must be shorter than refresh_expiry")
        return self

    @property
    def secure_cookies(self) -> bool:
        """Secure cookies everywhere except dev mode and localhost binds."""
        if self.dev_mode:
            return False
        return not self.bind_address.startswith(("localhost", "127.0.0.1"))

    def ensure_dirs(self) -> None:
        """Create the workspace directory layout if missing."""
        for path in (
            self.workspace_path,
            self.data_dir,
            self.ai_data_dir,
            self.scripts_dir,
            self.ai_data_dir / "memory",
        ):
            path.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ServerConfig":
        """Load settings from a YAML file; environment fills the rest."""
        data = load_yaml_config(path)
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(str(e)) from e


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"{path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def default_config_path() -> Path:
    """Resolve the config file location from the environment."""
    explicit = os.environ.get("OPENPACT_CONFIG_PATH")
    if explicit:
        return Path(explicit)
    workspace = os.environ.get("OPENPACT_WORKSPACE_PATH", DEFAULT_WORKSPACE)
    return Path(workspace) / "secure" / "config.yaml"


@lru_cache
def get_settings() -> ServerConfig:
    """Get cached process configuration."""
    return ServerConfig.from_yaml(default_config_path())
