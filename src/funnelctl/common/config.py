"""Pydantic configuration for LocalAPI access and session behaviour."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import dirs
from .exceptions import InvalidArgumentError
from .logging import get_logger

logger = get_logger(__name__)

CONFIG_FILE_NAME = "config.toml"

ENV_SOCKET = "FUNNELCTL_SOCKET"
ENV_LOCALAPI_PORT = "FUNNELCTL_LOCALAPI_PORT"
ENV_PASSWORD_FILE = "FUNNELCTL_LOCALAPI_PASSWORD_FILE"


class LocalAPIConfig(BaseModel):
    """How to reach the daemon's LocalAPI."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    socket_path: Path | None = Field(default=None, description="Unix socket path override")
    localapi_port: int | None = Field(
        default=None, ge=1, le=65535, description="LocalAPI TCP port (macOS/Windows)"
    )
    password_file: Path | None = Field(
        default=None, description="File containing the LocalAPI password (0600)"
    )
    request_timeout: float = Field(
        default=5.0, ge=0.1, le=60.0, description="Timeout for LocalAPI requests in seconds"
    )


class SessionConfig(BaseModel):
    """Behaviour of one foreground tunnel session."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    force: bool = Field(default=False, description="Override conflicting serve routes")
    ttl: float | None = Field(default=None, gt=0, description="Tunnel lifetime in seconds")
    probe_timeout: float = Field(
        default=2.0, ge=0.1, le=30.0, description="Local target connect probe timeout"
    )
    cleanup_timeout: float = Field(
        default=3.0, ge=0.0, le=30.0, description="How long to wait for the daemon to drop the session"
    )
    poll_interval: float = Field(
        default=0.2, ge=0.01, le=5.0, description="Interval between teardown checks"
    )
    install_signal_handlers: bool = Field(
        default=True, description="Handle SIGINT/SIGTERM while the tunnel is active"
    )

    @field_validator("probe_timeout", "poll_interval")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        """Ensure timeouts are positive"""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v


class FunnelConfig(BaseModel):
    """Top-level configuration combining LocalAPI access and session settings."""

    model_config = ConfigDict(extra="forbid")

    localapi: LocalAPIConfig = Field(default_factory=LocalAPIConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if os.environ.get(ENV_SOCKET):
        overrides["socket_path"] = os.environ[ENV_SOCKET]
    if os.environ.get(ENV_LOCALAPI_PORT):
        overrides["localapi_port"] = os.environ[ENV_LOCALAPI_PORT]
    if os.environ.get(ENV_PASSWORD_FILE):
        overrides["password_file"] = os.environ[ENV_PASSWORD_FILE]
    return overrides


def default_config_path() -> Path:
    return dirs.config_dir() / CONFIG_FILE_NAME


def load_config(path: Path | None = None) -> FunnelConfig:
    """Load configuration from TOML and environment overrides.

    Args:
        path: Explicit config file; defaults to ``<config dir>/config.toml``.
            A missing default file is not an error, a missing explicit one is.

    Returns:
        Validated FunnelConfig

    Raises:
        InvalidArgumentError: If the file cannot be parsed or fails validation
    """
    explicit = path is not None
    config_path = path if path is not None else default_config_path()

    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise InvalidArgumentError(f"Failed to read config {config_path}: {e}") from e
        logger.debug("Loaded config file", path=str(config_path))
    elif explicit:
        raise InvalidArgumentError(f"Config file {config_path} not found")

    localapi = dict(data.get("localapi", {}))
    localapi.update(_env_overrides())
    data["localapi"] = localapi

    try:
        return FunnelConfig.model_validate(data)
    except ValidationError as e:
        raise InvalidArgumentError(f"Invalid configuration: {e}") from e
