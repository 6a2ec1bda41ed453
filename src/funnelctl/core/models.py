"""Tunnel request, result and status models.

All models are immutable: a TunnelSpec is built once from validated input and a
result is produced once per successful apply.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALLOWED_HTTPS_PORTS = (443, 8443, 10000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StopReason(str, Enum):
    """Why an active tunnel started tearing down."""

    USER_INTERRUPT = "user_interrupt"
    TTL_EXPIRED = "ttl_expired"
    BUS_CLOSED = "bus_closed"
    REMOVED = "removed"


class LocalTarget(BaseModel):
    """Loopback address and port the public route forwards to."""

    model_config = ConfigDict(frozen=True)

    bind: str = Field(default="127.0.0.1", min_length=1, description="Bind IP")
    port: int = Field(ge=1, le=65535, description="Local port to expose")

    @property
    def url_host(self) -> str:
        if ":" in self.bind and not self.bind.startswith("["):
            return f"[{self.bind}]"
        return self.bind

    def to_url(self) -> str:
        return f"http://{self.url_host}:{self.port}"

    def __str__(self) -> str:
        return self.to_url()


class TunnelSpec(BaseModel):
    """Immutable tunnel request."""

    model_config = ConfigDict(frozen=True)

    local_target: LocalTarget
    https_port: int = Field(default=443, description="Public HTTPS port")
    path: str = Field(description="URL path, starting with '/'")
    funnel: bool = Field(default=True, description="Expose publicly via Funnel")

    @field_validator("https_port")
    @classmethod
    def validate_https_port(cls, v: int) -> int:
        if v not in ALLOWED_HTTPS_PORTS:
            raise ValueError(f"HTTPS port must be one of {list(ALLOWED_HTTPS_PORTS)}, got {v}")
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("path must start with '/'")
        if any(ord(char) < 0x20 for char in v):
            raise ValueError("path contains control characters")
        return v

    @property
    def target(self) -> str:
        return self.local_target.to_url()

    @property
    def is_prefix(self) -> bool:
        return self.path.endswith("/")


class TunnelResult(BaseModel):
    """Outcome of a successful apply."""

    model_config = ConfigDict(frozen=True)

    url: str
    lease_id: str
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime | None = None


class Lease(BaseModel):
    """In-memory record of what a session created and how to undo it."""

    model_config = ConfigDict(frozen=True)

    lease_id: str
    session_id: str
    spec: TunnelSpec
    dns_name: str
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime | None = None


class NodeStatus(BaseModel):
    """Subset of the daemon's status we rely on."""

    model_config = ConfigDict(frozen=True)

    dns_name: str | None = None
    tailnet_name: str | None = None
    version: str | None = None
    https_enabled: bool | None = None
    funnel_enabled: bool | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)


class BackendStatus(BaseModel):
    """Status reported by ``Backend.status``."""

    model_config = ConfigDict(frozen=True)

    dns_name: str | None = None
    version: str | None = None
    https_enabled: bool | None = None
    funnel_enabled: bool | None = None
    permissions_ok: bool | None = None


def public_url(dns_name: str, https_port: int, path: str) -> str:
    """Build the public URL; port 443 is left implicit."""
    if https_port == 443:
        base = f"https://{dns_name}"
    else:
        base = f"https://{dns_name}:{https_port}"
    return base + path
