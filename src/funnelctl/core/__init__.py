"""Core data model: tunnel specs, results and the serve configuration."""

from .models import (
    ALLOWED_HTTPS_PORTS,
    BackendStatus,
    Lease,
    LocalTarget,
    NodeStatus,
    StopReason,
    TunnelResult,
    TunnelSpec,
    public_url,
)
from .serve_config import HTTPHandler, ServeConfig, WebServerConfig, host_port
from .validation import (
    generate_random_path,
    parse_ttl,
    resolve_bind,
    validate_https_port,
    validate_path,
    validate_port,
    validate_ttl,
)

__all__ = [
    # Models
    "ALLOWED_HTTPS_PORTS",
    "LocalTarget",
    "TunnelSpec",
    "TunnelResult",
    "Lease",
    "NodeStatus",
    "BackendStatus",
    "StopReason",
    "public_url",
    # Serve config
    "ServeConfig",
    "WebServerConfig",
    "HTTPHandler",
    "host_port",
    # Validation
    "validate_path",
    "validate_ttl",
    "parse_ttl",
    "validate_port",
    "validate_https_port",
    "resolve_bind",
    "generate_random_path",
]
