"""funnelctl - expose a local port through Tailscale Funnel for as long as you need it."""

# High-level API
from .api import TunnelOutcome, Tunnel, build_spec, managed_tunnel, open_tunnel, run_tunnel

# Backends
from .backend import Backend, InMemoryBackend, InMemoryDaemon, LocalAPIBackend

# Configuration and errors
from .common.config import FunnelConfig, LocalAPIConfig, SessionConfig, load_config
from .common.exceptions import (
    ApplyFailedError,
    AuthRejectedError,
    ConflictError,
    ErrorKind,
    FunnelError,
    InvalidArgumentError,
    LeaseNotFoundError,
    LockHeldError,
    PortNotAccessibleError,
    PrerequisitesError,
    ProtocolError,
    SessionInterruptedError,
    UnreachableError,
    VersionTooOldError,
    WriteConflictError,
)
from .common.logging import get_logger, setup_logging

# Core models
from .core.models import (
    BackendStatus,
    Lease,
    LocalTarget,
    StopReason,
    TunnelResult,
    TunnelSpec,
)
from .core.serve_config import ServeConfig
from .routing import ConflictVerdict, PathConflict
from .session import SessionManager, SessionState

# Library default: stay quiet unless something needs attention
setup_logging(level="WARNING")

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "open_tunnel",
    "run_tunnel",
    "managed_tunnel",
    "build_spec",
    "Tunnel",
    "TunnelOutcome",
    # Backends
    "Backend",
    "LocalAPIBackend",
    "InMemoryBackend",
    "InMemoryDaemon",
    # Session
    "SessionManager",
    "SessionState",
    # Models
    "LocalTarget",
    "TunnelSpec",
    "TunnelResult",
    "Lease",
    "BackendStatus",
    "StopReason",
    "ServeConfig",
    "ConflictVerdict",
    "PathConflict",
    # Configuration
    "FunnelConfig",
    "LocalAPIConfig",
    "SessionConfig",
    "load_config",
    # Errors
    "ErrorKind",
    "FunnelError",
    "InvalidArgumentError",
    "UnreachableError",
    "AuthRejectedError",
    "PrerequisitesError",
    "ConflictError",
    "LockHeldError",
    "ApplyFailedError",
    "WriteConflictError",
    "ProtocolError",
    "PortNotAccessibleError",
    "VersionTooOldError",
    "LeaseNotFoundError",
    "SessionInterruptedError",
    # Logging
    "get_logger",
    "setup_logging",
]
