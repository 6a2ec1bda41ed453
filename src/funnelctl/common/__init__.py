"""Common utilities and shared functionality."""

from .config import FunnelConfig, LocalAPIConfig, SessionConfig, load_config
from .exceptions import (
    ApplyFailedError,
    AuthRejectedError,
    BackendError,
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
from .logging import get_logger, level_from_verbosity, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
    mask_sensitive_data,
    sanitize_log_data,
    validate_port,
)

__all__ = [
    # Config
    "FunnelConfig",
    "LocalAPIConfig",
    "SessionConfig",
    "load_config",
    # Exceptions
    "ErrorKind",
    "FunnelError",
    "BackendError",
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
    "level_from_verbosity",
    # Utils
    "validate_port",
    "mask_sensitive_data",
    "sanitize_log_data",
    "MIN_PORT",
    "MAX_PORT",
]
