"""Custom exceptions for funnelctl.

Every error raised by the core carries an error kind, a human-readable cause
and a suggested fix. The CLI layer maps the kind to a process exit code.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..routing.conflicts import PathConflict


class ErrorKind(str, Enum):
    """Error kinds surfaced by the backend."""

    INVALID_ARGUMENT = "invalid_argument"
    UNREACHABLE = "unreachable"
    AUTH_REJECTED = "auth_rejected"
    PREREQUISITES = "prerequisites"
    CONFLICT = "conflict"
    LOCK_HELD = "lock_held"
    APPLY_FAILED = "apply_failed"
    WRITE_CONFLICT = "write_conflict"
    PROTOCOL_ERROR = "protocol_error"
    PORT_NOT_ACCESSIBLE = "port_not_accessible"
    VERSION_TOO_OLD = "version_too_old"
    LEASE_NOT_FOUND = "lease_not_found"
    INTERRUPTED = "interrupted"
    OTHER = "other"


class FunnelError(Exception):
    """Base exception for all funnelctl errors."""

    kind: ErrorKind = ErrorKind.OTHER
    title: str = "funnelctl error"
    default_fix: str | None = None
    exit_code: int = 1

    def __init__(self, cause: str, *, fix: str | None = None) -> None:
        super().__init__(cause)
        self.cause = cause
        self.fix = fix if fix is not None else self.default_fix

    def __str__(self) -> str:
        return f"{self.title}: {self.cause}"

    def to_dict(self) -> dict[str, Any]:
        """Structured representation for machine-readable output."""
        return {
            "kind": self.kind.value,
            "message": self.title,
            "cause": self.cause,
            "fix": self.fix,
            "exit_code": self.exit_code,
        }


class InvalidArgumentError(FunnelError):
    """Raised when user-supplied input is invalid."""

    kind = ErrorKind.INVALID_ARGUMENT
    title = "Invalid argument"
    exit_code = 2


class UnreachableError(FunnelError):
    """Raised when the daemon is not running or its socket is missing."""

    kind = ErrorKind.UNREACHABLE
    title = "LocalAPI unreachable"
    default_fix = "Is tailscaled running? Try: sudo systemctl start tailscaled"
    exit_code = 10


class AuthRejectedError(FunnelError):
    """Raised when the daemon rejects our credentials or socket permissions."""

    kind = ErrorKind.AUTH_REJECTED
    title = "Permission denied"
    default_fix = "Run with sudo or add your user to the operator group"
    exit_code = 11


class PrerequisitesError(FunnelError):
    """Raised when the node is not ready to serve a public route."""

    kind = ErrorKind.PREREQUISITES
    title = "Prerequisites not met"
    default_fix = "Run 'funnelctl doctor' to diagnose the issue"
    exit_code = 12


class ConflictError(FunnelError):
    """Raised when the requested route collides with existing routes."""

    kind = ErrorKind.CONFLICT
    title = "Configuration conflict"
    default_fix = "Use a different --path or add --force to override"
    exit_code = 13

    def __init__(
        self,
        cause: str,
        *,
        conflict: PathConflict | None = None,
        fix: str | None = None,
    ) -> None:
        super().__init__(cause, fix=fix)
        self.conflict = conflict


class LockHeldError(ConflictError):
    """Raised when another local instance holds the lock."""

    kind = ErrorKind.LOCK_HELD
    title = "Another funnelctl instance is running"
    default_fix = "Stop the other instance or wait for it to exit"

    def __init__(self, pid: int | None, *, fix: str | None = None) -> None:
        cause = f"lock held by PID {pid}" if pid is not None else "lock held by unknown process"
        super().__init__(cause, fix=fix)
        self.pid = pid


class ApplyFailedError(FunnelError):
    """Raised when applying or removing a route fails."""

    kind = ErrorKind.APPLY_FAILED
    title = "Apply operation failed"
    default_fix = (
        "Check tailscaled logs for more details. Route may still exist; "
        "run `tailscale serve off` to clean up."
    )
    exit_code = 14


class WriteConflictError(ApplyFailedError):
    """Raised when a write presents a stale version token."""

    kind = ErrorKind.WRITE_CONFLICT
    title = "Serve config changed concurrently"
    default_fix = "Retry the command; the configuration was modified by someone else"


class ProtocolError(ApplyFailedError):
    """Raised when the daemon sends a malformed or unexpected response."""

    kind = ErrorKind.PROTOCOL_ERROR
    title = "Unexpected LocalAPI response"


class PortNotAccessibleError(FunnelError):
    """Raised when the local target is not accepting connections."""

    kind = ErrorKind.PORT_NOT_ACCESSIBLE
    title = "Target port inaccessible"
    default_fix = "Start your service before running funnelctl"
    exit_code = 15


class VersionTooOldError(FunnelError):
    """Raised when the daemon is older than the minimum supported version."""

    kind = ErrorKind.VERSION_TOO_OLD
    title = "Version too old"
    default_fix = "Upgrade tailscaled. See https://tailscale.com/download"
    exit_code = 16


class LeaseNotFoundError(FunnelError):
    """Raised when a lease id is not known to the backend."""

    kind = ErrorKind.LEASE_NOT_FOUND
    title = "Lease not found"
    exit_code = 14


class SessionInterruptedError(FunnelError):
    """Raised when an interrupt arrives before the tunnel became active."""

    kind = ErrorKind.INTERRUPTED
    title = "Interrupted"
    exit_code = 130


BackendError = FunnelError
