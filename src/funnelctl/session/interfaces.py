"""Protocol interfaces the session manager depends on."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..core.models import NodeStatus
    from ..core.serve_config import ServeConfig


class SessionHandleProtocol(Protocol):
    """A live bus session."""

    session_id: str

    @property
    def is_closed(self) -> bool:
        """Whether the session has ended."""
        ...

    def on_closed(self, callback: Callable[[], None]) -> None:
        """Register a callback for an unexpected end of the session."""
        ...

    def close(self) -> None:
        """End the session."""
        ...


class ControlAPIProtocol(Protocol):
    """Daemon operations used to apply and undo a route."""

    def status(self) -> NodeStatus:
        """Fetch node status."""
        ...

    def ensure_supported_version(self, status: NodeStatus | None = None) -> None:
        """Fail if the daemon is too old."""
        ...

    def open_bus_session(self) -> SessionHandleProtocol:
        """Open a session whose closure drops its foreground scope."""
        ...

    def get_serve_config(self) -> tuple[ServeConfig, str]:
        """Fetch the serve config and its version token."""
        ...

    def put_serve_config(self, config: ServeConfig, version_token: str) -> None:
        """Write the serve config guarded by a version token."""
        ...
