"""In-memory daemon and backend for tests and dry runs.

``InMemoryDaemon`` implements the same control surface as ``LocalAPIClient``:
version tokens, bus sessions and the daemon's habit of discarding a
session's foreground scope when its bus closes.
"""

import os
import threading
import uuid
from collections.abc import Callable
from typing import Any

from ..common.config import SessionConfig
from ..common.exceptions import ProtocolError, WriteConflictError
from ..common.logging import get_logger
from ..core.models import BackendStatus, NodeStatus
from ..core.serve_config import ServeConfig
from ..localapi.client import ensure_version_supported
from ..routing.patch import remove_session_scope
from ..session.lock import LockManager
from .base import SessionBackend

logger = get_logger(__name__)


class InMemorySession:
    """Bus session handle issued by ``InMemoryDaemon``."""

    def __init__(self, daemon: "InMemoryDaemon", session_id: str):
        self._daemon = daemon
        self.session_id = session_id
        self._closed = False
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def on_closed(self, callback: Callable[[], None]) -> None:
        with self._lock:
            closed = self._closed
            if not closed:
                self._callbacks.append(callback)
        if closed:
            callback()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._callbacks.clear()
        self._daemon._end_session(self.session_id)

    def _disconnect(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()


class InMemoryDaemon:
    """A fake tailscaled holding one serve config."""

    def __init__(
        self,
        dns_name: str | None = "node.example.ts.net",
        version: str | None = "1.76.1",
        https_enabled: bool | None = True,
        funnel_enabled: bool | None = True,
        config: ServeConfig | None = None,
        honors_bus_close: bool = True,
    ):
        self.dns_name = dns_name
        self.version = version
        self.https_enabled = https_enabled
        self.funnel_enabled = funnel_enabled
        self.honors_bus_close = honors_bus_close
        self.writes = 0
        self._config = config.model_copy(deep=True) if config else ServeConfig()
        self._generation = 1
        self._sessions: dict[str, InMemorySession] = {}
        self._lock = threading.RLock()

    @property
    def etag(self) -> str:
        return f'"{self._generation}"'

    @property
    def serve_config(self) -> ServeConfig:
        with self._lock:
            return self._config.model_copy(deep=True)

    @property
    def active_sessions(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def status(self) -> NodeStatus:
        return NodeStatus(
            dns_name=self.dns_name,
            tailnet_name=self.dns_name.split(".", 1)[-1] if self.dns_name else None,
            version=self.version,
            https_enabled=self.https_enabled,
            funnel_enabled=self.funnel_enabled,
        )

    def ensure_supported_version(self, status: NodeStatus | None = None) -> None:
        ensure_version_supported((status or self.status()).version)

    def open_bus_session(self) -> InMemorySession:
        session = InMemorySession(self, uuid.uuid4().hex)
        with self._lock:
            self._sessions[session.session_id] = session
        logger.debug("In-memory bus session opened", session_id=session.session_id)
        return session

    def get_serve_config(self) -> tuple[ServeConfig, str]:
        with self._lock:
            return self._config.model_copy(deep=True), self.etag

    def put_serve_config(self, config: ServeConfig, version_token: str) -> None:
        self.ensure_supported_version()
        with self._lock:
            if version_token != self.etag:
                raise WriteConflictError(
                    f"version token {version_token} does not match {self.etag}"
                )
            self._store(config)
            self.writes += 1

    def replace_config(self, config: ServeConfig) -> None:
        """Change the document out of band, as another client would."""
        with self._lock:
            self._store(config)

    def disconnect(self, session_id: str) -> None:
        """Close a bus session from the daemon side."""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise ProtocolError(f"no bus session {session_id}")
        self._end_session(session_id)
        session._disconnect()

    def _store(self, config: ServeConfig) -> None:
        # Round-trip through the wire format so callers can't share state with us.
        self._config = ServeConfig.from_payload(config.to_payload())
        self._generation += 1

    def _end_session(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                return
            if not self.honors_bus_close:
                return
            updated, removed = remove_session_scope(self._config, session_id)
            if removed:
                self._store(updated)
                logger.debug("Dropped foreground scope of closed session", session_id=session_id)


class InMemoryBackend(SessionBackend):
    """Full session lifecycle against an ``InMemoryDaemon``."""

    def __init__(
        self,
        daemon: InMemoryDaemon | None = None,
        session_config: SessionConfig | None = None,
        lock_manager: LockManager | None = None,
        exit_func: Callable[[int], Any] = os._exit,
    ):
        self.daemon = daemon or InMemoryDaemon()
        super().__init__(
            self.daemon,
            session_config=session_config,
            lock_manager=lock_manager,
            exit_func=exit_func,
        )

    def status(self) -> BackendStatus:
        node = self.daemon.status()
        return BackendStatus(
            dns_name=node.dns_name,
            version=node.version,
            https_enabled=node.https_enabled,
            funnel_enabled=node.funnel_enabled,
            permissions_ok=True,
        )
