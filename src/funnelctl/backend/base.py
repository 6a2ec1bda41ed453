"""Backend facade shared by the daemon-backed and in-memory variants."""

import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from types import TracebackType
from typing import Any, Literal

from ..common.config import SessionConfig
from ..common.exceptions import LeaseNotFoundError
from ..common.logging import get_logger
from ..core.models import BackendStatus, Lease, StopReason, TunnelResult, TunnelSpec
from ..session.interfaces import ControlAPIProtocol
from ..session.lock import LockManager
from ..session.manager import SessionManager

logger = get_logger(__name__)


class Backend(ABC):
    """Apply, hold and remove public routes."""

    def __init__(self) -> None:
        self.warnings: list[str] = []

    @abstractmethod
    def apply(self, spec: TunnelSpec) -> TunnelResult:
        """Create the route described by ``spec``."""

    @abstractmethod
    def remove(self, lease_id: str) -> None:
        """Undo the route created under ``lease_id``."""

    @abstractmethod
    def status(self) -> BackendStatus:
        """Report node readiness."""

    @abstractmethod
    def wait(self, lease_id: str) -> StopReason:
        """Block until the lease's route should be torn down."""


class SessionBackend(Backend):
    """Backend whose leases are driven by ``SessionManager`` instances."""

    def __init__(
        self,
        control: ControlAPIProtocol,
        session_config: SessionConfig | None = None,
        lock_manager: LockManager | None = None,
        exit_func: Callable[[int], Any] = os._exit,
    ):
        super().__init__()
        self.control = control
        self.session_config = session_config or SessionConfig()
        self.lock_manager = lock_manager or LockManager()
        self._exit_func = exit_func
        self._sessions: dict[str, SessionManager] = {}
        self._lock = threading.Lock()

    def _get(self, lease_id: str) -> SessionManager:
        with self._lock:
            manager = self._sessions.get(lease_id)
        if manager is None:
            raise LeaseNotFoundError(f"unknown lease {lease_id}")
        return manager

    def apply(self, spec: TunnelSpec) -> TunnelResult:
        manager = SessionManager(
            self.control,
            config=self.session_config,
            lock_manager=self.lock_manager,
            exit_func=self._exit_func,
        )
        result = manager.start(spec)
        with self._lock:
            self._sessions[result.lease_id] = manager
        return result

    def wait(self, lease_id: str) -> StopReason:
        return self._get(lease_id).wait()

    def remove(self, lease_id: str) -> None:
        with self._lock:
            manager = self._sessions.pop(lease_id, None)
        if manager is None:
            raise LeaseNotFoundError(f"unknown lease {lease_id}")
        manager.stop(StopReason.REMOVED)
        self.warnings.extend(manager.teardown())
        logger.debug("Lease removed", lease_id=lease_id)

    def get_lease(self, lease_id: str) -> Lease:
        lease = self._get(lease_id).lease
        if lease is None:
            raise LeaseNotFoundError(f"lease {lease_id} is not active")
        return lease

    def list_leases(self) -> list[Lease]:
        with self._lock:
            managers = list(self._sessions.values())
        return [m.lease for m in managers if m.lease is not None]

    def close(self) -> None:
        """Remove every remaining lease."""
        with self._lock:
            lease_ids = list(self._sessions)
        for lease_id in lease_ids:
            self.remove(lease_id)

    def __enter__(self) -> "SessionBackend":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False
