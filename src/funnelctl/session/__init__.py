"""Session lifecycle, teardown triggers and the host-local lock."""

from .interfaces import ControlAPIProtocol, SessionHandleProtocol
from .lock import LockHandle, LockManager, pid_is_alive
from .manager import SessionManager, SessionState, check_prerequisites, probe_local_target
from .triggers import StopTrigger

__all__ = [
    "ControlAPIProtocol",
    "SessionHandleProtocol",
    "LockHandle",
    "LockManager",
    "pid_is_alive",
    "SessionManager",
    "SessionState",
    "check_prerequisites",
    "probe_local_target",
    "StopTrigger",
]
