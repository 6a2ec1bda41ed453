"""Session lifecycle: apply a route, hold it, and undo it on the way out.

States::

    INITIALIZING -> ACTIVE -> TEARING_DOWN -> CLOSED
          \\            \\            \\
           +------------+------------+--> FAILED

The route lives in the ``Foreground`` scope of our bus session, so the daemon
removes it on its own when the session ends, even if this process crashes.
Teardown closes the session, waits briefly for the daemon to drop the scope
and removes it explicitly if it is still there.
"""

import os
import signal
import socket
import threading
import time
import uuid
from collections.abc import Callable
from datetime import timedelta
from enum import Enum
from types import FrameType, TracebackType
from typing import Any, Literal

from ..common.config import SessionConfig
from ..common.exceptions import (
    ConflictError,
    FunnelError,
    PortNotAccessibleError,
    PrerequisitesError,
    SessionInterruptedError,
)
from ..common.logging import get_logger
from ..core.models import (
    Lease,
    LocalTarget,
    NodeStatus,
    StopReason,
    TunnelResult,
    TunnelSpec,
    public_url,
    utc_now,
)
from ..routing import ConflictVerdict, apply_patch, detect_conflict, is_fatal, remove_session_scope
from .interfaces import ControlAPIProtocol, SessionHandleProtocol
from .lock import LockHandle, LockManager
from .triggers import StopTrigger

logger = get_logger(__name__)

INTERRUPT_EXIT_CODE = 130
HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    TEARING_DOWN = "tearing_down"
    CLOSED = "closed"
    FAILED = "failed"


def probe_local_target(target: LocalTarget, timeout: float) -> None:
    """Make sure something accepts connections on the local target.

    Raises:
        PortNotAccessibleError: If the connection is refused or times out
    """
    try:
        with socket.create_connection((target.bind, target.port), timeout=timeout):
            pass
    except TimeoutError as e:
        raise PortNotAccessibleError(f"Timed out connecting to {target}") from e
    except OSError as e:
        raise PortNotAccessibleError(f"Connection refused to {target}") from e


def check_prerequisites(status: NodeStatus, spec: TunnelSpec) -> str:
    """Verify the node can serve the route and return its DNS name.

    Raises:
        PrerequisitesError: If DNS, HTTPS or Funnel is not ready
    """
    if not status.dns_name:
        raise PrerequisitesError(
            "Node not yet assigned DNS name", fix="Run 'tailscale up' and enable MagicDNS"
        )
    if status.https_enabled is not True:
        raise PrerequisitesError(
            "HTTPS not enabled",
            fix="Enable HTTPS certificates in the admin console, then run 'tailscale cert'",
        )
    if spec.funnel and status.funnel_enabled is not True:
        raise PrerequisitesError(
            "Funnel not enabled in tailnet policy",
            fix="Grant the 'funnel' node attribute to this device in the tailnet policy",
        )
    return status.dns_name


class SessionManager:
    """Drives one tunnel through its lifecycle."""

    def __init__(
        self,
        control: ControlAPIProtocol,
        config: SessionConfig | None = None,
        lock_manager: LockManager | None = None,
        exit_func: Callable[[int], Any] = os._exit,
    ):
        """Initialize the session manager

        Args:
            control: LocalAPI client or an in-memory stand-in
            config: Session behaviour (force, TTL, timeouts)
            lock_manager: Host-local lock provider
            exit_func: Called with 130 on a second interrupt during teardown
        """
        self.control = control
        self.config = config or SessionConfig()
        self.lock_manager = lock_manager or LockManager()
        self.trigger = StopTrigger()
        self.state = SessionState.INITIALIZING
        self.warnings: list[str] = []

        self._exit = exit_func
        self._lock_handle: LockHandle | None = None
        self._session: SessionHandleProtocol | None = None
        self._lease: Lease | None = None
        self._deadline: float | None = None
        self._interrupts = 0
        self._previous_handlers: dict[int, Any] = {}
        self._state_lock = threading.RLock()

    @property
    def lease(self) -> Lease | None:
        return self._lease

    @property
    def session_id(self) -> str | None:
        return self._session.session_id if self._session is not None else None

    # -- signals ---------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if not self.config.install_signal_handlers:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on main thread, signal handlers not installed")
            return
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        self.interrupt()

    def interrupt(self) -> None:
        """Request teardown; a repeated request during teardown exits at once."""
        self._interrupts += 1
        if self.state is SessionState.TEARING_DOWN or self._interrupts > 1:
            self._force_exit()
            return
        logger.info("Interrupt received, tearing down", state=self.state.value)
        self.trigger.fire(StopReason.USER_INTERRUPT)

    def _force_exit(self) -> None:
        logger.warning(
            "Second interrupt, exiting without cleanup; route may remain until the daemon "
            "notices the closed session",
            session_id=self.session_id,
        )
        self._release_lock()
        self._exit(INTERRUPT_EXIT_CODE)

    def _check_cancelled(self) -> None:
        if self.trigger.reason is StopReason.USER_INTERRUPT:
            raise SessionInterruptedError("interrupted before the tunnel became active")

    # -- lifecycle -------------------------------------------------------

    def start(self, spec: TunnelSpec) -> TunnelResult:
        """Apply the route and move to ACTIVE.

        Raises:
            FunnelError: Any failure; the session is left FAILED and cleaned up
        """
        with self._state_lock:
            if self.state is not SessionState.INITIALIZING or self._lock_handle is not None:
                raise FunnelError(f"cannot start session in state {self.state.value}")

        self._install_signal_handlers()
        try:
            return self._initialize(spec)
        except BaseException as e:
            logger.debug("Session start failed", error=str(e))
            self._fail()
            raise

    def _initialize(self, spec: TunnelSpec) -> TunnelResult:
        self._lock_handle = self.lock_manager.acquire(f"{spec.https_port}{spec.path}")
        self._check_cancelled()

        session = self.control.open_bus_session()
        self._session = session
        logger.debug("Bus session established", session_id=session.session_id)
        self._check_cancelled()

        probe_local_target(spec.local_target, self.config.probe_timeout)
        self._check_cancelled()

        status = self.control.status()
        self.control.ensure_supported_version(status)
        dns_name = check_prerequisites(status, spec)
        self._check_cancelled()

        existing, version_token = self.control.get_serve_config()
        conflict = detect_conflict(existing, spec, dns_name)
        if is_fatal(conflict.verdict, self.config.force):
            raise ConflictError(conflict.message, conflict=conflict)
        if conflict.verdict.is_collision:
            logger.warning("Overriding conflicting route", conflict=conflict.message)
        elif conflict.verdict is ConflictVerdict.IDENTICAL_IDEMPOTENT:
            logger.info("Route already present", path=spec.path, target=spec.target)
        self._check_cancelled()

        patched = apply_patch(existing, spec, session.session_id, dns_name)
        self.control.put_serve_config(patched, version_token)

        created_at = utc_now()
        expires_at = None
        if self.config.ttl is not None:
            expires_at = created_at + timedelta(seconds=self.config.ttl)
            self._deadline = time.monotonic() + self.config.ttl

        self._lease = Lease(
            lease_id=str(uuid.uuid4()),
            session_id=session.session_id,
            spec=spec,
            dns_name=dns_name,
            created_at=created_at,
            expires_at=expires_at,
        )
        with self._state_lock:
            self.state = SessionState.ACTIVE
        session.on_closed(lambda: self.trigger.fire(StopReason.BUS_CLOSED))

        url = public_url(dns_name, spec.https_port, spec.path)
        logger.info("Tunnel active", url=url, lease_id=self._lease.lease_id, target=spec.target)
        return TunnelResult(
            url=url,
            lease_id=self._lease.lease_id,
            created_at=created_at,
            expires_at=expires_at,
        )

    def wait(self) -> StopReason:
        """Block until interrupt, TTL expiry or bus closure."""
        if self.state is not SessionState.ACTIVE:
            raise FunnelError(f"cannot wait on session in state {self.state.value}")

        while True:
            timeout = None
            if self._deadline is not None:
                timeout = max(0.0, self._deadline - time.monotonic())
            reason = self.trigger.wait(timeout)
            if reason is not None:
                break
            if self._deadline is not None and time.monotonic() >= self._deadline:
                self.trigger.fire(StopReason.TTL_EXPIRED)

        logger.info("Tunnel stopping", reason=reason.value)
        return reason

    def stop(self, reason: StopReason = StopReason.REMOVED) -> None:
        """Wake ``wait`` from another thread."""
        self.trigger.fire(reason)

    def teardown(self) -> list[str]:
        """Undo the route and release the lock. Never raises for cleanup failures.

        Returns:
            Warnings recorded during teardown
        """
        with self._state_lock:
            if self.state in (SessionState.CLOSED, SessionState.FAILED, SessionState.TEARING_DOWN):
                return self.warnings
            self.state = SessionState.TEARING_DOWN

        try:
            self._remove_route()
        finally:
            self._release_lock()
            self._restore_signal_handlers()
            with self._state_lock:
                self.state = SessionState.CLOSED
            logger.debug("Session closed", warnings=len(self.warnings))
        return self.warnings

    def run(
        self,
        spec: TunnelSpec,
        on_active: Callable[[TunnelResult], None] | None = None,
    ) -> tuple[TunnelResult, StopReason]:
        """Start, wait for a stop trigger, then tear down."""
        result = self.start(spec)
        try:
            if on_active is not None:
                on_active(result)
            reason = self.wait()
        finally:
            self.teardown()
        return result, reason

    # -- cleanup ---------------------------------------------------------

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def _close_session(self) -> None:
        if self._session is None:
            return
        try:
            self._session.close()
        except Exception as e:
            self._warn(f"failed to close bus session: {e}")

    def _wait_for_scope_release(self, session_id: str) -> bool:
        deadline = time.monotonic() + self.config.cleanup_timeout
        while True:
            try:
                config, _ = self.control.get_serve_config()
            except FunnelError as e:
                logger.debug("Could not verify session cleanup", error=str(e))
                return False
            if config.session_scope(session_id) is None:
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.config.poll_interval)

    def _remove_route(self) -> None:
        self._close_session()
        if self._lease is None:
            return

        session_id = self._lease.session_id
        if self._wait_for_scope_release(session_id):
            logger.info("Tunnel removed", lease_id=self._lease.lease_id)
            return

        logger.warning("Daemon kept session scope, removing it explicitly", session_id=session_id)
        try:
            existing, version_token = self.control.get_serve_config()
            updated, removed = remove_session_scope(existing, session_id)
            if removed:
                self.control.put_serve_config(updated, version_token)
                logger.info("Session scope removed", session_id=session_id)
        except FunnelError as e:
            self._warn(f"failed to remove session {session_id} from serve config: {e}")

    def _release_lock(self) -> None:
        handle, self._lock_handle = self._lock_handle, None
        if handle is None:
            return
        try:
            handle.release()
        except OSError as e:
            self._warn(f"failed to release lock: {e}")

    def _fail(self) -> None:
        with self._state_lock:
            self.state = SessionState.FAILED
        self._close_session()
        self._release_lock()
        self._restore_signal_handlers()

    def __enter__(self) -> "SessionManager":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.teardown()
        return False
