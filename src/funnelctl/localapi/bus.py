"""Held-open ``watch-ipn-bus`` stream.

tailscaled ties every ``Foreground`` entry of the serve config to a bus
watcher. While the stream stays open the entry lives; once it closes the
daemon discards it. That makes the stream our crash-safe lease.
"""

import json
import threading
from collections.abc import Callable, Iterator

from ..common.exceptions import FunnelError, ProtocolError
from ..common.logging import get_logger
from .transport import StreamHandle

logger = get_logger(__name__)

SESSION_ID_KEYS = ("SessionID", "session_id", "sessionId")


def parse_session_id(line: str) -> str | None:
    """Extract the session id from one bus notification, if present.

    Raises:
        ProtocolError: If the line is not valid JSON
    """
    try:
        value = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"invalid watch-ipn-bus notification: {e}") from e

    if not isinstance(value, dict):
        return None
    for key in SESSION_ID_KEYS:
        session_id = value.get(key)
        if isinstance(session_id, str) and session_id:
            return session_id
    return None


class BusSession:
    """A live bus session identified by the daemon-issued session id."""

    def __init__(self, stream: StreamHandle, session_id: str, lines: Iterator[str]):
        self._stream = stream
        self._lines = lines
        self.session_id = session_id
        self._ended = threading.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._monitor: threading.Thread | None = None

    @classmethod
    def open(cls, stream: StreamHandle) -> "BusSession":
        """Read notifications until the session id arrives, then keep draining.

        Raises:
            ProtocolError: If the stream ends without a session id
        """
        lines = stream.iter_lines()
        session_id = None
        try:
            for line in lines:
                if not line.strip():
                    continue
                session_id = parse_session_id(line)
                if session_id is not None:
                    break
        except BaseException:
            stream.close()
            raise

        if session_id is None:
            stream.close()
            raise ProtocolError("watch-ipn-bus did not provide a session id")

        session = cls(stream, session_id, lines)
        session.start_monitor()
        logger.debug("Bus session opened", session_id=session_id)
        return session

    @property
    def is_closed(self) -> bool:
        return self._stream.closed or self._ended.is_set()

    def start_monitor(self) -> None:
        if self._monitor is not None:
            return
        self._monitor = threading.Thread(
            target=self._drain, name=f"funnelctl-bus-{self.session_id[:8]}", daemon=True
        )
        self._monitor.start()

    def _drain(self) -> None:
        try:
            for _ in self._lines:
                pass
        except FunnelError as e:
            logger.debug("watch-ipn-bus stream ended with error", error=str(e))

        with self._lock:
            self._ended.set()
            callbacks = list(self._callbacks)

        if self._stream.closed:
            return
        logger.warning("watch-ipn-bus stream closed by daemon", session_id=self.session_id)
        for callback in callbacks:
            callback()

    def on_closed(self, callback: Callable[[], None]) -> None:
        """Register a callback for an unexpected end of the stream.

        Runs immediately if the stream already ended. Not called after
        ``close``.
        """
        with self._lock:
            ended = self._ended.is_set()
            if not ended:
                self._callbacks.append(callback)
        if ended and not self._stream.closed:
            callback()

    def close(self) -> None:
        """Close the stream, telling the daemon to drop our foreground scope."""
        if self._stream.closed:
            return
        logger.debug("Closing bus session", session_id=self.session_id)
        self._stream.close()
        if self._monitor is not None and self._monitor is not threading.current_thread():
            self._monitor.join(timeout=1.0)
