"""One-shot teardown trigger shared by signal handlers, TTL and the bus monitor."""

import threading

from ..core.models import StopReason


class StopTrigger:
    """First ``fire`` wins; later calls are ignored."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: StopReason | None = None

    @property
    def reason(self) -> StopReason | None:
        return self._reason

    def is_set(self) -> bool:
        return self._event.is_set()

    def fire(self, reason: StopReason) -> bool:
        """Record ``reason`` if nothing fired yet. Returns True if it won."""
        with self._lock:
            if self._reason is not None:
                return False
            self._reason = reason
        self._event.set()
        return True

    def wait(self, timeout: float | None = None) -> StopReason | None:
        """Block until fired or ``timeout`` seconds pass.

        ``Event.wait`` measures its timeout on the monotonic clock.
        """
        self._event.wait(timeout)
        return self._reason
