"""Backend implementations: daemon-backed and in-memory."""

from .base import Backend, SessionBackend
from .localapi import LocalAPIBackend
from .memory import InMemoryBackend, InMemoryDaemon, InMemorySession

__all__ = [
    "Backend",
    "SessionBackend",
    "LocalAPIBackend",
    "InMemoryBackend",
    "InMemoryDaemon",
    "InMemorySession",
]
