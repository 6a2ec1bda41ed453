"""High-level API for funnelctl.

This module provides simple functions for exposing a local port for the
lifetime of a block of code or of the calling process.
"""

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from types import TracebackType
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .backend import Backend, LocalAPIBackend
from .common.config import FunnelConfig, load_config
from .common.logging import get_logger
from .core.models import LocalTarget, StopReason, TunnelResult, TunnelSpec
from .core.validation import (
    generate_random_path,
    resolve_bind,
    validate_https_port,
    validate_path,
    validate_port,
    validate_ttl,
)

logger = get_logger(__name__)


class TunnelOutcome(BaseModel):
    """Summary of a tunnel that ran to completion."""

    model_config = ConfigDict(frozen=True)

    result: TunnelResult
    reason: StopReason
    duration: float = Field(ge=0, description="Seconds the tunnel was active")
    warnings: list[str] = Field(default_factory=list)


def build_spec(
    port: int,
    path: str | None = None,
    *,
    bind: str = "127.0.0.1",
    https_port: int = 443,
    funnel: bool = True,
    allow_non_loopback: bool = False,
) -> TunnelSpec:
    """Validate user input and build a TunnelSpec.

    Args:
        port: Local port to expose
        path: Public URL path; a random ``/funnelctl/<token>`` path if omitted
        bind: Local address the service listens on
        https_port: Public HTTPS port (443, 8443 or 10000)
        funnel: Expose publicly rather than tailnet-only
        allow_non_loopback: Permit a non-loopback bind address

    Raises:
        InvalidArgumentError: If any input is rejected
    """
    validate_port(port)
    validate_https_port(https_port)

    checked = validate_path(path if path is not None else generate_random_path())
    for warning in checked.warnings:
        logger.warning(warning)

    return TunnelSpec(
        local_target=LocalTarget(bind=resolve_bind(bind, allow_non_loopback), port=port),
        https_port=https_port,
        path=checked.normalized_path,
        funnel=funnel,
    )


def _backend_from_config(config: FunnelConfig | None, ttl: float | None, force: bool) -> Backend:
    if config is None:
        config = load_config()

    updates: dict[str, object] = {}
    if ttl is not None:
        checked = validate_ttl(ttl)
        for warning in checked.warnings:
            logger.warning(warning)
        updates["ttl"] = checked.ttl
    if force:
        updates["force"] = True

    session = config.session.model_copy(update=updates)
    return LocalAPIBackend.from_config(config.model_copy(update={"session": session}))


class Tunnel:
    """An applied route and the backend holding it."""

    def __init__(self, backend: Backend, result: TunnelResult, owns_backend: bool = False):
        self.backend = backend
        self.result = result
        self._owns_backend = owns_backend
        self._closed = False

    @property
    def url(self) -> str:
        return self.result.url

    @property
    def lease_id(self) -> str:
        return self.result.lease_id

    def wait(self) -> StopReason:
        """Block until interrupt, TTL expiry or loss of the bus session."""
        return self.backend.wait(self.lease_id)

    def close(self) -> None:
        """Remove the route; safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self.backend.remove(self.lease_id)
        finally:
            if self._owns_backend and isinstance(self.backend, LocalAPIBackend):
                self.backend.client.close()

    def __enter__(self) -> "Tunnel":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False


def open_tunnel(
    port: int,
    path: str | None = None,
    *,
    backend: Backend | None = None,
    config: FunnelConfig | None = None,
    ttl: float | None = None,
    force: bool = False,
    bind: str = "127.0.0.1",
    https_port: int = 443,
    funnel: bool = True,
) -> Tunnel:
    """Expose a local port and return the live tunnel.

    ``ttl`` and ``force`` configure the backend built from ``config``; a
    backend passed in keeps its own session settings.

    Example:
        >>> tunnel = open_tunnel(3000, "/myapp")
        >>> print(tunnel.url)
        https://node.example.ts.net/myapp
        >>> tunnel.close()
    """
    spec = build_spec(port, path, bind=bind, https_port=https_port, funnel=funnel)

    owns_backend = backend is None
    if backend is None:
        backend = _backend_from_config(config, ttl, force)

    try:
        result = backend.apply(spec)
    except BaseException:
        if owns_backend and isinstance(backend, LocalAPIBackend):
            backend.client.close()
        raise

    logger.info("Tunnel opened", url=result.url, local_port=port, path=spec.path)
    return Tunnel(backend, result, owns_backend=owns_backend)


def run_tunnel(
    port: int,
    path: str | None = None,
    *,
    on_active: Callable[[TunnelResult], None] | None = None,
    backend: Backend | None = None,
    config: FunnelConfig | None = None,
    ttl: float | None = None,
    force: bool = False,
    bind: str = "127.0.0.1",
    https_port: int = 443,
    funnel: bool = True,
) -> TunnelOutcome:
    """Expose a port until interrupted, expired or dropped, then clean up.

    Args:
        on_active: Called with the result once the route is live
        (remaining arguments as for ``open_tunnel``)

    Returns:
        TunnelOutcome describing why and after how long the tunnel stopped
    """
    started = time.monotonic()
    tunnel = open_tunnel(
        port,
        path,
        backend=backend,
        config=config,
        ttl=ttl,
        force=force,
        bind=bind,
        https_port=https_port,
        funnel=funnel,
    )
    warnings_before = len(tunnel.backend.warnings)
    try:
        if on_active is not None:
            on_active(tunnel.result)
        reason = tunnel.wait()
    finally:
        tunnel.close()

    return TunnelOutcome(
        result=tunnel.result,
        reason=reason,
        duration=time.monotonic() - started,
        warnings=tunnel.backend.warnings[warnings_before:],
    )


@contextmanager
def managed_tunnel(
    port: int,
    path: str | None = None,
    *,
    backend: Backend | None = None,
    config: FunnelConfig | None = None,
    ttl: float | None = None,
    force: bool = False,
    bind: str = "127.0.0.1",
    https_port: int = 443,
    funnel: bool = True,
) -> Iterator[Tunnel]:
    """Context manager that removes the route when the block exits.

    Example:
        >>> with managed_tunnel(3000, "/myapp") as tunnel:
        ...     print(f"Your app is live at: {tunnel.url}")
    """
    tunnel = open_tunnel(
        port,
        path,
        backend=backend,
        config=config,
        ttl=ttl,
        force=force,
        bind=bind,
        https_port=https_port,
        funnel=funnel,
    )
    try:
        yield tunnel
    finally:
        tunnel.close()
