"""Backend that talks to a running tailscaled."""

import os
from collections.abc import Callable
from typing import Any

from ..common.config import FunnelConfig, SessionConfig, load_config
from ..common.exceptions import AuthRejectedError, FunnelError
from ..common.logging import get_logger
from ..core.models import BackendStatus
from ..localapi.client import LocalAPIClient
from ..localapi.transport import create_transport
from ..session.lock import LockManager
from .base import SessionBackend

logger = get_logger(__name__)


class LocalAPIBackend(SessionBackend):
    """Routes applied through the daemon's LocalAPI."""

    def __init__(
        self,
        client: LocalAPIClient,
        session_config: SessionConfig | None = None,
        lock_manager: LockManager | None = None,
        exit_func: Callable[[int], Any] = os._exit,
    ):
        super().__init__(
            client, session_config=session_config, lock_manager=lock_manager, exit_func=exit_func
        )
        self.client = client

    @classmethod
    def from_config(
        cls,
        config: FunnelConfig | None = None,
        lock_manager: LockManager | None = None,
    ) -> "LocalAPIBackend":
        """Build a backend from configuration (loaded from disk if not given)."""
        if config is None:
            config = load_config()
        transport = create_transport(config.localapi)
        return cls(LocalAPIClient(transport), config.session, lock_manager=lock_manager)

    def status(self) -> BackendStatus:
        node = self.client.status()

        # Reading the serve config needs the same rights as writing it.
        try:
            self.client.get_serve_config()
            permissions_ok: bool | None = True
        except AuthRejectedError:
            permissions_ok = False
        except FunnelError as e:
            logger.debug("Could not determine serve config permissions", error=str(e))
            permissions_ok = None

        return BackendStatus(
            dns_name=node.dns_name,
            version=node.version,
            https_enabled=node.https_enabled,
            funnel_enabled=node.funnel_enabled,
            permissions_ok=permissions_ok,
        )

    def close(self) -> None:
        try:
            super().close()
        finally:
            self.client.close()
