"""Shared pytest fixtures for funnelctl tests."""

import os
import socket
from collections.abc import Iterator

import pytest

from funnelctl.backend.memory import InMemoryDaemon
from funnelctl.common.config import SessionConfig
from funnelctl.core.models import LocalTarget, TunnelSpec
from funnelctl.session.lock import LockManager

DNS_NAME = "node.example.ts.net"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the user's config, state and runtime directories."""
    for name in (
        "FUNNELCTL_SOCKET",
        "FUNNELCTL_LOCALAPI_PORT",
        "FUNNELCTL_LOCALAPI_PASSWORD_FILE",
        "FUNNELCTL_LOG",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path / "runtime"))
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))


@pytest.fixture
def local_server() -> Iterator[int]:
    """A listening TCP socket on 127.0.0.1; yields its port."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    try:
        yield server.getsockname()[1]
    finally:
        server.close()


@pytest.fixture
def closed_port() -> int:
    """A port nothing listens on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def dns_name() -> str:
    return DNS_NAME


@pytest.fixture
def make_spec(local_server):
    """Factory for TunnelSpec pointing at the local test server by default."""

    def _make(path="/funnelctl/abc12345", port=None, https_port=443, funnel=True, bind="127.0.0.1"):
        return TunnelSpec(
            local_target=LocalTarget(bind=bind, port=port if port is not None else local_server),
            https_port=https_port,
            path=path,
            funnel=funnel,
        )

    return _make


@pytest.fixture
def lock_manager(tmp_path) -> LockManager:
    return LockManager(tmp_path / "funnelctl.lock")


@pytest.fixture
def daemon() -> InMemoryDaemon:
    return InMemoryDaemon(dns_name=DNS_NAME)


@pytest.fixture
def session_config() -> SessionConfig:
    """Fast timeouts and no signal handlers."""
    return SessionConfig(
        install_signal_handlers=False,
        cleanup_timeout=0.2,
        poll_interval=0.01,
        probe_timeout=1.0,
    )


@pytest.fixture
def password_file(tmp_path):
    """LocalAPI password file with the required 0600 mode."""
    path = tmp_path / "localapi-password"
    path.write_text("hunter2-local-secret\n")
    os.chmod(path, 0o600)
    return path


@pytest.fixture
def serve_config_payload(dns_name) -> dict:
    """A realistic serve config with fields funnelctl does not model."""
    return {
        "TCP": {"443": {"HTTPS": True}},
        "Web": {
            f"{dns_name}:443": {
                "Handlers": {
                    "/api/": {"Proxy": "http://127.0.0.1:9000", "Extra": "kept"},
                    "/static": {"Path": "/srv/static"},
                },
                "Unknown": {"nested": [1, 2, 3]},
            }
        },
        "AllowFunnel": {f"{dns_name}:443": True},
        "ETagHint": "opaque",
    }
