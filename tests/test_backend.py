"""Tests for the backend facade."""

import threading
from unittest.mock import Mock

import pytest

from funnelctl.backend import InMemoryBackend, InMemoryDaemon, LocalAPIBackend
from funnelctl.common.config import FunnelConfig, LocalAPIConfig
from funnelctl.common.exceptions import (
    AuthRejectedError,
    LeaseNotFoundError,
    LockHeldError,
    ProtocolError,
)
from funnelctl.core.models import NodeStatus, StopReason
from funnelctl.core.serve_config import ServeConfig
from funnelctl.localapi.client import LocalAPIClient
from funnelctl.localapi.transport import UnixSocketTransport


@pytest.fixture
def backend(daemon, session_config, lock_manager):
    backend = InMemoryBackend(daemon, session_config=session_config, lock_manager=lock_manager)
    yield backend
    backend.close()


class TestInMemoryBackend:
    """Test the full lifecycle against the in-memory daemon"""

    def test_apply_and_remove(self, backend, daemon, make_spec):
        """Test that remove undoes apply"""
        result = backend.apply(make_spec())

        lease = backend.get_lease(result.lease_id)
        assert lease.dns_name == daemon.dns_name
        assert backend.list_leases() == [lease]
        assert daemon.serve_config.session_scope(lease.session_id) is not None

        backend.remove(result.lease_id)

        assert backend.list_leases() == []
        assert daemon.serve_config.session_scope(lease.session_id) is None
        assert backend.warnings == []

    def test_wait_returns_on_remove(self, backend, make_spec):
        """Test that removing a lease wakes its waiter"""
        result = backend.apply(make_spec())
        reasons = []
        waiter = threading.Thread(target=lambda: reasons.append(backend.wait(result.lease_id)))
        waiter.start()

        manager = backend._get(result.lease_id)
        manager.stop(StopReason.REMOVED)
        waiter.join(timeout=2.0)
        backend.remove(result.lease_id)

        assert reasons == [StopReason.REMOVED]

    def test_unknown_lease(self, backend):
        """Test that unknown lease ids are reported"""
        with pytest.raises(LeaseNotFoundError, match="unknown lease") as exc_info:
            backend.remove("nope")

        assert exc_info.value.exit_code == 14
        with pytest.raises(LeaseNotFoundError):
            backend.wait("nope")
        with pytest.raises(LeaseNotFoundError):
            backend.get_lease("nope")

    def test_second_apply_blocked_by_host_lock(self, backend, make_spec):
        """Test that one host runs one session at a time"""
        backend.apply(make_spec("/first/"))

        with pytest.raises(LockHeldError):
            backend.apply(make_spec("/second/"))

    def test_status(self, backend):
        """Test node readiness reporting"""
        status = backend.status()

        assert status.dns_name == "node.example.ts.net"
        assert status.version == "1.76.1"
        assert status.https_enabled is True
        assert status.funnel_enabled is True
        assert status.permissions_ok is True

    def test_close_removes_everything(self, daemon, session_config, lock_manager, make_spec):
        """Test that the context manager removes remaining leases"""
        with InMemoryBackend(daemon, session_config=session_config, lock_manager=lock_manager) as backend:
            backend.apply(make_spec())

        assert daemon.active_sessions == []
        assert backend.list_leases() == []


class TestInMemoryDaemon:
    """Test the fake daemon's own behaviour"""

    def test_etag_changes_on_write(self, daemon):
        """Test that every stored write bumps the version token"""
        _, first = daemon.get_serve_config()
        daemon.put_serve_config(ServeConfig(), first)
        _, second = daemon.get_serve_config()

        assert first != second
        assert daemon.writes == 1

    def test_disconnect_unknown_session(self, daemon):
        """Test that disconnecting an unknown session is an error"""
        with pytest.raises(ProtocolError):
            daemon.disconnect("ghost")

    def test_initial_config_copied(self):
        """Test that the daemon keeps its own copy of the seed document"""
        seed = ServeConfig.from_payload({"TCP": {"443": {"HTTPS": True}}})
        daemon = InMemoryDaemon(config=seed)

        assert daemon.serve_config.to_payload() == seed.to_payload()
        assert daemon.serve_config is not seed


class TestLocalAPIBackend:
    """Test the daemon-backed variant"""

    def make_client(self, **overrides):
        client = Mock(spec=LocalAPIClient)
        client.status.return_value = NodeStatus(
            dns_name="node.example.ts.net",
            version="1.76.1",
            https_enabled=True,
            funnel_enabled=False,
        )
        client.get_serve_config.return_value = (ServeConfig(), '"1"')
        for name, value in overrides.items():
            setattr(getattr(client, name), "side_effect", value)
        return client

    def test_status_permissions_ok(self, lock_manager):
        """Test that a readable serve config means permissions are fine"""
        backend = LocalAPIBackend(self.make_client(), lock_manager=lock_manager)

        status = backend.status()

        assert status.permissions_ok is True
        assert status.funnel_enabled is False

    def test_status_permissions_denied(self, lock_manager):
        """Test that an auth rejection is reported as missing permissions"""
        client = self.make_client(get_serve_config=AuthRejectedError("denied"))

        assert LocalAPIBackend(client, lock_manager=lock_manager).status().permissions_ok is False

    def test_status_permissions_unknown(self, lock_manager):
        """Test that other failures leave permissions undetermined"""
        client = self.make_client(get_serve_config=ProtocolError("garbled"))

        assert LocalAPIBackend(client, lock_manager=lock_manager).status().permissions_ok is None

    def test_close_closes_client(self, lock_manager):
        """Test that closing the backend closes its transport"""
        client = self.make_client()

        LocalAPIBackend(client, lock_manager=lock_manager).close()

        client.close.assert_called_once()

    def test_from_config_uses_socket(self, tmp_path):
        """Test building the backend from configuration"""
        sock = tmp_path / "tailscaled.sock"
        sock.touch()
        config = FunnelConfig(localapi=LocalAPIConfig(socket_path=sock))

        backend = LocalAPIBackend.from_config(config)
        try:
            assert isinstance(backend.client.transport, UnixSocketTransport)
            assert backend.session_config == config.session
        finally:
            backend.close()
