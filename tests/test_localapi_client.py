"""Tests for the typed LocalAPI client."""

import json

import pytest

from funnelctl.common.exceptions import (
    ApplyFailedError,
    AuthRejectedError,
    ProtocolError,
    VersionTooOldError,
    WriteConflictError,
)
from funnelctl.core.serve_config import ServeConfig
from funnelctl.localapi.client import (
    LocalAPIClient,
    ensure_version_supported,
    parse_status,
    parse_version,
)
from funnelctl.localapi.transport import TransportResponse

from fakes import FakeStream

STATUS = "/localapi/v0/status"
STATUS_NO_PEERS = "/localapi/v0/status?peers=false"
WATCH = "/localapi/v0/watch-ipn-bus?mask=2"
WATCH_PLAIN = "/localapi/v0/watch-ipn-bus"
SERVE_CONFIG = "/localapi/v0/serve-config"


def json_response(payload, status_code=200, headers=None):
    return TransportResponse(
        status_code=status_code, headers=headers or {}, body=json.dumps(payload).encode()
    )


def status_payload(version="1.76.1"):
    return {
        "Version": version,
        "Self": {"DNSName": "node.example.ts.net.", "CertDomains": ["node.example.ts.net"]},
        "CurrentTailnet": {"Name": "example.ts.net"},
        "Funnel": {"Enabled": True},
    }


class StubTransport:
    """Transport double answering from a table of canned responses."""

    def __init__(self, responses=None, streams=None):
        self.responses = responses or {}
        self.streams = streams or {}
        self.calls = []
        self.closed = False

    def send(self, method, path, body=None, headers=None):
        self.calls.append((method, path, body, headers))
        value = self.responses[(method, path)]
        if isinstance(value, list):
            return value.pop(0)
        return value

    def open_stream(self, method, path):
        self.calls.append((method, path, None, None))
        return self.streams[path]

    def close(self):
        self.closed = True

    def paths(self, method=None):
        return [path for m, path, _, _ in self.calls if method is None or m == method]


class TestParseVersion:
    """Test daemon version parsing"""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("1.76.1", (1, 76, 1)),
            ("1.50", (1, 50, 0)),
            ("1.62.0-t1234abcd-g5678", (1, 62, 0)),
            ("1.58-dev", None),
            ("garbage", None),
            ("", None),
        ],
    )
    def test_parse_version(self, text, expected):
        """Test accepted and rejected version strings"""
        assert parse_version(text) == expected

    def test_minimum_version(self):
        """Test the 1.50.0 floor"""
        assert ensure_version_supported("1.50.0") == (1, 50, 0)
        with pytest.raises(VersionTooOldError, match="older than 1.50.0"):
            ensure_version_supported("1.49.9")
        with pytest.raises(VersionTooOldError, match="missing"):
            ensure_version_supported(None)
        with pytest.raises(VersionTooOldError, match="unsupported"):
            ensure_version_supported("next")


class TestParseStatus:
    """Test extraction of node facts from the status payload"""

    def test_dns_name_trailing_dot_trimmed(self):
        """Test the DNSName form"""
        status = parse_status(status_payload())

        assert status.dns_name == "node.example.ts.net"
        assert status.tailnet_name == "example.ts.net"
        assert status.version == "1.76.1"
        assert status.https_enabled is True
        assert status.funnel_enabled is True

    def test_dns_name_from_hostname_and_suffix(self):
        """Test building the name from HostName and the MagicDNS suffix"""
        payload = {"Self": {"HostName": "box"}, "CurrentTailnet": {"MagicDNSSuffix": "tail1.ts.net"}}

        assert parse_status(payload).dns_name == "box.tail1.ts.net"

    def test_dns_name_missing(self):
        """Test that no DNS name is reported without the needed fields"""
        assert parse_status({"Self": {"HostName": "box"}}).dns_name is None

    def test_https_from_top_level_cert_domains(self):
        """Test CertDomains outside Self"""
        assert parse_status({"CertDomains": []}).https_enabled is False
        assert parse_status({"CertDomains": ["a"]}).https_enabled is True
        assert parse_status({"Self": {"HTTPS": True}}).https_enabled is True
        assert parse_status({}).https_enabled is None

    @pytest.mark.parametrize(
        "self_payload,expected",
        [
            ({"Capabilities": ["https", "funnel"]}, True),
            ({"Capabilities": ["https"]}, False),
            ({"Capabilities": {"Funnel": False}}, False),
            ({"CapMap": {"https://tailscale.com/cap/funnel": None}}, True),
            ({"CapMap": {"https://tailscale.com/cap/ssh": None}}, False),
            ({}, None),
        ],
    )
    def test_funnel_capability_forms(self, self_payload, expected):
        """Test the different ways the funnel capability is advertised"""
        assert parse_status({"Self": self_payload}).funnel_enabled is expected


class TestEndpointProbing:
    """Test endpoint fallback and caching"""

    def test_first_candidate_used_and_cached(self):
        """Test that a working endpoint is reused"""
        transport = StubTransport({("GET", STATUS_NO_PEERS): json_response(status_payload())})
        client = LocalAPIClient(transport)

        client.status()
        client.status()

        assert transport.paths() == [STATUS_NO_PEERS, STATUS_NO_PEERS]

    def test_falls_back_on_400_and_caches(self):
        """Test fallback to the next candidate and caching of the winner"""
        transport = StubTransport(
            {
                ("GET", STATUS_NO_PEERS): TransportResponse(status_code=400),
                ("GET", STATUS): json_response(status_payload()),
            }
        )
        client = LocalAPIClient(transport)

        assert client.status().dns_name == "node.example.ts.net"
        client.status()

        assert transport.paths() == [STATUS_NO_PEERS, STATUS, STATUS]

    def test_404_everywhere_is_version_too_old(self):
        """Test that a missing endpoint means an old daemon"""
        transport = StubTransport(
            {
                ("GET", STATUS_NO_PEERS): TransportResponse(status_code=404),
                ("GET", STATUS): TransportResponse(status_code=404),
            }
        )

        with pytest.raises(VersionTooOldError) as exc_info:
            LocalAPIClient(transport).status()

        assert exc_info.value.exit_code == 16


class TestStatusMapping:
    """Test HTTP status to error mapping"""

    @pytest.mark.parametrize("code", [401, 403])
    def test_auth_rejected(self, code):
        """Test that auth failures are permission errors"""
        transport = StubTransport({("GET", STATUS_NO_PEERS): TransportResponse(status_code=code)})

        with pytest.raises(AuthRejectedError) as exc_info:
            LocalAPIClient(transport).status()

        assert exc_info.value.exit_code == 11

    def test_server_error_carries_truncated_body(self):
        """Test that other failures include method, path and a short body"""
        body = ("x" * 2000).encode()
        transport = StubTransport(
            {("GET", STATUS_NO_PEERS): TransportResponse(status_code=500, body=body)}
        )

        with pytest.raises(ApplyFailedError) as exc_info:
            LocalAPIClient(transport).status()

        message = str(exc_info.value)
        assert f"GET {STATUS_NO_PEERS}" in message
        assert "HTTP 500" in message
        assert message.endswith("...")
        assert len(message) < 700

    def test_invalid_json_is_protocol_error(self):
        """Test undecodable JSON"""
        transport = StubTransport(
            {("GET", STATUS_NO_PEERS): TransportResponse(status_code=200, body=b"{not json")}
        )

        with pytest.raises(ProtocolError):
            LocalAPIClient(transport).status()

    def test_non_object_status_is_protocol_error(self):
        """Test that a status payload must be an object"""
        transport = StubTransport({("GET", STATUS_NO_PEERS): json_response([1])})

        with pytest.raises(ProtocolError):
            LocalAPIClient(transport).status()


class TestServeConfig:
    """Test reading and writing the serve config"""

    def test_get_returns_document_and_etag(self, serve_config_payload):
        """Test that the version token travels with the document"""
        transport = StubTransport(
            {("GET", SERVE_CONFIG): json_response(serve_config_payload, headers={"etag": '"abc"'})}
        )

        config, etag = LocalAPIClient(transport).get_serve_config()

        assert etag == '"abc"'
        assert config.to_payload() == serve_config_payload

    def test_get_empty_body_is_empty_document(self):
        """Test that an empty body is an empty config"""
        transport = StubTransport(
            {("GET", SERVE_CONFIG): TransportResponse(status_code=200, headers={"ETag": '"1"'})}
        )

        config, _ = LocalAPIClient(transport).get_serve_config()

        assert config.to_payload() == {}

    def test_get_null_body_is_empty_document(self):
        """Test that a JSON null is an empty config"""
        transport = StubTransport(
            {("GET", SERVE_CONFIG): json_response(None, headers={"ETag": '"1"'})}
        )

        config, _ = LocalAPIClient(transport).get_serve_config()

        assert config.to_payload() == {}

    def test_missing_etag_is_version_too_old(self):
        """Test that daemons without version tokens are unsupported"""
        transport = StubTransport({("GET", SERVE_CONFIG): json_response({})})

        with pytest.raises(VersionTooOldError, match="ETag"):
            LocalAPIClient(transport).get_serve_config()

    def test_put_sends_if_match(self, serve_config_payload):
        """Test that writes carry the token and the JSON body"""
        transport = StubTransport(
            {
                ("GET", STATUS_NO_PEERS): json_response(status_payload()),
                ("POST", SERVE_CONFIG): TransportResponse(status_code=200),
            }
        )
        config = ServeConfig.from_payload(serve_config_payload)

        LocalAPIClient(transport).put_serve_config(config, '"7"')

        method, path, body, headers = transport.calls[-1]
        assert (method, path) == ("POST", SERVE_CONFIG)
        assert headers["If-Match"] == '"7"'
        assert headers["Content-Type"] == "application/json"
        assert json.loads(body) == serve_config_payload

    @pytest.mark.parametrize("code", [409, 412])
    def test_put_stale_token_is_write_conflict(self, code):
        """Test that a stale token surfaces as WriteConflictError without retry"""
        transport = StubTransport(
            {
                ("GET", STATUS_NO_PEERS): json_response(status_payload()),
                ("POST", SERVE_CONFIG): TransportResponse(status_code=code),
            }
        )

        with pytest.raises(WriteConflictError) as exc_info:
            LocalAPIClient(transport).put_serve_config(ServeConfig(), '"1"')

        assert exc_info.value.exit_code == 14
        assert transport.paths("POST") == [SERVE_CONFIG]

    def test_version_gate_precedes_write(self):
        """Test that an old daemon is never written to"""
        transport = StubTransport({("GET", STATUS_NO_PEERS): json_response(status_payload("1.40.0"))})

        with pytest.raises(VersionTooOldError):
            LocalAPIClient(transport).put_serve_config(ServeConfig(), '"1"')

        assert transport.paths("POST") == []

    def test_version_checked_once(self):
        """Test that the version check result is cached"""
        transport = StubTransport(
            {
                ("GET", STATUS_NO_PEERS): json_response(status_payload()),
                ("POST", SERVE_CONFIG): TransportResponse(status_code=200),
            }
        )
        client = LocalAPIClient(transport)

        client.put_serve_config(ServeConfig(), '"1"')
        client.put_serve_config(ServeConfig(), '"2"')

        assert transport.paths("GET") == [STATUS_NO_PEERS]


class TestBusSessionOpening:
    """Test watch-ipn-bus negotiation"""

    def test_open_reads_session_id(self):
        """Test that the session id comes from the first notification"""
        stream = FakeStream(['{"Version":"1.76.1"}', '{"SessionID":"sess-9"}'])
        client = LocalAPIClient(StubTransport(streams={WATCH: stream}))

        session = client.open_bus_session()
        try:
            assert session.session_id == "sess-9"
        finally:
            session.close()
        assert stream.closed

    def test_open_falls_back_to_plain_watch(self):
        """Test fallback when the mask parameter is rejected"""
        rejected = FakeStream([], status_code=400, body=b"bad mask")
        accepted = FakeStream(['{"sessionId":"s2"}'])
        transport = StubTransport(streams={WATCH: rejected, WATCH_PLAIN: accepted})
        client = LocalAPIClient(transport)

        session = client.open_bus_session()
        session.close()

        assert session.session_id == "s2"
        assert rejected.closed
        assert transport.paths() == [WATCH, WATCH_PLAIN]

    def test_open_auth_rejected(self):
        """Test that stream auth failures map like plain requests"""
        stream = FakeStream([], status_code=403)
        client = LocalAPIClient(StubTransport(streams={WATCH: stream}))

        with pytest.raises(AuthRejectedError):
            client.open_bus_session()
        assert stream.closed
