"""Typed client for the tailscaled LocalAPI."""

import json
import threading
from typing import Any

from pydantic import ValidationError

from ..common.exceptions import (
    ApplyFailedError,
    AuthRejectedError,
    FunnelError,
    ProtocolError,
    VersionTooOldError,
    WriteConflictError,
)
from ..common.logging import get_logger
from ..core.models import NodeStatus
from ..core.serve_config import ServeConfig
from .bus import BusSession
from .transport import Transport, TransportResponse

logger = get_logger(__name__)

STATUS_ENDPOINTS = ("/localapi/v0/status?peers=false", "/localapi/v0/status")
# mask=2 asks for the initial state notification, which carries the session id.
WATCH_IPN_BUS_ENDPOINTS = ("/localapi/v0/watch-ipn-bus?mask=2", "/localapi/v0/watch-ipn-bus")
SERVE_CONFIG_ENDPOINTS = ("/localapi/v0/serve-config",)

FALLBACK_STATUS_CODES = (400, 404)
MIN_SUPPORTED_VERSION = (1, 50, 0)
MAX_ERROR_BODY = 512

UPGRADE_HINT = "Upgrade tailscaled to 1.50.0 or newer. See https://tailscale.com/download"


def parse_version(version: str) -> tuple[int, int, int] | None:
    """Parse ``"1.62.0-tabc-gdef"`` into ``(1, 62, 0)``; patch defaults to 0."""
    parts = version.replace("-", ".").split(".")
    try:
        major = int(parts[0])
        minor = int(parts[1])
        patch = int(parts[2]) if len(parts) > 2 else 0
    except (IndexError, ValueError):
        return None
    return major, minor, patch


def _truncate(text: str, limit: int = MAX_ERROR_BODY) -> str:
    if not text:
        return "<empty>"
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def _lookup(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def parse_dns_name(payload: dict[str, Any]) -> str | None:
    dns_name = _lookup(payload, "Self", "DNSName")
    if isinstance(dns_name, str) and dns_name:
        return dns_name.removesuffix(".")

    host = _lookup(payload, "Self", "HostName")
    suffix = (
        _lookup(payload, "CurrentTailnet", "MagicDNSSuffix")
        or _lookup(payload, "MagicDNSSuffix")
        or _lookup(payload, "CurrentTailnet", "Name")
    )
    if isinstance(host, str) and host and isinstance(suffix, str) and suffix:
        return f"{host}.{suffix}"
    return None


def parse_https_enabled(payload: dict[str, Any]) -> bool | None:
    for domains in (_lookup(payload, "Self", "CertDomains"), payload.get("CertDomains")):
        if isinstance(domains, list):
            return bool(domains)
    https = _lookup(payload, "Self", "HTTPS")
    return https if isinstance(https, bool) else None


def parse_funnel_enabled(payload: dict[str, Any]) -> bool | None:
    enabled = _lookup(payload, "Funnel", "Enabled")
    if isinstance(enabled, bool):
        return enabled

    capabilities = _lookup(payload, "Self", "Capabilities")
    if isinstance(capabilities, list):
        return any(
            isinstance(entry, str) and "funnel" in entry.lower() for entry in capabilities
        )
    if isinstance(capabilities, dict):
        enabled = capabilities.get("Funnel")
        if isinstance(enabled, bool):
            return enabled

    cap_map = _lookup(payload, "Self", "CapMap")
    if isinstance(cap_map, dict):
        return any("funnel" in key.lower() for key in cap_map)

    return None


def parse_status(payload: dict[str, Any]) -> NodeStatus:
    version = payload.get("Version")
    tailnet = _lookup(payload, "CurrentTailnet", "Name")
    return NodeStatus(
        dns_name=parse_dns_name(payload),
        tailnet_name=tailnet if isinstance(tailnet, str) else None,
        version=version if isinstance(version, str) else None,
        https_enabled=parse_https_enabled(payload),
        funnel_enabled=parse_funnel_enabled(payload),
        raw=payload,
    )


def ensure_version_supported(version: str | None) -> tuple[int, int, int]:
    """Check a daemon version string against the minimum.

    Raises:
        VersionTooOldError: If the version is missing, unparsable or too old
    """
    if not version:
        raise VersionTooOldError("tailscaled version missing", fix=UPGRADE_HINT)
    parsed = parse_version(version)
    if parsed is None:
        raise VersionTooOldError(f"unsupported tailscaled version {version}", fix=UPGRADE_HINT)
    if parsed < MIN_SUPPORTED_VERSION:
        minimum = ".".join(str(part) for part in MIN_SUPPORTED_VERSION)
        raise VersionTooOldError(
            f"tailscaled version {version} is older than {minimum}", fix=UPGRADE_HINT
        )
    return parsed


class LocalAPIClient:
    """Status, bus sessions and serve-config access over a ``Transport``.

    Each operation probes an ordered list of endpoint paths; the first one
    that answers is remembered for the life of the client.
    """

    def __init__(self, transport: Transport):
        self.transport = transport
        self._endpoints: dict[str, str] = {}
        self._version: tuple[int, int, int] | None = None
        self._lock = threading.Lock()

    def _candidates(self, operation: str, candidates: tuple[str, ...]) -> tuple[str, ...]:
        with self._lock:
            cached = self._endpoints.get(operation)
        return (cached,) if cached else candidates

    def _remember(self, operation: str, path: str) -> None:
        with self._lock:
            if operation not in self._endpoints:
                logger.debug("LocalAPI endpoint selected", operation=operation, path=path)
            self._endpoints[operation] = path

    @staticmethod
    def _status_error(status_code: int, method: str, path: str, body: str) -> FunnelError:
        if status_code in (401, 403):
            return AuthRejectedError(f"LocalAPI auth rejected for {method} {path}")
        if status_code == 404:
            return VersionTooOldError(
                f"LocalAPI endpoint {method} {path} not found", fix=UPGRADE_HINT
            )
        if status_code in (409, 412):
            return WriteConflictError(f"{method} {path} rejected with HTTP {status_code}")
        return ApplyFailedError(
            f"LocalAPI {method} {path} failed with HTTP {status_code}: {_truncate(body)}"
        )

    def _request(
        self,
        operation: str,
        candidates: tuple[str, ...],
        method: str,
        body: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse:
        paths = self._candidates(operation, candidates)
        for index, path in enumerate(paths):
            response = self.transport.send(method, path, body=body, headers=headers)
            is_last = index == len(paths) - 1
            if response.status_code in FALLBACK_STATUS_CODES and not is_last:
                logger.debug(
                    "LocalAPI endpoint rejected, trying next",
                    path=path,
                    status=response.status_code,
                )
                continue
            if not response.is_success:
                raise self._status_error(response.status_code, method, path, response.text)
            self._remember(operation, path)
            return response
        raise AssertionError("no endpoint candidates")

    @staticmethod
    def _decode_json(response: TransportResponse, what: str) -> Any:
        if not response.body.strip():
            return None
        try:
            return json.loads(response.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(f"failed to parse {what} JSON: {e}") from e

    def status(self) -> NodeStatus:
        """Fetch the node status."""
        response = self._request("status", STATUS_ENDPOINTS, "GET")
        payload = self._decode_json(response, "status")
        if not isinstance(payload, dict):
            raise ProtocolError("status response is not a JSON object")
        return parse_status(payload)

    def ensure_supported_version(self, status: NodeStatus | None = None) -> None:
        """Enforce the minimum daemon version once per client.

        Raises:
            VersionTooOldError: If the daemon is too old
        """
        if self._version is not None:
            return
        if status is None:
            status = self.status()
        self._version = ensure_version_supported(status.version)
        logger.debug("tailscaled version supported", version=status.version)

    def open_bus_session(self) -> BusSession:
        """Open a ``watch-ipn-bus`` stream and wait for its session id."""
        paths = self._candidates("watch", WATCH_IPN_BUS_ENDPOINTS)
        for index, path in enumerate(paths):
            stream = self.transport.open_stream("GET", path)
            status_code = stream.status_code
            if 200 <= status_code < 300:
                self._remember("watch", path)
                return BusSession.open(stream)

            try:
                body = stream.read_body().decode("utf-8", errors="replace")
            finally:
                stream.close()
            if status_code in FALLBACK_STATUS_CODES and index < len(paths) - 1:
                logger.debug("LocalAPI endpoint rejected, trying next", path=path, status=status_code)
                continue
            raise self._status_error(status_code, "GET", path, body)
        raise AssertionError("no endpoint candidates")

    def get_serve_config(self) -> tuple[ServeConfig, str]:
        """Fetch the serve config and its version token.

        Raises:
            VersionTooOldError: If the daemon does not send an ETag
            ProtocolError: If the document cannot be decoded
        """
        response = self._request("serve_config", SERVE_CONFIG_ENDPOINTS, "GET")
        etag = response.header("ETag")
        if not etag:
            raise VersionTooOldError("serve config ETag missing; LocalAPI too old", fix=UPGRADE_HINT)
        payload = self._decode_json(response, "serve config")
        try:
            config = ServeConfig.from_payload(payload)
        except (ValueError, ValidationError) as e:
            raise ProtocolError(f"invalid serve config: {e}") from e
        return config, etag

    def put_serve_config(self, config: ServeConfig, version_token: str) -> None:
        """Write the serve config, guarded by the version token.

        Raises:
            WriteConflictError: If the document changed since it was read
        """
        self.ensure_supported_version()
        body = json.dumps(config.to_payload()).encode("utf-8")
        self._request(
            "serve_config",
            SERVE_CONFIG_ENDPOINTS,
            "POST",
            body=body,
            headers={"Content-Type": "application/json", "If-Match": version_token},
        )
        logger.debug("Serve config written")

    def close(self) -> None:
        self.transport.close()
