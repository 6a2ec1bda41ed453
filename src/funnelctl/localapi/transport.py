"""HTTP transports for the tailscaled LocalAPI.

Two modes are supported: a Unix domain socket (Linux) and loopback TCP with
HTTP Basic auth (macOS, Windows). Both are thin wrappers over ``httpx``.
"""

import os
import socket
import stat
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from pydantic import SecretStr

from ..common.config import LocalAPIConfig
from ..common.exceptions import (
    AuthRejectedError,
    FunnelError,
    InvalidArgumentError,
    ProtocolError,
    UnreachableError,
)
from ..common.logging import get_logger
from ..common.utils import sanitize_log_data

logger = get_logger(__name__)

LOCALAPI_HOST = "local-tailscaled.sock"
SEC_TAILSCALE_HEADER = "Sec-Tailscale"
LOOPBACK_HOST = "127.0.0.1"

DEFAULT_SOCKET_PATHS = (
    Path("/var/run/tailscale/tailscaled.sock"),
    Path("/run/tailscale/tailscaled.sock"),
)


@dataclass(frozen=True)
class TransportResponse:
    """A fully read LocalAPI response."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class StreamHandle:
    """A long-lived streaming response (no read timeout).

    ``close`` may be called from any thread; it shuts the socket down so a
    reader blocked in ``iter_lines`` wakes up.
    """

    def __init__(self, client: httpx.Client, response: httpx.Response):
        self._client = client
        self._response = response
        self._closed = False
        self._lock = threading.Lock()

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def closed(self) -> bool:
        return self._closed

    def read_body(self) -> bytes:
        """Read the remaining body; only used for non-2xx responses."""
        return self._response.read()

    def iter_lines(self) -> Iterator[str]:
        try:
            yield from self._response.iter_lines()
        except httpx.HTTPError as e:
            if self._closed:
                return
            raise ProtocolError(f"LocalAPI stream failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True

        network_stream = self._response.extensions.get("network_stream")
        if network_stream is not None:
            sock = network_stream.get_extra_info("socket")
            if sock is not None:
                try:
                    sock.shutdown(socket.SHUT_RDWR)
                except OSError:
                    # Already disconnected by the peer.
                    pass
        try:
            self._response.close()
        finally:
            self._client.close()


def _caused_by(exc: BaseException, kind: type[BaseException]) -> bool:
    seen: BaseException | None = exc
    while seen is not None:
        if isinstance(seen, kind):
            return True
        seen = seen.__cause__ or seen.__context__
    return False


class Transport(ABC):
    """Shared request handling on top of ``httpx.Client``."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._client = self._build_client(httpx.Timeout(timeout))

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable endpoint description used in errors."""

    @abstractmethod
    def _build_client(self, timeout: httpx.Timeout) -> httpx.Client:
        """Create an ``httpx.Client`` bound to the LocalAPI endpoint."""

    def _request_kwargs(self) -> dict[str, Any]:
        return {}

    def _translate(self, e: httpx.HTTPError, method: str, path: str) -> FunnelError:
        if _caused_by(e, PermissionError):
            return AuthRejectedError(f"permission denied connecting to {self.description}")
        if isinstance(e, (httpx.RemoteProtocolError, httpx.DecodingError)):
            return ProtocolError(f"{method} {path}: malformed HTTP response ({e})")
        if isinstance(e, httpx.TimeoutException):
            return UnreachableError(f"{method} {path}: request to {self.description} timed out")
        return UnreachableError(f"cannot connect to {self.description}: {e}")

    def _send_once(
        self,
        method: str,
        path: str,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        logger.debug(
            "LocalAPI request",
            method=method,
            path=path,
            endpoint=self.description,
            headers=sanitize_log_data(dict(headers or {})),
        )
        try:
            response = self._client.request(
                method, path, content=body, headers=dict(headers or {}), **self._request_kwargs()
            )
        except httpx.HTTPError as e:
            raise self._translate(e, method, path) from e
        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    def send(
        self,
        method: str,
        path: str,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        return self._send_once(method, path, body=body, headers=headers)

    def _open_stream_once(self, method: str, path: str) -> StreamHandle:
        client = self._build_client(httpx.Timeout(self.timeout, read=None))
        try:
            request = client.build_request(method, path)
            response = client.send(request, stream=True, **self._request_kwargs())
        except httpx.HTTPError as e:
            client.close()
            raise self._translate(e, method, path) from e
        logger.debug("LocalAPI stream opened", path=path, status=response.status_code)
        return StreamHandle(client, response)

    def open_stream(self, method: str, path: str) -> StreamHandle:
        """Open a streaming request on a dedicated connection."""
        return self._open_stream_once(method, path)

    def close(self) -> None:
        self._client.close()


class UnixSocketTransport(Transport):
    """LocalAPI over tailscaled's Unix domain socket."""

    def __init__(self, socket_path: Path, timeout: float = 5.0):
        self.socket_path = Path(socket_path)
        super().__init__(timeout=timeout)

    @property
    def description(self) -> str:
        return f"unix socket {self.socket_path}"

    def _build_client(self, timeout: httpx.Timeout) -> httpx.Client:
        return httpx.Client(
            transport=httpx.HTTPTransport(uds=str(self.socket_path)),
            base_url=f"http://{LOCALAPI_HOST}",
            timeout=timeout,
        )


class TCPAuthTransport(Transport):
    """LocalAPI over loopback TCP, authenticated with the LocalAPI password.

    A 401 triggers exactly one re-read of the password file and a retry,
    which covers the daemon rotating its password while we run.
    """

    def __init__(
        self,
        port: int,
        password_file: Path,
        host: str = LOOPBACK_HOST,
        timeout: float = 5.0,
    ):
        self.host = host
        self.port = port
        self.password_file = Path(password_file)
        self._password = read_password_file(self.password_file)
        self._password_lock = threading.Lock()
        super().__init__(timeout=timeout)

    @property
    def description(self) -> str:
        return f"LocalAPI at {self.host}:{self.port}"

    def _build_client(self, timeout: httpx.Timeout) -> httpx.Client:
        return httpx.Client(
            base_url=f"http://{self.host}:{self.port}",
            headers={SEC_TAILSCALE_HEADER: "localapi"},
            timeout=timeout,
        )

    def _request_kwargs(self) -> dict[str, Any]:
        with self._password_lock:
            password = self._password
        return {"auth": httpx.BasicAuth("", password.get_secret_value())}

    def _reload_password(self, path: str) -> None:
        logger.debug(
            "LocalAPI auth rejected, re-reading password file",
            path=path,
            password_file=str(self.password_file),
        )
        refreshed = read_password_file(self.password_file)
        with self._password_lock:
            self._password = refreshed

    def send(
        self,
        method: str,
        path: str,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        response = self._send_once(method, path, body=body, headers=headers)
        if response.status_code != 401:
            return response

        self._reload_password(path)
        return self._send_once(method, path, body=body, headers=headers)

    def open_stream(self, method: str, path: str) -> StreamHandle:
        """Open a stream, re-reading the password once if the first try gets a 401."""
        stream = self._open_stream_once(method, path)
        if stream.status_code != 401:
            return stream

        stream.close()
        self._reload_password(path)
        return self._open_stream_once(method, path)


def read_password_file(path: Path) -> SecretStr:
    """Read the LocalAPI password.

    The file must be mode 0600 (on POSIX) and non-empty once trailing CR/LF
    are stripped. Error messages name the file, never its content.

    Raises:
        InvalidArgumentError: If the file is unreadable, too permissive or empty
    """
    try:
        st = os.stat(path)
    except OSError as e:
        raise InvalidArgumentError(
            f"cannot read password file {path}: {e.strerror}",
            fix="Check --localapi-password-file",
        ) from e

    if os.name == "posix":
        mode = stat.S_IMODE(st.st_mode)
        if mode != 0o600:
            raise InvalidArgumentError(
                f"password file {path} has mode {mode:o}, expected 600",
                fix=f"Run: chmod 600 {path}",
            )

    try:
        with open(path, encoding="utf-8") as f:
            contents = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidArgumentError(f"cannot read password file {path}") from e

    password = contents.rstrip("\r\n")
    if not password:
        raise InvalidArgumentError(f"password file {path} is empty")
    return SecretStr(password)


def find_socket(candidates: tuple[Path, ...] = DEFAULT_SOCKET_PATHS) -> Path | None:
    """Return the first existing tailscaled socket."""
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def create_transport(config: LocalAPIConfig) -> Transport:
    """Choose and build the transport for the configured mode.

    Raises:
        InvalidArgumentError: If TCP mode lacks a usable password file
        UnreachableError: If no socket can be found
        AuthRejectedError: If the socket is not accessible
    """
    if config.localapi_port is not None:
        if config.password_file is None:
            raise InvalidArgumentError(
                "LocalAPI port requires a password file",
                fix="Pass --localapi-password-file or set FUNNELCTL_LOCALAPI_PASSWORD_FILE",
            )
        logger.debug("Using TCP LocalAPI transport", port=config.localapi_port)
        return TCPAuthTransport(
            config.localapi_port, config.password_file, timeout=config.request_timeout
        )

    if config.socket_path is not None:
        socket_path = config.socket_path
        if not socket_path.exists():
            raise UnreachableError(f"socket {socket_path} does not exist")
    else:
        socket_path = find_socket()
        if socket_path is None:
            searched = ", ".join(str(p) for p in DEFAULT_SOCKET_PATHS)
            raise UnreachableError(
                f"tailscaled socket not found (searched {searched})",
                fix=(
                    "Is tailscaled running? On macOS/Windows pass --localapi-port "
                    "and --localapi-password-file"
                ),
            )

    if not os.access(socket_path, os.R_OK | os.W_OK):
        raise AuthRejectedError(f"no permission to access {socket_path}")

    logger.debug("Using unix socket LocalAPI transport", socket=str(socket_path))
    return UnixSocketTransport(socket_path, timeout=config.request_timeout)
