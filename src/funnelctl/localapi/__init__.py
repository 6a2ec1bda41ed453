"""LocalAPI access: transports, typed client and bus sessions."""

from .bus import BusSession, parse_session_id
from .client import LocalAPIClient, parse_status, parse_version
from .transport import (
    StreamHandle,
    TCPAuthTransport,
    Transport,
    TransportResponse,
    UnixSocketTransport,
    create_transport,
    find_socket,
    read_password_file,
)

__all__ = [
    "BusSession",
    "parse_session_id",
    "LocalAPIClient",
    "parse_status",
    "parse_version",
    "StreamHandle",
    "TCPAuthTransport",
    "Transport",
    "TransportResponse",
    "UnixSocketTransport",
    "create_transport",
    "find_socket",
    "read_password_file",
]
