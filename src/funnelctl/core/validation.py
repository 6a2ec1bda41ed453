"""Validation of user-supplied tunnel parameters."""

import ipaddress
import re
import secrets
import socket
import string
from dataclasses import dataclass, field

from ..common.exceptions import InvalidArgumentError
from ..common.utils import collapse_slashes
from ..common.utils import validate_port as _validate_port_range
from .models import ALLOWED_HTTPS_PORTS

MIN_TTL_SECONDS = 30
WARN_TTL_SECONDS = 5 * 60
MIN_SAFE_PATH_LENGTH = 8
RANDOM_PATH_PREFIX = "/funnelctl/"
RANDOM_TOKEN_LENGTH = 8

_TTL_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_TTL_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}


@dataclass
class PathValidationResult:
    normalized_path: str
    warnings: list[str] = field(default_factory=list)


@dataclass
class TTLValidationResult:
    ttl: float
    warnings: list[str] = field(default_factory=list)


def validate_path(path: str) -> PathValidationResult:
    """Validate and normalize a URL path.

    The path must start with '/', must not contain control characters or
    '..' segments. Repeated slashes collapse to one; a trailing slash (prefix
    mount) is preserved. Short paths are accepted with a warning since they
    are guessable.

    Raises:
        InvalidArgumentError: If the path is rejected
    """
    if not path.startswith("/"):
        raise InvalidArgumentError("path must start with '/'")

    if any(ord(char) < 0x20 for char in path):
        raise InvalidArgumentError("path contains control characters")

    if ".." in path.split("/"):
        raise InvalidArgumentError("path cannot contain '..' segments")

    normalized = collapse_slashes(path)

    warnings = []
    if len(normalized) < MIN_SAFE_PATH_LENGTH:
        warnings.append(
            f"Short path '{normalized}' is guessable. "
            "Consider a longer path or use the default random path."
        )

    return PathValidationResult(normalized_path=normalized, warnings=warnings)


def parse_ttl(value: str) -> float:
    """Parse a duration such as ``90``, ``30s``, ``5m`` or ``1h30m`` into seconds.

    Raises:
        InvalidArgumentError: If the value is not a duration
    """
    text = value.strip().lower().replace(" ", "")
    if not text:
        raise InvalidArgumentError("Invalid TTL '': empty duration")

    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return float(text)

    position = 0
    total = 0.0
    for match in _TTL_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _TTL_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise InvalidArgumentError(f"Invalid TTL '{value}': expected e.g. 30s, 5m, 1h30m")
    return total


def validate_ttl(ttl: float) -> TTLValidationResult:
    """Enforce the minimum TTL and warn on short ones.

    Raises:
        InvalidArgumentError: If the TTL is below the minimum
    """
    if ttl < MIN_TTL_SECONDS:
        raise InvalidArgumentError(
            f"TTL must be at least {MIN_TTL_SECONDS} seconds, got {ttl:g} seconds"
        )

    warnings = []
    if ttl < WARN_TTL_SECONDS:
        warnings.append(f"Short TTL ({ttl:g}s). Tunnel expires quickly.")
    return TTLValidationResult(ttl=ttl, warnings=warnings)


def validate_port(port: int) -> None:
    try:
        _validate_port_range(port)
    except ValueError as e:
        raise InvalidArgumentError(str(e).lower()) from e


def validate_https_port(port: int) -> None:
    if port not in ALLOWED_HTTPS_PORTS:
        raise InvalidArgumentError(
            f"HTTPS port must be one of {list(ALLOWED_HTTPS_PORTS)}, got {port}"
        )


def resolve_bind(bind: str, allow_non_loopback: bool = False) -> str:
    """Resolve a bind address to an IP literal.

    ``localhost`` resolves through the system resolver, preferring IPv4.

    Raises:
        InvalidArgumentError: If the address is invalid or not loopback
    """
    if bind == "localhost":
        ip = _resolve_localhost()
    else:
        try:
            ip = ipaddress.ip_address(bind)
        except ValueError as e:
            raise InvalidArgumentError(
                f"Invalid bind address '{bind}'. Use 127.0.0.1, ::1, or localhost"
            ) from e

    if not allow_non_loopback and not ip.is_loopback:
        raise InvalidArgumentError("Non-loopback bind requires --allow-non-loopback")

    return str(ip)


def _resolve_localhost() -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    try:
        infos = socket.getaddrinfo("localhost", 0, type=socket.SOCK_STREAM)
    except OSError as e:
        raise InvalidArgumentError(f"Failed to resolve localhost: {e}") from e

    addresses = [ipaddress.ip_address(info[4][0]) for info in infos]
    if not addresses:
        raise InvalidArgumentError("localhost did not resolve")
    for address in addresses:
        if address.version == 4:
            return address
    return addresses[0]


def generate_random_path() -> str:
    alphabet = string.ascii_letters + string.digits
    token = "".join(secrets.choice(alphabet) for _ in range(RANDOM_TOKEN_LENGTH))
    return f"{RANDOM_PATH_PREFIX}{token}"
