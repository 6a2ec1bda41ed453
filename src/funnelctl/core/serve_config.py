"""Serve configuration document exchanged with the LocalAPI.

The daemon owns this document; we only understand a handful of its fields.
Every model keeps unrecognised keys (``extra="allow"``) and is dumped with
``exclude_unset=True`` so a read-modify-write cycle re-emits exactly what was
read, with our typed changes overlaid.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HTTPHandler(BaseModel):
    """Handler for a single path of a web server config."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    proxy: str | None = Field(default=None, alias="Proxy")
    path: str | None = Field(default=None, alias="Path")
    text: str | None = Field(default=None, alias="Text")

    @classmethod
    def for_proxy(cls, target: str) -> HTTPHandler:
        return cls(proxy=target)

    def describe_target(self) -> str:
        """Short description of where this handler sends traffic."""
        if self.proxy is not None:
            return self.proxy
        if self.path is not None:
            return f"path handler {self.path}"
        if self.text is not None:
            return "text handler"
        return "non-proxy handler"


class WebServerConfig(BaseModel):
    """Configuration for one ``host:port`` web server."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    handlers: dict[str, HTTPHandler] | None = Field(default=None, alias="Handlers")


class ServeConfig(BaseModel):
    """The daemon's serve configuration (the routing document)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    tcp: dict[str, Any] | None = Field(default=None, alias="TCP")
    web: dict[str, WebServerConfig] | None = Field(default=None, alias="Web")
    allow_funnel: dict[str, bool] | None = Field(default=None, alias="AllowFunnel")
    foreground: dict[str, ServeConfig] | None = Field(default=None, alias="Foreground")

    @classmethod
    def from_payload(cls, payload: Any) -> ServeConfig:
        """Decode a JSON payload; ``None`` is an empty document.

        Raises:
            ValueError: If the payload is not a JSON object or fails validation
        """
        if payload is None:
            return cls()
        if not isinstance(payload, dict):
            raise ValueError(f"serve config must be a JSON object, got {type(payload).__name__}")
        return cls.model_validate(payload)

    def to_payload(self) -> dict[str, Any]:
        """Encode for writing back to the daemon."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

    def get_handlers(self, host_port: str) -> dict[str, HTTPHandler]:
        if not self.web:
            return {}
        web_config = self.web.get(host_port)
        if web_config is None or not web_config.handlers:
            return {}
        return web_config.handlers

    def is_funnel_enabled(self, host_port: str) -> bool:
        if not self.allow_funnel:
            return False
        return bool(self.allow_funnel.get(host_port, False))

    def session_scope(self, session_id: str) -> ServeConfig | None:
        if not self.foreground:
            return None
        return self.foreground.get(session_id)

    def iter_scopes(self) -> Iterator[tuple[str | None, ServeConfig]]:
        """Yield ``(session_id, config)`` for the background scope (``None``)
        and every foreground session scope."""
        yield None, self
        for session_id, scope in (self.foreground or {}).items():
            yield session_id, scope


def host_port(dns_name: str, https_port: int) -> str:
    """Key used by ``Web`` and ``AllowFunnel``."""
    return f"{dns_name}:{https_port}"
