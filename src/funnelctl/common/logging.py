"""Centralized logging configuration using structlog."""

import logging
import os
import sys
from pathlib import Path
from typing import Any, TextIO

import structlog
from structlog.typing import EventDict, Processor

from .utils import is_sensitive_key, mask_sensitive_data

LOG_ENV_VAR = "FUNNELCTL_LOG"


def redact_secrets(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
    """Mask any event value whose key looks like a credential."""
    for key in list(event_dict):
        if key != "event" and is_sensitive_key(key):
            value = event_dict[key]
            event_dict[key] = mask_sensitive_data(str(value) if value else None)
    return event_dict


def level_from_verbosity(verbose: int) -> str:
    """Map a -v count to a level name, honouring FUNNELCTL_LOG when set."""
    override = os.environ.get(LOG_ENV_VAR, "").strip()
    if override:
        if not hasattr(logging, override.upper()):
            raise ValueError(f"Invalid {LOG_ENV_VAR} value: {override}")
        return override.upper()
    if verbose <= 0:
        return "ERROR"
    if verbose == 1:
        return "INFO"
    return "DEBUG"


def build_processors(json_format: bool = False) -> list[Processor]:
    """Processor chain shared by console and JSON output; secrets are masked
    before any renderer sees the event."""
    chain: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    chain.append(renderer)
    return chain


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | Path | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for funnelctl.

    Diagnostics go to ``stream`` (stderr by default) so stdout carries only
    the public URL and other results.

    Args:
        level: Level name, e.g. from ``level_from_verbosity``
        json_format: Render events as JSON lines
        log_file: Also append plain records to this file
        stream: Console stream override
    """
    numeric_level = getattr(logging, level.upper())

    root = logging.getLogger()
    root.handlers = []
    root.setLevel(numeric_level)

    console = logging.StreamHandler(stream if stream is not None else sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(file_handler)

    structlog.configure(
        processors=build_processors(json_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name`` (usually ``__name__``)."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
