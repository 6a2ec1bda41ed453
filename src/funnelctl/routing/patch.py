"""Pure read-modify-write operations on the serve configuration.

Each function returns a new document and never mutates its input. Fields we
do not touch, including unknown ones, are carried over unchanged.
"""

from ..core.models import TunnelSpec
from ..core.serve_config import HTTPHandler, ServeConfig, WebServerConfig, host_port


def apply_patch(
    existing: ServeConfig, spec: TunnelSpec, session_id: str, dns_name: str
) -> ServeConfig:
    """Map ``spec.path`` to the local target inside the session's foreground scope.

    Args:
        existing: Current serve configuration
        spec: Requested tunnel
        session_id: Bus session owning the foreground scope
        dns_name: The node's public DNS name

    Returns:
        Patched copy of the configuration
    """
    key = host_port(dns_name, spec.https_port)
    document = existing.model_copy(deep=True)

    foreground = dict(document.foreground or {})
    scope = foreground.get(session_id) or ServeConfig()

    web = dict(scope.web or {})
    web_config = web.get(key) or WebServerConfig()

    handlers = dict(web_config.handlers or {})
    current = handlers.get(spec.path)
    if current is None or current.proxy != spec.target:
        handlers[spec.path] = HTTPHandler.for_proxy(spec.target)

    web_config.handlers = handlers
    web[key] = web_config
    scope.web = web

    if spec.funnel:
        allow_funnel = dict(scope.allow_funnel or {})
        allow_funnel[key] = True
        scope.allow_funnel = allow_funnel

    foreground[session_id] = scope
    document.foreground = foreground
    return document


def _without_field(model: WebServerConfig | ServeConfig, alias: str):
    """Rebuild a model from its payload minus one field, keeping unknown keys."""
    payload = model.model_dump(mode="json", by_alias=True, exclude_unset=True)
    payload.pop(alias, None)
    return type(model).model_validate(payload)


def remove_patch(
    existing: ServeConfig,
    session_id: str,
    dns_name: str,
    https_port: int,
    path: str,
) -> tuple[ServeConfig, bool]:
    """Remove one handler from a session scope, pruning emptied containers.

    Returns:
        ``(document, removed)`` where ``removed`` tells whether a handler existed
    """
    key = host_port(dns_name, https_port)
    document = existing.model_copy(deep=True)

    scope = document.session_scope(session_id)
    if scope is None or not scope.web or key not in scope.web:
        return document, False

    web_config = scope.web[key]
    if not web_config.handlers or path not in web_config.handlers:
        return document, False

    handlers = dict(web_config.handlers)
    del handlers[path]

    web = dict(scope.web)
    if handlers:
        web_config.handlers = handlers
        web[key] = web_config
    else:
        web_config = _without_field(web_config, "Handlers")
        if web_config.model_extra:
            web[key] = web_config
        else:
            del web[key]

    if web:
        scope.web = web
    else:
        scope = _without_field(scope, "Web")

    foreground = dict(document.foreground or {})
    foreground[session_id] = scope
    document.foreground = foreground
    return document, True


def remove_session_scope(existing: ServeConfig, session_id: str) -> tuple[ServeConfig, bool]:
    """Drop the whole foreground scope of a session.

    Returns:
        ``(document, removed)``
    """
    document = existing.model_copy(deep=True)
    if not document.foreground or session_id not in document.foreground:
        return document, False

    foreground = dict(document.foreground)
    del foreground[session_id]
    document.foreground = foreground
    return document, True
