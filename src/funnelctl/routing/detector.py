"""Path conflict detection against the serve configuration."""

from ..core.models import TunnelSpec
from ..core.serve_config import ServeConfig, host_port
from .conflicts import ConflictVerdict, PathConflict


def _evaluate_scope(
    scope: ServeConfig, key: str, spec: TunnelSpec, session_id: str | None
) -> PathConflict:
    """Compare the requested route with the handlers of one scope."""
    handlers = scope.get_handlers(key)

    def verdict(
        kind: ConflictVerdict,
        existing_path: str | None = None,
        existing_target: str | None = None,
    ) -> PathConflict:
        return PathConflict(
            verdict=kind,
            new_path=spec.path,
            new_target=spec.target,
            existing_path=existing_path,
            existing_target=existing_target,
            session_id=session_id,
        )

    if not handlers:
        return verdict(ConflictVerdict.NO_CONFLICT)

    existing = handlers.get(spec.path)
    if existing is not None:
        existing_target = existing.describe_target()
        if existing_target != spec.target:
            return verdict(ConflictVerdict.EXACT_COLLISION, spec.path, existing_target)
        if spec.funnel and scope.is_funnel_enabled(key):
            return verdict(ConflictVerdict.IDENTICAL_IDEMPOTENT, spec.path, existing_target)
        # Same target but funnel not yet allowed: the patch only adds exposure.
        return verdict(ConflictVerdict.NO_CONFLICT, spec.path, existing_target)

    if spec.is_prefix:
        captured = sorted(path for path in handlers if path.startswith(spec.path))
        if captured:
            path = captured[0]
            return verdict(
                ConflictVerdict.PREFIX_COLLISION_NEW_WINS,
                path,
                handlers[path].describe_target(),
            )

    prefixes = [
        path for path in handlers if path.endswith("/") and spec.path.startswith(path)
    ]
    if prefixes:
        # Longest prefix is the one that would actually capture the request.
        path = max(prefixes, key=len)
        return verdict(
            ConflictVerdict.PREFIX_COLLISION_EXISTING_WINS,
            path,
            handlers[path].describe_target(),
        )

    return verdict(ConflictVerdict.NO_CONFLICT)


def detect_conflict(existing: ServeConfig, spec: TunnelSpec, dns_name: str) -> PathConflict:
    """Detect how a requested route relates to the existing configuration.

    The background scope and every foreground session scope are inspected;
    the most severe verdict is returned.

    Args:
        existing: Current serve configuration
        spec: Requested tunnel
        dns_name: The node's public DNS name

    Returns:
        The most severe conflict found
    """
    key = host_port(dns_name, spec.https_port)
    result = PathConflict(
        verdict=ConflictVerdict.NO_CONFLICT, new_path=spec.path, new_target=spec.target
    )

    for session_id, scope in existing.iter_scopes():
        candidate = _evaluate_scope(scope, key, spec, session_id)
        if candidate.verdict.severity > result.verdict.severity:
            result = candidate

    return result


def compute_conflict(existing: ServeConfig, spec: TunnelSpec, dns_name: str) -> ConflictVerdict:
    return detect_conflict(existing, spec, dns_name).verdict


def is_fatal(verdict: ConflictVerdict, force: bool = False) -> bool:
    """Collisions abort the apply unless explicitly overridden."""
    return verdict.is_collision and not force
