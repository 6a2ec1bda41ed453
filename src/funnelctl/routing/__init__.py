"""Route conflict detection and serve-config patching (no I/O)."""

from .conflicts import ConflictVerdict, PathConflict
from .detector import compute_conflict, detect_conflict, is_fatal
from .patch import apply_patch, remove_patch, remove_session_scope

__all__ = [
    "ConflictVerdict",
    "PathConflict",
    "detect_conflict",
    "compute_conflict",
    "is_fatal",
    "apply_patch",
    "remove_patch",
    "remove_session_scope",
]
