"""Path conflict verdicts and definitions."""

from dataclasses import dataclass
from enum import Enum


class ConflictVerdict(str, Enum):
    """Outcome of comparing a requested route with existing routes"""

    NO_CONFLICT = "no_conflict"
    IDENTICAL_IDEMPOTENT = "identical_idempotent"
    EXACT_COLLISION = "exact_collision"
    PREFIX_COLLISION_EXISTING_WINS = "prefix_collision_existing_wins"
    PREFIX_COLLISION_NEW_WINS = "prefix_collision_new_wins"

    @property
    def is_collision(self) -> bool:
        return self not in (ConflictVerdict.NO_CONFLICT, ConflictVerdict.IDENTICAL_IDEMPOTENT)

    @property
    def severity(self) -> int:
        """Ordering used when several scopes disagree; higher wins."""
        if self is ConflictVerdict.NO_CONFLICT:
            return 0
        if self is ConflictVerdict.IDENTICAL_IDEMPOTENT:
            return 1
        return 2


@dataclass(frozen=True)
class PathConflict:
    """A verdict together with the routes that produced it"""

    verdict: ConflictVerdict
    new_path: str
    new_target: str
    existing_path: str | None = None
    existing_target: str | None = None
    session_id: str | None = None

    @property
    def message(self) -> str:
        if self.verdict is ConflictVerdict.EXACT_COLLISION:
            text = (
                f"path '{self.new_path}' already maps to '{self.existing_target}', "
                f"but new mapping targets '{self.new_target}'"
            )
        elif self.verdict is ConflictVerdict.PREFIX_COLLISION_EXISTING_WINS:
            text = (
                f"new path '{self.new_path}' would be captured by existing prefix "
                f"'{self.existing_path}' (targets '{self.existing_target}')"
            )
        elif self.verdict is ConflictVerdict.PREFIX_COLLISION_NEW_WINS:
            text = (
                f"new prefix '{self.new_path}' would capture existing path "
                f"'{self.existing_path}' (targets '{self.existing_target}')"
            )
        elif self.verdict is ConflictVerdict.IDENTICAL_IDEMPOTENT:
            text = f"path '{self.new_path}' already maps to '{self.new_target}'"
        else:
            text = f"path '{self.new_path}' is free"

        if self.session_id is not None and self.verdict is not ConflictVerdict.NO_CONFLICT:
            text += f" (session {self.session_id})"
        return text
