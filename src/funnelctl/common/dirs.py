"""Per-user runtime, state and config directories."""

import os
import sys
from pathlib import Path

APP_DIR_NAME = "funnelctl"


def _home() -> Path:
    home = os.environ.get("HOME")
    if not home:
        raise RuntimeError("Unable to resolve HOME directory")
    return Path(home)


def ensure_dir(path: Path) -> Path:
    """Create ``path`` with owner-only permissions if it does not exist."""
    if not path.exists():
        path.mkdir(parents=True, exist_ok=True)
        path.chmod(0o700)
    return path


def state_dir() -> Path:
    xdg = os.environ.get("XDG_STATE_HOME")
    if xdg:
        return ensure_dir(Path(xdg) / APP_DIR_NAME)
    if sys.platform == "darwin":
        return ensure_dir(_home() / "Library" / "Application Support" / APP_DIR_NAME)
    return ensure_dir(_home() / ".local" / "state" / APP_DIR_NAME)


def runtime_dir() -> Path:
    """Directory for the lock file; falls back to the state directory."""
    xdg = os.environ.get("XDG_RUNTIME_DIR")
    if xdg:
        return ensure_dir(Path(xdg) / APP_DIR_NAME)
    return state_dir()


def config_dir() -> Path:
    """Where ``config.toml`` is looked up; only read, so never created."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    if sys.platform == "darwin":
        return _home() / "Library" / "Application Support" / APP_DIR_NAME
    return _home() / ".config" / APP_DIR_NAME
