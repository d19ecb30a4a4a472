"""Platform helpers: file locations, logging setup and URL opening."""

import logging
import os
import sys
import webbrowser
from pathlib import Path

from .constants import APP_NAME

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


# === Paths ===

def get_config_dir() -> Path:
    """Get the per-user configuration directory."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME


def get_state_dir() -> Path:
    """Get the per-user state directory (logs)."""
    base = os.environ.get("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return Path(base) / APP_NAME


def get_log_file() -> Path:
    """Get the log file path."""
    return get_state_dir() / "ovpn3-core.log"


# === Logging ===

def setup_logging(level: str = "INFO", log_file: bool = True) -> None:
    """Configure root logging to stderr and, if possible, a log file.

    Args:
        level: Logging level name
        log_file: Also write to the per-user log file
    """
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = get_log_file()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(path))
        except OSError as e:
            print(f"[ovpn3-core] Cannot open log file {path}: {e}", file=sys.stderr)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


# === Desktop ===

def open_url(url: str) -> bool:
    """Open ``url`` with the desktop's default handler.

    Returns:
        True if a browser was launched
    """
    return webbrowser.open(url)
