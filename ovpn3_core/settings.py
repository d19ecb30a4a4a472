"""Runtime settings, loaded from a JSON file and environment overrides."""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from .platform import get_config_dir
from .retry import RetrySpec

log = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"

RETRY_KEYS = ("fetch_retry", "remove_retry", "ready_retry", "reconnect")


@dataclass
class Settings:
    """Orchestrator settings.

    Attributes:
        bus: 'system', 'session' or a D-Bus address
        call_timeout: Per-call timeout in seconds
        log_level: Name of the root logging level
        log_backlog: Pending events kept per log subscriber
        fetch_retry: Policy for listing configurations and sessions
        remove_retry: Policy for removing a configuration
        ready_retry: Policy for the session readiness handshake
        reconnect: Policy for re-establishing a lost bus connection
    """
    bus: str = "system"
    call_timeout: float = 2.0
    log_level: str = "INFO"
    log_backlog: int = 16
    fetch_retry: RetrySpec = field(default_factory=lambda: RetrySpec(4, 2.0))
    remove_retry: RetrySpec = field(default_factory=lambda: RetrySpec(3, 2.0))
    ready_retry: RetrySpec = field(default_factory=lambda: RetrySpec(3, 3.0))
    reconnect: RetrySpec = field(default_factory=lambda: RetrySpec(5, 2.0))

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Build settings from a plain dict, ignoring unknown keys.

        Raises:
            ValueError: If ``data`` is not a dict or a value is out of range
        """
        if not isinstance(data, dict):
            raise ValueError(f"Settings must be a JSON object, not {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                log.warning(f"Ignoring unknown setting: {key}")
                continue
            if key in RETRY_KEYS:
                value = RetrySpec(int(value["max_attempts"]), float(value["delay"]))
            elif key == "log_backlog":
                value = int(value)
                if value < 1:
                    raise ValueError("log_backlog must be at least 1")
            elif key == "call_timeout":
                value = float(value)
                if value <= 0:
                    raise ValueError("call_timeout must be positive")
            elif not isinstance(value, str):
                raise ValueError(f"{key} must be a string")
            values[key] = value
        return cls(**values)

    def apply_env(self, environ=None) -> "Settings":
        """Override settings from OVPN3_* environment variables."""
        environ = os.environ if environ is None else environ
        if environ.get("OVPN3_BUS"):
            self.bus = environ["OVPN3_BUS"]
        if environ.get("OVPN3_LOG_LEVEL"):
            self.log_level = environ["OVPN3_LOG_LEVEL"].upper()
        if environ.get("OVPN3_CALL_TIMEOUT"):
            try:
                timeout = float(environ["OVPN3_CALL_TIMEOUT"])
                if timeout <= 0:
                    raise ValueError(timeout)
                self.call_timeout = timeout
            except ValueError:
                log.warning(f"Invalid OVPN3_CALL_TIMEOUT: {environ['OVPN3_CALL_TIMEOUT']}")
        return self


def get_settings_file() -> Path:
    return get_config_dir() / SETTINGS_FILE


def load_settings(path: Optional[Path] = None, environ=None) -> Settings:
    """Load settings from ``path`` (default: user config dir) and environment.

    A missing file yields the defaults; a malformed one is logged and ignored.
    """
    path = path or get_settings_file()
    settings = Settings()
    if path.exists():
        try:
            settings = Settings.from_dict(json.loads(path.read_text()))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            log.warning(f"Ignoring invalid settings file {path}: {e}")
            settings = Settings()
    return settings.apply_env(environ)
