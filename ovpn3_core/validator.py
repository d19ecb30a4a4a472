"""Input validation for requests sent to the daemon."""

import re
from typing import Optional, Tuple

from .errors import InvalidRequest
from .models import ImportRequest

# D-Bus object path: '/' or '/'-separated elements of [A-Za-z0-9_]
RE_OBJECT_PATH = re.compile(r'^/$|^(/[A-Za-z0-9_]+)+$')

# Length limits
MAX_CONFIG_NAME_LEN = 256
MAX_CONFIG_FILE_SIZE = 1024 * 1024


def is_object_path(value) -> bool:
    """Check that ``value`` is a syntactically valid object path."""
    return isinstance(value, str) and bool(RE_OBJECT_PATH.match(value))


def require_object_path(value, what: str = "object path") -> str:
    """Return ``value`` or raise InvalidRequest if it is not an object path."""
    if not is_object_path(value):
        raise InvalidRequest(f"Invalid {what}: {value!r}")
    return value


def validate_import_request(request: ImportRequest) -> Tuple[bool, Optional[str]]:
    """Validate an import request.

    Returns:
        (True, None) if valid, (False, error_message) if invalid
    """
    if not isinstance(request, ImportRequest):
        return False, "Request must be an ImportRequest"

    name = request.config_name
    if not isinstance(name, str) or not name.strip():
        return False, "Missing configuration name"
    if len(name) > MAX_CONFIG_NAME_LEN:
        return False, "Configuration name too long"
    if any(ord(c) < 0x20 for c in name):
        return False, "Invalid configuration name"

    if not request.config_file_path:
        return False, "Missing configuration file"

    if not isinstance(request.single_use, bool) or not isinstance(request.persistent, bool):
        return False, "Flags must be booleans"

    return True, None
