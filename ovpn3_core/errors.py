"""Exception types raised by the orchestrator."""

from typing import Optional


class OrchestratorError(Exception):
    """Base class for orchestrator errors."""

    kind = "internal"


class BusConnectionError(OrchestratorError):
    """The system bus cannot be reached or the connection was lost."""

    kind = "connection"


class RpcError(OrchestratorError):
    """A remote call against a bus object failed."""

    kind = "rpc"

    def __init__(
            self,
            message: str,
            method: Optional[str] = None,
            path: Optional[str] = None,
            dbus_name: Optional[str] = None,
    ):
        super().__init__(message)
        self.method = method
        self.path = path
        self.dbus_name = dbus_name


class RetryExhausted(OrchestratorError):
    """All attempts of a retried operation failed."""

    kind = "retry_exhausted"

    def __init__(self, last_error: Exception, attempts: int):
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class InvalidRequest(OrchestratorError):
    """Request rejected before anything was sent to the daemon."""

    kind = "invalid_request"


class FileReadError(OrchestratorError):
    """A local configuration file could not be read."""

    kind = "file_read"

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class ConfigImportError(OrchestratorError):
    """The daemon rejected a configuration import."""

    kind = "import"


class ConfigRemoveError(RpcError):
    """The daemon failed to remove a configuration."""

    kind = "remove"


class SessionFetchError(OrchestratorError):
    """Listing sessions failed; no partial result is available."""

    kind = "session_fetch"


class TunnelCreationError(OrchestratorError):
    """A new tunnel never reached the established state."""

    kind = "tunnel"

    def __init__(self, message: str, state, session_path: Optional[str] = None):
        super().__init__(message)
        self.state = state
        self.session_path = session_path
