"""Typed results returned to the shell layer.

Every caller-facing operation returns a ``Result`` instead of raising, so a
consumer can tell an empty answer apart from a failed one.
"""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from .errors import OrchestratorError

T = TypeVar("T")


class ErrorKind:
    CONNECTION = "connection"
    RPC = "rpc"
    RETRY_EXHAUSTED = "retry_exhausted"
    INVALID_REQUEST = "invalid_request"
    FILE_READ = "file_read"
    IMPORT = "import"
    REMOVE = "remove"
    SESSION_FETCH = "session_fetch"
    TUNNEL = "tunnel"
    INTERNAL = "internal"

    @staticmethod
    def of(error: Optional[BaseException]) -> Optional[str]:
        if error is None:
            return None
        if isinstance(error, OrchestratorError):
            return error.kind
        return ErrorKind.INTERNAL


@dataclass
class Result(Generic[T]):
    """Outcome of an orchestration request."""
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> Optional[str]:
        return ErrorKind.of(self.error)

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        """Create a successful result."""
        return cls(value=value)

    @classmethod
    def fail(cls, error: BaseException) -> "Result[T]":
        """Create a failed result."""
        return cls(error=error)

    def unwrap(self) -> Optional[T]:
        """Return the value, raising the stored error on failure."""
        if self.error is not None:
            raise self.error
        return self.value

    def to_dict(self) -> dict:
        """Serialize for JSON consumers."""
        if self.error is not None:
            return {
                "success": False,
                "error": {"kind": self.error_kind, "message": str(self.error)},
            }
        return {"success": True, "result": _plain(self.value)}


def _plain(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value
