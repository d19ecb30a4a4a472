"""OpenVPN 3 session and configuration orchestration over D-Bus.

The D-Bus transport lives in ``ovpn3_core.bus`` and is imported on demand.
"""

from .client import LogObserver, VPNClient
from .configs import ConfigRegistry
from .errors import (
    BusConnectionError,
    ConfigImportError,
    ConfigRemoveError,
    FileReadError,
    InvalidRequest,
    OrchestratorError,
    RetryExhausted,
    RpcError,
    SessionFetchError,
    TunnelCreationError,
)
from .models import Config, DisconnectReport, ImportRequest, LogEvent, Session
from .results import ErrorKind, Result
from .retry import RetrySpec, retry
from .sessions import SessionOrchestrator, TunnelState
from .settings import Settings, load_settings
from .signals import LogBroadcast, LogSubscription, SignalAction, SignalListener, classify

__all__ = [
    # Client
    "VPNClient",
    "LogObserver",
    # Components
    "ConfigRegistry",
    "SessionOrchestrator",
    "TunnelState",
    "SignalListener",
    "SignalAction",
    "classify",
    "LogBroadcast",
    "LogSubscription",
    # Retry
    "RetrySpec",
    "retry",
    # Models
    "Config",
    "Session",
    "LogEvent",
    "ImportRequest",
    "DisconnectReport",
    # Results
    "Result",
    "ErrorKind",
    # Settings
    "Settings",
    "load_settings",
    # Errors
    "OrchestratorError",
    "BusConnectionError",
    "RpcError",
    "RetryExhausted",
    "InvalidRequest",
    "FileReadError",
    "ConfigImportError",
    "ConfigRemoveError",
    "SessionFetchError",
    "TunnelCreationError",
]
