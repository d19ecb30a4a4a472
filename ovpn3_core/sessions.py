"""Tunnel sessions managed by the OpenVPN 3 session manager."""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .constants import (
    LOG_INTERFACE,
    LOG_SERVICE,
    SESSIONS_INTERFACE,
    SESSIONS_ROOT_PATH,
    SESSIONS_SERVICE,
)
from .errors import (
    OrchestratorError,
    RetryExhausted,
    RpcError,
    SessionFetchError,
    TunnelCreationError,
)
from .models import DisconnectReport, Session
from .retry import RetrySpec, retry
from .validator import require_object_path

log = logging.getLogger(__name__)

DEFAULT_READY_RETRY = RetrySpec(3, 3.0)


class TunnelState(Enum):
    REQUESTED = "requested"
    CREATED = "created"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    LOG_FORWARDING = "log_forwarding"
    ESTABLISHED = "established"
    CREATION_FAILED = "creation_failed"
    READY_TIMED_OUT = "ready_timed_out"


class SessionOrchestrator:
    """Creates tunnels and drives existing sessions."""

    def __init__(
            self,
            bus,
            ready_retry: RetrySpec = DEFAULT_READY_RETRY,
            sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            bus: Connected BusConnection
            ready_retry: Attempts and delay for the readiness handshake
            sleep: Coroutine used to wait between Ready attempts
        """
        self._bus = bus
        self._ready_retry = ready_retry
        self._sleep = sleep

    async def _call(self, path: str, method: str, *args, signature: Optional[str] = None):
        return await self._bus.call(
            SESSIONS_SERVICE, path, SESSIONS_INTERFACE, method, *args, signature=signature
        )

    # Tunnel creation

    async def new_tunnel(
            self,
            config_path: str,
            on_state: Optional[Callable[[TunnelState], None]] = None,
    ) -> str:
        """Start a tunnel for a configuration and bring it to a usable state.

        The session is created, confirmed ready (retrying while the backend
        process starts up) and asked to forward its logs. Log forwarding
        failures are tolerated.

        Args:
            config_path: Object path of the configuration
            on_state: Called on every handshake state transition

        Returns:
            Object path of the new session

        Raises:
            InvalidRequest: If ``config_path`` is not an object path
            TunnelCreationError: If creation fails or the session never
                                 becomes ready
        """
        require_object_path(config_path, "configuration path")

        def advance(state: TunnelState):
            log.debug(f"Tunnel for {config_path}: {state.value}")
            if on_state:
                on_state(state)

        advance(TunnelState.REQUESTED)
        try:
            session_path = await self._bus.call(
                SESSIONS_SERVICE,
                SESSIONS_ROOT_PATH,
                SESSIONS_INTERFACE,
                "NewTunnel",
                config_path,
                signature="o",
            )
        except OrchestratorError as e:
            advance(TunnelState.CREATION_FAILED)
            log.error(f"Failed to create tunnel for {config_path}: {e}")
            raise TunnelCreationError(
                f"Failed to start tunnel: {e}", TunnelState.CREATION_FAILED
            ) from e
        advance(TunnelState.CREATED)
        log.info(f"Created session {session_path} for {config_path}")

        advance(TunnelState.AWAITING_READY)
        try:
            await retry(
                lambda: self._call(session_path, "Ready"),
                self._ready_retry,
                sleep=self._sleep,
                description=f"Ready on {session_path}",
            )
        except RetryExhausted as e:
            advance(TunnelState.READY_TIMED_OUT)
            raise TunnelCreationError(
                f"Session {session_path} did not become ready: {e.last_error}",
                TunnelState.READY_TIMED_OUT,
                session_path=session_path,
            ) from e
        advance(TunnelState.READY)

        advance(TunnelState.LOG_FORWARDING)
        if await self.enable_log_forwarding(session_path):
            await self._log_forward_details(session_path)

        advance(TunnelState.ESTABLISHED)
        log.info(f"Session {session_path} established")
        return session_path

    async def enable_log_forwarding(self, session_path: str, enable: bool = True) -> bool:
        """Ask the session to forward (or stop forwarding) its logs.

        Returns:
            True on success; failures are logged, not raised
        """
        try:
            await self._call(session_path, "LogForward", enable, signature="b")
        except OrchestratorError as e:
            log.warning(f"Failed to forward logs for {session_path}: {e}")
            return False
        log.info(f"Log forwarding {'enabled' if enable else 'disabled'} for {session_path}")
        return True

    async def describe_log_forwards(self, session_path: str) -> List[dict]:
        """Read the properties of every log forwarder attached to a session.

        Raises:
            RpcError: If a property read fails
        """
        require_object_path(session_path, "session path")
        forwards = await self._bus.get_property(
            SESSIONS_SERVICE, session_path, SESSIONS_INTERFACE, "log_forwards"
        )
        details = []
        for forward_path in forwards or []:
            properties = await self._bus.get_all_properties(LOG_SERVICE, forward_path, LOG_INTERFACE)
            details.append({"path": forward_path, **properties})
        return details

    async def _log_forward_details(self, session_path: str) -> None:
        try:
            details = await self.describe_log_forwards(session_path)
        except OrchestratorError as e:
            log.debug(f"Cannot read log forwarders of {session_path}: {e}")
            return
        for forward in details:
            log.debug(f"Log forwarder for {session_path}: {forward}")

    # Session queries

    async def list_session_paths(self) -> List[str]:
        """Get the object paths of all sessions.

        Raises:
            RpcError: If the enumeration fails
        """
        paths = await self._call(SESSIONS_ROOT_PATH, "FetchAvailableSessions")
        return list(paths or [])

    async def list_sessions(self) -> List[Session]:
        """Get all sessions with their current status.

        Raises:
            SessionFetchError: If the enumeration or any status read fails
        """
        try:
            sessions = []
            for path in await self.list_session_paths():
                sessions.append(await self._fetch_session(path))
        except (OrchestratorError, TypeError, ValueError) as e:
            raise SessionFetchError(f"Failed to fetch sessions: {e}") from e
        log.debug(f"Fetched {len(sessions)} session(s)")
        return sessions

    async def _fetch_session(self, path: str) -> Session:
        major, minor, message = await self._bus.get_property(
            SESSIONS_SERVICE, path, SESSIONS_INTERFACE, "status"
        )
        created = await self._bus.get_property(
            SESSIONS_SERVICE, path, SESSIONS_INTERFACE, "session_created"
        )
        return Session(
            path=path,
            major_code=int(major),
            minor_code=int(minor),
            status_message=str(message),
            created_at=int(created),
        )

    async def has_session(self) -> bool:
        """Check whether the daemon has any session.

        Raises:
            RpcError: If the enumeration fails
        """
        return bool(await self.list_session_paths())

    # Session control

    async def connect_session(self, session_path: str) -> None:
        """Connect a session.

        Raises:
            InvalidRequest: If ``session_path`` is not an object path
            RpcError: If the daemon refuses
        """
        require_object_path(session_path, "session path")
        try:
            await self._call(session_path, "Connect")
        except RpcError as e:
            log.error(f"Failed to connect session {session_path}: {e}")
            raise
        log.info(f"Connecting session {session_path}")

    async def disconnect_session(self, session_path: str) -> None:
        """Disconnect a session.

        Raises:
            InvalidRequest: If ``session_path`` is not an object path
            RpcError: If the daemon refuses
        """
        require_object_path(session_path, "session path")
        try:
            await self._call(session_path, "Disconnect")
        except RpcError as e:
            log.error(f"Failed to disconnect session {session_path}: {e}")
            raise
        log.info(f"Disconnected session {session_path}")

    async def disconnect_all(self) -> DisconnectReport:
        """Disconnect every session, one after another.

        A failing session does not stop the others; failures are collected
        in the report.

        Raises:
            SessionFetchError: If the sessions cannot be enumerated
        """
        try:
            paths = await self.list_session_paths()
        except OrchestratorError as e:
            raise SessionFetchError(f"Failed to fetch sessions: {e}") from e

        report = DisconnectReport()
        for path in paths:
            try:
                await self.disconnect_session(path)
            except OrchestratorError as e:
                report.failed[path] = e
            else:
                report.disconnected.append(path)

        if report.failed:
            log.warning(
                f"Disconnected {len(report.disconnected)} session(s), "
                f"{len(report.failed)} failed: {', '.join(report.failed)}"
            )
        return report
