"""Caller-facing interface used by the shell layer.

Wraps the registry, the session orchestrator and the signal listener,
applies the retry policies from the settings and converts every outcome
into a ``Result``.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .configs import ConfigRegistry
from .errors import OrchestratorError
from .models import Config, DisconnectReport, ImportRequest, Session
from .results import Result
from .retry import retry
from .sessions import SessionOrchestrator, TunnelState
from .settings import Settings
from .signals import LogBroadcast, LogSubscription, SignalListener
from .platform import open_url

log = logging.getLogger(__name__)

LogCallback = Callable[[str, str, int, int, str], None]


class LogObserver:
    """Delivers log events to a callback until closed."""

    def __init__(self, subscription: LogSubscription, callback: LogCallback):
        self._subscription = subscription
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(self._deliver())

    @property
    def dropped(self) -> int:
        return self._subscription.dropped

    async def _deliver(self) -> None:
        async for event in self._subscription:
            try:
                self._callback(
                    event.session_path,
                    event.signal_member,
                    event.group_code,
                    event.level_code,
                    event.message,
                )
            except Exception:
                log.exception("Log callback failed")

    def close(self) -> None:
        self._subscription.close()

    async def wait_closed(self) -> None:
        await self._task


class VPNClient:
    """Orchestration operations for the shell, all returning ``Result``."""

    def __init__(
            self,
            bus,
            settings: Optional[Settings] = None,
            url_opener: Callable[[str], bool] = open_url,
            sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            bus: Connected BusConnection
            settings: Retry policies and log backlog
            url_opener: Opens authentication URLs announced by backends
            sleep: Coroutine used between retry attempts
        """
        self.settings = settings or Settings()
        self._bus = bus
        self._sleep = sleep
        self.configs = ConfigRegistry(bus)
        self.sessions = SessionOrchestrator(bus, self.settings.ready_retry, sleep=sleep)
        self.logs = LogBroadcast(self.settings.log_backlog)
        self.listener = SignalListener(bus, self.logs, url_opener=url_opener)

    @classmethod
    async def create(cls, settings: Optional[Settings] = None, **kwargs) -> "VPNClient":
        """Connect to the bus and start listening for backend signals.

        Raises:
            BusConnectionError: If the bus cannot be reached
        """
        from .bus import BusConnection

        settings = settings or Settings()
        bus = await BusConnection(settings).connect()
        client = cls(bus, settings, **kwargs)
        client.start()
        return client

    def start(self) -> None:
        """Start the backend signal listener."""
        self.listener.start()

    async def close(self) -> None:
        self.listener.stop()
        self.logs.close()
        if hasattr(self._bus, "close"):
            await self._bus.close()

    async def _run(self, description: str, operation, retry_spec=None) -> Result:
        try:
            if retry_spec is None:
                value = await operation()
            else:
                value = await retry(operation, retry_spec, sleep=self._sleep, description=description)
        except OrchestratorError as e:
            log.error(f"{description} failed: {e}")
            return Result.fail(e)
        return Result.ok(value)

    # Configurations

    async def list_configs(self) -> Result[List[Config]]:
        return await self._run(
            "Listing configurations", self.configs.list_configs, self.settings.fetch_retry
        )

    async def import_config(self, request: ImportRequest) -> Result[str]:
        return await self._run(
            f"Importing configuration '{request.config_name}'",
            lambda: self.configs.import_config(request),
        )

    async def remove_config(self, path: str) -> Result[None]:
        return await self._run(
            f"Removing configuration {path}",
            lambda: self.configs.remove_config(path),
            self.settings.remove_retry,
        )

    # Sessions

    async def new_tunnel(
            self,
            config_path: str,
            on_state: Optional[Callable[[TunnelState], None]] = None,
    ) -> Result[str]:
        return await self._run(
            f"Starting tunnel for {config_path}",
            lambda: self.sessions.new_tunnel(config_path, on_state=on_state),
        )

    async def list_sessions(self) -> Result[List[Session]]:
        return await self._run(
            "Listing sessions", self.sessions.list_sessions, self.settings.fetch_retry
        )

    async def connect_session(self, path: str) -> Result[None]:
        return await self._run(
            f"Connecting session {path}", lambda: self.sessions.connect_session(path)
        )

    async def disconnect_session(self, path: str) -> Result[None]:
        return await self._run(
            f"Disconnecting session {path}", lambda: self.sessions.disconnect_session(path)
        )

    async def disconnect_all(self) -> Result[DisconnectReport]:
        return await self._run("Disconnecting all sessions", self.sessions.disconnect_all)

    async def has_session(self) -> Result[bool]:
        return await self._run("Checking for sessions", self.sessions.has_session)

    async def describe_log_forwards(self, session_path: str) -> Result[List[dict]]:
        return await self._run(
            f"Reading log forwarders of {session_path}",
            lambda: self.sessions.describe_log_forwards(session_path),
        )

    # Logs

    def subscribe_logs(self) -> LogSubscription:
        """Get an async iterator over backend log events."""
        return self.logs.subscribe()

    def on_log(self, callback: LogCallback) -> LogObserver:
        """Call ``callback(path, member, group, level, message)`` per event.

        Must be called from within the running event loop. Close the
        returned observer to stop delivery.
        """
        return LogObserver(self.logs.subscribe(), callback)

