"""Shared connection to the D-Bus system bus.

dbus-python drives its I/O from a GLib main loop. The loop runs in a
daemon thread owned by ``BusConnection``; remote calls are issued on that
thread with reply/error handlers and their outcome is handed back to the
asyncio loop, so callers simply ``await`` them.
"""

import asyncio
import logging
import os
import signal
import threading
from typing import Callable, Optional

import dbus
import dbus.bus
import dbus.exceptions
import dbus.mainloop.glib
from gi.repository import GLib

from .constants import PROPERTIES_INTERFACE
from .errors import BusConnectionError, RetryExhausted, RpcError
from .retry import retry
from .settings import Settings
from .signals import BusSignal, SignalStream

log = logging.getLogger(__name__)

# Connection states
STATE_CONNECTED = "connected"
STATE_RECONNECTING = "reconnecting"
STATE_DISCONNECTED = "disconnected"
STATE_CLOSED = "closed"


def to_python(value):
    """Convert dbus-python values into plain Python types."""
    if isinstance(value, (bool, dbus.Boolean)):
        return bool(value)
    if isinstance(value, str):
        return str(value)
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return float(value)
    if isinstance(value, tuple):
        return tuple(to_python(v) for v in value)
    if isinstance(value, list):
        return [to_python(v) for v in value]
    if isinstance(value, dict):
        return {to_python(k): to_python(v) for k, v in value.items()}
    return value


def _terminate_process(error: Exception) -> None:
    """Default fatal handler: stop the whole process."""
    log.critical(f"No D-Bus connection, terminating: {error}")
    os.kill(os.getpid(), signal.SIGTERM)


def _resolve(future: asyncio.Future, values: tuple) -> None:
    if not future.done():
        future.set_result(values)


def _reject(future: asyncio.Future, error: Exception) -> None:
    if not future.done():
        future.set_exception(error)


class BusConnection:
    """Connection to the bus, shared by all concurrent callers."""

    def __init__(
            self,
            settings: Optional[Settings] = None,
            on_fatal: Optional[Callable[[Exception], None]] = None,
    ):
        """Initialize the connection (call ``connect()`` before use).

        Args:
            settings: Bus address, call timeout and reconnect policy
            on_fatal: Called when the connection is lost and cannot be
                      re-established (default: SIGTERM to this process)
        """
        self._settings = settings or Settings()
        self._on_fatal = on_fatal or _terminate_process
        self._bus = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._glib_loop: Optional[GLib.MainLoop] = None
        self._io_thread: Optional[threading.Thread] = None
        self._state = STATE_DISCONNECTED
        self._pending: set = set()
        self._streams: dict = {}
        self._lock = threading.Lock()
        self._state_listeners: list = []
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == STATE_CONNECTED

    def add_state_listener(self, callback: Callable[[str], None]) -> None:
        """Register ``callback(state)`` for connection state changes."""
        self._state_listeners.append(callback)

    async def connect(self) -> "BusConnection":
        """Open the connection and start the I/O thread.

        Raises:
            BusConnectionError: If the bus cannot be reached
        """
        self._loop = asyncio.get_running_loop()
        self._start_io_thread()
        try:
            self._bus = await asyncio.to_thread(self._open)
        except BusConnectionError:
            self._glib_loop.quit()
            raise
        self._set_state(STATE_CONNECTED)
        log.info(f"Connected to D-Bus ({self._settings.bus})")
        return self

    async def close(self) -> None:
        """Close the connection; in-flight calls fail with BusConnectionError."""
        self._set_state(STATE_CLOSED)
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        with self._lock:
            streams = list(self._streams)
        for stream in streams:
            stream.close()
        self._fail_pending(BusConnectionError("Bus connection closed"))
        if self._bus is not None:
            self._bus.close()
            self._bus = None
        if self._glib_loop is not None:
            self._glib_loop.quit()

    # Remote calls

    async def call(
            self,
            service: str,
            path: str,
            interface: str,
            method: str,
            *args,
            signature: Optional[str] = None,
            timeout: Optional[float] = None,
    ):
        """Call ``interface.method`` on the object ``path`` of ``service``.

        Returns:
            None, the single return value, or a tuple of return values

        Raises:
            RpcError: If the call failed or timed out
            BusConnectionError: If the bus is not connected
        """
        if self._state != STATE_CONNECTED:
            raise BusConnectionError(f"D-Bus not connected ({self._state})")

        loop = self._loop
        bus = self._bus
        future = loop.create_future()
        self._pending.add(future)
        timeout = self._settings.call_timeout if timeout is None else timeout

        def on_reply(*values):
            loop.call_soon_threadsafe(_resolve, future, values)

        def on_error(error):
            loop.call_soon_threadsafe(_reject, future, self._rpc_error(error, method, path))

        def issue():
            try:
                proxy = bus.get_object(service, path, introspect=False)
                kwargs = {
                    "dbus_interface": interface,
                    "reply_handler": on_reply,
                    "error_handler": on_error,
                    "timeout": timeout,
                }
                if signature is not None:
                    kwargs["signature"] = signature
                proxy.get_dbus_method(method)(*args, **kwargs)
            except (dbus.exceptions.DBusException, TypeError, ValueError) as e:
                on_error(e)
            return False

        GLib.idle_add(issue)
        try:
            values = await future
        finally:
            self._pending.discard(future)

        if not values:
            return None
        if len(values) == 1:
            return to_python(values[0])
        return tuple(to_python(v) for v in values)

    async def get_property(self, service: str, path: str, interface: str, name: str):
        """Read one property through org.freedesktop.DBus.Properties."""
        return await self.call(
            service, path, PROPERTIES_INTERFACE, "Get", interface, name, signature="ss"
        )

    async def get_all_properties(self, service: str, path: str, interface: str) -> dict:
        """Read all properties of ``interface``."""
        return await self.call(
            service, path, PROPERTIES_INTERFACE, "GetAll", interface, signature="s"
        )

    @staticmethod
    def _rpc_error(error: Exception, method: str, path: str) -> RpcError:
        dbus_name = None
        if isinstance(error, dbus.exceptions.DBusException):
            dbus_name = error.get_dbus_name()
        return RpcError(
            f"{method} failed on {path}: {error}",
            method=method,
            path=path,
            dbus_name=dbus_name,
        )

    # Signals

    def subscribe(self, interface: str) -> SignalStream:
        """Receive every signal emitted on ``interface``.

        The subscription survives reconnects until the stream is closed.
        """
        stream = SignalStream(interface, on_close=self._unsubscribe)
        with self._lock:
            self._streams[stream] = None
        if self._state == STATE_CONNECTED:
            self._add_receiver(stream)
        return stream

    def _add_receiver(self, stream: SignalStream) -> None:
        loop = self._loop
        bus = self._bus

        def handler(*args, **keywords):
            received = BusSignal(
                path=str(keywords.get("path", "")),
                member=str(keywords.get("member", "")),
                args=tuple(to_python(a) for a in args),
            )
            loop.call_soon_threadsafe(stream.feed, received)

        def register():
            try:
                match = bus.add_signal_receiver(
                    handler,
                    dbus_interface=stream.interface,
                    member_keyword="member",
                    path_keyword="path",
                )
            except dbus.exceptions.DBusException as e:
                log.error(f"Cannot subscribe to {stream.interface}: {e}")
                return False
            with self._lock:
                if stream in self._streams:
                    self._streams[stream] = match
                    match = None
            if match is not None:
                # Stream closed before the receiver was in place
                match.remove()
            return False

        GLib.idle_add(register)

    def _unsubscribe(self, stream: SignalStream) -> None:
        with self._lock:
            match = self._streams.pop(stream, None)
        if match is not None:
            GLib.idle_add(_remove_match, match)

    # Connection supervision

    def _start_io_thread(self) -> None:
        self._glib_loop = GLib.MainLoop()
        self._io_thread = threading.Thread(
            target=self._glib_loop.run,
            name="dbus-io",
            daemon=True,
        )
        self._io_thread.start()

    def _open(self):
        """Open a private bus connection attached to the GLib loop."""
        dbus.mainloop.glib.threads_init()
        mainloop = dbus.mainloop.glib.DBusGMainLoop()
        address = self._settings.bus
        if address == "system":
            address = dbus.bus.BusConnection.TYPE_SYSTEM
        elif address == "session":
            address = dbus.bus.BusConnection.TYPE_SESSION

        try:
            bus = dbus.bus.BusConnection(address, mainloop=mainloop)
        except dbus.exceptions.DBusException as e:
            raise BusConnectionError(f"Cannot connect to D-Bus ({self._settings.bus}): {e}") from e

        bus.set_exit_on_disconnect(False)
        bus.call_on_disconnection(self._on_disconnected)
        return bus

    def _on_disconnected(self, connection) -> None:
        # Runs on the I/O thread
        self._loop.call_soon_threadsafe(self._handle_lost, connection)

    def _handle_lost(self, connection) -> None:
        if connection is not self._bus or self._state != STATE_CONNECTED:
            return

        log.error("Lost connection to D-Bus")
        self._bus = None
        with self._lock:
            for stream in self._streams:
                self._streams[stream] = None
        self._set_state(STATE_RECONNECTING)
        self._fail_pending(BusConnectionError("Lost connection to D-Bus"))
        self._reconnect_task = self._loop.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        try:
            bus = await retry(
                lambda: asyncio.to_thread(self._open),
                self._settings.reconnect,
                description="D-Bus reconnect",
            )
        except RetryExhausted as e:
            self._set_state(STATE_DISCONNECTED)
            log.critical(f"Cannot re-establish D-Bus connection: {e.last_error}")
            self._on_fatal(e)
            return

        if self._state == STATE_CLOSED:
            bus.close()
            return

        self._bus = bus
        with self._lock:
            streams = list(self._streams)
        for stream in streams:
            self._add_receiver(stream)
        self._set_state(STATE_CONNECTED)
        log.info("D-Bus connection re-established")

    def _fail_pending(self, error: Exception) -> None:
        for future in list(self._pending):
            _reject(future, error)
        self._pending.clear()

    def _set_state(self, state: str) -> None:
        if state == self._state:
            return
        self._state = state
        for callback in list(self._state_listeners):
            try:
                callback(state)
            except Exception:
                log.exception("State listener failed")


def _remove_match(match) -> bool:
    match.remove()
    return False
