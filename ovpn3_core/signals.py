"""Backend signal listener and log event fan-out."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .constants import AUTH_URL_STATUS, BACKENDS_INTERFACE, SIGNAL_STATUS_CHANGE
from .models import LogEvent
from .platform import open_url

log = logging.getLogger(__name__)

DEFAULT_BACKLOG = 16


@dataclass
class BusSignal:
    """A signal as delivered by the bus."""
    path: str
    member: str
    args: tuple


class SignalStream:
    """Async iterator over the signals of one interface.

    Fed from the bus side with ``feed()``; iteration ends after ``close()``.
    """

    def __init__(self, interface: str, on_close: Optional[Callable] = None):
        self.interface = interface
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, received: BusSignal) -> None:
        if not self._closed:
            self._queue.put_nowait(received)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        if self._on_close:
            self._on_close(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> BusSignal:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class LogSubscription:
    """One consumer's view of the log broadcast.

    Holds at most ``backlog`` unread events; when full, the oldest unread
    event is dropped and counted in ``dropped``.
    """

    def __init__(self, broadcast: "LogBroadcast", backlog: int):
        self._broadcast = broadcast
        self._backlog = backlog
        self._events: deque = deque()
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._events)

    def push(self, event: LogEvent) -> None:
        if self._closed:
            return
        if len(self._events) >= self._backlog:
            self._events.popleft()
            self.dropped += 1
        self._events.append(event)
        self._ready.set()

    async def get(self) -> Optional[LogEvent]:
        """Wait for the next event; None once closed and drained."""
        while not self._events:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._events.popleft()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._broadcast.unsubscribe(self)
        self._ready.set()

    def __aiter__(self):
        return self

    async def __anext__(self) -> LogEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class LogBroadcast:
    """Single-producer, multi-consumer channel for log events."""

    def __init__(self, backlog: int = DEFAULT_BACKLOG):
        if backlog < 1:
            raise ValueError("backlog must be at least 1")
        self.backlog = backlog
        self._subscribers: list = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> LogSubscription:
        subscription = LogSubscription(self, self.backlog)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: LogSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event: LogEvent) -> int:
        """Deliver ``event`` to every subscriber without blocking.

        Returns:
            Number of subscribers the event was queued for
        """
        subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.push(event)
        return len(subscribers)

    def close(self) -> None:
        for subscription in list(self._subscribers):
            subscription.close()


class SignalAction(Enum):
    NOOP = "noop"
    OPEN_URL = "open_url"


def classify(member: str, first: int, second: int) -> SignalAction:
    """Decide which side effect, if any, a backend signal triggers."""
    if member == SIGNAL_STATUS_CHANGE and (first, second) == AUTH_URL_STATUS:
        return SignalAction.OPEN_URL
    return SignalAction.NOOP


class SignalListener:
    """Listens to backend signals for the lifetime of the process."""

    def __init__(
            self,
            bus,
            broadcast: LogBroadcast,
            url_opener: Callable[[str], bool] = open_url,
    ):
        """Initialize the listener.

        Args:
            bus: Connected BusConnection (or anything providing ``subscribe``)
            broadcast: Channel every received signal is published on
            url_opener: Opens authentication URLs
        """
        self._bus = bus
        self._broadcast = broadcast
        self._url_opener = url_opener
        self._stream: Optional[SignalStream] = None
        self._task: Optional[asyncio.Task] = None
        self._openers: set = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Subscribe and process signals in a background task."""
        if self.running:
            return self._task
        self._stream = self._bus.subscribe(BACKENDS_INTERFACE)
        self._task = asyncio.get_running_loop().create_task(self._consume(self._stream))
        return self._task

    async def run(self) -> None:
        """Subscribe and process signals until the stream ends."""
        await self.start()

    def stop(self) -> None:
        if self._stream is not None:
            self._stream.close()

    async def _consume(self, stream: SignalStream) -> None:
        log.info(f"Listening for signals on {stream.interface}")
        async for received in stream:
            try:
                await self.handle(received)
            except Exception:
                log.exception(f"Failed to process {received.member} signal from {received.path}")
        log.info("Backend signal stream closed")

    async def handle(self, received: BusSignal) -> Optional[LogEvent]:
        """Publish one signal and start its side effect, if any.

        URL openers run in the background so later signals are not held up.

        Returns:
            The published event, or None if the payload was malformed
        """
        try:
            group, level, message = received.args
            event = LogEvent(
                session_path=received.path,
                signal_member=received.member,
                group_code=int(group),
                level_code=int(level),
                message=str(message),
            )
        except (TypeError, ValueError) as e:
            log.warning(f"Ignoring malformed {received.member} signal from {received.path}: {e}")
            return None

        log.debug(
            f"[{event.signal_member}] {event.session_path} "
            f"{event.group_name}/{event.level_name}: {event.message}"
        )
        self._broadcast.publish(event)

        if classify(event.signal_member, event.group_code, event.level_code) is SignalAction.OPEN_URL:
            task = asyncio.get_running_loop().create_task(self._open_url(event))
            self._openers.add(task)
            task.add_done_callback(self._openers.discard)
        return event

    async def wait_openers(self) -> None:
        """Wait for URL openers started so far to finish."""
        if self._openers:
            await asyncio.gather(*self._openers)

    async def _open_url(self, event: LogEvent) -> None:
        url = event.message
        log.info(f"Authentication required for {event.session_path}, opening {url}")
        try:
            opened = await asyncio.to_thread(self._url_opener, url)
        except Exception as e:
            log.error(f"Failed to open {url}: {e}")
            return
        if opened is False:
            log.warning(f"No browser available to open {url}")
