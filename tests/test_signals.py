"""Tests for the backend signal listener and the log broadcast."""

import asyncio
import threading

import pytest

from ovpn3_core.constants import BACKENDS_INTERFACE
from ovpn3_core.models import LogEvent
from ovpn3_core.signals import (
    BusSignal,
    LogBroadcast,
    SignalAction,
    SignalListener,
    classify,
)

SESS = "/net/openvpn/v3/backends/be1"
AUTH_URL = "https://login.example.com/auth?session=abc"


class RecordingOpener:
    def __init__(self, result=True):
        self.urls = []
        self.result = result

    def __call__(self, url):
        self.urls.append(url)
        return self.result


def make_event(message="hello", member="Log"):
    return LogEvent(SESS, member, 6, 4, message)


class TestClassify:
    """Tests for classify()."""

    def test_auth_url_status(self):
        assert classify("StatusChange", 3, 22) is SignalAction.OPEN_URL

    @pytest.mark.parametrize("member,first,second", [
        ("StatusChange", 2, 7),
        ("StatusChange", 3, 21),
        ("StatusChange", 22, 3),
        ("Log", 3, 22),
        ("AttentionRequired", 3, 22),
    ])
    def test_everything_else_is_noop(self, member, first, second):
        assert classify(member, first, second) is SignalAction.NOOP


class TestLogBroadcast:
    """Tests for LogBroadcast and LogSubscription."""

    def test_rejects_empty_backlog(self):
        with pytest.raises(ValueError):
            LogBroadcast(0)

    @pytest.mark.asyncio
    async def test_every_subscriber_gets_every_event(self):
        broadcast = LogBroadcast()
        first = broadcast.subscribe()
        second = broadcast.subscribe()

        assert broadcast.publish(make_event("one")) == 2
        broadcast.publish(make_event("two"))

        for subscription in (first, second):
            assert (await subscription.get()).message == "one"
            assert (await subscription.get()).message == "two"

    @pytest.mark.asyncio
    async def test_slow_subscriber_drops_oldest(self):
        """Test that a full backlog drops its oldest events."""
        broadcast = LogBroadcast(16)
        slow = broadcast.subscribe()

        for i in range(20):
            broadcast.publish(make_event(str(i)))

        assert slow.pending == 16
        assert slow.dropped == 4
        assert (await slow.get()).message == "4"

    def test_publish_without_subscribers(self):
        assert LogBroadcast().publish(make_event()) == 0

    @pytest.mark.asyncio
    async def test_closed_subscription_ends_iteration(self):
        broadcast = LogBroadcast()
        subscription = broadcast.subscribe()
        broadcast.publish(make_event("last"))
        subscription.close()

        received = [event.message async for event in subscription]

        assert received == ["last"]
        assert broadcast.subscriber_count == 0
        assert broadcast.publish(make_event()) == 0

    @pytest.mark.asyncio
    async def test_waiting_consumer_wakes_on_publish(self):
        broadcast = LogBroadcast()
        subscription = broadcast.subscribe()

        waiter = asyncio.ensure_future(subscription.get())
        await asyncio.sleep(0)
        broadcast.publish(make_event("late"))

        assert (await asyncio.wait_for(waiter, 1)).message == "late"

    @pytest.mark.asyncio
    async def test_close_wakes_waiting_consumer(self):
        broadcast = LogBroadcast()
        subscription = broadcast.subscribe()

        waiter = asyncio.ensure_future(subscription.get())
        await asyncio.sleep(0)
        broadcast.close()

        assert await asyncio.wait_for(waiter, 1) is None


class TestSignalListener:
    """Tests for SignalListener."""

    @pytest.mark.asyncio
    async def test_auth_url_opens_browser_once_and_is_published(self, bus):
        """Test the SESSION/SESS_AUTH_URL status change."""
        broadcast = LogBroadcast()
        first = broadcast.subscribe()
        second = broadcast.subscribe()
        opener = RecordingOpener()
        listener = SignalListener(bus, broadcast, url_opener=opener)

        event = await listener.handle(BusSignal(SESS, "StatusChange", (3, 22, AUTH_URL)))
        await listener.wait_openers()

        assert opener.urls == [AUTH_URL]
        assert event.group_name == "SESSION"
        assert event.level_name == "SESS_AUTH_URL"
        assert (await first.get()) == event
        assert (await second.get()) == event

    @pytest.mark.asyncio
    async def test_log_signal_does_not_open_browser(self, bus):
        broadcast = LogBroadcast()
        subscription = broadcast.subscribe()
        opener = RecordingOpener()
        listener = SignalListener(bus, broadcast, url_opener=opener)

        await listener.handle(BusSignal(SESS, "Log", (7, 4, "Peer Connection Initiated")))

        assert opener.urls == []
        event = await subscription.get()
        assert (event.group_name, event.level_name) == ("CLIENT", "INFO")

    @pytest.mark.asyncio
    async def test_malformed_payload_is_ignored(self, bus):
        broadcast = LogBroadcast()
        subscription = broadcast.subscribe()
        listener = SignalListener(bus, broadcast, url_opener=RecordingOpener())

        assert await listener.handle(BusSignal(SESS, "Log", ("x",))) is None
        assert await listener.handle(BusSignal(SESS, "Log", ("a", "b", "c"))) is None
        assert subscription.pending == 0

    @pytest.mark.asyncio
    async def test_failing_opener_does_not_break_listener(self, bus):
        def broken(url):
            raise RuntimeError("no display")

        broadcast = LogBroadcast()
        subscription = broadcast.subscribe()
        listener = SignalListener(bus, broadcast, url_opener=broken)

        event = await listener.handle(BusSignal(SESS, "StatusChange", (3, 22, AUTH_URL)))
        await listener.wait_openers()

        assert event is not None
        assert subscription.pending == 1

    @pytest.mark.asyncio
    async def test_consumes_bus_stream_until_stopped(self, bus):
        broadcast = LogBroadcast()
        subscription = broadcast.subscribe()
        opener = RecordingOpener()
        listener = SignalListener(bus, broadcast, url_opener=opener)

        task = listener.start()
        assert listener.running
        assert [s.interface for s in bus.streams] == [BACKENDS_INTERFACE]

        bus.emit(SESS, "Log", 7, 4, "first")
        bus.emit(SESS, "StatusChange", 3, 22, AUTH_URL)
        bus.emit(SESS, "Log", "bad")
        bus.emit(SESS, "Log", 7, 5, "last")
        listener.stop()
        await asyncio.wait_for(task, 1)
        await listener.wait_openers()

        assert not listener.running
        messages = [(await subscription.get()).message for _ in range(3)]
        assert messages == ["first", AUTH_URL, "last"]
        assert opener.urls == [AUTH_URL]

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, bus):
        listener = SignalListener(bus, LogBroadcast(), url_opener=RecordingOpener())

        task = listener.start()
        assert listener.start() is task
        assert len(bus.streams) == 1

        listener.stop()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_slow_browser_does_not_hold_up_later_signals(self, bus):
        """Test that events keep flowing while the browser is still starting."""
        release = threading.Event()
        opened = []

        def blocking_opener(url):
            release.wait(5)
            opened.append(url)
            return True

        broadcast = LogBroadcast()
        subscription = broadcast.subscribe()
        listener = SignalListener(bus, broadcast, url_opener=blocking_opener)
        task = listener.start()

        bus.emit(SESS, "StatusChange", 3, 22, AUTH_URL)
        bus.emit(SESS, "StatusChange", 2, 7, "connected")

        first = await asyncio.wait_for(subscription.get(), 1)
        second = await asyncio.wait_for(subscription.get(), 1)
        assert (first.message, second.message) == (AUTH_URL, "connected")
        assert opened == []

        release.set()
        await asyncio.wait_for(listener.wait_openers(), 5)
        listener.stop()
        await asyncio.wait_for(task, 1)

        assert opened == [AUTH_URL]
