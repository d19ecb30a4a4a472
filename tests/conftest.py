"""Shared fixtures: an in-memory stand-in for the D-Bus connection."""

from collections import deque
from dataclasses import dataclass
from typing import Optional

import pytest

from ovpn3_core.constants import PROPERTIES_INTERFACE
from ovpn3_core.errors import RpcError
from ovpn3_core.signals import BusSignal, SignalStream


@dataclass
class Call:
    service: str
    path: str
    interface: str
    method: str
    args: tuple
    signature: Optional[str] = None


class FakeBus:
    """Answers calls from scripted outcomes and records every call.

    Outcomes are consumed in order; the last one repeats. An outcome that
    is an exception instance is raised. Unscripted calls fail like an
    unknown object would.
    """

    def __init__(self):
        self.calls = []
        self.streams = []
        self._outcomes = {}

    def on_call(self, path: str, method: str, *outcomes):
        self._outcomes[("call", path, method)] = deque(outcomes)

    def on_property(self, path: str, name: str, *outcomes):
        self._outcomes[("prop", path, name)] = deque(outcomes)

    def on_all_properties(self, path: str, *outcomes):
        self._outcomes[("all", path)] = deque(outcomes)

    def _next(self, key, method, path):
        outcomes = self._outcomes.get(key)
        if not outcomes:
            raise RpcError(f"{method} failed on {path}: unknown object", method=method, path=path,
                           dbus_name="org.freedesktop.DBus.Error.UnknownObject")
        outcome = outcomes.popleft() if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def call(self, service, path, interface, method, *args, signature=None, timeout=None):
        self.calls.append(Call(service, path, interface, method, args, signature))
        return self._next(("call", path, method), method, path)

    async def get_property(self, service, path, interface, name):
        self.calls.append(Call(service, path, PROPERTIES_INTERFACE, "Get", (interface, name), "ss"))
        return self._next(("prop", path, name), "Get", path)

    async def get_all_properties(self, service, path, interface):
        self.calls.append(Call(service, path, PROPERTIES_INTERFACE, "GetAll", (interface,), "s"))
        return self._next(("all", path), "GetAll", path)

    def subscribe(self, interface):
        stream = SignalStream(interface)
        self.streams.append(stream)
        return stream

    def emit(self, path: str, member: str, *args):
        for stream in self.streams:
            stream.feed(BusSignal(path=path, member=member, args=args))

    def methods(self, method: str, path: Optional[str] = None) -> list:
        return [c for c in self.calls if c.method == method and (path is None or c.path == path)]


class SleepRecorder:
    """Replacement for asyncio.sleep that returns at once."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def rpc_error(method="Call", path="/"):
    return RpcError(f"{method} failed on {path}", method=method, path=path,
                    dbus_name="net.openvpn.v3.error")


@pytest.fixture
def bus():
    return FakeBus()


@pytest.fixture
def sleep():
    return SleepRecorder()
