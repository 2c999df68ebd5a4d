"""Shared pytest fixtures and helpers."""

import asyncio
import json

import pytest

from cordwire.config import GatewayConfig
from cordwire.errors import GatewayConnectionError


class FakeTransport:
    """In-memory transport: frames are fed by the test, sends are recorded."""

    def __init__(self, url: str = "wss://test", fail_open: bool = False):
        self.url = url
        self.fail_open = fail_open
        self.opened = False
        self.closed_with = None
        self.close_code = None
        self.sent: list[dict] = []
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def open(self) -> None:
        if self.fail_open:
            raise GatewayConnectionError("connection refused")
        self.opened = True

    async def send(self, data: str) -> None:
        if self.closed_with is not None:
            raise GatewayConnectionError("transport closed")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        if self.closed_with is None:
            self.closed_with = code
            self.close_code = code
            self._inbox.put_nowait(None)

    def feed(self, frame: dict) -> None:
        self._inbox.put_nowait(json.dumps(frame))

    def drop(self, code: int = 1006) -> None:
        """Simulate the server side going away."""
        self.close_code = code
        self._inbox.put_nowait(None)

    async def frames(self):
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            yield item

    def ops(self) -> list[int]:
        return [frame["op"] for frame in self.sent]


class TransportFactory:
    """Hands out a fresh FakeTransport per connection epoch and remembers them."""

    def __init__(self):
        self.created: list[FakeTransport] = []
        self.failures = 0
        # close code the server sends right after accepting, if any
        self.reject_with = None

    def __call__(self, url: str) -> FakeTransport:
        transport = FakeTransport(url, fail_open=self.failures > 0)
        if self.failures > 0:
            self.failures -= 1
        if self.reject_with is not None:
            transport.drop(self.reject_with)
        self.created.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.created[-1]


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def hello(interval: int = 45000) -> str:
    return json.dumps({"op": 10, "d": {"heartbeat_interval": interval}})


def dispatch(name: str, data, seq=None) -> str:
    return json.dumps({"op": 0, "t": name, "s": seq, "d": data})


@pytest.fixture
def config():
    """Config with no jitter and tiny backoff so tests stay deterministic and fast."""
    return GatewayConfig(
        token="test-token",
        intents=513,
        heartbeat_jitter=0.0,
        reconnect_backoff_base=0.01,
        reconnect_backoff_max=0.02,
    )


@pytest.fixture
def transports():
    return TransportFactory()
