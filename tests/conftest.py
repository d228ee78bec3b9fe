"""Shared fakes for the Huginn test suite: a scripted WebSocket, a connector and a manual timer."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest
from websockets.exceptions import ConnectionClosedError

from huginn.relay.connection import ConnectionManager
from huginn.relay.envelope import EnvelopeBuilder

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

_END = object()
_ABNORMAL = object()


class FakeSocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = ""
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data):
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(data)

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(_END)

    def sent_json(self):
        return [json.loads(frame) for frame in self.sent]

    def feed(self, raw):
        self._incoming.put_nowait(raw)

    def drop(self, clean: bool = False):
        """Simulate the monitor going away."""
        self.closed = True
        self.close_code = 1000 if clean else 1006
        self._incoming.put_nowait(_END if clean else _ABNORMAL)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _END:
            raise StopAsyncIteration
        if item is _ABNORMAL:
            raise ConnectionClosedError(None, None)
        return item


class FakeConnector:
    """``connect_fn`` replacement: hands out FakeSockets or fails on demand."""

    def __init__(self):
        self.sockets = []
        self.calls = []
        self.fail = False
        self.error_factory = lambda: OSError("connection refused")

    async def __call__(self, url, open_timeout=None):
        self.calls.append((url, open_timeout))
        if self.fail:
            raise self.error_factory()
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


class FakeTimerHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeTimers:
    """``call_later`` replacement that records delays and fires on request."""

    def __init__(self):
        self.handles = []

    def __call__(self, delay, callback):
        handle = FakeTimerHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def delays(self):
        return [h.delay for h in self.handles]

    def pending(self):
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def fire_next(self):
        handle = self.pending()[0]
        handle.fired = True
        handle.callback()


async def settle(rounds: int = 10) -> None:
    """Let spawned tasks run to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def builder():
    return EnvelopeBuilder("huginn-relay", clock=lambda: FIXED_NOW)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def make_manager(builder, connector, timers):
    created = []

    def _make(**overrides):
        options = dict(
            client_id="huginn-relay",
            client_version="1.0.0",
            capabilities=["task_events", "authorization_requests"],
            base_delay=5.0,
            max_delay=30.0,
            max_attempts=10,
            open_timeout=10.0,
            connect_fn=connector,
            call_later=timers,
        )
        options.update(overrides)
        manager = ConnectionManager("ws://monitor.test:2200", builder, **options)
        created.append(manager)
        return manager

    return _make
