"""
Huginn Relay — Connection Manager
=================================
Owns the single outbound WebSocket to the monitor.

State machine
-------------
  disconnected ─connect()─▶ connecting ─open─▶ identifying ─identify sent─▶ ready
        ▲                       │                    │                        │
        │ (give up)             └──── failure ───────┴──── close / error ─────┘
        │                                            ▼
        └──────────── attempts > max ◀──── errored | closing ──▶ backoff ─timer─▶ connecting

  any state ─shutdown()─▶ shutting_down   (terminal; no further transitions)

Reconnect delay is ``min(base_delay * attempt, max_delay)``; the attempt
counter resets to zero on every transition to ``ready``. After
``max_attempts`` consecutive failures the manager gives up and stays
``disconnected`` until an explicit ``connect()``.

Sends are never queued: ``send()`` fails fast with ``NotConnectedError``
unless the socket is ready at call time.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from huginn.core.errors import MalformedInboundMessage, NotConnectedError

from .envelope import EnvelopeBuilder
from .models import ConnectionState, ConnectionStatus, Envelope

logger = logging.getLogger("Huginn.relay.connection")

ConnectFn = Callable[..., Awaitable[Any]]
CallLater = Callable[[float, Callable[[], None]], Any]
StateListener = Callable[[ConnectionState, ConnectionState], None]

_PREVIEW_CHARS = 200
_IN_PROGRESS = (ConnectionState.CONNECTING, ConnectionState.IDENTIFYING, ConnectionState.READY)


def parse_inbound(raw: Union[str, bytes]) -> dict:
    """Parse a monitor frame into a dict with a string ``type`` or raise ``MalformedInboundMessage``."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedInboundMessage("frame is not valid UTF-8", repr(raw[:_PREVIEW_CHARS])) from exc
    preview = raw[:_PREVIEW_CHARS]
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedInboundMessage(f"invalid JSON ({exc.msg})", preview) from exc
    if not isinstance(message, dict):
        raise MalformedInboundMessage("frame is not a JSON object", preview)
    if not isinstance(message.get("type"), str):
        raise MalformedInboundMessage("frame has no string 'type' field", preview)
    return message


class ConnectionManager:
    """
    Connect, identify, detect failure and reconnect with bounded backoff.

    Parameters
    ----------
    url : str
        Monitor WebSocket URL (``ws://`` or ``wss://``).
    builder : EnvelopeBuilder
        Used to build the identification envelope on every new connection.
    client_id, client_version, capabilities
        Identification payload fields.
    base_delay, max_delay : float
        Backoff parameters in seconds.
    max_attempts : int
        Consecutive failed attempts tolerated before giving up.
    open_timeout : float
        WebSocket handshake timeout in seconds.
    connect_fn : optional coroutine function
        ``await connect_fn(url, open_timeout=...)`` returns a connection with
        ``send``, ``close`` and async iteration. Defaults to ``websockets.connect``.
    call_later : optional callable
        ``call_later(delay, callback)`` returning a handle with ``cancel()``.
        Defaults to the running loop's ``call_later``.
    on_give_up : optional callable
        Invoked with a ``ConnectionStatus`` when reconnects stop.
    """

    def __init__(
        self,
        url: str,
        builder: EnvelopeBuilder,
        *,
        client_id: str,
        client_version: str,
        capabilities: Iterable[str] = (),
        base_delay: float = 5.0,
        max_delay: float = 30.0,
        max_attempts: int = 10,
        open_timeout: float = 10.0,
        connect_fn: Optional[ConnectFn] = None,
        call_later: Optional[CallLater] = None,
        on_give_up: Optional[Callable[[ConnectionStatus], None]] = None,
    ) -> None:
        self.url = url
        self.client_id = client_id
        self.client_version = client_version
        self.capabilities = list(capabilities)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.open_timeout = open_timeout

        self._builder = builder
        self._connect_fn = connect_fn
        self._call_later = call_later
        self._on_give_up = on_give_up

        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._attempts = 0
        self._gave_up = False
        self._shutting_down = False
        self._retry_handle: Any = None
        self._reader_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[StateListener] = []

        self._frames_sent = 0
        self._frames_received = 0
        self._malformed_frames = 0
        self._last_error: Optional[str] = None
        self._connected_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def gave_up(self) -> bool:
        return self._gave_up

    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY and self._ws is not None

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            ready=self.is_ready(),
            url=self.url,
            attempts=self._attempts,
            max_attempts=self.max_attempts,
            gave_up=self._gave_up,
            frames_sent=self._frames_sent,
            frames_received=self._frames_received,
            malformed_frames=self._malformed_frames,
            last_error=self._last_error,
            connected_at=self._connected_at,
        )

    def add_listener(self, listener: StateListener) -> None:
        """Register ``listener(old_state, new_state)`` for every transition."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Begin connecting in the background; returns the connect task."""
        return self._spawn(self.connect(), "huginn-connect")

    async def connect(self) -> bool:
        """
        Explicitly (re)connect to the monitor.

        Cancels any pending backoff timer. After a give-up this clears the
        give-up flag and resets the attempt counter. Returns ``True`` when the
        socket is ready.
        """
        if self._shutting_down:
            logger.info("Ignoring connect request: relay is shutting down")
            return False
        self._cancel_retry()
        if self._state in _IN_PROGRESS:
            return self.is_ready()
        if self._gave_up:
            logger.info("Resuming monitor reconnects after give-up")
            self._gave_up = False
            self._attempts = 0
        # Awaited as a tracked task so shutdown() also waits for this handshake.
        return await self._spawn(self._open(), "huginn-connect-attempt")

    async def send(self, envelope: Envelope) -> None:
        """Send one envelope now or raise ``NotConnectedError``; never queues."""
        ws = self._ws
        if not self.is_ready() or ws is None:
            raise NotConnectedError(self._state.value)
        data = json.dumps(envelope.wire_dict())
        try:
            await ws.send(data)
        except ConnectionClosed as exc:
            raise NotConnectedError(self._state.value, str(exc)) from exc
        self._frames_sent += 1

    async def shutdown(self) -> None:
        """Stop reconnecting and close the socket. Safe to call more than once."""
        if self._shutting_down:
            return
        self._shutting_down = True
        self._cancel_retry()
        self._transition(ConnectionState.SHUTTING_DOWN)

        ws, self._ws = self._ws, None
        self._connected_at = None
        if ws is not None:
            await self._close_quietly(ws)

        reader, self._reader_task = self._reader_task, None
        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        # In-flight handshakes are not cancelled; they observe the flag and
        # close their socket once open.
        current = asyncio.current_task()
        pending = [task for task in self._tasks if not task.done() and task is not current]
        if pending:
            await asyncio.wait(pending, timeout=self.open_timeout)
        logger.info("Monitor connection manager shut down")

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def _open(self) -> bool:
        if self._state in _IN_PROGRESS:
            return self.is_ready()
        if not self._transition(ConnectionState.CONNECTING):
            return False
        return await self._handshake()

    async def _handshake(self) -> bool:
        """Open the socket and identify; the state is already ``connecting``."""
        logger.info("Connecting to monitor at %s (attempt %d)", self.url, self._attempts + 1)

        connect_fn = self._connect_fn or websockets.connect
        try:
            ws = await connect_fn(self.url, open_timeout=self.open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self._last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Could not connect to monitor at %s: %s", self.url, self._last_error)
            self._connection_lost(clean=False)
            return False

        if self._shutting_down:
            await self._close_quietly(ws)
            return False

        self._ws = ws
        self._transition(ConnectionState.IDENTIFYING)
        identify = self._builder.identify(self.client_id, self.client_version, self.capabilities)
        try:
            await ws.send(json.dumps(identify.wire_dict()))
        except (ConnectionClosed, OSError) as exc:
            if self._ws is ws:
                self._ws = None
            self._last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Monitor connection lost during identification: %s", self._last_error)
            self._connection_lost(clean=False)
            return False
        self._frames_sent += 1

        if not self._transition(ConnectionState.READY):
            await self._close_quietly(ws)
            return False
        self._attempts = 0
        self._last_error = None
        self._connected_at = time.time()
        logger.info("Connected to monitor at %s as %s", self.url, self.client_id)
        self._reader_task = self._spawn(self._read_loop(ws), "huginn-monitor-reader")
        return True

    async def _read_loop(self, ws: Any) -> None:
        clean = True
        try:
            async for raw in ws:
                self._handle_inbound(raw)
        except ConnectionClosed as exc:
            clean = False
            self._last_error = f"{type(exc).__name__}: {exc}"

        if self._ws is not ws:
            return
        self._ws = None
        self._connected_at = None
        logger.warning(
            "Disconnected from monitor (code=%s, reason=%r)",
            getattr(ws, "close_code", None),
            getattr(ws, "close_reason", None) or "",
        )
        self._connection_lost(clean=clean)

    def _handle_inbound(self, raw: Union[str, bytes]) -> None:
        self._frames_received += 1
        try:
            message = parse_inbound(raw)
        except MalformedInboundMessage as exc:
            self._malformed_frames += 1
            logger.error("Error processing message from monitor: %s (preview=%r)", exc.reason, exc.preview)
            return
        logger.debug("Message received from monitor: type=%s", message["type"])

    def _connection_lost(self, *, clean: bool) -> None:
        if self._shutting_down:
            return
        self._transition(ConnectionState.CLOSING if clean else ConnectionState.ERRORED)
        self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Backoff scheduling
    # ------------------------------------------------------------------

    def backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * attempt, self.max_delay)

    def _schedule_reconnect(self) -> None:
        if self._shutting_down:
            return
        self._cancel_retry()
        self._attempts += 1

        if self._attempts > self.max_attempts:
            self._gave_up = True
            self._transition(ConnectionState.DISCONNECTED)
            logger.error(
                "Maximum reconnect attempts reached (%d); giving up on monitor at %s",
                self.max_attempts,
                self.url,
            )
            if self._on_give_up is not None:
                try:
                    self._on_give_up(self.status())
                except Exception:
                    logger.exception("Give-up callback failed")
            return

        delay = self.backoff_delay(self._attempts)
        self._transition(ConnectionState.BACKOFF)
        logger.info(
            "Scheduling monitor reconnect: attempt=%d delay=%.1fs max_attempts=%d",
            self._attempts,
            delay,
            self.max_attempts,
        )
        call_later = self._call_later or asyncio.get_running_loop().call_later
        self._retry_handle = call_later(delay, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        if self._shutting_down or self._state is not ConnectionState.BACKOFF:
            return
        # Claim the attempt synchronously so a concurrent connect() sees it in progress.
        if self._transition(ConnectionState.CONNECTING):
            self._spawn(self._handshake(), "huginn-reconnect")

    def _cancel_retry(self) -> None:
        handle, self._retry_handle = self._retry_handle, None
        if handle is not None:
            handle.cancel()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, new_state: ConnectionState) -> bool:
        if self._shutting_down and new_state is not ConnectionState.SHUTTING_DOWN:
            logger.debug("Ignoring transition to %s during shutdown", new_state.value)
            return False
        old_state = self._state
        if old_state is new_state:
            return True
        self._state = new_state
        logger.debug("Monitor connection state %s -> %s", old_state.value, new_state.value)
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception("Connection state listener failed")
        return True

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except (ConnectionClosed, OSError) as exc:
            logger.debug("Error while closing monitor socket: %s", exc)
