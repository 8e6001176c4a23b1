"""Realtime session manager for Slack push-delivered events.

The session owns one WebSocket at a time. Each physical connection is
obtained through an HTTP bootstrap call that returns a one-time URL, and is
served by three cooperating tasks:
- reader: decodes frames and delivers events to the sink in arrival order
- writer: drains the outbound queue (acks, pings, client frames)
- keep-alive: pings the remote and detects dead connections

A supervisor task reconnects with exponential backoff whenever a connection
drops. The remote cannot resume a dropped connection, so every reconnect
starts from a fresh bootstrap call with a new connection id and sequence.

Usage:
    session = client.realtime()
    session.on_event(handle_event)
    session.on_connection_state_changed(handle_state)
    await session.connect()
    ...
    await session.close()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from .errors import (
    ApplicationError,
    ConfigurationError,
    ConnectionLost,
    ProtocolError,
    RequestFailed,
    SlackClientError,
    TransportError,
)
from .protocol import (
    EnvelopeType,
    RealtimeEvent,
    RealtimeMode,
    build_ack,
    build_ping,
    disconnect_reason,
    parse_frame,
)
from .request import RequestSpec
from .retry import BackoffPolicy
from .transport.ws_client import SlackWsClient, SlackWsMessage, SlackWsMessageType

if TYPE_CHECKING:
    from .transport.http import RequestEngine

_LOGGER = logging.getLogger(__name__)

# Bootstrap failures that retrying cannot fix
_FATAL_BOOTSTRAP_ERRORS = (ApplicationError, ConfigurationError, RequestFailed)

MAX_REMEMBERED_ENVELOPES = 512

# Sync or async; may return an ack payload in Socket Mode
EventCallback = Callable[[RealtimeEvent], Any]


class RealtimeState(Enum):
    """Lifecycle state of a realtime session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


_TRANSITIONS: dict[RealtimeState, frozenset[RealtimeState]] = {
    RealtimeState.DISCONNECTED: frozenset({RealtimeState.CONNECTING, RealtimeState.CLOSED}),
    RealtimeState.CONNECTING: frozenset(
        {RealtimeState.CONNECTED, RealtimeState.RECONNECTING, RealtimeState.CLOSED}
    ),
    RealtimeState.CONNECTED: frozenset(
        {RealtimeState.DISCONNECTED, RealtimeState.RECONNECTING, RealtimeState.CLOSED}
    ),
    RealtimeState.RECONNECTING: frozenset({RealtimeState.CONNECTED, RealtimeState.CLOSED}),
    RealtimeState.CLOSED: frozenset(),
}


@dataclass(slots=True)
class _Connection:
    """One physical socket and its per-connection bookkeeping."""

    connection_id: str
    ws: SlackWsClient
    messages: AsyncIterator[SlackWsMessage]
    outbound: asyncio.Queue[dict[str, Any]] = field(default_factory=asyncio.Queue)
    seq: int = 0
    last_seen: float = 0.0

    def next_seq(self) -> int:
        self.seq += 1
        return self.seq


class RealtimeSession:
    """Persistent WebSocket session with reconnect and keep-alive."""

    def __init__(
        self,
        engine: RequestEngine,
        *,
        mode: RealtimeMode = RealtimeMode.SOCKET_MODE,
        ping_interval: float = 30.0,
        ping_timeout: float = 10.0,
        dead_connection_timeout: float | None = None,
        hello_timeout: float = 30.0,
        connect_timeout: float = 15.0,
        close_timeout: float = 2.0,
        reconnect: BackoffPolicy | None = None,
    ) -> None:
        """Initialize session.

        Args:
            engine: Request engine used for the bootstrap call
            mode: Socket Mode or RTM
            ping_interval: Keep-alive ping interval (seconds)
            ping_timeout: Wait for a protocol pong (seconds)
            dead_connection_timeout: Inbound silence that counts as a dead
                connection (seconds), defaults to 3 x ping_interval
            hello_timeout: Wait for the initial hello frame (seconds)
            connect_timeout: WebSocket connect timeout (seconds)
            close_timeout: Bound on closing a socket (seconds)
            reconnect: Reconnect backoff, unlimited attempts by default
        """
        self._engine = engine
        self._mode = mode
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout
        self._dead_timeout = (
            dead_connection_timeout
            if dead_connection_timeout is not None
            else 3 * ping_interval
        )
        self._hello_timeout = hello_timeout
        self._connect_timeout = connect_timeout
        self._close_timeout = close_timeout
        self._reconnect = reconnect or BackoffPolicy(
            base_delay=1.0, max_delay=60.0, max_retries=None
        )

        # Connection state, guarded by _lock
        self._lock = asyncio.Lock()
        self._state = RealtimeState.DISCONNECTED
        self._conn: _Connection | None = None
        self._closing = False

        self._supervisor: asyncio.Task[None] | None = None
        self._duties: set[asyncio.Task[None]] = set()
        self._ready: asyncio.Future[None] | None = None
        self._closed = asyncio.Event()
        self._failure: ConnectionLost | None = None
        self._reconnect_count = 0

        # Envelope ids already delivered, oldest first
        self._seen_order: deque[str] = deque()
        self._seen_ids: set[str] = set()

        # Callbacks
        self._event_callback: EventCallback | None = None
        self._connection_state_callback: Callable[[RealtimeState], None] | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def state(self) -> RealtimeState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is RealtimeState.CONNECTED

    @property
    def mode(self) -> RealtimeMode:
        return self._mode

    @property
    def connection_id(self) -> str | None:
        return self._conn.connection_id if self._conn else None

    @property
    def sequence(self) -> int | None:
        """Last sequence id assigned on the current socket."""
        return self._conn.seq if self._conn else None

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    def on_event(self, callback: EventCallback) -> None:
        """Register the event sink.

        The callback may be sync or async. In Socket Mode a returned dict is
        sent back as the acknowledgement payload.
        """
        self._event_callback = callback

    def on_connection_state_changed(
        self, callback: Callable[[RealtimeState], None]
    ) -> None:
        """Register callback for connection state changes."""
        self._connection_state_callback = callback

    async def connect(self) -> None:
        """Open the session and wait for the first hello.

        Raises:
            ConnectionLost: The session closed before it ever connected.
        """
        if self._state is RealtimeState.CLOSED:
            raise ConnectionLost("Realtime session is closed")
        if self._ready is None:
            self._ready = asyncio.get_running_loop().create_future()
            self._supervisor = asyncio.create_task(self._supervise())
        await asyncio.shield(self._ready)

    async def send(self, frame: dict[str, Any]) -> int:
        """Queue a client frame on the current socket.

        Returns:
            The sequence id assigned to the frame.

        Raises:
            ConnectionLost: The session is not connected.
        """
        async with self._lock:
            conn = self._conn
            if self._state is not RealtimeState.CONNECTED or conn is None:
                raise ConnectionLost("Realtime session is not connected")
            seq = conn.next_seq()
            outbound = dict(frame)
            if self._mode is RealtimeMode.RTM:
                outbound["id"] = seq
            conn.outbound.put_nowait(outbound)
            return seq

    async def close(self) -> None:
        """Close the session for good. Safe to call from any state."""
        if self._closing and self._closed.is_set():
            return
        _LOGGER.info("[realtime] Closing session")
        self._closing = True

        async with self._lock:
            self._set_state(RealtimeState.CLOSED)

        current = asyncio.current_task()
        task = self._supervisor
        if current in self._duties:
            # Called from a duty such as the event callback: the supervisor
            # cancels this task on teardown and closes the socket itself.
            if task is not None:
                task.cancel()
            self._finish(None)
            return

        try:
            if task is not None and task is not current:
                task.cancel()
                await asyncio.wait({task})

            conn, self._conn = self._conn, None
            if conn is not None:
                await self._discard(conn)
        finally:
            self._finish(None)

    async def wait_closed(self) -> None:
        """Wait until the session is closed.

        Raises:
            ConnectionLost: The session gave up reconnecting.
        """
        await self._closed.wait()
        if self._failure is not None:
            raise self._failure

    # -------------------------------------------------------------------------
    # Internal: State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: RealtimeState) -> None:
        """Update connection state and notify callback. Caller holds _lock."""
        if self._state is state:
            return
        if state not in _TRANSITIONS[self._state]:
            _LOGGER.debug(
                "[realtime] Ignoring transition %s → %s",
                self._state.value,
                state.value,
            )
            return
        _LOGGER.debug("[realtime] State: %s → %s", self._state.value, state.value)
        self._state = state
        if self._connection_state_callback:
            try:
                self._connection_state_callback(state)
            except Exception as err:
                _LOGGER.exception("[realtime] State callback error: %s", err)

    def _finish(self, failure: ConnectionLost | None) -> None:
        if failure is not None and self._failure is None:
            self._failure = failure
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(
                failure or ConnectionLost("Realtime session closed before connecting")
            )
        self._closed.set()

    async def _fail(self, failure: ConnectionLost) -> None:
        _LOGGER.error("[realtime] %s", failure)
        self._closing = True
        async with self._lock:
            self._set_state(RealtimeState.CLOSED)
        self._finish(failure)

    # -------------------------------------------------------------------------
    # Internal: Supervisor
    # -------------------------------------------------------------------------

    async def _supervise(self) -> None:
        """Connect, serve, and reconnect with backoff until closed."""
        retries = 0
        while not self._closing:
            try:
                conn = await self._open()
            except _FATAL_BOOTSTRAP_ERRORS as err:
                failure = ConnectionLost(f"Realtime bootstrap rejected: {err}")
                failure.__cause__ = err
                await self._fail(failure)
                return
            except SlackClientError as err:
                _LOGGER.warning("[realtime] Connection attempt failed: %s", err)
            else:
                retries = 0
                await self._serve(conn)

            if self._closing:
                return
            async with self._lock:
                self._set_state(RealtimeState.RECONNECTING)

            if self._reconnect.exhausted(retries):
                await self._fail(
                    ConnectionLost(f"Gave up reconnecting after {retries} attempts")
                )
                return

            delay = self._reconnect.delay(retries)
            retries += 1
            self._reconnect_count += 1
            _LOGGER.info(
                "[realtime] Reconnecting in %.1fs (attempt %d)", delay, retries
            )
            await asyncio.sleep(delay)

    async def _open(self) -> _Connection:
        """Bootstrap, open the socket and wait for hello."""
        async with self._lock:
            self._set_state(RealtimeState.CONNECTING)

        data = await self._engine.execute(
            RequestSpec(self._mode.value, http_method=self._mode.bootstrap_http_method)
        )
        url = data.get("url")
        if not isinstance(url, str) or not url:
            raise ProtocolError("Bootstrap response has no WebSocket URL")

        ws = SlackWsClient()
        await ws.connect(url, timeout=self._connect_timeout)
        conn = _Connection(
            connection_id=uuid4().hex[:8],
            ws=ws,
            messages=ws.__aiter__(),
        )
        _LOGGER.info("[%s] WebSocket connected, waiting for hello", conn.connection_id)

        try:
            hello = await asyncio.wait_for(
                self._next_event(conn), timeout=self._hello_timeout
            )
            if hello.kind is not EnvelopeType.HELLO:
                raise ProtocolError(f"Expected hello, got '{hello.type}'")
        except TimeoutError as err:
            await self._discard(conn)
            raise ProtocolError(
                f"No hello within {self._hello_timeout:g}s"
            ) from err
        except BaseException:
            await self._discard(conn)
            raise

        conn.last_seen = asyncio.get_running_loop().time()
        async with self._lock:
            if self._closing:
                await self._discard(conn)
                raise ConnectionLost("Realtime session closed while connecting")
            self._conn = conn
            self._set_state(RealtimeState.CONNECTED)

        _LOGGER.info("[%s] Connected (%s)", conn.connection_id, self._mode.name)
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)
        return conn

    async def _next_event(self, conn: _Connection) -> RealtimeEvent:
        msg = await anext(conn.messages)
        if msg.type is not SlackWsMessageType.TEXT:
            raise TransportError("WebSocket closed before hello")
        return parse_frame(SlackWsClient.decode_json(msg), self._mode)

    async def _serve(self, conn: _Connection) -> None:
        """Run reader, writer and keep-alive until one of them stops."""
        tasks = {
            asyncio.create_task(self._read_loop(conn)),
            asyncio.create_task(self._write_loop(conn)),
            asyncio.create_task(self._keepalive_loop(conn)),
        }
        self._duties = tasks
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and (err := task.exception()) is not None:
                    _LOGGER.warning("[%s] Connection duty failed: %s", conn.connection_id, err)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._duties = set()
            async with self._lock:
                if self._conn is conn:
                    self._conn = None
                if not self._closing:
                    self._set_state(RealtimeState.RECONNECTING)
            await self._discard(conn)

    async def _discard(self, conn: _Connection) -> None:
        """Close a socket without waiting on a graceful handshake for long."""
        try:
            await asyncio.wait_for(conn.ws.close(), timeout=self._close_timeout)
        except TimeoutError:
            _LOGGER.warning("[%s] WebSocket close timed out", conn.connection_id)
        except Exception as err:
            _LOGGER.debug("[%s] WebSocket close failed: %s", conn.connection_id, err)

    # -------------------------------------------------------------------------
    # Internal: Connection Duties
    # -------------------------------------------------------------------------

    async def _read_loop(self, conn: _Connection) -> None:
        """Deliver inbound events in the order the socket produced them."""
        loop = asyncio.get_running_loop()
        message_count = 0

        async for msg in conn.messages:
            if msg.type is SlackWsMessageType.CLOSED:
                _LOGGER.info("[%s] WebSocket closed by remote", conn.connection_id)
                return
            if msg.type is SlackWsMessageType.ERROR:
                _LOGGER.error("[%s] WebSocket error", conn.connection_id)
                return

            message_count += 1
            conn.last_seen = loop.time()
            try:
                frame = SlackWsClient.decode_json(msg)
                if self._mode is RealtimeMode.RTM and "reply_to" in frame:
                    _LOGGER.debug("[%s] Reply to id=%s", conn.connection_id, frame["reply_to"])
                    continue
                event = parse_frame(frame, self._mode)
            except ProtocolError as err:
                _LOGGER.warning("[%s] Invalid frame: %s", conn.connection_id, err)
                continue

            if not await self._dispatch(conn, event):
                return

    async def _dispatch(self, conn: _Connection, event: RealtimeEvent) -> bool:
        """Handle one event. Returns False when the connection should be dropped."""
        kind = event.kind
        if kind is EnvelopeType.HELLO:
            _LOGGER.debug("[%s] Extra hello ignored", conn.connection_id)
            return True
        if kind is EnvelopeType.DISCONNECT:
            _LOGGER.info(
                "[%s] Remote requested disconnect: %s",
                conn.connection_id,
                disconnect_reason(event),
            )
            return False

        envelope_id = event.envelope_id
        if envelope_id is not None and envelope_id in self._seen_ids:
            _LOGGER.debug(
                "[%s] Duplicate envelope %s (retry %s)",
                conn.connection_id,
                envelope_id,
                event.retry_attempt,
            )
            self._queue_ack(conn, envelope_id, None)
            return True

        response = await self._deliver(event)

        if envelope_id is not None:
            self._remember(envelope_id)
            self._queue_ack(conn, envelope_id, response if isinstance(response, dict) else None)
        return True

    async def _deliver(self, event: RealtimeEvent) -> Any:
        if self._closing or self._event_callback is None:
            return None
        try:
            result = self._event_callback(event)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as err:
            _LOGGER.exception("[realtime] Event callback error: %s", err)
            return None

    def _queue_ack(
        self, conn: _Connection, envelope_id: str, payload: dict[str, Any] | None
    ) -> None:
        conn.next_seq()
        conn.outbound.put_nowait(build_ack(envelope_id, payload))

    def _remember(self, envelope_id: str) -> None:
        self._seen_ids.add(envelope_id)
        self._seen_order.append(envelope_id)
        if len(self._seen_order) > MAX_REMEMBERED_ENVELOPES:
            self._seen_ids.discard(self._seen_order.popleft())

    async def _write_loop(self, conn: _Connection) -> None:
        """Send queued frames; a send failure ends the connection."""
        while True:
            frame = await conn.outbound.get()
            await conn.ws.send_json(frame)

    async def _keepalive_loop(self, conn: _Connection) -> None:
        """Ping periodically and stop once the connection looks dead."""
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self._ping_interval)

            if self._mode is RealtimeMode.RTM:
                conn.outbound.put_nowait(build_ping(conn.next_seq()))
            elif await conn.ws.ping(self._ping_timeout):
                conn.last_seen = loop.time()

            idle = loop.time() - conn.last_seen
            if idle > self._dead_timeout:
                _LOGGER.error(
                    "[%s] Connection dead (%.1fs without traffic)",
                    conn.connection_id,
                    idle,
                )
                return
