"""
Gateway session manager.

Owns the transport, the resumable session identity (session id + sequence)
and the opcode state machine:

    CONNECTING → AWAITING_HELLO → (RESUMING | IDENTIFYING) → READY → DISCONNECTED

Every connection epoch gets a generation number; completions that belong to
an older epoch (a read or write finishing after a reconnect started) are
discarded instead of touching the new epoch's state.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from cordwire import actions
from cordwire.cache import EntityCache
from cordwire.config import CONFIG, GatewayConfig
from cordwire.errors import (
    GatewayConnectionError,
    GatewayError,
    MalformedFrameError,
    ProtocolViolation,
    SessionClosedError,
    SessionInvalidated,
    ZombieConnection,
)
from cordwire.events import EventDispatcher
from cordwire.gateway import codec
from cordwire.gateway.heartbeat import HeartbeatSupervisor
from cordwire.gateway.models import (
    Dispatch,
    GatewayMessage,
    Heartbeat,
    HeartbeatAck,
    Hello,
    InvalidSession,
    Reconnect,
)
from cordwire.gateway.transport import Transport, WebSocketTransport
from cordwire.logger import get_logger

logger = get_logger(__name__)

# Non-1000 close codes keep the session resumable on the server side.
RESUMABLE_CLOSE_CODE = 4000
NORMAL_CLOSE_CODE = 1000

SESSION_EVENTS = ("READY", "RESUMED")

TransportFactory = Callable[[str], Transport]


class Phase(str, Enum):
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    RESUMING = "resuming"
    IDENTIFYING = "identifying"
    READY = "ready"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


HELLO_SEEN = (Phase.RESUMING, Phase.IDENTIFYING, Phase.READY)


@dataclass
class SessionState:
    """Session identity and per-epoch flags. Owned by exactly one GatewaySession."""

    session_id: Optional[str] = None
    sequence: Optional[int] = None
    should_resume: bool = False
    heartbeat_interval_ms: Optional[int] = None
    ready: bool = False
    phase: Phase = Phase.DISCONNECTED

    @property
    def can_resume(self) -> bool:
        return self.session_id is not None and self.sequence is not None

    def observe_sequence(self, sequence: Optional[int]) -> None:
        if sequence is None:
            return
        if self.sequence is None or sequence > self.sequence:
            self.sequence = sequence

    def forget_session(self) -> None:
        self.session_id = None
        self.sequence = None


class GatewaySession:
    """
    Maintains exactly one logical gateway session.

    Args:
        token: Bot token used for IDENTIFY and RESUME.
        config: Settings; defaults to the process-wide CONFIG.
        cache: Entity cache updated by dispatch events.
        events: Event sink that decoded events are forwarded to.
        transport_factory: Builds a fresh Transport for each connection epoch.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        config: Optional[GatewayConfig] = None,
        cache: Optional[EntityCache] = None,
        events: Optional[EventDispatcher] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.config = config or CONFIG
        self.token = token or self.config.token
        self.cache = cache or EntityCache(self.config)
        self.events = events or EventDispatcher(self.config.event_queue_size)
        self._transport_factory = transport_factory or WebSocketTransport

        self.state = SessionState()
        self.heartbeat = HeartbeatSupervisor(
            send=self._send_heartbeat,
            get_sequence=lambda: self.state.sequence,
            on_zombie=self._handle_zombie,
            jitter=self.config.heartbeat_jitter,
        )

        self._transport: Optional[Transport] = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._epoch = 0
        # connections opened since the last READY/RESUMED; drives backoff
        self._attempts = 0
        self._reconnecting = False
        self._closed = False

    # -- Read-only surface ---------------------------------------------------

    @property
    def session_id(self) -> Optional[str]:
        return self.state.session_id

    @property
    def sequence(self) -> Optional[int]:
        return self.state.sequence

    @property
    def ready(self) -> bool:
        return self.state.ready

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def heartbeat_acked(self) -> bool:
        return self.heartbeat.acked

    @property
    def latency(self) -> Optional[float]:
        """Last heartbeat round trip in milliseconds."""
        return self.heartbeat.latency_ms

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def reconnecting(self) -> bool:
        task = self._reconnect_task
        return self._reconnecting or (task is not None and not task.done())

    # -- Lifecycle -----------------------------------------------------------

    async def connect(self) -> None:
        """
        Open a new transport and start reading frames.

        Any connection that is still live is closed first, so a session never
        holds more than one transport or heartbeat timer.

        Raises:
            GatewayConnectionError: If the transport cannot be opened.
            SessionClosedError: If close() was already called.
        """
        if self._closed:
            raise SessionClosedError("Session was closed")
        if not self.token:
            raise GatewayError("No token configured for the gateway session")

        self.heartbeat.stop()
        self._epoch += 1
        epoch = self._epoch
        await self._teardown(RESUMABLE_CLOSE_CODE)
        if epoch != self._epoch:
            return
        self._attempts += 1

        if not self.state.should_resume:
            self.state.forget_session()
        self.state.ready = False
        self.state.heartbeat_interval_ms = None
        self._set_phase(Phase.CONNECTING)

        transport = self._transport_factory(self.config.gateway_url)
        try:
            await transport.open()
        except GatewayConnectionError:
            if epoch == self._epoch:
                self._set_phase(Phase.DISCONNECTED)
            raise

        if epoch != self._epoch:
            logger.debug("Discarding transport opened for a stale epoch")
            await transport.close(NORMAL_CLOSE_CODE)
            return

        self._transport = transport
        self._set_phase(Phase.AWAITING_HELLO)
        self._reader = asyncio.create_task(self._read_loop(transport, epoch))

    async def reconnect(self, resume: Optional[bool] = None) -> None:
        """
        Drop the current connection and open a new one.

        Args:
            resume: Force (True) or forbid (False) a resume attempt. By default
                a resume is attempted whenever a session id is known.

        Re-entrant calls while a reconnect is in flight are no-ops. When the
        previous connection never reached READY, the new attempt waits out
        the backoff delay first.
        """
        if self._reconnecting or self._closed:
            return
        self._reconnecting = True
        try:
            self.heartbeat.stop()
            self._epoch += 1
            await self._teardown(RESUMABLE_CLOSE_CODE)

            self.state.ready = False
            self.state.should_resume = (
                resume if resume is not None else self.state.session_id is not None
            )
            self._set_phase(Phase.DISCONNECTED)
            self.events.emit("reconnecting", {"resume": self.state.should_resume})

            while not self._closed:
                if self._attempts:
                    delay = self._backoff(self._attempts - 1)
                    logger.info(
                        f"Reconnecting in {delay:.1f}s ({self._attempts} attempt(s) since last READY)"
                    )
                    await asyncio.sleep(delay)
                try:
                    await self.connect()
                    return
                except GatewayConnectionError as e:
                    logger.warning(f"Reconnect attempt {self._attempts} failed: {e}")
                    self._report(e)
                except SessionClosedError:
                    return
        finally:
            self._reconnecting = False

    async def close(self) -> None:
        """Terminate the session. Terminal: no further frames are processed."""
        if self._closed:
            return
        self._closed = True
        self._epoch += 1
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        self.heartbeat.stop()
        self.state.ready = False
        await self._teardown(NORMAL_CLOSE_CODE)
        self._set_phase(Phase.CLOSED)
        self.events.emit("close", None)
        logger.info("Gateway session closed")

    # -- Frame routing -------------------------------------------------------

    async def on_frame(self, raw: Any) -> None:
        """Decode one raw frame and route it by opcode."""
        if self._closed:
            return
        try:
            message = codec.decode(raw)
        except MalformedFrameError as e:
            logger.warning(f"Dropping malformed frame: {e}")
            self._report(e)
            return

        epoch = self._epoch
        if isinstance(message, Dispatch):
            await self._handle_dispatch(message, epoch)
        elif isinstance(message, Hello):
            await self._handle_hello(message, epoch)
        elif isinstance(message, HeartbeatAck):
            self._handle_heartbeat_ack()
        elif isinstance(message, Heartbeat):
            logger.debug("Server requested an immediate heartbeat")
            await self.heartbeat.send_immediately()
        elif isinstance(message, InvalidSession):
            await self._handle_invalid_session(message)
        elif isinstance(message, Reconnect):
            logger.info("Server requested a reconnect")
            self._schedule_reconnect(resume=True)
        else:
            self._report(ProtocolViolation(f"Unexpected client-bound opcode {message.op}"))

    async def _handle_hello(self, message: Hello, epoch: int) -> None:
        interval = message.d.heartbeat_interval
        self.state.heartbeat_interval_ms = interval
        self._debug(f"Hello received; heartbeat interval {interval}ms")

        # Optimistic ack so the first tick does not see a zombie.
        self.heartbeat.mark_acked()

        if self.state.should_resume and self.state.can_resume:
            self.state.should_resume = False
            self._set_phase(Phase.RESUMING)
            self.heartbeat.start(interval)
            frame = codec.resume(self.token, self.state.session_id, self.state.sequence)
            if await self._send(frame, epoch):
                await self.heartbeat.send_immediately()
            return

        if self.state.should_resume:
            logger.info("Resume requested without a resumable session; identifying")
        self.state.should_resume = False
        self.state.forget_session()
        self._set_phase(Phase.IDENTIFYING)
        self.heartbeat.start(interval)
        frame = codec.identify(
            self.token, self.config.intents, self.config.identify_properties
        )
        await self._send(frame, epoch)

    async def _handle_dispatch(self, message: Dispatch, epoch: int) -> None:
        if self.state.phase not in HELLO_SEEN:
            error = ProtocolViolation(f"Dispatch '{message.t}' received before Hello; dropped")
            logger.warning(str(error))
            self._report(error)
            return

        self.state.observe_sequence(message.s)
        name = message.t

        if name in SESSION_EVENTS:
            if name == "READY":
                session_id = (message.d or {}).get("session_id")
                if not session_id:
                    self._report(ProtocolViolation("READY without session_id"))
                    return
                self.state.session_id = session_id
            self.state.ready = True
            self.state.should_resume = False
            self._attempts = 0
            self._set_phase(Phase.READY)
            logger.info(f"Gateway session {name.lower()} (session_id={self.state.session_id})")

        try:
            payload = actions.apply(self.cache, name, message.d)
        except Exception as e:
            logger.error(f"Cache update for {name} failed: {e}")
            self._report(e)
            payload = message.d

        if epoch != self._epoch:
            return
        self.events.emit(name, payload)
        if name in SESSION_EVENTS:
            self.events.emit(
                name.lower(),
                {"session_id": self.state.session_id, "sequence": self.state.sequence},
            )

    def _handle_heartbeat_ack(self) -> None:
        latency = self.heartbeat.ack()
        if latency is not None:
            self._debug(f"Heartbeat ACK ({latency:.0f}ms)")

    async def _handle_invalid_session(self, message: InvalidSession) -> None:
        error = SessionInvalidated("Server invalidated the session", message.resumable)
        logger.warning(f"{error} (resumable={message.resumable})")
        self._report(error)
        if not message.resumable:
            self.state.forget_session()
        self._schedule_reconnect()

    async def _handle_zombie(self, error: ZombieConnection) -> None:
        self._report(error)
        self._schedule_reconnect()

    def _schedule_reconnect(self, resume: Optional[bool] = None) -> None:
        """
        Start a reconnect in its own task, owned by the session.

        Used for reconnects the session triggers itself (lost transport, zombie,
        server request) so they outlive the reader or timer task that noticed
        the problem, and so close() can cancel them mid-backoff.
        """
        if self._closed or self._reconnecting:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        # abandon the current epoch now so nothing else is read from it
        self._epoch += 1
        self._reconnect_task = asyncio.create_task(self.reconnect(resume))

    # -- Transport plumbing --------------------------------------------------

    async def _read_loop(self, transport: Transport, epoch: int) -> None:
        try:
            async for raw in transport.frames():
                if epoch != self._epoch:
                    return
                await self.on_frame(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Gateway read failed: {e}")

        if epoch != self._epoch or self._closed:
            return

        code = transport.close_code
        logger.warning(f"Gateway connection lost (code={code})")
        self.heartbeat.stop()
        self.state.ready = False
        self._set_phase(Phase.DISCONNECTED)
        self.events.emit("disconnect", {"code": code})
        self._schedule_reconnect()

    async def _send(self, message: GatewayMessage, epoch: Optional[int] = None) -> bool:
        """Send a frame on the current transport. Returns False if it was not delivered."""
        epoch = self._epoch if epoch is None else epoch
        transport = self._transport
        if transport is None or epoch != self._epoch:
            return False
        try:
            await transport.send(codec.encode(message))
        except GatewayConnectionError as e:
            logger.warning(f"Send of op={message.op} failed: {e}")
            return False
        if epoch != self._epoch:
            logger.debug(f"Discarding stale completion of op={message.op}")
            return False
        return True

    async def _send_heartbeat(self, message: Heartbeat) -> None:
        await self._send(message)

    async def _teardown(self, code: int) -> None:
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()

        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close(code)

    # -- Helpers -------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        base = self.config.reconnect_backoff_base
        delay = min(base * (2**attempt), self.config.reconnect_backoff_max)
        return max(0.1, delay + delay * 0.25 * (2 * random.random() - 1))

    def _set_phase(self, phase: Phase) -> None:
        previous, self.state.phase = self.state.phase, phase
        if previous != phase:
            logger.debug(f"Session phase {previous.value} -> {phase.value}")
            self.events.emit("state", {"from": previous.value, "to": phase.value})

    def _debug(self, message: str) -> None:
        logger.debug(message)
        self.events.emit("debug", message)

    def _report(self, error: Exception) -> None:
        self.events.emit("error", error)
