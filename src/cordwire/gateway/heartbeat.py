"""
Heartbeat supervisor: periodic liveness proofs for one gateway connection.

The first tick is jittered once per start so many clients reconnecting at
the same moment do not heartbeat in lockstep; later ticks use the exact
interval. A tick that finds the previous heartbeat still unacknowledged
declares the connection a zombie and hands control back to the session.
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Optional

from cordwire.errors import ZombieConnection
from cordwire.gateway import codec
from cordwire.gateway.models import Heartbeat
from cordwire.logger import get_logger

logger = get_logger(__name__)

SendFrame = Callable[[Heartbeat], Awaitable[Any]]
OnZombie = Callable[[ZombieConnection], Awaitable[None]]


class HeartbeatSupervisor:
    """
    Owns one periodic timer bound to the server-provided heartbeat interval.

    Args:
        send: Coroutine that puts a Heartbeat frame on the wire.
        get_sequence: Returns the session's last seen sequence number.
        on_zombie: Coroutine invoked (once) when an ack is missed.
        jitter: Fraction of the interval by which the first tick may come early.
        clock: Monotonic clock in seconds, injectable for tests.
        rng: Source of uniform [0, 1) floats for the jitter.
    """

    def __init__(
        self,
        send: SendFrame,
        get_sequence: Callable[[], Optional[int]],
        on_zombie: OnZombie,
        jitter: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self._send = send
        self._get_sequence = get_sequence
        self._on_zombie = on_zombie
        self.jitter = jitter
        self._clock = clock
        self._rng = rng

        self.interval_ms: Optional[int] = None
        self.acked: bool = True
        self.last_sent_at: Optional[float] = None
        self.last_ack_at: Optional[float] = None
        self.latency_ms: Optional[float] = None

        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    def first_delay(self, interval_ms: int) -> float:
        """Seconds until the first tick of a freshly started timer."""
        return interval_ms * (1.0 - self.jitter * self._rng()) / 1000.0

    def start(self, interval_ms: int) -> None:
        """Cancel any previous timer and begin ticking every ``interval_ms``."""
        self.stop()
        self.interval_ms = interval_ms
        self._generation += 1
        self._task = asyncio.create_task(self._run(self._generation, interval_ms))
        logger.debug(f"Heartbeat started (every {interval_ms}ms)")

    def stop(self) -> None:
        """Cancel the timer. Safe to call when not running."""
        self._generation += 1
        task, self._task = self._task, None
        if task is None:
            return
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
        logger.debug("Heartbeat stopped")

    def mark_acked(self) -> None:
        """Treat the previous heartbeat as acknowledged without recording a round trip."""
        self.acked = True

    def ack(self) -> Optional[float]:
        """Record a HEARTBEAT_ACK. Returns the round trip in ms when known."""
        self.acked = True
        self.last_ack_at = self._clock()
        if self.last_sent_at is not None:
            self.latency_ms = (self.last_ack_at - self.last_sent_at) * 1000.0
        return self.latency_ms

    async def send_immediately(self) -> None:
        """Send a heartbeat out of cycle; the timer keeps its schedule."""
        await self._beat()

    async def tick(self) -> bool:
        """
        Run one timer tick.

        Returns:
            True if a heartbeat was sent, False if the connection was declared a zombie.
        """
        if not self.acked:
            error = ZombieConnection(
                f"No heartbeat ACK within {self.interval_ms}ms; connection is a zombie"
            )
            logger.warning(str(error))
            self.stop()
            await self._on_zombie(error)
            return False

        await self._beat()
        return True

    async def _beat(self) -> None:
        self.acked = False
        self.last_sent_at = self._clock()
        await self._send(codec.heartbeat(self._get_sequence()))

    async def _run(self, generation: int, interval_ms: int) -> None:
        delay = self.first_delay(interval_ms)
        while generation == self._generation:
            await asyncio.sleep(delay)
            if generation != self._generation:
                return
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Heartbeat tick error: {e}")
            delay = interval_ms / 1000.0
