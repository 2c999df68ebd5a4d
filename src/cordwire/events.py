"""
Event channel between the gateway session and its consumers.

Emitted events are queued and delivered in order by a single consumer;
subscribers register handlers keyed by event name.
"""

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from cordwire.logger import get_logger

logger = get_logger(__name__)

WILDCARD = "*"
DEFAULT_QUEUE_SIZE = 10_000

Handler = Callable[..., Any]


@dataclass(frozen=True)
class Event:
    name: str
    payload: Any = None


class EventDispatcher:
    """
    Single-consumer event queue with a handler table.

    ``emit`` never blocks and never raises; handler failures are logged.
    Wildcard (``"*"``) handlers receive ``(name, payload)``, named handlers
    receive ``payload``.

    The queue is bounded: when nobody consumes it, the oldest events are
    dropped to make room for new ones.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        if maxsize < 1:
            raise ValueError("Event queue size must be at least 1")
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self.delivered = 0
        self.dropped = 0

    def on(self, name: str, handler: Optional[Handler] = None):
        """Register a handler, directly or as a decorator."""

        def register(fn: Handler) -> Handler:
            self._handlers[name].append(fn)
            return fn

        if handler is not None:
            return register(handler)
        return register

    def off(self, name: str, handler: Handler) -> bool:
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, name: str, payload: Any = None) -> None:
        if self._queue.full():
            oldest = self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 1000 == 0:
                logger.warning(
                    f"Event queue full; dropped '{oldest.name}' ({self.dropped} dropped so far)"
                )
        self._queue.put_nowait(Event(name, payload))

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def drain(self) -> int:
        """Deliver everything queued so far. Returns the number of events delivered."""
        count = 0
        while not self._queue.empty():
            await self._deliver(self._queue.get_nowait())
            count += 1
        return count

    async def run(self) -> None:
        """Consume events until cancelled."""
        while True:
            event = await self._queue.get()
            await self._deliver(event)

    async def _deliver(self, event: Event) -> None:
        calls = [(h, (event.payload,)) for h in self._handlers.get(event.name, [])]
        calls += [(h, (event.name, event.payload)) for h in self._handlers.get(WILDCARD, [])]

        for handler, args in calls:
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Handler for '{event.name}' failed: {e}")
        self.delivered += 1
