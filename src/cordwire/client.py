"""
Client façade: wires config, cache, event channel, gateway session and the
REST sender together behind a small surface.
"""

import asyncio
from typing import Any, Optional

from cordwire.cache import EntityCache, EntityKind, User
from cordwire.config import CONFIG, GatewayConfig
from cordwire.events import EventDispatcher
from cordwire.gateway.session import GatewaySession, TransportFactory
from cordwire.logger import get_logger
from cordwire.rest import RestClient

logger = get_logger(__name__)


class Client:
    """
    Entry point for bots.

    Example:
        client = Client(config=GatewayConfig(intents=Intents.GUILDS))

        @client.on("MESSAGE_CREATE")
        async def on_message(message):
            ...

        await client.start(token)
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.config = config or CONFIG
        self.cache = EntityCache(self.config)
        self.events = EventDispatcher(self.config.event_queue_size)
        self._transport_factory = transport_factory
        self.session: Optional[GatewaySession] = None
        self.rest: Optional[RestClient] = None
        self._consumer: Optional[asyncio.Task] = None
        self._user_id: Optional[str] = None

        self.events.on("READY", self._on_ready)

    def on(self, event: str, handler=None):
        """Subscribe to an event by name (decorator or direct call)."""
        return self.events.on(event, handler)

    def is_ready(self) -> bool:
        return bool(self.session and self.session.ready)

    @property
    def latency(self) -> Optional[float]:
        return self.session.latency if self.session else None

    @property
    def user(self) -> Optional[Any]:
        if self._user_id is None:
            return None
        return self.cache.get(EntityKind.USER, self._user_id)

    async def login(self, token: str) -> None:
        """Open the gateway session and start delivering events."""
        if not token:
            raise ValueError("No token was provided")
        if self.session is not None:
            logger.info("Already logged in; closing the previous session")
            await self.close()

        self.session = GatewaySession(
            token,
            config=self.config,
            cache=self.cache,
            events=self.events,
            transport_factory=self._transport_factory,
        )
        self.rest = RestClient(token, config=self.config)
        self._consumer = asyncio.create_task(self.events.run())
        logger.debug("Login called; connecting to the gateway")
        try:
            await self.session.connect()
        except Exception:
            self._consumer.cancel()
            self._consumer = None
            raise

    async def start(self, token: str) -> None:
        """Login and block until the client is closed."""
        await self.login(token)
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        if self.session:
            await self.session.close()
        if self.rest:
            await self.rest.aclose()
        if self._consumer:
            await self.events.drain()
            self._consumer.cancel()
            self._consumer = None

    def _on_ready(self, payload: dict) -> None:
        user = payload.get("user")
        if isinstance(user, User):
            self._user_id = user.id
