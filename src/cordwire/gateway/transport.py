"""
Transport abstraction for the gateway session.

The session only needs to open a connection, send text frames, close it
with a code, and iterate inbound frames. ``WebSocketTransport`` provides
that over the ``websockets`` asyncio client.
"""

from typing import AsyncIterator, Optional, Protocol, Union, runtime_checkable

import websockets

from cordwire.errors import GatewayConnectionError
from cordwire.logger import get_logger

logger = get_logger(__name__)

Frame = Union[str, bytes]


@runtime_checkable
class Transport(Protocol):
    """One connection epoch's byte pipe."""

    close_code: Optional[int]

    async def open(self) -> None:
        """Establish the connection. Raises GatewayConnectionError on failure."""
        ...

    async def send(self, data: str) -> None:
        """Send one text frame. Raises GatewayConnectionError if the pipe is gone."""
        ...

    async def close(self, code: int = 1000) -> None:
        """Close the connection. Safe to call more than once."""
        ...

    def frames(self) -> AsyncIterator[Frame]:
        """Yield inbound frames until the connection closes."""
        ...


class WebSocketTransport:
    """Transport backed by a ``websockets`` client connection."""

    def __init__(self, url: str, open_timeout: float = 10.0):
        self.url = url
        self.open_timeout = open_timeout
        self.close_code: Optional[int] = None
        self._ws = None

    async def open(self) -> None:
        logger.debug(f"Opening gateway connection to {self.url}")
        try:
            self._ws = await websockets.connect(
                self.url, open_timeout=self.open_timeout, max_size=None
            )
        except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise GatewayConnectionError(
                f"Cannot open gateway connection to {self.url}: {e}"
            ) from e

    async def send(self, data: str) -> None:
        if self._ws is None:
            raise GatewayConnectionError("Transport is not open")
        try:
            await self._ws.send(data)
        except websockets.exceptions.ConnectionClosed as e:
            self.close_code = e.rcvd.code if e.rcvd else None
            raise GatewayConnectionError(f"Gateway connection closed: {e}") from e

    async def close(self, code: int = 1000) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        try:
            await ws.close(code=code)
        except Exception as e:
            logger.debug(f"Ignoring error while closing gateway connection: {e}")
        if self.close_code is None:
            self.close_code = code

    async def frames(self) -> AsyncIterator[Frame]:
        ws = self._ws
        if ws is None:
            return
        try:
            async for message in ws:
                yield message
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(f"Gateway connection closed abnormally: {e}")
        finally:
            if self.close_code is None:
                self.close_code = ws.close_code
