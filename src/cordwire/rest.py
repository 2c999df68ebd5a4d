"""
Minimal REST sender used by higher-level calls (send message, fetch channel).

The gateway session never depends on it.
"""

from typing import Any, Optional

import httpx

from cordwire.config import CONFIG, GatewayConfig
from cordwire.errors import RestError
from cordwire.logger import get_logger

logger = get_logger(__name__)

USER_AGENT = "DiscordBot (https://github.com/cordwire/cordwire, 0.1.0)"


class RestClient:
    def __init__(
        self,
        token: Optional[str] = None,
        config: Optional[GatewayConfig] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or CONFIG
        self._token = token or self.config.token
        self._client = httpx.AsyncClient(
            base_url=self.config.api_base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "RestClient":
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT}
        if self._token:
            headers["Authorization"] = f"Bot {self._token}"
        return headers

    async def request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        """
        Perform one API request.

        Raises:
            RestError: On network failure or a non-2xx response.
        """
        try:
            resp = await self._client.request(method, path, json=json, headers=self._headers())
        except httpx.HTTPError as e:
            raise RestError(f"{method} {path} failed: {e}") from e

        if resp.is_error:
            try:
                detail = resp.json().get("message", resp.text)
            except ValueError:
                detail = resp.text
            logger.warning(f"{method} {path} -> {resp.status_code}: {detail}")
            raise RestError(f"{method} {path} -> {resp.status_code}: {detail}", resp.status_code)

        return resp.json() if resp.content else None

    async def send_message(self, channel_id: str, content: str) -> dict:
        return await self.request("POST", f"/channels/{channel_id}/messages", {"content": content})

    async def fetch_channel(self, channel_id: str) -> dict:
        return await self.request("GET", f"/channels/{channel_id}")
