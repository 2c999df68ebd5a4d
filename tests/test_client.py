"""Tests for the Client façade."""

import pytest
from conftest import dispatch, hello, settle

from cordwire.client import Client
from cordwire.errors import GatewayConnectionError


class TestClient:
    @pytest.mark.asyncio
    async def test_login_requires_token(self, config, transports):
        client = Client(config=config, transport_factory=transports)
        with pytest.raises(ValueError):
            await client.login("")

    @pytest.mark.asyncio
    async def test_ready_sets_user_and_delivers_events(self, config, transports):
        client = Client(config=config, transport_factory=transports)
        messages = []
        client.on("MESSAGE_CREATE", messages.append)

        await client.login("tok")
        transport = transports.current
        await client.session.on_frame(hello())
        assert transport.sent[0]["d"]["token"] == "tok"

        await client.session.on_frame(
            dispatch("READY", {"session_id": "s1", "user": {"id": "9", "username": "bot"}}, 1)
        )
        await client.session.on_frame(dispatch("MESSAGE_CREATE", {"id": "5", "content": "hey"}, 2))
        await settle(20)

        assert client.is_ready()
        assert client.user.username == "bot"
        assert [m.content for m in messages] == ["hey"]

        await client.close()
        assert not client.is_ready()
        assert transport.closed_with == 1000

    @pytest.mark.asyncio
    async def test_second_login_closes_previous_session(self, config, transports):
        client = Client(config=config, transport_factory=transports)
        await client.login("tok")
        first_session = client.session
        await first_session.on_frame(hello())

        await client.login("tok")

        assert first_session.closed is True
        assert first_session.heartbeat.running is False
        assert transports.created[0].closed_with == 1000
        assert client.session is not first_session
        assert transports.current.closed_with is None
        await client.close()

    @pytest.mark.asyncio
    async def test_failed_login_propagates(self, config, transports):
        transports.failures = 1
        client = Client(config=config, transport_factory=transports)

        with pytest.raises(GatewayConnectionError):
            await client.login("tok")
        assert client._consumer is None
