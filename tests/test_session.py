"""Tests for the gateway session state machine."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from conftest import dispatch, hello, settle, until
from cordwire.cache import EntityKind, Guild
from cordwire.config import GatewayConfig
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
from cordwire.gateway.session import GatewaySession, Phase


def make_session(config, transports) -> GatewaySession:
    return GatewaySession(
        config=config, events=EventDispatcher(), transport_factory=transports
    )


def record(session: GatewaySession) -> list:
    seen = []
    session.events.on("*", lambda name, payload: seen.append((name, payload)))
    return seen


async def ready_session(config, transports, session_id="abc", seq=5) -> GatewaySession:
    session = make_session(config, transports)
    await session.connect()
    await session.on_frame(hello())
    await session.on_frame(dispatch("READY", {"session_id": session_id}, seq=seq))
    return session


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_opens_transport(self, config, transports):
        session = make_session(config, transports)
        await session.connect()

        assert transports.current.opened is True
        assert transports.current.url == config.gateway_url
        assert session.phase == Phase.AWAITING_HELLO
        assert session.ready is False
        await session.close()

    @pytest.mark.asyncio
    async def test_connect_failure_surfaces_to_caller(self, config, transports):
        transports.failures = 1
        session = make_session(config, transports)

        with pytest.raises(GatewayConnectionError):
            await session.connect()
        assert isinstance(GatewayConnectionError("x"), ConnectionError)
        assert session.phase == Phase.DISCONNECTED

    @pytest.mark.asyncio
    async def test_second_connect_replaces_live_connection(self, config, transports):
        session = make_session(config, transports)
        await session.connect()
        await session.on_frame(hello(45000))
        first = transports.current
        assert session.heartbeat.running is True

        await session.connect()

        assert len(transports.created) == 2
        assert first.closed_with == 4000
        assert transports.current.closed_with is None
        assert session.heartbeat.running is False
        assert session.phase == Phase.AWAITING_HELLO

        # only the new transport is read
        first.feed({"op": 10, "d": {"heartbeat_interval": 1000}})
        await settle()
        assert first.ops() == [2]
        assert transports.current.sent == []
        assert session.phase == Phase.AWAITING_HELLO
        await session.close()

    @pytest.mark.asyncio
    async def test_connect_requires_token(self, transports):
        session = make_session(GatewayConfig(token=None), transports)
        with pytest.raises(GatewayError, match="No token"):
            await session.connect()
        assert transports.created == []


class TestHello:
    @pytest.mark.asyncio
    async def test_hello_sends_identify_and_starts_heartbeat(self, config, transports):
        session = make_session(config, transports)
        await session.connect()

        await session.on_frame(hello(41250))

        frame = transports.current.sent[0]
        assert frame["op"] == 2
        assert frame["d"]["token"] == "test-token"
        assert frame["d"]["intents"] == 513
        assert session.phase == Phase.IDENTIFYING
        assert session.state.heartbeat_interval_ms == 41250
        assert session.heartbeat.running is True
        assert session.heartbeat_acked is True
        await session.close()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_sequence_is_running_maximum(self, config, transports):
        session = await ready_session(config, transports, seq=1)

        seen_max = 1
        for seq in [3, 2, 7, 7, 4, 9, 8]:
            await session.on_frame(dispatch("TYPING_START", {}, seq=seq))
            seen_max = max(seen_max, seq)
            assert session.sequence == seen_max
        await session.close()

    @pytest.mark.asyncio
    async def test_out_of_order_frames_are_still_routed(self, config, transports):
        session = await ready_session(config, transports, seq=10)
        seen = record(session)

        await session.on_frame(dispatch("CHANNEL_CREATE", {"id": "1", "name": "old"}, seq=4))
        await session.events.drain()

        assert session.sequence == 10
        assert ("CHANNEL_CREATE", session.cache.get("channel", "1")) in seen
        await session.close()

    @pytest.mark.asyncio
    async def test_dispatch_before_hello_is_dropped(self, config, transports):
        session = make_session(config, transports)
        seen = record(session)
        await session.connect()

        await session.on_frame(dispatch("READY", {"session_id": "abc"}, seq=3))
        await session.events.drain()

        assert session.sequence is None
        assert session.session_id is None
        assert session.ready is False
        assert session.phase == Phase.AWAITING_HELLO
        errors = [payload for name, payload in seen if name == "error"]
        assert len(errors) == 1 and isinstance(errors[0], ProtocolViolation)
        assert not any(name == "READY" for name, _ in seen)
        await session.close()

    @pytest.mark.asyncio
    async def test_ready_establishes_session(self, config, transports):
        session = make_session(config, transports)
        seen = record(session)
        await session.connect()
        await session.on_frame(hello())

        await session.on_frame(
            dispatch(
                "READY",
                {"session_id": "xyz", "user": {"id": "42", "username": "bot"}, "guilds": [{"id": "7", "unavailable": True}]},
                seq=1,
            )
        )
        await session.events.drain()

        assert session.ready is True
        assert session.session_id == "xyz"
        assert session.phase == Phase.READY
        assert session.cache.get(EntityKind.USER, "42").username == "bot"
        assert session.cache.get(EntityKind.GUILD, "7").unavailable is True
        names = [name for name, _ in seen]
        assert names.index("READY") < names.index("ready")
        assert ("ready", {"session_id": "xyz", "sequence": 1}) in seen
        await session.close()

    @pytest.mark.asyncio
    async def test_known_event_updates_cache_then_emits(self, config, transports):
        session = await ready_session(config, transports)
        seen = record(session)

        await session.on_frame(
            dispatch(
                "GUILD_CREATE",
                {"id": "1", "name": "Guild", "channels": [{"id": "2", "name": "general"}]},
                seq=6,
            )
        )
        await session.on_frame(dispatch("GUILD_UPDATE", {"id": "1", "owner_id": "9"}, seq=7))
        await session.events.drain()

        guild = session.cache.get(EntityKind.GUILD, "1")
        assert guild.name == "Guild"
        assert guild.owner_id == "9"
        assert session.cache.get(EntityKind.CHANNEL, "2").guild_id == "1"
        emitted = [(name, payload) for name, payload in seen if name.startswith("GUILD")]
        assert [name for name, _ in emitted] == ["GUILD_CREATE", "GUILD_UPDATE"]
        assert isinstance(emitted[1][1], Guild)
        await session.close()

    @pytest.mark.asyncio
    async def test_unknown_event_forwarded_verbatim(self, config, transports):
        session = await ready_session(config, transports)
        seen = record(session)
        payload = {"brand_new": True, "nested": {"x": 1}}

        await session.on_frame(dispatch("SOMETHING_NEW", payload, seq=6))
        await session.events.drain()

        assert ("SOMETHING_NEW", payload) in seen
        assert session.cache.stats()["guild"]["size"] == 0
        await session.close()

    @pytest.mark.asyncio
    async def test_bad_cache_payload_does_not_escape(self, config, transports):
        session = await ready_session(config, transports)
        seen = record(session)

        await session.on_frame(dispatch("CHANNEL_CREATE", {"name": "no id"}, seq=6))
        await session.events.drain()

        assert session.sequence == 6
        assert ("CHANNEL_CREATE", {"name": "no id"}) in seen
        await session.close()


class TestFrameErrors:
    @pytest.mark.asyncio
    async def test_malformed_frame_is_dropped(self, config, transports):
        session = await ready_session(config, transports)
        seen = record(session)

        await session.on_frame('{"t": "READY", "d": {}}')
        await session.on_frame("garbage")
        await session.events.drain()

        errors = [payload for name, payload in seen if name == "error"]
        assert len(errors) == 2
        assert all(isinstance(e, MalformedFrameError) for e in errors)
        assert session.ready is True
        assert session.sequence == 5
        await session.close()


class TestHeartbeatAck:
    @pytest.mark.asyncio
    async def test_ack_records_latency(self, config, transports):
        session = await ready_session(config, transports)

        await session.heartbeat.tick()
        assert session.heartbeat_acked is False
        await session.on_frame(json.dumps({"op": 11}))

        assert session.heartbeat_acked is True
        assert session.latency is not None and session.latency >= 0
        assert session.heartbeat.last_ack_at is not None
        await session.close()

    @pytest.mark.asyncio
    async def test_server_heartbeat_request_is_answered(self, config, transports):
        session = await ready_session(config, transports, seq=12)
        transports.current.sent.clear()

        await session.on_frame(json.dumps({"op": 1, "d": None}))

        assert transports.current.sent == [{"op": 1, "d": 12}]
        await session.close()


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_preserves_session_and_sequence(self, config, transports):
        session = await ready_session(config, transports, session_id="abc", seq=5)
        first = transports.current

        await session.reconnect()

        assert first.closed_with == 4000
        assert len(transports.created) == 2
        assert session.state.should_resume is True
        assert session.session_id == "abc"
        assert session.sequence == 5
        assert session.ready is False

        await session.on_frame(hello())
        second = transports.current
        assert second.sent[0] == {
            "op": 6,
            "d": {"token": "test-token", "session_id": "abc", "seq": 5},
        }
        assert second.sent[1] == {"op": 1, "d": 5}
        assert session.phase == Phase.RESUMING
        assert session.state.should_resume is False

        seen = record(session)
        await session.on_frame(dispatch("RESUMED", {}, seq=6))
        assert session.ready is True
        assert session.session_id == "abc"
        assert session.sequence == 6

        await session.events.drain()
        assert ("resumed", {"session_id": "abc", "sequence": 6}) in seen
        await session.close()

    @pytest.mark.asyncio
    async def test_non_resumable_invalid_session_forces_identify(self, config, transports):
        session = await ready_session(config, transports)
        seen = record(session)

        await session.on_frame(json.dumps({"op": 9, "d": False}))
        await until(lambda: not session.reconnecting)

        assert len(transports.created) == 2
        assert session.session_id is None
        assert session.sequence is None
        assert session.state.should_resume is False

        await session.on_frame(hello())
        assert transports.current.ops() == [2]

        await session.events.drain()
        errors = [p for n, p in seen if n == "error"]
        assert isinstance(errors[0], SessionInvalidated)
        assert errors[0].resumable is False
        await session.close()

    @pytest.mark.asyncio
    async def test_resumable_invalid_session_resumes(self, config, transports):
        session = await ready_session(config, transports, session_id="abc", seq=5)

        await session.on_frame(json.dumps({"op": 9, "d": True}))
        await until(lambda: not session.reconnecting)
        await session.on_frame(hello())

        assert transports.current.ops()[0] == 6
        assert session.session_id == "abc"
        await session.close()

    @pytest.mark.asyncio
    async def test_server_reconnect_request_resumes(self, config, transports):
        session = await ready_session(config, transports, session_id="abc", seq=8)

        await session.on_frame(json.dumps({"op": 7, "d": None}))
        await until(lambda: not session.reconnecting)
        await session.on_frame(hello())

        assert transports.created[0].closed_with == 4000
        assert transports.current.sent[0]["op"] == 6
        assert transports.current.sent[0]["d"]["seq"] == 8
        await session.close()

    @pytest.mark.asyncio
    async def test_reconnect_request_without_session_identifies(self, config, transports):
        session = make_session(config, transports)
        await session.connect()
        await session.on_frame(hello())

        await session.on_frame(json.dumps({"op": 7}))
        await until(lambda: not session.reconnecting)
        await session.on_frame(hello())

        assert transports.current.ops() == [2]
        await session.close()


class TestReconnect:
    @pytest.mark.asyncio
    async def test_transport_loss_triggers_reconnect(self, config, transports):
        session = await ready_session(config, transports)
        seen = record(session)

        transports.current.drop(1006)
        await until(lambda: len(transports.created) == 2 and not session.reconnecting)
        await session.events.drain()

        assert len(transports.created) == 2
        assert session.phase == Phase.AWAITING_HELLO
        assert ("disconnect", {"code": 1006}) in seen
        assert ("reconnecting", {"resume": True}) in seen
        await session.close()

    @pytest.mark.asyncio
    async def test_reconnect_is_not_reentrant(self, config, transports):
        session = await ready_session(config, transports)
        transports.failures = 1

        await asyncio.gather(session.reconnect(), session.reconnect())

        # initial + one failed attempt + one successful attempt
        assert len(transports.created) == 3
        assert transports.created[1].opened is False
        assert transports.current.opened is True
        assert session.reconnecting is False
        await session.close()

    @pytest.mark.asyncio
    async def test_frames_from_previous_epoch_are_ignored(self, config, transports):
        session = await ready_session(config, transports, seq=5)
        old = transports.current

        await session.reconnect()
        old.feed({"op": 0, "t": "CHANNEL_CREATE", "s": 99, "d": {"id": "1"}})
        await settle()

        assert session.sequence == 5
        assert session.cache.get(EntityKind.CHANNEL, "1") is None
        await session.close()

    @pytest.mark.asyncio
    async def test_zombie_connection_reconnects_once(self, config, transports):
        session = await ready_session(config, transports)
        seen = record(session)

        await session.heartbeat.tick()
        await session.heartbeat.tick()
        await until(lambda: not session.reconnecting)
        await session.events.drain()

        assert len(transports.created) == 2
        assert transports.created[0].closed_with == 4000
        assert session.heartbeat.running is False
        assert any(isinstance(p, ZombieConnection) for n, p in seen if n == "error")
        await session.close()

    @pytest.mark.asyncio
    async def test_server_closing_after_accept_is_backed_off(self, transports):
        config = GatewayConfig(token="t", reconnect_backoff_base=1.0, reconnect_backoff_max=8.0)
        transports.reject_with = 4004
        session = make_session(config, transports)
        seen = record(session)

        await session.connect()
        await asyncio.sleep(0.3)

        # the first reconnect waits at least 0.75s (1.0s minus jitter)
        assert len(transports.created) == 1
        assert session.reconnecting is True
        await session.events.drain()
        assert ("disconnect", {"code": 4004}) in seen
        await session.close()

    @pytest.mark.asyncio
    async def test_ready_resets_reconnect_backoff(self, transports):
        config = GatewayConfig(token="t", reconnect_backoff_base=5.0, reconnect_backoff_max=5.0)
        session = await ready_session(config, transports)

        transports.current.drop(1006)
        await until(lambda: len(transports.created) == 2, timeout=1.0)

        # the replacement never reaches READY, so the next loss waits
        transports.current.drop(1006)
        await asyncio.sleep(0.2)
        assert len(transports.created) == 2
        assert session.reconnecting is True
        await session.close()

    def test_backoff_grows_and_caps(self, transports):
        config = GatewayConfig(token="t", reconnect_backoff_base=1.0, reconnect_backoff_max=8.0)
        session = make_session(config, transports)
        with patch("cordwire.gateway.session.random.random", return_value=0.5):
            delays = [session._backoff(n) for n in range(6)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]


class TestClose:
    @pytest.mark.asyncio
    async def test_close_is_terminal(self, config, transports):
        session = await ready_session(config, transports)
        transport = transports.current

        await session.close()

        assert transport.closed_with == 1000
        assert session.phase == Phase.CLOSED
        assert session.ready is False
        assert session.heartbeat.running is False

        await session.on_frame(dispatch("RESUMED", {}, seq=50))
        assert session.sequence == 5

        await session.reconnect()
        assert len(transports.created) == 1

        with pytest.raises(SessionClosedError):
            await session.connect()

    @pytest.mark.asyncio
    async def test_close_cancels_reconnect_waiting_on_backoff(self, transports):
        config = GatewayConfig(token="t", reconnect_backoff_base=5.0, reconnect_backoff_max=5.0)
        session = await ready_session(config, transports)
        transports.failures = 10

        heartbeat = session.heartbeat
        await heartbeat.tick()
        await heartbeat.tick()
        await until(lambda: len(transports.created) == 2)
        assert session.reconnecting is True

        await session.close()
        await settle()

        assert session.reconnecting is False
        await asyncio.sleep(0.1)
        assert len(transports.created) == 2

    @pytest.mark.asyncio
    async def test_close_twice_is_safe(self, config, transports):
        session = await ready_session(config, transports)
        await session.close()
        await session.close()
        assert session.closed is True


class TestStandaloneSession:
    @pytest.mark.asyncio
    async def test_unconsumed_events_stay_bounded(self, transports):
        config = GatewayConfig(token="t", event_queue_size=50)
        session = GatewaySession(config=config, transport_factory=transports)
        await session.connect()
        await session.on_frame(hello())

        for _ in range(1000):
            await session.heartbeat.tick()
            await session.on_frame(json.dumps({"op": 11}))

        assert session.events.pending == 50
        assert session.events.dropped > 900
        await session.close()


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_identify_ready_ack_then_zombie(self, config, transports):
        session = make_session(config, transports)
        await session.connect()

        await session.on_frame(hello(100))
        assert transports.current.sent[-1]["op"] == 2

        await session.on_frame(dispatch("READY", {"session_id": "abc"}, seq=1))
        assert session.ready is True
        assert session.session_id == "abc"
        assert session.sequence == 1

        await session.on_frame(json.dumps({"op": 11}))
        assert session.heartbeat_acked is True

        with patch.object(session, "reconnect", new=AsyncMock()) as reconnect:
            await session.heartbeat.tick()
            assert transports.current.sent[-1] == {"op": 1, "d": 1}
            await session.heartbeat.tick()
            await settle()

        reconnect.assert_awaited_once()
        assert session.heartbeat.running is False
        await session.close()
