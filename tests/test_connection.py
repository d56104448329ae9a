"""
TracStamp Gateway Connection Tests

The state machine is tested directly; the runtime is driven through fake
sockets standing in for the gateway.
"""

import asyncio

import pytest

from conftest import FakeConnector, FakeGatewaySocket, wait_until
from tracstamp.network.connection import (
    Action,
    ConnectionManager,
    ConnectionState,
    ConnectRequested,
    TransportClosed,
    TransportOpened,
    transition,
)
from tracstamp.network.messages import (
    AuthOk,
    GatewayError,
    Hello,
    Joined,
    Sent,
    ServiceAnnounce,
    SidechannelMessage,
)

S = ConnectionState

ANNOUNCEMENT = ServiceAnnounce(
    service="TracStamp",
    description="Timestamp certificates",
    channel="tracstamp",
    version="1.0.0",
    commands=("stamp_request", "verify", "stats_request"),
)


# =============================================================================
# Test: State Machine
# =============================================================================

class TestTransition:
    """Tests for the pure transition function."""

    def test_happy_path(self):
        state, actions = transition(S.DISCONNECTED, ConnectRequested())
        assert (state, actions) == (S.CONNECTING, ())

        state, actions = transition(state, TransportOpened())
        assert (state, actions) == (S.AUTHENTICATING, (Action.SEND_AUTH,))

        state, actions = transition(state, AuthOk())
        assert (state, actions) == (S.AUTHENTICATED, (Action.SEND_JOIN, Action.START_ANNOUNCER))

        state, actions = transition(state, Joined("tracstamp"))
        assert (state, actions) == (S.JOINED, (Action.ANNOUNCE_SOON,))

    @pytest.mark.parametrize("state", list(ConnectionState))
    def test_close_from_any_state(self, state):
        assert transition(state, TransportClosed("gone")) == (
            S.DISCONNECTED,
            (Action.CANCEL_TIMERS, Action.SCHEDULE_RECONNECT),
        )

    @pytest.mark.parametrize("state", list(ConnectionState))
    def test_sidechannel_dispatched_in_any_state(self, state):
        event = SidechannelMessage("tracstamp", "hi")
        assert transition(state, event) == (state, (Action.DISPATCH,))

    @pytest.mark.parametrize("event", [Hello(), Sent(), GatewayError("nope")])
    def test_informational_frames(self, event):
        assert transition(S.JOINED, event) == (S.JOINED, ())


# =============================================================================
# Test: Runtime
# =============================================================================

class SlowHandshakeSocket(FakeGatewaySocket):
    """Socket whose opening handshake takes a while."""

    async def __aenter__(self):
        await asyncio.sleep(0.2)
        return self


def make_manager(sockets, on_message=None, history=None, **kwargs):
    async def no_reply(envelope):
        return None

    options = dict(
        announce_interval_sec=60.0,
        initial_announce_delay_sec=60.0,
        reconnect_delay_sec=0.01,
    )
    options.update(kwargs)

    return ConnectionManager(
        url="ws://gateway.test",
        token="secret",
        on_message=on_message or no_reply,
        announcement=ANNOUNCEMENT,
        main_channel="tracstamp",
        entry_channel="0000intercom",
        connect=FakeConnector(sockets),
        on_state_change=history.append if history is not None else None,
        **options,
    )


async def shutdown(manager, task):
    await manager.stop()
    await asyncio.wait_for(task, timeout=1.0)


class TestConnectionManager:

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_reconnects_and_rejoins(self):
        first = FakeGatewaySocket([{"type": "hello"}, {"type": "auth_ok"}, {"type": "joined", "channel": "tracstamp"}])
        second = FakeGatewaySocket([{"type": "auth_ok"}, {"type": "joined", "channel": "tracstamp"}], hold_open=True)
        history = []
        manager = make_manager([first, second], history=history)

        task = asyncio.create_task(manager.run())
        assert await wait_until(lambda: manager.stats.connects == 2 and manager.state == S.JOINED)
        await shutdown(manager, task)

        assert history[:9] == [
            S.CONNECTING, S.AUTHENTICATING, S.AUTHENTICATED, S.JOINED,
            S.DISCONNECTED,
            S.CONNECTING, S.AUTHENTICATING, S.AUTHENTICATED, S.JOINED,
        ]
        assert first.sent == [
            {"type": "auth", "token": "secret"},
            {"type": "join", "channel": "tracstamp"},
        ]
        assert second.sent_types() == ["auth", "join"]
        assert manager.state == S.DISCONNECTED

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_stop_during_handshake(self):
        sock = SlowHandshakeSocket([{"type": "auth_ok"}], hold_open=True)
        history = []
        manager = make_manager([sock], history=history)

        task = asyncio.create_task(manager.run())
        await asyncio.sleep(0.05)
        await manager.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert sock.sent == []
        assert manager.state == S.DISCONNECTED
        assert S.AUTHENTICATING not in history

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_refused_connection_retried(self):
        history = []
        manager = make_manager([], history=history)

        task = asyncio.create_task(manager.run())
        assert await wait_until(lambda: len(manager._connect.urls) >= 3)
        await shutdown(manager, task)

        assert history[:4] == [S.CONNECTING, S.DISCONNECTED, S.CONNECTING, S.DISCONNECTED]
        assert manager.stats.connects == 0

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_reply_sent_to_main_channel(self, handler):
        sock = FakeGatewaySocket([
            {"type": "auth_ok"},
            {"type": "joined", "channel": "tracstamp"},
            {
                "type": "sidechannel_message",
                "channel": "tracstamp",
                "from": "trac1peer",
                "message": {"type": "stamp_request", "content": "hello"},
            },
        ], hold_open=True)
        manager = make_manager([sock], on_message=handler.handle_inbound)

        task = asyncio.create_task(manager.run())
        assert await wait_until(lambda: "send" in sock.sent_types())
        await shutdown(manager, task)

        reply = [f for f in sock.sent if f["type"] == "send"][0]
        assert reply["channel"] == "tracstamp"
        assert reply["message"]["type"] == "stamp_certificate"
        assert reply["message"]["stamp_id"] == "TS-00001"

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_announces_after_join(self):
        sock = FakeGatewaySocket([{"type": "auth_ok"}, {"type": "joined"}], hold_open=True)
        manager = make_manager([sock], initial_announce_delay_sec=0.0)

        task = asyncio.create_task(manager.run())
        assert await wait_until(lambda: manager.stats.announcements == 1)
        await shutdown(manager, task)

        announce = [f for f in sock.sent if f["type"] == "send"][0]
        assert announce["channel"] == "0000intercom"
        assert announce["message"] == ANNOUNCEMENT.to_dict()

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_periodic_announcement(self):
        sock = FakeGatewaySocket([{"type": "auth_ok"}], hold_open=True)
        manager = make_manager([sock], announce_interval_sec=0.02)

        task = asyncio.create_task(manager.run())
        assert await wait_until(lambda: manager.stats.announcements >= 2)
        await shutdown(manager, task)

        assert all(f["channel"] == "0000intercom" for f in sock.sent if f["type"] == "send")

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_reply_dropped_before_auth(self):
        calls = []

        async def on_message(envelope):
            calls.append(envelope)
            return {"type": "stats_response"}

        sock = FakeGatewaySocket([
            {"type": "sidechannel_message", "channel": "tracstamp", "message": {"type": "stats_request"}},
        ], hold_open=True)
        manager = make_manager([sock], on_message=on_message)

        task = asyncio.create_task(manager.run())
        assert await wait_until(lambda: len(calls) == 1)
        await shutdown(manager, task)

        assert sock.sent_types() == ["auth"]
        assert await manager.send_to_channel("tracstamp", {"type": "x"}) is False

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_malformed_frame_skipped(self):
        sock = FakeGatewaySocket(["{broken", {"type": "auth_ok"}], hold_open=True)
        manager = make_manager([sock])

        task = asyncio.create_task(manager.run())
        assert await wait_until(lambda: manager.state == S.AUTHENTICATED)
        await shutdown(manager, task)

        assert manager.stats.malformed_frames == 1
        assert manager.to_dict()["malformed_frames"] == 1

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_handler_error_does_not_stop_loop(self):
        calls = []

        async def on_message(envelope):
            calls.append(envelope.message)
            if envelope.message == "boom":
                raise RuntimeError("boom")
            return None

        sock = FakeGatewaySocket([
            {"type": "auth_ok"},
            {"type": "sidechannel_message", "channel": "tracstamp", "message": "boom"},
            {"type": "sidechannel_message", "channel": "tracstamp", "message": "fine"},
        ], hold_open=True)
        manager = make_manager([sock], on_message=on_message)

        task = asyncio.create_task(manager.run())
        assert await wait_until(lambda: len(calls) == 2)
        await shutdown(manager, task)

        assert calls == ["boom", "fine"]
        assert manager.stats.connects == 1
