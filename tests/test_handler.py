"""
TracStamp Channel Protocol Handler Tests
"""

import hashlib

import pytest

from tracstamp.network.messages import SidechannelMessage


def envelope(message, channel="tracstamp", sender="trac1peer"):
    return SidechannelMessage(channel=channel, message=message, sender=sender)


class TestStamping:

    @pytest.mark.asyncio
    async def test_stamp_request(self, handler, store):
        reply = await handler.handle_inbound(envelope({"type": "stamp_request", "content": "hello"}))

        assert reply["type"] == "stamp_certificate"
        assert reply["stamp_id"] == "TS-00001"
        assert reply["hash"] == hashlib.sha256(b"hello").hexdigest()
        assert reply["content_preview"] == "hello"
        assert reply["stamped_by"] == "trac1test"
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_raw_text_is_stamped(self, handler):
        reply = await handler.handle_inbound(envelope("just some text"))

        assert reply["type"] == "stamp_certificate"
        assert reply["hash"] == hashlib.sha256(b"just some text").hexdigest()

    @pytest.mark.asyncio
    async def test_missing_content(self, handler, store):
        reply = await handler.handle_inbound(envelope({"type": "stamp_request"}))

        assert reply == {"type": "error", "message": "Missing content field in stamp_request"}
        assert len(store) == 0


class TestVerify:

    @pytest.mark.asyncio
    async def test_round_trip(self, handler):
        issued = await handler.handle_inbound(envelope({"type": "stamp_request", "content": "hello"}))
        reply = await handler.handle_inbound(envelope({"type": "verify", "stamp_id": "TS-00001"}))

        assert reply == {"type": "verify_response", "found": True, "certificate": issued}

    @pytest.mark.asyncio
    async def test_not_found(self, handler):
        reply = await handler.handle_inbound(envelope({"type": "verify", "stamp_id": "TS-00042"}))
        assert reply == {"type": "verify_response", "found": False, "certificate": None}

    @pytest.mark.asyncio
    async def test_missing_stamp_id(self, handler):
        reply = await handler.handle_inbound(envelope({"type": "verify", "stamp_id": ""}))
        assert reply == {"type": "error", "message": "Missing stamp_id field in verify request"}


class TestStats:

    @pytest.mark.asyncio
    async def test_empty_ledger(self, handler):
        reply = await handler.handle_inbound(envelope({"type": "stats_request"}))

        assert reply["type"] == "stats_response"
        assert reply["total_stamps"] == 0
        assert reply["last_stamp_id"] is None
        assert reply["service"] == "TracStamp"
        assert reply["version"] == "1.0.0"
        assert reply["uptime_seconds"] >= 0

    @pytest.mark.asyncio
    async def test_after_stamping(self, handler):
        await handler.handle_inbound(envelope("one"))
        await handler.handle_inbound(envelope("two"))

        stats = handler.get_stats()
        assert stats["total_stamps"] == 2
        assert stats["last_stamp_id"] == "TS-00002"

    def test_uptime_uses_clock(self, factory, store):
        from tracstamp.protocol.handler import ChannelProtocolHandler

        now = [100.0]
        handler = ChannelProtocolHandler(factory, store, clock=lambda: now[0])
        now[0] = 142.7
        assert handler.uptime_seconds == 42


class TestIgnored:
    """Envelopes that produce no reply."""

    @pytest.mark.asyncio
    async def test_other_channel(self, handler, store):
        reply = await handler.handle_inbound(envelope("hello", channel="0000intercom"))
        assert reply is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unknown_type(self, handler):
        assert await handler.handle_inbound(envelope({"type": "gossip"})) is None

    @pytest.mark.asyncio
    async def test_non_object_json(self, handler, store):
        assert await handler.handle_inbound(envelope("[1, 2, 3]")) is None
        assert len(store) == 0
