"""
TracStamp Test Fixtures
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest
from unittest.mock import Mock

from tracstamp.constants import PROVIDER_KIND_HTTP, TimeProvider
from tracstamp.ledger.factory import CertificateFactory
from tracstamp.ledger.store import CertificateStore
from tracstamp.protocol.handler import ChannelProtocolHandler
from tracstamp.timing.aggregator import TimeSourceAggregator


FIXED_NOW = datetime(2024, 1, 1, 0, 0, 0, 123000, tzinfo=timezone.utc)

PRIMARY = TimeProvider("primary.example", "http://primary.example/utc", PROVIDER_KIND_HTTP, "datetime")
SECONDARY = TimeProvider("secondary.example", "http://secondary.example/utc", PROVIDER_KIND_HTTP, "dateTime")


# =============================================================================
# HTTP
# =============================================================================

def json_response(data: Any, status: int = 200) -> Mock:
    """Mock httpx response."""
    resp = Mock()
    resp.status_code = status
    resp.json.return_value = data
    return resp


class FakeHTTPClient:
    """
    Stands in for httpx.AsyncClient.

    Each route maps a URL to a response, an exception to raise, or a
    (delay_seconds, response) pair.
    """

    def __init__(self, routes: Dict[str, Any]):
        self.routes = routes
        self.requested: List[str] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def get(self, url: str, timeout: Optional[float] = None):
        self.requested.append(url)
        route = self.routes.get(url)
        if route is None:
            raise httpx.ConnectError(f"no route to {url}")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, tuple):
            delay, route = route
            await asyncio.sleep(delay)
        return route


@pytest.fixture
def offline_client() -> FakeHTTPClient:
    """Client for which every provider is unreachable."""
    return FakeHTTPClient({})


@pytest.fixture
def online_client() -> FakeHTTPClient:
    """Client for which both test providers answer."""
    return FakeHTTPClient({
        PRIMARY.endpoint: json_response({"datetime": "2024-01-01T00:00:00.500000+00:00"}),
        SECONDARY.endpoint: json_response({"dateTime": "2024-01-01T00:00:00.6000000"}),
    })


def make_aggregator(client: FakeHTTPClient, providers=None, timeout_sec: float = 5.0) -> TimeSourceAggregator:
    return TimeSourceAggregator(
        providers=[PRIMARY, SECONDARY] if providers is None else providers,
        timeout_sec=timeout_sec,
        client_factory=lambda: client,
        clock=lambda: FIXED_NOW,
    )


# =============================================================================
# Ledger
# =============================================================================

@pytest.fixture
def stamps_path(tmp_path):
    return tmp_path / "stamps.json"


@pytest.fixture
def store(stamps_path) -> CertificateStore:
    return CertificateStore(path=stamps_path)


@pytest.fixture
def offline_aggregator(offline_client) -> TimeSourceAggregator:
    return make_aggregator(offline_client)


@pytest.fixture
def factory(store, offline_aggregator) -> CertificateFactory:
    return CertificateFactory(store, offline_aggregator, identity="trac1test")


@pytest.fixture
def handler(factory, store) -> ChannelProtocolHandler:
    return ChannelProtocolHandler(factory, store, main_channel="tracstamp", version="1.0.0")


# =============================================================================
# Gateway
# =============================================================================

class FakeGatewaySocket:
    """
    Stands in for a websockets client connection.

    Yields the queued frames in order. Unless ``hold_open`` is set the
    iteration ends once the queue is drained, which looks like the gateway
    closing the connection.
    """

    def __init__(self, frames: List[Dict[str, Any]], hold_open: bool = False):
        self.inbound: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.push(frame)
        self.hold_open = hold_open
        self.sent: List[Dict[str, Any]] = []
        self.closed = asyncio.Event()

    def push(self, frame: Any) -> None:
        self.inbound.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def sent_types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed.set()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed.set()
        return False

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if not self.inbound.empty():
            return self.inbound.get_nowait()
        if not self.hold_open or self.closed.is_set():
            raise StopAsyncIteration

        getter = asyncio.ensure_future(self.inbound.get())
        closer = asyncio.ensure_future(self.closed.wait())
        done, pending = await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if getter in done:
            return getter.result()
        raise StopAsyncIteration


class FakeConnector:
    """Hands out prepared sockets, then refuses connections."""

    def __init__(self, sockets: List[FakeGatewaySocket]):
        self.sockets = list(sockets)
        self.urls: List[str] = []

    def __call__(self, url: str):
        self.urls.append(url)
        if not self.sockets:
            raise ConnectionRefusedError(f"connection to {url} refused")
        return self.sockets.pop(0)


async def wait_until(predicate, timeout: float = 2.0) -> bool:
    """Poll until predicate() is true."""
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()
