"""
TracStamp Gateway Connection

Owns the socket to the SC-Bridge gateway: connect, authenticate, join the
main channel, announce presence, and reconnect after every disconnect.

The lifecycle is a state machine. ``transition`` is a pure function of
(state, event) returning the next state and the actions to run;
``ConnectionManager`` feeds it events from the socket and executes the
actions.
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import websockets
from websockets.exceptions import WebSocketException

from tracstamp.constants import (
    ANNOUNCE_INTERVAL_SEC,
    ENTRY_CHANNEL,
    INITIAL_ANNOUNCE_DELAY_SEC,
    MAIN_CHANNEL,
    RECONNECT_DELAY_SEC,
)
from tracstamp.errors import MalformedFrameError
from tracstamp.network.messages import (
    AuthOk,
    AuthRequest,
    GatewayError,
    Hello,
    Joined,
    JoinRequest,
    OutboundFrame,
    SendRequest,
    ServiceAnnounce,
    SidechannelMessage,
    UnrecognizedFrame,
    encode_frame,
    parse_frame,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[SidechannelMessage], Awaitable[Optional[Dict[str, Any]]]]


class ConnectionState(Enum):
    """Gateway connection state."""
    DISCONNECTED = auto()
    CONNECTING = auto()
    AUTHENTICATING = auto()
    AUTHENTICATED = auto()
    JOINED = auto()


class Action(Enum):
    """Side effects requested by a transition."""
    SEND_AUTH = auto()
    SEND_JOIN = auto()
    START_ANNOUNCER = auto()
    ANNOUNCE_SOON = auto()
    DISPATCH = auto()
    CANCEL_TIMERS = auto()
    SCHEDULE_RECONNECT = auto()


# Transport events that are not gateway frames
@dataclass(frozen=True)
class ConnectRequested:
    pass


@dataclass(frozen=True)
class TransportOpened:
    pass


@dataclass(frozen=True)
class TransportClosed:
    reason: str = ""


def transition(state: ConnectionState, event: Any) -> Tuple[ConnectionState, Tuple[Action, ...]]:
    """
    Next state and actions for an event.

    Any state drops to DISCONNECTED when the transport closes. Sidechannel
    messages are dispatched whatever the state.
    """
    if isinstance(event, TransportClosed):
        return ConnectionState.DISCONNECTED, (Action.CANCEL_TIMERS, Action.SCHEDULE_RECONNECT)

    if isinstance(event, ConnectRequested):
        return ConnectionState.CONNECTING, ()

    if isinstance(event, TransportOpened):
        return ConnectionState.AUTHENTICATING, (Action.SEND_AUTH,)

    if isinstance(event, AuthOk):
        return ConnectionState.AUTHENTICATED, (Action.SEND_JOIN, Action.START_ANNOUNCER)

    if isinstance(event, Joined):
        return ConnectionState.JOINED, (Action.ANNOUNCE_SOON,)

    if isinstance(event, SidechannelMessage):
        return state, (Action.DISPATCH,)

    # hello, sent, error and unknown frames leave the state alone
    return state, ()


@dataclass
class ConnectionStats:
    """Statistics for the gateway connection."""
    connects: int = 0
    disconnects: int = 0
    frames_sent: int = 0
    frames_received: int = 0
    malformed_frames: int = 0
    announcements: int = 0


class ConnectionManager:
    """
    Gateway connection runtime.

    ``run`` keeps the connection alive until ``stop`` is called. Inbound
    frames are processed one at a time, to completion, before the next one
    is read.
    """

    def __init__(
        self,
        url: str,
        token: str,
        on_message: MessageHandler,
        announcement: ServiceAnnounce,
        main_channel: str = MAIN_CHANNEL,
        entry_channel: str = ENTRY_CHANNEL,
        announce_interval_sec: float = ANNOUNCE_INTERVAL_SEC,
        initial_announce_delay_sec: float = INITIAL_ANNOUNCE_DELAY_SEC,
        reconnect_delay_sec: float = RECONNECT_DELAY_SEC,
        connect: Optional[Callable[[str], Any]] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ):
        self.url = url
        self.token = token
        self.on_message = on_message
        self.announcement = announcement
        self.main_channel = main_channel
        self.entry_channel = entry_channel
        self.announce_interval_sec = announce_interval_sec
        self.initial_announce_delay_sec = initial_announce_delay_sec
        self.reconnect_delay_sec = reconnect_delay_sec
        self._connect = connect or websockets.connect
        self._on_state_change = on_state_change

        self.state = ConnectionState.DISCONNECTED
        self.stats = ConnectionStats()

        self._ws: Optional[Any] = None
        self._announcer: Optional[asyncio.Task] = None
        self._initial_announce: Optional[asyncio.Task] = None
        self._stopping = False
        self._stop_event = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def is_authenticated(self) -> bool:
        return self.state in (ConnectionState.AUTHENTICATED, ConnectionState.JOINED)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Connect and reconnect until stopped."""
        self._stopping = False
        self._stop_event.clear()

        while not self._stopping:
            await self._apply(ConnectRequested())
            logger.info(f"Connecting to SC-Bridge at {self.url}...")

            reason = ""
            try:
                async with self._connect(self.url) as ws:
                    self._ws = ws
                    self.stats.connects += 1

                    # stop() ran while the handshake was in flight
                    if self._stopping:
                        logger.info("Stop requested during connect, closing socket")
                    else:
                        logger.info("WebSocket connected, authenticating...")
                        await self._apply(TransportOpened())

                        async for raw in ws:
                            await self._on_raw(raw)

            except asyncio.CancelledError:
                self._ws = None
                self._cancel_timers()
                raise

            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                reason = str(e) or type(e).__name__
                logger.error(f"WebSocket error: {reason}")

            self._ws = None
            self.stats.disconnects += 1
            logger.info("WebSocket disconnected")
            await self._apply(TransportClosed(reason))

    async def stop(self) -> None:
        """Stop reconnecting, cancel timers and close the socket."""
        self._stopping = True
        self._stop_event.set()
        self._cancel_timers()

        if self._ws is not None:
            try:
                await self._ws.close()
            except WebSocketException as e:
                logger.debug(f"Error closing socket: {e}")

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def _on_raw(self, raw: Any) -> None:
        try:
            frame = parse_frame(raw)
        except MalformedFrameError as e:
            self.stats.malformed_frames += 1
            logger.error(f"Invalid frame from SC-Bridge: {e.message}")
            return

        self.stats.frames_received += 1
        await self._apply(frame)

    async def _apply(self, event: Any) -> None:
        previous = self.state
        self.state, actions = transition(self.state, event)

        if self.state != previous:
            logger.debug(f"Connection state {previous.name} -> {self.state.name}")
            if self._on_state_change:
                self._on_state_change(self.state)

        self._log_event(event)

        for action in actions:
            await self._execute(action, event)

    def _log_event(self, event: Any) -> None:
        if isinstance(event, Hello):
            logger.info("Received hello from SC-Bridge")
        elif isinstance(event, AuthOk):
            logger.info("Authenticated successfully")
        elif isinstance(event, Joined):
            logger.info(f"Joined channel: {event.channel or self.main_channel}")
        elif isinstance(event, GatewayError):
            logger.error(f"SC-Bridge error: {event.message}")
        elif isinstance(event, UnrecognizedFrame):
            logger.debug(f"Ignoring frame type {event.frame_type}")

    async def _execute(self, action: Action, event: Any) -> None:
        if action == Action.SEND_AUTH:
            await self._send_frame(AuthRequest(token=self.token))

        elif action == Action.SEND_JOIN:
            await self._send_frame(JoinRequest(channel=self.main_channel))

        elif action == Action.START_ANNOUNCER:
            if self._announcer:
                self._announcer.cancel()
            self._announcer = asyncio.create_task(self._announce_loop())

        elif action == Action.ANNOUNCE_SOON:
            if self._initial_announce:
                self._initial_announce.cancel()
            self._initial_announce = asyncio.create_task(self._announce_after_delay())

        elif action == Action.DISPATCH:
            await self._dispatch(event)

        elif action == Action.CANCEL_TIMERS:
            self._cancel_timers()

        elif action == Action.SCHEDULE_RECONNECT:
            await self._wait_before_reconnect()

    async def _dispatch(self, envelope: SidechannelMessage) -> None:
        try:
            reply = await self.on_message(envelope)
        except Exception as e:
            logger.error(f"Message handler error: {e}")
            return

        if reply is not None:
            await self.send_to_channel(self.main_channel, reply)

    async def _wait_before_reconnect(self) -> None:
        if self._stopping:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.reconnect_delay_sec)
        except asyncio.TimeoutError:
            pass

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def _send_frame(self, frame: OutboundFrame) -> bool:
        if self._ws is None:
            return False

        try:
            await self._ws.send(encode_frame(frame))
        except WebSocketException as e:
            logger.warning(f"Failed to send {frame.to_dict()['type']} frame: {e}")
            return False

        self.stats.frames_sent += 1
        return True

    async def send_to_channel(self, channel: str, message: Dict[str, Any]) -> bool:
        """
        Publish a message on a sidechannel.

        Dropped unless the socket is open and authenticated.
        """
        if not (self.is_connected and self.is_authenticated):
            logger.debug(f"Not authenticated, dropping message for {channel}")
            return False
        return await self._send_frame(SendRequest(channel=channel, message=message))

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    async def announce(self) -> bool:
        """Send the service announcement to the entry channel."""
        sent = await self.send_to_channel(self.entry_channel, self.announcement.to_dict())
        if sent:
            self.stats.announcements += 1
        return sent

    async def _announce_after_delay(self) -> None:
        await asyncio.sleep(self.initial_announce_delay_sec)
        if await self.announce():
            logger.info(f"Sent initial service announcement to {self.entry_channel}")

    async def _announce_loop(self) -> None:
        while True:
            await asyncio.sleep(self.announce_interval_sec)
            if self.is_authenticated and await self.announce():
                logger.info("Sent periodic service announcement")

    def _cancel_timers(self) -> None:
        for task in (self._announcer, self._initial_announce):
            if task and not task.done():
                task.cancel()
        self._announcer = None
        self._initial_announce = None

    def to_dict(self) -> dict:
        """Export connection info as dictionary."""
        return {
            "url": self.url,
            "state": self.state.name,
            "authenticated": self.is_authenticated,
            "connects": self.stats.connects,
            "disconnects": self.stats.disconnects,
            "frames_sent": self.stats.frames_sent,
            "frames_received": self.stats.frames_received,
            "malformed_frames": self.stats.malformed_frames,
            "announcements": self.stats.announcements,
        }
