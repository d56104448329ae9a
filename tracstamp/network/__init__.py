"""
TracStamp Network

Gateway transport frames, channel payloads and the connection state machine.
"""

from tracstamp.network.messages import (
    FrameType,
    PayloadType,
    ServiceAnnounce,
    SidechannelMessage,
    parse_frame,
    encode_frame,
)
from tracstamp.network.connection import (
    ConnectionManager,
    ConnectionState,
    Action,
    transition,
)

__all__ = [
    # Messages
    "FrameType",
    "PayloadType",
    "ServiceAnnounce",
    "SidechannelMessage",
    "parse_frame",
    "encode_frame",
    # Connection
    "ConnectionManager",
    "ConnectionState",
    "Action",
    "transition",
]
