"""
TracStamp Message Types

Gateway transport frames and sidechannel payloads, decoded at the boundary
into a closed set of tagged variants. Unknown tags decode to an explicit
unrecognized variant rather than failing.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from tracstamp.errors import MalformedFrameError, MissingFieldError


class FrameType:
    """Transport frame type tags."""
    # Outbound
    AUTH = "auth"
    JOIN = "join"
    SEND = "send"
    # Inbound
    HELLO = "hello"
    AUTH_OK = "auth_ok"
    JOINED = "joined"
    SENT = "sent"
    SIDECHANNEL_MESSAGE = "sidechannel_message"
    ERROR = "error"


class PayloadType:
    """Sidechannel payload type tags."""
    STAMP_REQUEST = "stamp_request"
    STAMP_CERTIFICATE = "stamp_certificate"
    VERIFY = "verify"
    VERIFY_RESPONSE = "verify_response"
    STATS_REQUEST = "stats_request"
    STATS_RESPONSE = "stats_response"
    SERVICE_ANNOUNCE = "service_announce"
    ERROR = "error"


# =============================================================================
# Outbound Frames
# =============================================================================

@dataclass(frozen=True)
class AuthRequest:
    token: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": FrameType.AUTH, "token": self.token}


@dataclass(frozen=True)
class JoinRequest:
    channel: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": FrameType.JOIN, "channel": self.channel}


@dataclass(frozen=True)
class SendRequest:
    channel: str
    message: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"type": FrameType.SEND, "channel": self.channel, "message": self.message}


OutboundFrame = Union[AuthRequest, JoinRequest, SendRequest]


def encode_frame(frame: OutboundFrame) -> str:
    """Serialize an outbound frame for the socket."""
    return json.dumps(frame.to_dict(), ensure_ascii=False)


# =============================================================================
# Inbound Frames
# =============================================================================

@dataclass(frozen=True)
class Hello:
    pass


@dataclass(frozen=True)
class AuthOk:
    pass


@dataclass(frozen=True)
class Joined:
    channel: Optional[str] = None


@dataclass(frozen=True)
class Sent:
    pass


@dataclass(frozen=True)
class SidechannelMessage:
    """Envelope of a message published on a sidechannel."""
    channel: Optional[str]
    message: Any
    sender: Optional[str] = None


@dataclass(frozen=True)
class GatewayError:
    message: str


@dataclass(frozen=True)
class UnrecognizedFrame:
    frame_type: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


InboundFrame = Union[
    Hello, AuthOk, Joined, Sent, SidechannelMessage, GatewayError, UnrecognizedFrame
]


def parse_frame(raw: Union[str, bytes]) -> InboundFrame:
    """
    Decode one gateway frame.

    Raises:
        MalformedFrameError: If the frame is not a JSON object with a type
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrameError("not UTF-8") from e

    try:
        data = json.loads(raw)
    except ValueError as e:
        raise MalformedFrameError("invalid JSON") from e

    if not isinstance(data, dict):
        raise MalformedFrameError(f"expected an object, got {type(data).__name__}")

    frame_type = data.get("type")
    if not isinstance(frame_type, str):
        raise MalformedFrameError("missing type")

    if frame_type == FrameType.HELLO:
        return Hello()
    if frame_type == FrameType.AUTH_OK:
        return AuthOk()
    if frame_type == FrameType.JOINED:
        return Joined(channel=data.get("channel"))
    if frame_type == FrameType.SENT:
        return Sent()
    if frame_type == FrameType.SIDECHANNEL_MESSAGE:
        return SidechannelMessage(
            channel=data.get("channel"),
            message=data.get("message"),
            sender=data.get("from"),
        )
    if frame_type == FrameType.ERROR:
        detail = data.get("message") or data.get("error") or json.dumps(data)
        return GatewayError(message=str(detail))

    return UnrecognizedFrame(frame_type=frame_type, raw=data)


# =============================================================================
# Channel Payloads
# =============================================================================

@dataclass(frozen=True)
class StampRequest:
    content: Any


@dataclass(frozen=True)
class VerifyRequest:
    stamp_id: str


@dataclass(frozen=True)
class StatsRequest:
    pass


@dataclass(frozen=True)
class UnrecognizedPayload:
    payload_type: str


ChannelRequest = Union[StampRequest, VerifyRequest, StatsRequest, UnrecognizedPayload]


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def extract_payload(message: Any) -> Optional[Dict[str, Any]]:
    """
    Turn a sidechannel message into a payload object.

    A string that is not JSON is free-form content and becomes a synthetic
    stamp_request. Anything that is not an object with a type is dropped.
    """
    payload = message
    if isinstance(message, str):
        try:
            payload = json.loads(message)
        except ValueError:
            payload = {"type": PayloadType.STAMP_REQUEST, "content": message}

    if not isinstance(payload, dict) or not payload.get("type"):
        return None
    return payload


def decode_request(payload: Dict[str, Any]) -> ChannelRequest:
    """
    Decode a payload into its request variant.

    Raises:
        MissingFieldError: If a recognized request lacks its required field
    """
    payload_type = str(payload["type"])

    if payload_type == PayloadType.STAMP_REQUEST:
        content = payload.get("content")
        if _is_missing(content):
            raise MissingFieldError(
                "content", payload_type, "Missing content field in stamp_request"
            )
        return StampRequest(content=content)

    if payload_type == PayloadType.VERIFY:
        stamp_id = payload.get("stamp_id")
        if _is_missing(stamp_id):
            raise MissingFieldError(
                "stamp_id", payload_type, "Missing stamp_id field in verify request"
            )
        return VerifyRequest(stamp_id=str(stamp_id))

    if payload_type == PayloadType.STATS_REQUEST:
        return StatsRequest()

    return UnrecognizedPayload(payload_type=payload_type)


# =============================================================================
# Replies
# =============================================================================

def error_reply(message: str) -> Dict[str, Any]:
    return {"type": PayloadType.ERROR, "message": message}


def verify_reply(certificate: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "type": PayloadType.VERIFY_RESPONSE,
        "found": certificate is not None,
        "certificate": certificate,
    }


@dataclass(frozen=True)
class ServiceAnnounce:
    """Presence announcement pushed to the entry channel."""
    service: str
    description: str
    channel: str
    version: str
    commands: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": PayloadType.SERVICE_ANNOUNCE,
            "service": self.service,
            "description": self.description,
            "channel": self.channel,
            "version": self.version,
            "commands": list(self.commands),
        }
