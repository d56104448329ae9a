"""
TracStamp Channel Protocol Handler

Validates and dispatches requests arriving on the main channel and builds
the replies. Stateless with respect to the connection phase.
"""

from __future__ import annotations
import logging
import time
from typing import Any, Callable, Dict, Optional

from tracstamp.constants import MAIN_CHANNEL, SERVICE_NAME, SERVICE_VERSION
from tracstamp.errors import MissingFieldError
from tracstamp.ledger.factory import CertificateFactory
from tracstamp.ledger.store import CertificateStore
from tracstamp.network.messages import (
    PayloadType,
    SidechannelMessage,
    StampRequest,
    StatsRequest,
    UnrecognizedPayload,
    VerifyRequest,
    decode_request,
    error_reply,
    extract_payload,
    verify_reply,
)

logger = logging.getLogger(__name__)


class ChannelProtocolHandler:
    """
    Request/response logic for the main channel.

    ``handle_inbound`` returns the reply payload to publish on the main
    channel, or None when the envelope is ignored.
    """

    def __init__(
        self,
        factory: CertificateFactory,
        store: CertificateStore,
        main_channel: str = MAIN_CHANNEL,
        version: str = SERVICE_VERSION,
        started_at: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.factory = factory
        self.store = store
        self.main_channel = main_channel
        self.version = version
        self._clock = clock
        self.started_at = clock() if started_at is None else started_at

    @property
    def uptime_seconds(self) -> int:
        return int(self._clock() - self.started_at)

    async def handle_inbound(self, envelope: SidechannelMessage) -> Optional[Dict[str, Any]]:
        """
        Handle one sidechannel envelope.

        Args:
            envelope: Decoded sidechannel_message frame

        Returns:
            Reply payload, or None if nothing should be sent
        """
        if envelope.channel != self.main_channel:
            return None

        payload = extract_payload(envelope.message)
        if payload is None:
            return None

        logger.info(f"Received {payload['type']} from {envelope.sender or 'unknown'}")

        try:
            request = decode_request(payload)
        except MissingFieldError as e:
            logger.info(f"Rejected {e.request_type}: missing {e.field}")
            return error_reply(e.message)

        if isinstance(request, StampRequest):
            certificate = await self.factory.create_certificate(request.content)
            return certificate.to_dict()

        if isinstance(request, VerifyRequest):
            return self.verify(request.stamp_id)

        if isinstance(request, StatsRequest):
            stats = self.get_stats()
            logger.info(
                f"Stats sent: {stats['total_stamps']} stamps, "
                f"uptime {stats['uptime_seconds']}s"
            )
            return stats

        if isinstance(request, UnrecognizedPayload):
            logger.info(f"Unknown message type: {request.payload_type}")
        return None

    def verify(self, stamp_id: str) -> Dict[str, Any]:
        """Look up a certificate by id."""
        found = self.store.find(stamp_id)
        logger.info(f"Verify request for {stamp_id}: {'FOUND' if found else 'NOT FOUND'}")
        return verify_reply(found.to_dict() if found else None)

    def get_stats(self) -> Dict[str, Any]:
        """Service statistics."""
        last = self.store.last()
        return {
            "type": PayloadType.STATS_RESPONSE,
            "total_stamps": len(self.store),
            "uptime_seconds": self.uptime_seconds,
            "last_stamp_id": last.stamp_id if last else None,
            "service": SERVICE_NAME,
            "version": self.version,
        }
