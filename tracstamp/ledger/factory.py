"""
TracStamp Certificate Factory

Turns raw content into an issued, persisted certificate.
"""

from __future__ import annotations
import logging
from typing import Any

from tracstamp.constants import DEFAULT_IDENTITY
from tracstamp.core.certificate import (
    Certificate,
    canonicalize_content,
    hash_content,
    make_preview,
)
from tracstamp.ledger.store import CertificateStore
from tracstamp.timing.aggregator import TimeSourceAggregator

logger = logging.getLogger(__name__)


class CertificateFactory:
    """
    Issues certificates.

    Hash and time are computed first. Identifier allocation and the append
    happen together inside ``CertificateStore.issue``.
    """

    def __init__(
        self,
        store: CertificateStore,
        aggregator: TimeSourceAggregator,
        identity: str = DEFAULT_IDENTITY,
    ):
        self.store = store
        self.aggregator = aggregator
        self.identity = identity

    async def create_certificate(self, content: Any) -> Certificate:
        """
        Create, store and return a certificate for the given content.

        A failed ledger write is logged by the store; the certificate is
        still returned.
        """
        canonical = canonicalize_content(content)
        digest = hash_content(canonical)
        preview = make_preview(canonical)
        time_data = await self.aggregator.fetch_utc_time()

        def build(stamp_id: str) -> Certificate:
            return Certificate(
                stamp_id=stamp_id,
                hash=digest,
                content_preview=preview,
                utc_time=time_data.utc_time,
                unix_ts=time_data.unix_ts,
                time_sources=time_data.time_sources,
                stamped_by=self.identity,
            )

        certificate = await self.store.issue(build)

        logger.info(
            f"Created certificate {certificate.stamp_id} - hash: {digest[:16]}..."
        )
        return certificate
