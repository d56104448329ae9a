"""
TracStamp Certificate Store

In-memory ordered ledger mirrored to a single JSON document.

The document is a flat JSON array rewritten in full after every append.
Identifiers are derived from the ledger length, so allocation and append
must happen in one step; ``issue`` does both under a lock.
"""

from __future__ import annotations
import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

from tracstamp.constants import DEFAULT_STAMPS_FILE
from tracstamp.core.certificate import Certificate, format_stamp_id
from tracstamp.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class StoreStats:
    """Ledger statistics."""
    loaded: int = 0
    unreadable: int = 0
    appended: int = 0
    write_failures: int = 0


@dataclass
class CertificateStore:
    """
    Append-only certificate ledger.

    Never mutated in place and never shrinks. Persistence problems are
    logged and the store keeps working from memory.

    Records that cannot be decoded stay in the document untouched and still
    count towards the ledger length, so their ids are never handed out again.
    """
    path: Path = field(default_factory=lambda: Path(DEFAULT_STAMPS_FILE))

    # Persisted document, one entry per issued id
    _records: List[Any] = field(init=False, default_factory=list)

    # Decoded view of _records
    _certificates: List[Certificate] = field(init=False, default_factory=list)

    # Statistics
    stats: StoreStats = field(init=False, default_factory=StoreStats)

    # Serializes id allocation and append
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    def __post_init__(self):
        self.path = Path(self.path)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def certificates(self) -> List[Certificate]:
        """Snapshot of the readable certificates in issuance order."""
        return list(self._certificates)

    def load(self) -> int:
        """
        Load the persisted ledger.

        A missing file, unparsable JSON or a document that is not an array
        leaves the store empty. Malformed records are kept as they are and
        skipped for lookups. Never raises.

        Returns:
            Number of certificates loaded
        """
        self._records = []
        self._certificates = []

        if not self.path.exists():
            logger.info(f"No ledger at {self.path}, starting empty")
            return 0

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)

            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")

        except (OSError, ValueError) as e:
            logger.error(f"Error loading stamps from {self.path}: {e}")
            return 0

        certificates = []
        for index, record in enumerate(data):
            try:
                certificates.append(Certificate.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                self.stats.unreadable += 1
                logger.warning(f"Skipping unreadable ledger record #{index + 1}: {e!r}")

        self._records = list(data)
        self._certificates = certificates
        self.stats.loaded = len(certificates)
        logger.info(f"Loaded {len(certificates)} existing stamps from storage")
        return len(certificates)

    def next_id(self) -> str:
        """Identifier the next appended certificate will carry."""
        return format_stamp_id(len(self._records) + 1)

    def append(self, certificate: Certificate) -> bool:
        """
        Append a certificate and rewrite the persisted ledger.

        The in-memory append always happens, even if the write fails.

        Returns:
            True if the ledger was written to disk
        """
        self._records.append(certificate.to_dict())
        self._certificates.append(certificate)
        self.stats.appended += 1

        try:
            self._write()
        except PersistenceError as e:
            self.stats.write_failures += 1
            logger.error(f"Error saving stamps: {e.message}")
            return False

        return True

    async def issue(self, build: Callable[[str], Certificate]) -> Certificate:
        """
        Allocate the next identifier and append the certificate built for it.

        Both happen while holding the store lock, so concurrent callers
        can never be handed the same identifier.

        Args:
            build: Called with the allocated stamp id, returns the certificate

        Returns:
            The appended certificate
        """
        async with self._lock:
            certificate = build(self.next_id())
            self.append(certificate)
            return certificate

    def find(self, stamp_id: str) -> Optional[Certificate]:
        """Exact-match lookup by stamp id."""
        for certificate in self._certificates:
            if certificate.stamp_id == stamp_id:
                return certificate
        return None

    def last(self) -> Optional[Certificate]:
        """Most recently appended readable certificate."""
        if not self._certificates:
            return None
        return self._certificates[-1]

    def _write(self) -> None:
        """Rewrite the whole document through a temporary file."""
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._records, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise PersistenceError(str(self.path), str(e)) from e

    def get_statistics(self) -> dict:
        """Ledger statistics."""
        last = self.last()
        return {
            "path": str(self.path),
            "total": len(self._records),
            "last_stamp_id": last.stamp_id if last else None,
            "loaded": self.stats.loaded,
            "unreadable": self.stats.unreadable,
            "appended": self.stats.appended,
            "write_failures": self.stats.write_failures,
        }
