"""
TracStamp Certificate Ledger

Append-only certificate store and the factory that issues into it.
"""

from tracstamp.ledger.store import CertificateStore
from tracstamp.ledger.factory import CertificateFactory

__all__ = [
    "CertificateStore",
    "CertificateFactory",
]
