"""
TracStamp
P2P Timestamping and Certification Agent

Receives content on a sidechannel, hashes it with SHA-256, stamps it with
UTC time gathered from several independent sources and keeps every
certificate in a local ledger for later verification.
"""

__version__ = "1.0.0"
__author__ = "TracStamp"

from tracstamp.constants import SERVICE_NAME, SERVICE_VERSION, MAIN_CHANNEL, ENTRY_CHANNEL

__all__ = [
    "SERVICE_NAME",
    "SERVICE_VERSION",
    "MAIN_CHANNEL",
    "ENTRY_CHANNEL",
    "__version__",
]
