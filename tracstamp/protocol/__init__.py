"""
TracStamp Channel Protocol
"""

from tracstamp.protocol.handler import ChannelProtocolHandler

__all__ = [
    "ChannelProtocolHandler",
]
