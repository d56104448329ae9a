"""
TracStamp Time Sources

Multi-source UTC time acquisition with local fallback.
"""

from tracstamp.timing.aggregator import (
    TimeSourceAggregator,
    query_http_provider,
    query_ntp_provider,
    local_fallback_sample,
)

__all__ = [
    "TimeSourceAggregator",
    "query_http_provider",
    "query_ntp_provider",
    "local_fallback_sample",
]
