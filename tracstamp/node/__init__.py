"""
TracStamp Agent
"""

from tracstamp.node.config import AgentConfig, LogConfig, setup_logging
from tracstamp.node.agent import TracStampAgent, main

__all__ = [
    "AgentConfig",
    "LogConfig",
    "setup_logging",
    "TracStampAgent",
    "main",
]
