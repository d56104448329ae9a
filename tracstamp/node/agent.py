"""
TracStamp Agent

The session object that owns every component, and the command line entry
point that runs it.
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import os
import signal
import sys
import time
from typing import Any, Callable, List, Optional

from tracstamp.constants import (
    SERVICE_DESCRIPTION,
    SERVICE_NAME,
    SUPPORTED_COMMANDS,
)
from tracstamp.errors import ConfigError
from tracstamp.ledger.factory import CertificateFactory
from tracstamp.ledger.store import CertificateStore
from tracstamp.network.connection import ConnectionManager
from tracstamp.network.messages import ServiceAnnounce
from tracstamp.node.config import AgentConfig, setup_logging
from tracstamp.protocol.handler import ChannelProtocolHandler
from tracstamp.timing.aggregator import TimeSourceAggregator

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "TRACSTAMP_TOKEN"

USAGE = (
    "Usage: tracstamp --token <SC_BRIDGE_TOKEN>\n"
    "\n"
    "The token must match the --sc-bridge-token used when starting Intercom."
)


class TracStampAgent:
    """
    One running agent.

    Holds the ledger, time sources, protocol handler and gateway connection
    for the lifetime of the process. Nothing is kept at module level.
    """

    def __init__(
        self,
        config: AgentConfig,
        connect: Optional[Callable[[str], Any]] = None,
        client_factory: Optional[Callable[[], Any]] = None,
    ):
        self.config = config
        self.started_at = time.monotonic()

        self.store = CertificateStore(path=config.stamps_path)
        self.aggregator = TimeSourceAggregator(
            providers=config.time.providers,
            timeout_sec=config.time.query_timeout_sec,
            client_factory=client_factory,
        )
        self.factory = CertificateFactory(
            self.store,
            self.aggregator,
            identity=config.identity,
        )
        self.handler = ChannelProtocolHandler(
            self.factory,
            self.store,
            main_channel=config.channels.main,
            version=config.version,
            started_at=self.started_at,
        )
        self.connection = ConnectionManager(
            url=config.gateway.url,
            token=config.gateway.token or "",
            on_message=self.handler.handle_inbound,
            announcement=self.announcement(),
            main_channel=config.channels.main,
            entry_channel=config.channels.entry,
            announce_interval_sec=config.timers.announce_interval_sec,
            initial_announce_delay_sec=config.timers.initial_announce_delay_sec,
            reconnect_delay_sec=config.timers.reconnect_delay_sec,
            connect=connect,
        )

    def announcement(self) -> ServiceAnnounce:
        """Static presence announcement for this run."""
        return ServiceAnnounce(
            service=SERVICE_NAME,
            description=SERVICE_DESCRIPTION,
            channel=self.config.channels.main,
            version=self.config.version,
            commands=SUPPORTED_COMMANDS,
        )

    async def run(self) -> None:
        """Load the ledger and serve until stopped."""
        self.store.load()
        await self.connection.run()

    async def stop(self) -> None:
        logger.info("Shutting down...")
        await self.connection.stop()
        self.log_status()

    def log_status(self) -> None:
        """Log a one-shot summary of the session."""
        status = self.get_status()
        connection = status["connection"]
        ledger = status["ledger"]
        logger.info(
            f"Session summary: uptime {status['uptime_seconds']}s, "
            f"{connection['connects']} connects, "
            f"{connection['frames_received']} frames in, "
            f"{connection['frames_sent']} frames out, "
            f"{connection['announcements']} announcements"
        )
        logger.info(
            f"Ledger {ledger['path']}: {ledger['total']} stamps, "
            f"last {ledger['last_stamp_id']}, {ledger['write_failures']} write failures"
        )
        logger.info(
            "Time providers: "
            + ", ".join(p["name"] for p in status["time_sources"]["providers"])
        )

    def get_status(self) -> dict:
        """Agent status snapshot."""
        return {
            "service": SERVICE_NAME,
            "version": self.config.version,
            "identity": self.config.identity,
            "uptime_seconds": int(time.monotonic() - self.started_at),
            "connection": self.connection.to_dict(),
            "ledger": self.store.get_statistics(),
            "time_sources": self.aggregator.get_info(),
        }


# =============================================================================
# Command Line
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracstamp",
        description="TracStamp - P2P Timestamping Service",
    )
    parser.add_argument("--token", "-t", type=str, help="SC-Bridge authentication token")
    parser.add_argument("--config", "-c", type=str, help="Path to config file")
    parser.add_argument("--gateway-url", type=str, help="SC-Bridge WebSocket URL")
    parser.add_argument("--stamps-file", type=str, help="Certificate ledger file")
    parser.add_argument("--log-level", type=str, help="Log level")
    parser.add_argument("--log-file", type=str, help="Also log to this file")
    return parser


def load_config(args: argparse.Namespace, token: str) -> AgentConfig:
    """
    Build the agent configuration from file and flags.

    Raises:
        ConfigError: If the configuration cannot be read or is invalid
    """
    if args.config:
        try:
            config = AgentConfig.load(args.config)
        except (OSError, ValueError, TypeError) as e:
            raise ConfigError([f"cannot read {args.config}: {e}"]) from e
    else:
        config = AgentConfig()

    config.gateway.token = token
    if args.gateway_url:
        config.gateway.url = args.gateway_url
    if args.stamps_file:
        config.storage.stamps_file = args.stamps_file
    if args.log_level:
        config.log.level = args.log_level
    if args.log_file:
        config.log.file = args.log_file

    problems = config.validate()
    if problems:
        raise ConfigError(problems)
    return config


def log_banner(config: AgentConfig) -> None:
    logger.info("========================================")
    logger.info("  TracStamp - P2P Timestamping Service  ")
    logger.info("========================================")
    logger.info(f"Version: {config.version}")
    logger.info(f"Channel: {config.channels.main}")
    logger.info(f"Address: {config.identity}")


async def serve(agent: TracStampAgent) -> None:
    """Run the agent, stopping cleanly on SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(agent.stop()))
        except NotImplementedError:
            # Signal handlers are unavailable on Windows event loops
            pass

    await agent.run()


def main(argv: Optional[List[str]] = None) -> None:
    """Command line entry point."""
    args = build_parser().parse_args(argv)

    token = args.token or os.getenv(TOKEN_ENV_VAR)
    if not token:
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config(args, token)
    except ConfigError as e:
        print(e.message, file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log)
    log_banner(config)

    agent = TracStampAgent(config)

    try:
        asyncio.run(serve(agent))
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()
