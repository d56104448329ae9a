"""
TracStamp Agent Configuration
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional

from tracstamp.constants import (
    ANNOUNCE_INTERVAL_SEC,
    DEFAULT_GATEWAY_URL,
    DEFAULT_IDENTITY,
    DEFAULT_STAMPS_FILE,
    ENTRY_CHANNEL,
    INITIAL_ANNOUNCE_DELAY_SEC,
    MAIN_CHANNEL,
    PROVIDER_KIND_HTTP,
    PROVIDER_KIND_NTP,
    RECONNECT_DELAY_SEC,
    SERVICE_VERSION,
    TIME_PROVIDERS,
    TIME_QUERY_TIMEOUT_SEC,
    TimeProvider,
)

logger = logging.getLogger(__name__)


@dataclass
class GatewayConfig:
    """SC-Bridge gateway connection."""
    url: str = DEFAULT_GATEWAY_URL
    token: Optional[str] = None


@dataclass
class ChannelConfig:
    """Sidechannel names."""
    main: str = MAIN_CHANNEL
    entry: str = ENTRY_CHANNEL


@dataclass
class TimeConfig:
    """UTC time provider configuration."""
    query_timeout_sec: float = TIME_QUERY_TIMEOUT_SEC
    providers: List[TimeProvider] = field(default_factory=lambda: list(TIME_PROVIDERS))


@dataclass
class StorageConfig:
    """Ledger storage configuration."""
    stamps_file: str = DEFAULT_STAMPS_FILE


@dataclass
class TimerConfig:
    """Announcement and reconnect timers."""
    announce_interval_sec: float = ANNOUNCE_INTERVAL_SEC
    initial_announce_delay_sec: float = INITIAL_ANNOUNCE_DELAY_SEC
    reconnect_delay_sec: float = RECONNECT_DELAY_SEC


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class AgentConfig:
    """
    Complete agent configuration.

    All settings for running a TracStamp agent.
    """
    # Identity
    identity: str = DEFAULT_IDENTITY
    version: str = SERVICE_VERSION

    # Sub-configurations
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    channels: ChannelConfig = field(default_factory=ChannelConfig)
    time: TimeConfig = field(default_factory=TimeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    timers: TimerConfig = field(default_factory=TimerConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @property
    def stamps_path(self) -> Path:
        """Get ledger file path."""
        return Path(self.storage.stamps_file)

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.gateway.token:
            errors.append("gateway token is required")

        if not self.gateway.url.startswith(("ws://", "wss://")):
            errors.append(f"Invalid gateway URL: {self.gateway.url}")

        if not self.channels.main or not self.channels.entry:
            errors.append("channel names cannot be empty")
        elif self.channels.main == self.channels.entry:
            errors.append("main and entry channels must differ")

        if self.time.query_timeout_sec <= 0:
            errors.append("query_timeout_sec must be positive")

        for provider in self.time.providers:
            if provider.kind not in (PROVIDER_KIND_HTTP, PROVIDER_KIND_NTP):
                errors.append(f"Unknown provider kind for {provider.name}: {provider.kind}")
            elif provider.kind == PROVIDER_KIND_HTTP and not provider.field:
                errors.append(f"HTTP provider {provider.name} needs a field")

        if not self.storage.stamps_file:
            errors.append("stamps_file cannot be empty")

        if self.timers.announce_interval_sec <= 0:
            errors.append("announce_interval_sec must be positive")

        if self.timers.reconnect_delay_sec < 0:
            errors.append("reconnect_delay_sec cannot be negative")

        return errors

    def save(self, path: str) -> None:
        """Save configuration to file. The gateway token is never written."""
        config_dict = self.to_dict()
        config_dict["gateway"].pop("token", None)

        with open(path, 'w') as f:
            json.dump(config_dict, f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def load(cls, path: str) -> "AgentConfig":
        """Load configuration from file."""
        with open(path, 'r') as f:
            data = json.load(f)

        config = cls(
            identity=data.get("identity", DEFAULT_IDENTITY),
            version=data.get("version", SERVICE_VERSION),
        )

        if "gateway" in data:
            config.gateway = GatewayConfig(**data["gateway"])

        if "channels" in data:
            config.channels = ChannelConfig(**data["channels"])

        if "time" in data:
            time_data = dict(data["time"])
            providers = time_data.pop("providers", None)
            config.time = TimeConfig(**time_data)
            if providers is not None:
                config.time.providers = [TimeProvider(**p) for p in providers]

        if "storage" in data:
            config.storage = StorageConfig(**data["storage"])

        if "timers" in data:
            config.timers = TimerConfig(**data["timers"])

        if "log" in data:
            config.log = LogConfig(**data["log"])

        logger.info(f"Configuration loaded from {path}")
        return config

    def to_dict(self) -> dict:
        """Export configuration as dictionary."""
        return {
            "identity": self.identity,
            "version": self.version,
            "gateway": asdict(self.gateway),
            "channels": asdict(self.channels),
            "time": asdict(self.time),
            "storage": asdict(self.storage),
            "timers": asdict(self.timers),
            "log": asdict(self.log),
        }


def setup_logging(config: LogConfig) -> None:
    """Configure logging based on config."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]

    if config.file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=handlers,
        force=True,
    )

    # Filter noisy logs from HTTP and socket libraries
    for name in ("httpx", "httpcore", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)
