"""
linkledger configuration management.

Settings are loaded from multiple sources with a clear priority order:

    1. Environment variables (highest priority) - for containerized deployments
    2. Config file (config/linkledger.ini) - for static deployments
    3. Built-in defaults (lowest priority) - sensible fallbacks

Configuration is loaded once at module import time and cached.  The
LinkLedgerConfig dataclass provides typed access to all settings.

Usage:
    from linkledger.config import config

    print(config.relay.base_url)
    print(config.server.port)

Environment Variable Mapping:
    LINKLEDGER_RELAY_URL        -> relay.base_url
    LINKLEDGER_RELAY_TIMEOUT    -> relay.timeout
    LINKLEDGER_RECONNECT_DELAY  -> relay.reconnect_delay
    LINKLEDGER_HOST             -> server.host
    LINKLEDGER_PORT             -> server.port
    LINKLEDGER_DATA_DIR         -> storage.data_dir
    LINKLEDGER_LOG_LEVEL        -> logging.level
"""

import configparser
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import structlog

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/, data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Config file paths
CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "linkledger.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "linkledger.example.ini"


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================


@dataclass
class RelaySettings:
    """Where the relay lives and how to talk to it."""

    base_url: str = "http://localhost:3000"
    timeout: float = 10.0
    reconnect_delay: float = 3.0

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("relay base_url cannot be empty")
        if self.timeout <= 0:
            raise ValueError("relay timeout must be a positive number")
        if self.reconnect_delay < 0:
            raise ValueError("relay reconnect_delay cannot be negative")


@dataclass
class ServerSettings:
    """Relay server network configuration."""

    host: str = "0.0.0.0"  # nosec B104 - intentional for server binding
    port: int = 3000


@dataclass
class StorageSettings:
    """Relay server storage configuration."""

    data_dir: str = "data/relay"

    @property
    def absolute_path(self) -> Path:
        """Get absolute path to the data directory."""
        p = Path(self.data_dir)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["simple", "detailed", "json"] = "detailed"


@dataclass
class LinkLedgerConfig:
    """
    Complete configuration.

    Aggregates all settings sections.  Access via the module-level `config`
    singleton.
    """

    relay: RelaySettings = field(default_factory=RelaySettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _load_from_ini(parser: configparser.ConfigParser, cfg: LinkLedgerConfig) -> None:
    """Load configuration from parsed INI file into LinkLedgerConfig."""
    # Relay section
    if parser.has_section("relay"):
        if parser.has_option("relay", "base_url"):
            cfg.relay.base_url = parser.get("relay", "base_url").rstrip("/")
        if parser.has_option("relay", "timeout"):
            cfg.relay.timeout = parser.getfloat("relay", "timeout")
        if parser.has_option("relay", "reconnect_delay"):
            cfg.relay.reconnect_delay = parser.getfloat("relay", "reconnect_delay")

    # Server section
    if parser.has_section("server"):
        if parser.has_option("server", "host"):
            cfg.server.host = parser.get("server", "host")
        if parser.has_option("server", "port"):
            cfg.server.port = parser.getint("server", "port")

    # Storage section
    if parser.has_section("storage"):
        if parser.has_option("storage", "data_dir"):
            cfg.storage.data_dir = parser.get("storage", "data_dir")

    # Logging section
    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed", "json"):
                cfg.logging.format = val  # type: ignore[assignment]


def _apply_env_overrides(cfg: LinkLedgerConfig) -> None:
    """Apply environment variable overrides to configuration."""
    # Relay settings
    if env_relay := os.getenv("LINKLEDGER_RELAY_URL"):
        cfg.relay.base_url = env_relay.rstrip("/")
    if env_timeout := os.getenv("LINKLEDGER_RELAY_TIMEOUT"):
        cfg.relay.timeout = float(env_timeout)
    if env_delay := os.getenv("LINKLEDGER_RECONNECT_DELAY"):
        cfg.relay.reconnect_delay = float(env_delay)

    # Server settings
    if env_host := os.getenv("LINKLEDGER_HOST"):
        cfg.server.host = env_host
    if env_port := os.getenv("LINKLEDGER_PORT"):
        cfg.server.port = int(env_port)

    # Storage settings
    if env_data := os.getenv("LINKLEDGER_DATA_DIR"):
        cfg.storage.data_dir = env_data

    # Logging settings
    if env_log := os.getenv("LINKLEDGER_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()


def load_config() -> LinkLedgerConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. config/linkledger.ini
        3. config/linkledger.example.ini (fallback for development)
        4. Built-in defaults

    Returns:
        LinkLedgerConfig: Fully populated configuration object.
    """
    cfg = LinkLedgerConfig()

    # Determine which config file to use
    config_file = None
    if CONFIG_FILE.exists():
        config_file = CONFIG_FILE
    elif CONFIG_EXAMPLE.exists():
        config_file = CONFIG_EXAMPLE

    if config_file:
        parser = configparser.ConfigParser()
        parser.read(config_file)
        _load_from_ini(parser, cfg)

    _apply_env_overrides(cfg)

    return cfg


# =============================================================================
# LOGGING SETUP
# =============================================================================

_LOG_FORMATS = {
    "simple": "%(levelname)s %(message)s",
    "detailed": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
}


def json_formatter() -> logging.Formatter:
    """
    Formatter that renders each stdlib record as one JSON object per line.

    Keys: ``event`` (the message), ``level``, ``logger``, ``timestamp`` (ISO,
    UTC) and ``exception`` when a traceback is attached.
    """
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
    )


def configure_logging(settings: LoggingSettings) -> None:
    """
    Configure the root logger from logging settings.

    Called once by the CLI entry point.  Library code never configures
    logging; it only obtains module loggers.
    """
    level = getattr(logging, settings.level, logging.INFO)
    if settings.format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(json_formatter())
        logging.basicConfig(level=level, handlers=[handler], force=True)
        return
    logging.basicConfig(level=level, format=_LOG_FORMATS[settings.format], force=True)


# =============================================================================
# MODULE-LEVEL SINGLETON
# =============================================================================

# Load configuration once at module import time
config = load_config()
