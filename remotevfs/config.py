"""Module for configuration variables with defaults that are overridable by a file."""

from __future__ import annotations

from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field

from remotevfs.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_ENDPOINT,
    DEFAULT_REQUEST_TIMEOUT,
)
from remotevfs.logger import log


@dataclass
class ConnectionConfig:
    """Configuration variables related to the connection with the storage peer."""

    endpoint: str = DEFAULT_ENDPOINT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    linger_ms: int = 0

    # Reject in-flight calls as soon as the peer reports a disconnect instead of
    # letting them run into their timeout.
    fail_fast_on_disconnect: bool = False

    @staticmethod
    def load(section: SectionProxy) -> ConnectionConfig:
        """Load overridden variables from a section within a config file."""
        config = ConnectionConfig()

        config.endpoint = section.get("endpoint", fallback=config.endpoint)
        config.connect_timeout = section.getfloat(
            "connect_timeout", fallback=config.connect_timeout
        )

        config.request_timeout = section.getfloat(
            "request_timeout", fallback=config.request_timeout
        )
        config.linger_ms = section.getint("linger_ms", fallback=config.linger_ms)

        config.fail_fast_on_disconnect = section.getboolean(
            "fail_fast_on_disconnect", fallback=config.fail_fast_on_disconnect
        )

        return config


@dataclass
class Config:
    """Configuration variables."""

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "connection" in parser:
                config.connection = ConnectionConfig.load(parser["connection"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            log.info(f"loaded config: {config}")

        return config
