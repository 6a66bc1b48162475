"""Configuration settings for the weather station aggregator.

This module handles configuration through environment variables with sensible
defaults. Environment variables may also come from a .env file, which the CLI
loads before building the config, so nothing here reads the environment at
import time.
"""

from dataclasses import dataclass
import logging
from os import getenv
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

PRODUCT_NAME = "wx-station-aggregator-influx"
VERSION = getenv("WX_AGG_VERSION", "<dev>")

DEFAULT_READ_TIMEOUT_SECONDS = 30.0
DEFAULT_WRITE_TIMEOUT_SECONDS = 5.0
DEFAULT_WRITE_RETRIES = 2


def aggregator_id() -> str:
    """Get the identity stamped into the aggregator tag of every write."""
    return f"{PRODUCT_NAME}/{VERSION}"


def _parse_positive_float_env_var(name: str, default: float) -> float:
    """Parse a positive number from an environment variable.

    Args:
        name: Environment variable name
        default: Value to use when the variable is not set

    Returns:
        float: The parsed value, or default

    Raises:
        ValueError: If the variable is set but not a positive number
    """
    value_str = getenv(name)
    if value_str is None or value_str.strip() == "":
        return default

    try:
        value = float(value_str)
    except ValueError:
        raise ValueError(f"Invalid {name} value '{value_str}': not a number")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got: {value}")
    return value


def _parse_retries_env_var() -> int:
    """Parse INFLUX_WRITE_RETRIES environment variable with validation."""
    retries_str = getenv("INFLUX_WRITE_RETRIES")
    if retries_str is None or retries_str.strip() == "":
        return DEFAULT_WRITE_RETRIES

    try:
        retries = int(retries_str)
    except ValueError:
        raise ValueError(f"Invalid INFLUX_WRITE_RETRIES value '{retries_str}': not an integer")
    if retries < 1:
        raise ValueError(f"INFLUX_WRITE_RETRIES must be at least 1, got: {retries}")
    return retries


# Using a frozen dataclass to ensure that the config is immutable
@dataclass(frozen=True)
class InfluxConfig:
    """Configuration for the InfluxDB 1.x server.

    This class handles InfluxDB configuration through environment variables:
        INFLUX_SERVER: Server URL, e.g. http://localhost:8086 (required)
        INFLUX_DB: Database to read from and write to (required)
        INFLUX_RP: Retention policy (default: the database default)
        INFLUX_USER / INFLUX_PASSWORD: Credentials (default: none)
        INFLUX_READ_TIMEOUT: Seconds to wait on ping and queries (default: 30)
        INFLUX_WRITE_TIMEOUT: Seconds to wait on writes (default: 5)
        INFLUX_WRITE_RETRIES: Total write attempts (default: 2)
    """
    server: str
    database: str
    retention_policy: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    read_timeout: float = DEFAULT_READ_TIMEOUT_SECONDS
    write_timeout: float = DEFAULT_WRITE_TIMEOUT_SECONDS
    write_retries: int = DEFAULT_WRITE_RETRIES

    @classmethod
    def from_env(cls) -> "InfluxConfig":
        """Create configuration from environment variables.

        Raises:
            ValueError: If required variables are missing or values are invalid
        """
        server = getenv("INFLUX_SERVER")
        database = getenv("INFLUX_DB")

        missing = []
        if not server:
            missing.append("INFLUX_SERVER")
        if not database:
            missing.append("INFLUX_DB")
        if missing:
            raise ValueError(
                "Missing required environment variables:\n"
                f"{', '.join(missing)}\n\n"
                "These must be set (or provided via --env) before running the aggregator."
            )

        cfg = cls(
            server=server,
            database=database,
            retention_policy=getenv("INFLUX_RP") or None,
            username=getenv("INFLUX_USER") or None,
            password=getenv("INFLUX_PASSWORD") or None,
            read_timeout=_parse_positive_float_env_var(
                "INFLUX_READ_TIMEOUT", DEFAULT_READ_TIMEOUT_SECONDS
            ),
            write_timeout=_parse_positive_float_env_var(
                "INFLUX_WRITE_TIMEOUT", DEFAULT_WRITE_TIMEOUT_SECONDS
            ),
            write_retries=_parse_retries_env_var(),
        )
        cfg.validate()
        return cfg

    def validate(self) -> None:
        """Validate the server URL and numeric settings."""
        parsed = urlparse(self.server)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(
                f"INFLUX_SERVER must be an http(s) URL like http://localhost:8086, got: {self.server}"
            )
        try:
            parsed.port
        except ValueError as e:
            raise ValueError(f"INFLUX_SERVER has an invalid port ({e}), got: {self.server}") from None
        if self.read_timeout <= 0 or self.write_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if self.write_retries < 1:
            raise ValueError(f"Write retries must be at least 1, got: {self.write_retries}")
        if bool(self.username) != bool(self.password):
            logger.warning("Only one of INFLUX_USER and INFLUX_PASSWORD is set")
