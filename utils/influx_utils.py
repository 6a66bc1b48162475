"""InfluxDB utility functions.

This module provides helpers for creating InfluxDB 1.x clients from the
configuration, issuing queries with consistent logging, and writing batches of
points with a bounded number of attempts.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from influxdb import InfluxDBClient
from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    stop_after_attempt,
    wait_fixed,
)

from config import InfluxConfig
from utils.logging import get_logger

# Get a named logger for this module
logger = get_logger(__name__)

# Fixed pause between write attempts
WRITE_RETRY_WAIT_SECONDS = 1.0


def get_influx_client(cfg: InfluxConfig, timeout: float) -> InfluxDBClient:
    """Create an InfluxDB client for the configured server.

    The read and write paths use different timeouts, so callers create one
    client per path.

    Args:
        cfg: InfluxDB configuration
        timeout: Seconds to wait for each request

    Returns:
        Configured InfluxDBClient
    """
    parsed = urlparse(cfg.server)
    ssl = parsed.scheme == "https"
    port = parsed.port or (443 if ssl else 8086)
    path = parsed.path.strip("/")

    client = InfluxDBClient(
        host=parsed.hostname,
        port=port,
        username=cfg.username or "root",
        password=cfg.password or "root",
        database=cfg.database,
        ssl=ssl,
        verify_ssl=ssl,
        timeout=timeout,
        # write retries are handled by write_points_with_retry
        retries=1,
        path=path,
    )
    logger.debug(f"Created InfluxDB client for {parsed.hostname}:{port} (timeout {timeout}s)")
    return client


def influx_healthcheck(client: InfluxDBClient) -> str:
    """Ping the server.

    Returns:
        Server version string

    Raises:
        requests.exceptions.RequestException: If the server is unreachable
        influxdb.exceptions.InfluxDBClientError: If the ping is rejected
    """
    version = client.ping()
    logger.info(f"InfluxDB ping OK (server version {version})")
    return version


def query_influx(
    client: InfluxDBClient,
    query: str,
    database: Optional[str] = None,
    retention_policy: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Run an InfluxQL query and return its raw statement results.

    Shape checks are left to the caller, which knows what it asked for.

    Args:
        client: InfluxDB client
        query: InfluxQL query
        database: Database to query (default: the client's database)
        retention_policy: Retention policy to query (default: database default)

    Returns:
        List of raw statement results, one per statement, each a dict whose
        optional "series" entry holds dicts with "name", "columns" and "values"

    Raises:
        influxdb.exceptions.InfluxDBClientError: If the server rejects the query
    """
    logger.debug(f"query: {query}")
    params = {"rp": retention_policy} if retention_policy else None
    result = client.query(query, params=params, database=database)

    # Multi-statement responses come back as a list of ResultSets
    if not isinstance(result, list):
        result = [result]
    return [r.raw for r in result]


def write_points_with_retry(
    client: InfluxDBClient,
    points: List[Dict[str, Any]],
    database: Optional[str] = None,
    retention_policy: Optional[str] = None,
    attempts: int = 2,
    wait_seconds: float = WRITE_RETRY_WAIT_SECONDS,
) -> bool:
    """Write a batch of points, retrying the whole batch on failure.

    Writes overwrite points with the same measurement, tag set and timestamp,
    so retrying a batch that partially landed is harmless. A failed write is
    not fatal: the next scheduled run finds the aggregates stale and tries
    again.

    Args:
        client: InfluxDB client
        points: Points in the client's JSON point format
        database: Database to write to (default: the client's database)
        retention_policy: Retention policy to write to
        attempts: Total number of attempts, at least 1
        wait_seconds: Pause between attempts

    Returns:
        True if the batch was written, False if every attempt failed
    """
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(wait_seconds),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )

    try:
        retrying(
            client.write_points,
            points,
            database=database,
            retention_policy=retention_policy,
        )
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error(f"failed to write to Influx after {attempts} attempt(s): {last_error}")
        return False

    logger.info(f"Wrote {len(points)} point(s) to InfluxDB")
    return True
