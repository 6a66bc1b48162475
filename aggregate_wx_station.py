#!/usr/bin/env python3
"""Aggregate weather station readings stored in InfluxDB.

This script reads raw weather station measurements from InfluxDB, computes
rolling aggregates over several windows (currently wind direction only), and
writes them back to a "<measurement>_agg" measurement. It is meant to be run
every minute or two from cron or a systemd timer; each run only recomputes the
windows whose stored aggregate has gone stale.

Configuration is handled through environment variables (optionally loaded from
a .env file given with --env):
    INFLUX_SERVER: InfluxDB server URL, e.g. http://localhost:8086
    INFLUX_DB: Database to read from and write to
    INFLUX_RP: Retention policy (optional)
    INFLUX_USER / INFLUX_PASSWORD: Credentials (optional)

Example usage:
    # Speed-weighted wind direction for one station
    python aggregate_wx_station.py --tags station=home \\
        --wind-dir-field wind_dir --wind-speed-field wind_speed

    # Unweighted, with a .env file and debug logging
    python aggregate_wx_station.py --env /etc/wx-agg.env --verbose \\
        --wind-dir-field wind_dir --unweighted
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from influxdb.exceptions import InfluxDBClientError, InfluxDBServerError
from requests.exceptions import RequestException

from config import PRODUCT_NAME, VERSION, InfluxConfig, aggregator_id
from utils.influx_utils import (
    get_influx_client,
    influx_healthcheck,
    write_points_with_retry,
)
from utils.logging import get_logger, setup_run_logging
from utils.tags import merge_write_tags, parse_tags
from wind_direction_agg import (
    AggregationError,
    WindDirectionAggArgs,
    run_wind_direction_agg,
)
from wind_intervals import TimestampConvention

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Aggregate weather station readings stored in InfluxDB"
    )
    parser.add_argument(
        "--measurement",
        default="weather_station",
        help="Name of the measurement to read (default: weather_station)"
    )
    parser.add_argument(
        "--tags",
        default="",
        help="Comma-separated list of tag=value pairs to filter by and include in result measurements"
    )
    parser.add_argument(
        "--wind-dir-field",
        default="",
        help="Name of the field to use for wind direction (in degrees); "
             "if not set, wind direction will not be aggregated"
    )
    parser.add_argument(
        "--wind-speed-field",
        default="",
        help="Name of the field to use for wind speed; required iff --wind-dir-field is given, "
             "unless --unweighted is set"
    )
    parser.add_argument(
        "--unweighted",
        action="store_true",
        help="Aggregate wind direction without weighting by wind speed"
    )
    parser.add_argument(
        "--timestamp-convention",
        choices=[c.value for c in TimestampConvention],
        default=TimestampConvention.END.value,
        help="Stamp aggregates at the end or the midpoint of their window (default: end)"
    )
    parser.add_argument(
        "--env",
        default="",
        help="Path to .env file to load environment variables from"
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also log to this rotating log file"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging, including every query issued"
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit"
    )

    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    """Check flag combinations that argparse can't express.

    Raises:
        ValueError: If the flags are inconsistent
    """
    if args.wind_dir_field:
        if args.unweighted and args.wind_speed_field:
            raise ValueError("--wind-speed-field and --unweighted are mutually exclusive")
        if not args.unweighted and not args.wind_speed_field:
            raise ValueError("--wind-speed-field is required when --wind-dir-field is set")
    elif args.wind_speed_field or args.unweighted:
        raise ValueError("--wind-speed-field and --unweighted require --wind-dir-field")


def main(argv: Optional[List[str]] = None) -> int:
    """Main aggregation function.

    Returns:
        Process exit status
    """
    args = parse_args(argv)

    if args.version:
        print(f"{PRODUCT_NAME} version {VERSION}")
        return 0

    if args.env:
        env_path = Path(args.env)
        if not env_path.is_file():
            print(f"Failed to load '{args.env}': no such file", file=sys.stderr)
            return 1
        # variables already set in the environment win over the file
        load_dotenv(env_path, override=False)

    setup_run_logging(verbose=args.verbose, log_file=args.log_file)

    # Configuration errors are reported before any I/O
    try:
        query_tags = parse_tags(args.tags)
        validate_args(args)
        influx_cfg = InfluxConfig.from_env()
        wd_args = None
        if args.wind_dir_field:
            wd_args = WindDirectionAggArgs(
                measurement_from=args.measurement,
                measurement_to=f"{args.measurement}_agg",
                wind_direction_field=args.wind_dir_field,
                wind_speed_field=args.wind_speed_field or None,
                query_tags=query_tags,
                write_tags=merge_write_tags(query_tags, aggregator_id()),
                database=influx_cfg.database,
                retention_policy=influx_cfg.retention_policy,
                timestamp_convention=args.timestamp_convention,
            )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    read_client = get_influx_client(influx_cfg, influx_cfg.read_timeout)
    write_client = get_influx_client(influx_cfg, influx_cfg.write_timeout)

    try:
        try:
            influx_healthcheck(read_client)
        except (RequestException, InfluxDBClientError, InfluxDBServerError) as e:
            logger.error(f"InfluxDB ping failed: {e}")
            return 1

        points = []
        if wd_args is not None:
            try:
                points.extend(run_wind_direction_agg(read_client, wd_args))
            except (AggregationError, RequestException, InfluxDBClientError, InfluxDBServerError) as e:
                logger.error(f"Wind direction aggregation failed: {e}")
                return 1

        if not points:
            logger.info("no data to write")
            return 0

        # A failed write is logged but not fatal; the next run retries stale windows
        write_points_with_retry(
            write_client,
            points,
            database=influx_cfg.database,
            retention_policy=influx_cfg.retention_policy,
            attempts=influx_cfg.write_retries,
        )
        return 0
    finally:
        read_client.close()
        write_client.close()


if __name__ == "__main__":
    sys.exit(main())
