"""Rolling wind direction aggregation.

Summarizes raw wind direction readings (optionally weighted by wind speed) into
circular mean, circular standard deviation and a compass label over each of the
rolling windows in wind_intervals. One run:

1. asks InfluxDB for the latest stored aggregate of every window and keeps the
   windows whose aggregate is missing or stale,
2. fetches the raw readings for the widest of those windows in one query,
3. splits the readings into per-window buckets,
4. computes the circular statistics and compass label for each non-empty bucket,
5. builds the points to write.

Writing is left to the caller so that several aggregations can share one batch.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd
import xarray as xr

from utils.circular_funcs import (
    DIRECTION_STR_PRECISION_1,
    DIRECTION_STR_PRECISION_2,
    calc_weighted_circular_mean,
    calc_weighted_circular_stddev,
    clamp_degrees,
    direction_str,
)
from utils.influx_utils import query_influx
from utils.logging import get_logger
from utils.tags import partial_where_clause_for_tags, quote_identifier
from wind_intervals import (
    TimestampConvention,
    interval_duration,
    list_all_intervals,
    max_staleness,
    reference_offset,
    stddev_thresholds,
    widest_interval,
)

logger = get_logger(__name__)

VARIABLE_LABEL = "VAR"


class AggregationError(Exception):
    """Base class for errors that abort an aggregation run."""


class QueryShapeError(AggregationError):
    """InfluxDB returned results shaped differently than the query asked for."""


class SampleParseError(AggregationError):
    """A returned row could not be parsed into a sample."""


@dataclass(frozen=True)
class WindDirectionAggArgs:
    """Inputs to one wind direction aggregation run.

    These are validated once here; the stages below trust them.

    Attributes:
        measurement_from: Measurement holding the raw readings
        measurement_to: Measurement the aggregates are written to and read back from
        wind_direction_field: Field holding wind direction in degrees
        query_tags: Tags the raw readings and stored aggregates are filtered by
        write_tags: Tags stamped on written aggregates; must include query_tags
        wind_speed_field: Field used to weight directions; None for equal weighting
        database: Database to query (default: the client's database)
        retention_policy: Retention policy to query (default: database default)
        timestamp_convention: Where aggregate timestamps sit within their window
    """
    measurement_from: str
    measurement_to: str
    wind_direction_field: str
    query_tags: Mapping[str, str] = field(default_factory=dict)
    write_tags: Mapping[str, str] = field(default_factory=dict)
    wind_speed_field: Optional[str] = None
    database: Optional[str] = None
    retention_policy: Optional[str] = None
    timestamp_convention: TimestampConvention = TimestampConvention.END

    def __post_init__(self) -> None:
        """Validate arguments after initialization."""
        for name in ("measurement_from", "measurement_to", "wind_direction_field"):
            if not getattr(self, name):
                raise ValueError(f"{name} must not be empty")
        if self.wind_speed_field is not None and not self.wind_speed_field:
            raise ValueError("wind_speed_field must be None or a field name")
        if self.wind_speed_field == self.wind_direction_field:
            raise ValueError("wind_speed_field must differ from wind_direction_field")

        missing = {
            k: v for k, v in self.query_tags.items() if self.write_tags.get(k) != v
        }
        if missing:
            raise ValueError(f"write_tags must include every query tag; missing {missing}")

        # accept "end" / "midpoint" as well as the enum
        object.__setattr__(
            self, "timestamp_convention", TimestampConvention(self.timestamp_convention)
        )


@dataclass(frozen=True)
class AggregateResult:
    """Circular statistics for one window."""
    interval: str
    mean: float
    stddev: float
    label: str
    sample_count: int


def mean_field_name(args: WindDirectionAggArgs, interval: str) -> str:
    return f"{args.wind_direction_field}_mean_{interval}"


def stddev_field_name(args: WindDirectionAggArgs, interval: str) -> str:
    return f"{args.wind_direction_field}_stddev_{interval}"


def label_field_name(args: WindDirectionAggArgs, interval: str) -> str:
    return f"{args.wind_direction_field}_mean_intercardinal_{interval}"


def _single_series(statement_results: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Get the one series of a single-statement query, or None if it matched nothing.

    Raises:
        QueryShapeError: If there is more than one statement result or series
    """
    if not statement_results:
        return None
    if len(statement_results) > 1:
        raise QueryShapeError(f"expected 1 result, got {len(statement_results)}")

    series = statement_results[0].get("series") or []
    if not series:
        return None
    if len(series) > 1:
        raise QueryShapeError(f"expected 1 series, got {len(series)}")
    return series[0]


def _parse_time(value: Any) -> pd.Timestamp:
    """Parse an RFC3339 time column value into a UTC timestamp."""
    if not isinstance(value, str):
        raise SampleParseError(f"failed to parse time: expected RFC3339 string, got {value!r}")
    try:
        ts = pd.Timestamp(value)
    except ValueError as e:
        raise SampleParseError(f"failed to parse time {value!r}: {e}") from e
    if pd.isna(ts):
        raise SampleParseError(f"failed to parse time {value!r}")

    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def _parse_number(value: Any, field_name: str) -> float:
    """Parse a numeric field value, rejecting nulls, strings and non-finite values."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SampleParseError(f"failed to parse {field_name}: expected a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise SampleParseError(f"failed to parse {field_name}: {value!r} is not finite")
    return number


def _to_naive_utc(ts: datetime) -> pd.Timestamp:
    """Convert a datetime to a tz-naive UTC timestamp, matching the sample index."""
    ts = pd.Timestamp(ts)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def plan_intervals(
    client,
    args: WindDirectionAggArgs,
    now: datetime,
) -> List[str]:
    """Figure out which intervals need a fresh aggregate.

    For each interval, looks up the most recent stored aggregate within the
    interval's window. The interval is due if there is none, or if the time
    since the aggregate's reference point exceeds the interval's max staleness.

    Args:
        client: InfluxDB client
        args: Aggregation arguments
        now: Current time (tz-aware)

    Returns:
        Due intervals, longest first

    Raises:
        QueryShapeError: If a query returned an unexpected shape
        SampleParseError: If a stored timestamp could not be parsed
    """
    tags_where = partial_where_clause_for_tags(args.query_tags)

    intervals_todo = []
    for interval in list_all_intervals():
        q = (
            f"SELECT time, {quote_identifier(mean_field_name(args, interval))} "
            f"FROM {quote_identifier(args.measurement_to)} "
            f"WHERE time >= now()-{interval}{tags_where} "
            f"ORDER BY time DESC LIMIT 1"
        )
        series = _single_series(
            query_influx(client, q, args.database, args.retention_policy)
        )

        if series is None:
            logger.debug(f"{interval}: no prior aggregate found")
            intervals_todo.append(interval)
            continue

        columns = series.get("columns") or []
        if not columns or columns[0] != "time":
            first = columns[0] if columns else None
            raise QueryShapeError(f"expected first column to be 'time', got {first!r}")
        values = series.get("values") or []
        if not values:
            raise QueryShapeError(f"expected 1 row in series for {interval}, got none")
        if not values[0]:
            raise QueryShapeError(f"expected a time value in the row for {interval}, got an empty row")

        last_time = _parse_time(values[0][0])
        reference = last_time + reference_offset(interval, args.timestamp_convention)
        elapsed = now - reference
        if elapsed > max_staleness(interval):
            logger.debug(f"{interval}: last aggregate is stale ({elapsed} old)")
            intervals_todo.append(interval)
        else:
            logger.debug(f"{interval}: last aggregate is fresh ({elapsed} old)")

    return intervals_todo


def fetch_samples(
    client,
    args: WindDirectionAggArgs,
    intervals: List[str],
) -> Optional[xr.Dataset]:
    """Fetch the raw readings needed to aggregate the given intervals.

    Issues one query covering the widest interval, oldest reading first.

    Args:
        client: InfluxDB client
        args: Aggregation arguments
        intervals: Due intervals (non-empty)

    Returns:
        Dataset along "Time" with "angle" (clamped to [0, 360)) and, when a wind
        speed field is configured, "weight". None if there were no readings.

    Raises:
        QueryShapeError: If the result's shape or columns are unexpected
        SampleParseError: If any row fails to parse
    """
    fields = [args.wind_direction_field]
    if args.wind_speed_field:
        fields.append(args.wind_speed_field)

    q = (
        f"SELECT time, {', '.join(quote_identifier(f) for f in fields)} "
        f"FROM {quote_identifier(args.measurement_from)} "
        f"WHERE time >= now()-{widest_interval(intervals)}"
        f"{partial_where_clause_for_tags(args.query_tags)} "
        f"ORDER BY time ASC"
    )
    series = _single_series(
        query_influx(client, q, args.database, args.retention_policy)
    )
    if series is None or not series.get("values"):
        return None

    expected_columns = ["time"] + fields
    columns = list(series.get("columns") or [])
    if columns != expected_columns:
        raise QueryShapeError(f"expected columns {expected_columns}, got {columns}")

    times, angles, weights = [], [], []
    for row in series["values"]:
        # this must reject rather than skip: one bad row means the batch can't be trusted
        if len(row) != len(expected_columns):
            raise QueryShapeError(f"expected {len(expected_columns)} values per row, got {len(row)}")
        times.append(_parse_time(row[0]))
        angles.append(_parse_number(row[1], args.wind_direction_field))
        if args.wind_speed_field:
            weight = _parse_number(row[2], args.wind_speed_field)
            if weight < 0:
                raise SampleParseError(f"{args.wind_speed_field} must be non-negative, got {weight}")
            weights.append(weight)

    time_index = pd.DatetimeIndex(times).tz_convert("UTC").tz_localize(None)
    data_vars = {"angle": ("Time", clamp_degrees(np.asarray(angles, dtype=float)))}
    if args.wind_speed_field:
        data_vars["weight"] = ("Time", np.asarray(weights, dtype=float))

    samples = xr.Dataset(data_vars, coords={"Time": time_index})
    logger.info(f"Fetched {samples.sizes['Time']} samples covering {widest_interval(intervals)}")
    return samples


def bucket_samples(
    samples: xr.Dataset,
    intervals: List[str],
    now: datetime,
) -> Dict[str, xr.Dataset]:
    """Split samples into one bucket per interval by age.

    A sample lands in an interval's bucket if it is no older than the interval's
    duration relative to now. Buckets nest and may be empty.

    Args:
        samples: Dataset along "Time" from fetch_samples
        intervals: Due intervals
        now: Current time

    Returns:
        Dictionary of interval to the samples within it, in the given order
    """
    now_utc = _to_naive_utc(now).to_datetime64()
    age = now_utc - samples["Time"].values

    buckets = {}
    for interval in intervals:
        max_age = pd.Timedelta(interval_duration(interval)).to_timedelta64()
        buckets[interval] = samples.isel(Time=np.flatnonzero(age <= max_age))
    return buckets


def classify_direction(mean: float, stddev: float, interval: str) -> str:
    """Pick a compass label whose precision matches how steady the wind was.

    Args:
        mean: Circular mean direction in degrees
        stddev: Circular standard deviation in degrees
        interval: Interval the statistics cover

    Returns:
        16-point label at or below the secondary cutoff, 8-point label at or
        below the primary cutoff, otherwise "VAR"
    """
    secondary_cutoff, primary_cutoff = stddev_thresholds(interval)
    if stddev > primary_cutoff:
        return VARIABLE_LABEL
    if stddev > secondary_cutoff:
        return direction_str(mean, DIRECTION_STR_PRECISION_1)
    return direction_str(mean, DIRECTION_STR_PRECISION_2)


def aggregate_buckets(buckets: Mapping[str, xr.Dataset]) -> List[AggregateResult]:
    """Compute circular statistics for every non-empty bucket.

    Args:
        buckets: Output of bucket_samples

    Returns:
        One result per non-empty bucket, in bucket order
    """
    results = []
    for interval, bucket in buckets.items():
        sample_count = bucket.sizes.get("Time", 0)
        if sample_count == 0:
            logger.info(f"{interval}: no samples in window, skipping")
            continue

        weights = bucket["weight"] if "weight" in bucket else None
        mean = float(calc_weighted_circular_mean(bucket["angle"], weights))
        stddev = float(calc_weighted_circular_stddev(bucket["angle"], weights))
        label = classify_direction(mean, stddev, interval)

        logger.info(
            f"{interval}: mean {mean:.1f}, stddev {stddev:.1f}, {label} "
            f"({sample_count} samples)"
        )
        results.append(AggregateResult(
            interval=interval,
            mean=mean,
            stddev=stddev,
            label=label,
            sample_count=sample_count,
        ))
    return results


def build_points(
    args: WindDirectionAggArgs,
    results: List[AggregateResult],
    now: datetime,
) -> List[Dict[str, Any]]:
    """Build one InfluxDB point per aggregate result.

    Each point is stamped at the interval's reference time, which plan_intervals
    reads back with the same convention. Under the END convention every point
    shares one timestamp and tag set, so InfluxDB stores them as a single row.

    Args:
        args: Aggregation arguments
        results: Output of aggregate_buckets
        now: Current time

    Returns:
        Points in the influxdb client's JSON point format
    """
    points = []
    for result in results:
        timestamp = now - reference_offset(result.interval, args.timestamp_convention)
        points.append({
            "measurement": args.measurement_to,
            "tags": dict(args.write_tags),
            "time": timestamp,
            "fields": {
                mean_field_name(args, result.interval): result.mean,
                stddev_field_name(args, result.interval): result.stddev,
                label_field_name(args, result.interval): result.label,
            },
        })
    return points


def run_wind_direction_agg(
    client,
    args: WindDirectionAggArgs,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Run one wind direction aggregation.

    Args:
        client: InfluxDB client used for reads
        args: Aggregation arguments
        now: Current time (default: now, UTC); naive times are taken as UTC

    Returns:
        Points to write; empty if nothing was due or there was no data

    Raises:
        AggregationError: If a query result was malformed or a row failed to parse
        influxdb.exceptions.InfluxDBClientError: If a query was rejected
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    intervals_todo = plan_intervals(client, args, now)
    if not intervals_todo:
        logger.info("no intervals to calculate")
        return []
    logger.info(f"Intervals to calculate: {', '.join(intervals_todo)}")

    samples = fetch_samples(client, args, intervals_todo)
    if samples is None:
        logger.info("no data to aggregate")
        return []

    buckets = bucket_samples(samples, intervals_todo, now)
    results = aggregate_buckets(buckets)
    return build_points(args, results, now)
