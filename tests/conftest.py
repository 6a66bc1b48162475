"""
Shared fixtures for the aggregator tests.

InfluxDB is never contacted: FakeInfluxClient answers the staleness lookups and
the raw sample query with canned raw results shaped like the ones
influxdb.InfluxDBClient.query returns (ResultSet objects exposing .raw).
"""

import re
from datetime import datetime, timedelta, timezone

import pytest

from wind_direction_agg import WindDirectionAggArgs

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def rfc3339(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class FakeResultSet:
    def __init__(self, raw):
        self.raw = raw


class FakeInfluxClient:
    """Stands in for influxdb.InfluxDBClient.

    Args:
        agg_times: interval -> datetime of the latest stored aggregate; intervals
            not listed have no stored aggregate
        raw_rows: list of (time, direction, speed) rows for the raw measurement,
            or None for an empty result
        columns: column names returned for the raw query
        write_error: exception raised by every write_points call
    """

    def __init__(self, agg_times=None, raw_rows=None, columns=None, write_error=None):
        self.agg_times = agg_times or {}
        self.raw_rows = raw_rows
        self.columns = columns or ["time", "wind_dir", "wind_speed"]
        self.write_error = write_error
        self.queries = []
        self.query_params = []
        self.written = []
        self.write_calls = 0
        self.closed = False

    def ping(self):
        return "1.8.10"

    def close(self):
        self.closed = True

    def query(self, query, params=None, database=None):
        self.queries.append(query)
        self.query_params.append(params)
        interval = re.search(r"now\(\)-(\w+)", query).group(1)

        if '"weather_station_agg"' in query:
            agg_time = self.agg_times.get(interval)
            if agg_time is None:
                return FakeResultSet({"statement_id": 0})
            return FakeResultSet({"statement_id": 0, "series": [{
                "name": "weather_station_agg",
                "columns": ["time", f"wind_dir_mean_{interval}"],
                "values": [[rfc3339(agg_time), 180.0]],
            }]})

        if self.raw_rows is None:
            return FakeResultSet({"statement_id": 0})
        return FakeResultSet({"statement_id": 0, "series": [{
            "name": "weather_station",
            "columns": self.columns,
            "values": [
                [rfc3339(t), *values] if isinstance(t, datetime) else [t, *values]
                for t, *values in self.raw_rows
            ],
        }]})

    def write_points(self, points, database=None, retention_policy=None):
        self.write_calls += 1
        if self.write_error is not None:
            raise self.write_error
        self.written.extend(points)
        return True


def fresh_agg_times(now=NOW, age=timedelta(seconds=10)):
    """Stored aggregate times that make every interval fresh."""
    return {
        interval: now - age
        for interval in ("6h", "3h", "1h", "30m", "15m", "5m")
    }


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def wd_args():
    return WindDirectionAggArgs(
        measurement_from="weather_station",
        measurement_to="weather_station_agg",
        wind_direction_field="wind_dir",
        wind_speed_field="wind_speed",
        query_tags={"station": "home"},
        write_tags={"aggregator": "wx-station-aggregator-influx/test", "station": "home"},
        database="wx",
    )
