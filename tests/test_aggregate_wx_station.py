"""Tests for the aggregator command line entry point."""

from datetime import datetime, timedelta, timezone

import pytest
from influxdb.exceptions import InfluxDBServerError
from requests.exceptions import ConnectionError as RequestsConnectionError

import aggregate_wx_station
from tests.conftest import FakeInfluxClient

WIND_ARGS = ["--tags", "station=home", "--wind-dir-field", "wind_dir", "--wind-speed-field", "wind_speed"]


def _recent_rows():
    now = datetime.now(timezone.utc)
    return [
        (now - timedelta(minutes=2), 0.0, 5.0),
        (now - timedelta(minutes=1), 10.0, 5.0),
    ]


@pytest.fixture(autouse=True)
def influx_env(monkeypatch):
    monkeypatch.setenv("INFLUX_SERVER", "http://localhost:8086")
    monkeypatch.setenv("INFLUX_DB", "wx")
    monkeypatch.setenv("INFLUX_WRITE_RETRIES", "2")
    for name in ("INFLUX_RP", "INFLUX_USER", "INFLUX_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    # logging setup would replace pytest's handlers
    monkeypatch.setattr(aggregate_wx_station, "setup_run_logging", lambda **kwargs: None)


@pytest.fixture
def fake_client(monkeypatch):
    client = FakeInfluxClient(raw_rows=_recent_rows())
    monkeypatch.setattr(aggregate_wx_station, "get_influx_client", lambda cfg, timeout: client)
    return client


class TestMain:

    def test_version(self, capsys):
        assert aggregate_wx_station.main(["--version"]) == 0
        assert "wx-station-aggregator-influx version" in capsys.readouterr().out

    def test_writes_aggregates(self, fake_client):
        assert aggregate_wx_station.main(WIND_ARGS) == 0

        assert fake_client.write_calls == 1
        assert len(fake_client.written) == 6
        point = fake_client.written[0]
        assert point["measurement"] == "weather_station_agg"
        assert point["tags"]["station"] == "home"
        assert point["tags"]["aggregator"].startswith("wx-station-aggregator-influx/")
        assert fake_client.closed

    def test_unweighted(self, monkeypatch):
        now = datetime.now(timezone.utc)
        client = FakeInfluxClient(
            raw_rows=[(now - timedelta(minutes=1), 90.0)],
            columns=["time", "wind_dir"],
        )
        monkeypatch.setattr(aggregate_wx_station, "get_influx_client", lambda cfg, timeout: client)

        assert aggregate_wx_station.main(["--wind-dir-field", "wind_dir", "--unweighted"]) == 0
        assert client.written[-1]["fields"]["wind_dir_mean_intercardinal_5m"] == "E"

    def test_no_wind_field_writes_nothing(self, fake_client):
        assert aggregate_wx_station.main([]) == 0
        assert fake_client.write_calls == 0

    def test_write_failure_is_not_fatal(self, monkeypatch):
        client = FakeInfluxClient(raw_rows=_recent_rows(), write_error=InfluxDBServerError("down"))
        monkeypatch.setattr(aggregate_wx_station, "get_influx_client", lambda cfg, timeout: client)

        assert aggregate_wx_station.main(WIND_ARGS) == 0
        assert client.write_calls == 2

    def test_failed_write_is_retried_next_run(self, monkeypatch):
        client = FakeInfluxClient(raw_rows=_recent_rows(), write_error=RequestsConnectionError("down"))
        monkeypatch.setenv("INFLUX_WRITE_RETRIES", "1")
        monkeypatch.setattr(aggregate_wx_station, "get_influx_client", lambda cfg, timeout: client)

        assert aggregate_wx_station.main(WIND_ARGS) == 0
        assert aggregate_wx_station.main(WIND_ARGS) == 0
        # nothing was stored, so every interval is still due on the second run
        assert client.write_calls == 2

    @pytest.mark.parametrize("argv", [
        ["--tags", "station"],
        ["--wind-dir-field", "wind_dir"],
        ["--wind-dir-field", "wind_dir", "--wind-speed-field", "wind_speed", "--unweighted"],
        ["--wind-speed-field", "wind_speed"],
    ])
    def test_configuration_errors_exit_before_io(self, monkeypatch, argv):
        def no_client(cfg, timeout):
            raise AssertionError("no client should be created")
        monkeypatch.setattr(aggregate_wx_station, "get_influx_client", no_client)

        assert aggregate_wx_station.main(argv) == 1

    def test_missing_environment(self, monkeypatch, fake_client):
        monkeypatch.delenv("INFLUX_SERVER")
        assert aggregate_wx_station.main(WIND_ARGS) == 1
        assert fake_client.queries == []

    def test_bad_server_port_exits_before_io(self, monkeypatch):
        def no_client(cfg, timeout):
            raise AssertionError("no client should be created")
        monkeypatch.setattr(aggregate_wx_station, "get_influx_client", no_client)
        monkeypatch.setenv("INFLUX_SERVER", "http://localhost:abc")

        assert aggregate_wx_station.main(WIND_ARGS) == 1

    def test_missing_env_file(self, tmp_path):
        assert aggregate_wx_station.main(["--env", str(tmp_path / "missing.env")]) == 1

    def test_env_file_is_loaded(self, monkeypatch, tmp_path, fake_client):
        monkeypatch.delenv("INFLUX_DB")
        env_file = tmp_path / "wx.env"
        env_file.write_text("INFLUX_DB=from_file\n")

        assert aggregate_wx_station.main(["--env", str(env_file)] + WIND_ARGS) == 0
        assert fake_client.write_calls == 1

    def test_ping_failure_is_fatal(self, monkeypatch, fake_client):
        def unreachable():
            raise RequestsConnectionError("refused")
        monkeypatch.setattr(fake_client, "ping", unreachable)

        assert aggregate_wx_station.main(WIND_ARGS) == 1
        assert fake_client.queries == []

    def test_malformed_data_is_fatal(self, monkeypatch):
        now = datetime.now(timezone.utc)
        client = FakeInfluxClient(raw_rows=[(now - timedelta(minutes=1), "north", 5.0)])
        monkeypatch.setattr(aggregate_wx_station, "get_influx_client", lambda cfg, timeout: client)

        assert aggregate_wx_station.main(WIND_ARGS) == 1
        assert client.write_calls == 0


class TestValidateArgs:

    def test_weighted(self):
        args = aggregate_wx_station.parse_args(WIND_ARGS)
        aggregate_wx_station.validate_args(args)

    def test_defaults(self):
        args = aggregate_wx_station.parse_args([])
        assert args.measurement == "weather_station"
        assert args.timestamp_convention == "end"
