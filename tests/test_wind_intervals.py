"""Tests for the interval policy lookup table."""

from datetime import timedelta

import pytest

from wind_intervals import (
    TimestampConvention,
    get_interval_policy,
    interval_duration,
    list_all_intervals,
    max_staleness,
    reference_offset,
    stddev_thresholds,
    widest_interval,
    wind_interval_lut,
)


class TestIntervalTable:

    def test_intervals_are_longest_first(self):
        assert list_all_intervals() == ["6h", "3h", "1h", "30m", "15m", "5m"]
        durations = [interval_duration(i) for i in list_all_intervals()]
        assert durations == sorted(durations, reverse=True)

    @pytest.mark.parametrize("interval,duration,staleness,cutoffs", [
        ("6h", timedelta(hours=6), timedelta(hours=1), (30, 38)),
        ("3h", timedelta(hours=3), timedelta(minutes=40), (35, 40)),
        ("1h", timedelta(hours=1), timedelta(minutes=20), (38, 43)),
        ("30m", timedelta(minutes=30), timedelta(minutes=10), (44, 50)),
        ("15m", timedelta(minutes=15), timedelta(minutes=5), (50, 54)),
        ("5m", timedelta(minutes=5), timedelta(minutes=2, seconds=30), (56, 60)),
    ])
    def test_policy_values(self, interval, duration, staleness, cutoffs):
        assert interval_duration(interval) == duration
        assert max_staleness(interval) == staleness
        assert stddev_thresholds(interval) == cutoffs

    def test_secondary_cutoff_below_primary(self):
        for interval in list_all_intervals():
            secondary, primary = stddev_thresholds(interval)
            assert secondary < primary

    def test_unknown_interval_fails_fast(self):
        with pytest.raises(KeyError, match="Unknown interval: 2h"):
            get_interval_policy("2h")

    def test_table_is_immutable(self):
        with pytest.raises(TypeError):
            wind_interval_lut["2h"] = wind_interval_lut["1h"]


class TestReferenceOffset:

    def test_end_convention_has_no_offset(self):
        assert reference_offset("1h", TimestampConvention.END) == timedelta(0)

    def test_midpoint_convention_is_half_window(self):
        assert reference_offset("1h", TimestampConvention.MIDPOINT) == timedelta(minutes=30)
        assert reference_offset("5m", "midpoint") == timedelta(minutes=2, seconds=30)


class TestWidestInterval:

    def test_picks_longest(self):
        assert widest_interval(["5m", "1h", "15m"]) == "1h"

    def test_empty_list_rejected(self):
        with pytest.raises(ValueError):
            widest_interval([])
