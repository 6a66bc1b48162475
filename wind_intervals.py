"""Wind direction aggregation interval definitions.

This module provides a lookup table for the rolling windows that wind direction
is aggregated over, plus helper functions for querying it. Each interval carries
its window length, how old its last stored aggregate may get before it has to be
recomputed, and the standard deviation cutoffs used to pick a compass label.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Tuple


class TimestampConvention(str, Enum):
    """Where in the window an aggregate point's timestamp is placed."""
    END = "end"
    MIDPOINT = "midpoint"


@dataclass(frozen=True)
class IntervalPolicy:
    """Aggregation policy for one rolling window.

    Attributes:
        duration: Length of the window
        max_staleness: Maximum age of the last stored aggregate before recomputing
        secondary_cutoff: Max stddev (degrees) that still gets a 16-point label
        primary_cutoff: Max stddev (degrees) that still gets an 8-point label;
            anything above is reported as VAR
    """
    duration: timedelta
    max_staleness: timedelta
    secondary_cutoff: float
    primary_cutoff: float


# Ordered longest to shortest; the planner and writer both rely on this order.
# Short windows churn faster, so they go stale sooner and tolerate more spread
# before falling back to VAR.
wind_interval_lut: Mapping[str, IntervalPolicy] = MappingProxyType({
    "6h": IntervalPolicy(
        duration=timedelta(hours=6),
        max_staleness=timedelta(hours=1),
        secondary_cutoff=30,
        primary_cutoff=38,
    ),
    "3h": IntervalPolicy(
        duration=timedelta(hours=3),
        max_staleness=timedelta(minutes=40),
        secondary_cutoff=35,
        primary_cutoff=40,
    ),
    "1h": IntervalPolicy(
        duration=timedelta(hours=1),
        max_staleness=timedelta(minutes=20),
        secondary_cutoff=38,
        primary_cutoff=43,
    ),
    "30m": IntervalPolicy(
        duration=timedelta(minutes=30),
        max_staleness=timedelta(minutes=10),
        secondary_cutoff=44,
        primary_cutoff=50,
    ),
    "15m": IntervalPolicy(
        duration=timedelta(minutes=15),
        max_staleness=timedelta(minutes=5),
        secondary_cutoff=50,
        primary_cutoff=54,
    ),
    "5m": IntervalPolicy(
        duration=timedelta(minutes=5),
        max_staleness=timedelta(minutes=2, seconds=30),
        secondary_cutoff=56,
        primary_cutoff=60,
    ),
})


def get_interval_policy(interval: str) -> IntervalPolicy:
    """Get the policy for an interval.

    Args:
        interval: Interval identifier, e.g. "15m"

    Returns:
        The interval's policy

    Raises:
        KeyError: If the interval is not in the lookup table. Callers only ever
            pass identifiers taken from this module, so this indicates a bug.
    """
    try:
        return wind_interval_lut[interval]
    except KeyError:
        raise KeyError(f"Unknown interval: {interval}") from None


def list_all_intervals() -> List[str]:
    """List all intervals, longest first."""
    return list(wind_interval_lut.keys())


def interval_duration(interval: str) -> timedelta:
    return get_interval_policy(interval).duration


def max_staleness(interval: str) -> timedelta:
    return get_interval_policy(interval).max_staleness


def stddev_thresholds(interval: str) -> Tuple[float, float]:
    """Get the (secondary, primary) stddev cutoffs for an interval."""
    policy = get_interval_policy(interval)
    return policy.secondary_cutoff, policy.primary_cutoff


def reference_offset(interval: str, convention: TimestampConvention) -> timedelta:
    """Get how far before the window end an aggregate's timestamp sits.

    Both the staleness check and the point writer must use this, so that a point
    written under one convention is read back under the same one.

    Args:
        interval: Interval identifier
        convention: Timestamp placement convention

    Returns:
        Zero for END, half the window for MIDPOINT
    """
    duration = interval_duration(interval)
    if TimestampConvention(convention) is TimestampConvention.MIDPOINT:
        return duration / 2
    return timedelta(0)


def widest_interval(intervals: List[str]) -> str:
    """Get the interval with the longest window from a list of intervals."""
    if not intervals:
        raise ValueError("No intervals provided")
    return max(intervals, key=interval_duration)
