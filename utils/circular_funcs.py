"""Module to contain circular (angular) statistics for wind direction.

Wind direction wraps at 360 degrees, so ordinary means and standard deviations
are wrong near north: the arithmetic mean of 350 and 10 is 180. Everything here
works on unit vectors instead, reducing along the time dimension the same way
the rest of the package does with xarray.
"""

from typing import Optional, Union

import numpy as np
import xarray as xr

DIRECTION_STR_PRECISION_0 = 0  # N, E, S, W
DIRECTION_STR_PRECISION_1 = 1  # 8 points: N, NE, E, ...
DIRECTION_STR_PRECISION_2 = 2  # 16 points: N, NNE, NE, ENE, ...

_direction_labels = {
    DIRECTION_STR_PRECISION_0: ["N", "E", "S", "W"],
    DIRECTION_STR_PRECISION_1: ["N", "NE", "E", "SE", "S", "SW", "W", "NW"],
    DIRECTION_STR_PRECISION_2: [
        "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
        "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
    ],
}

Degrees = Union[float, np.ndarray, xr.DataArray]


def clamp_degrees(x: Degrees) -> Degrees:
    """Range-reduce angles in degrees into [0, 360).

    Works on scalars, numpy arrays and DataArrays. Clamping an already clamped
    value returns it unchanged.

    Args:
        x: Angle(s) in degrees, any real value

    Returns:
        Angle(s) in [0, 360), same container type as the input
    """
    clamped = np.mod(x, 360.0)
    # np.mod can round tiny negative inputs up to exactly 360.0
    if isinstance(clamped, xr.DataArray):
        return clamped.where(clamped < 360.0, 0.0)
    if np.ndim(clamped) == 0:
        return 0.0 if clamped >= 360.0 else float(clamped)
    return np.where(clamped < 360.0, clamped, 0.0)


def _mean_components(
    angles: xr.DataArray,
    weights: Optional[xr.DataArray] = None,
    dim: str = "Time",
):
    """Calculate the (weighted) mean sine and cosine components along dim."""
    x_rad = np.deg2rad(angles)

    if weights is None:
        sin_component = np.sin(x_rad).mean(dim=dim)
        cos_component = np.cos(x_rad).mean(dim=dim)
    else:
        # dead calm (every weight zero) falls back to equal weighting
        weights = weights.where(weights.sum(dim=dim) > 0, 1.0)
        sin_component = np.sin(x_rad).weighted(weights).mean(dim=dim)
        cos_component = np.cos(x_rad).weighted(weights).mean(dim=dim)

    return sin_component, cos_component


def calc_weighted_circular_mean(
    angles: xr.DataArray,
    weights: Optional[xr.DataArray] = None,
    dim: str = "Time",
) -> xr.DataArray:
    """Calculate circular mean of wind direction along the time dimension.

    Each observation is treated as a unit vector scaled by its weight (usually
    wind speed, so gusts count for more than near-calm readings). The mean
    direction is the direction of the summed vector.

    Args:
        angles: xarray.DataArray of wind direction in degrees
        weights: Optional non-negative weights aligned with angles; equal
            weighting when omitted
        dim: Dimension to reduce along

    Returns:
        xarray.DataArray of circular mean wind direction in [0, 360)
    """
    sin_component, cos_component = _mean_components(angles, weights, dim)

    result = np.rad2deg(np.arctan2(sin_component, cos_component))

    return clamp_degrees(result)


def calc_weighted_circular_stddev(
    angles: xr.DataArray,
    weights: Optional[xr.DataArray] = None,
    dim: str = "Time",
) -> xr.DataArray:
    """Calculate circular standard deviation of wind direction in degrees.

    Uses sqrt(-2 ln R), where R is the length of the (weighted) mean resultant
    vector. R of 1 (all readings identical) gives 0; R near 0 (readings spread
    evenly around the compass) grows without bound.

    Args:
        angles: xarray.DataArray of wind direction in degrees
        weights: Optional non-negative weights aligned with angles
        dim: Dimension to reduce along

    Returns:
        xarray.DataArray of circular standard deviation in degrees
    """
    sin_component, cos_component = _mean_components(angles, weights, dim)

    # R is clipped so perfectly opposed readings give a large finite value
    # rather than inf, and float error can't push it past 1
    resultant = np.hypot(sin_component, cos_component).clip(
        min=np.finfo(float).tiny, max=1.0
    )

    return np.rad2deg(np.sqrt(-2.0 * np.log(resultant)))


def direction_str(deg: float, precision: int) -> str:
    """Format a direction as a compass point.

    Args:
        deg: Direction in degrees
        precision: One of DIRECTION_STR_PRECISION_0 (4 points),
            DIRECTION_STR_PRECISION_1 (8 points) or DIRECTION_STR_PRECISION_2
            (16 points)

    Returns:
        Compass point label, e.g. "NNE"

    Raises:
        ValueError: If precision is not supported
    """
    if precision not in _direction_labels:
        raise ValueError(f"Unsupported direction precision: {precision}")
    labels = _direction_labels[precision]

    sector = 360.0 / len(labels)
    index = int((clamp_degrees(float(deg)) + sector / 2) // sector) % len(labels)
    return labels[index]
