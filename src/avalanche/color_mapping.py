"""
Color mapping functions for flow height visualization.

Flow heights are colored by piecewise-linear interpolation between ordered
color stops. The scalar law (`color_for`) and its vectorized form
(`colors_for`) produce identical channel values.
"""

import logging
import math
from typing import Iterable, List, Sequence

import matplotlib
import numpy as np
from matplotlib.colors import LinearSegmentedColormap, to_rgba

from src.avalanche.models import ColorStop, RGBAColor

logger = logging.getLogger(__name__)


# =============================================================================
# Default Color Stops
# =============================================================================

# Blue-gray for thin flow through greens and yellows to dark red for deep flow
COLOR_STOPS: List[ColorStop] = [
    ColorStop(0.01, (74, 144, 194, 220)),  # Blue-gray
    ColorStop(0.2, (139, 196, 234, 230)),  # Light blue
    ColorStop(0.5, (180, 220, 180, 240)),  # Light green
    ColorStop(0.8, (240, 230, 140, 245)),  # Light yellow
    ColorStop(1.0, (255, 165, 80, 250)),  # Orange
    ColorStop(1.5, (255, 107, 107, 255)),  # Light red
    ColorStop(2.0, (200, 50, 50, 255)),  # Dark red - high flow
]


def _round_half_up(x):
    return math.floor(x + 0.5)


def color_for(value: float, stops: Sequence[ColorStop] = COLOR_STOPS) -> RGBAColor:
    """
    Get the interpolated color for a flow height value.

    Values at or below the first stop get the first color, values at or above
    the last stop get the last color. In between, each channel is linearly
    interpolated between the bracketing stops and rounded half-up.

    Args:
        value: Flow height
        stops: Color stops, strictly increasing by value (default: COLOR_STOPS)

    Returns:
        (r, g, b, a) tuple of ints in 0-255

    Raises:
        ValueError: If stops is empty
    """
    if not stops:
        raise ValueError("Color stop list must contain at least one stop")

    first, last = stops[0], stops[-1]
    if value <= first.value:
        return tuple(first.color)
    if value >= last.value:
        return tuple(last.color)

    for i in range(1, len(stops)):
        curr = stops[i]
        if value <= curr.value:
            prev = stops[i - 1]
            t = (value - prev.value) / (curr.value - prev.value)
            return tuple(
                int(_round_half_up(p + t * (c - p))) for p, c in zip(prev.color, curr.color)
            )

    # NaN compares false everywhere
    return tuple(last.color)


def colors_for(values, stops: Sequence[ColorStop] = COLOR_STOPS) -> np.ndarray:
    """
    Vectorized `color_for` over an array of flow heights.

    Args:
        values: Array-like of flow heights (any shape, flattened)
        stops: Color stops, strictly increasing by value

    Returns:
        uint8 array of shape (N, 4)
    """
    if not stops:
        raise ValueError("Color stop list must contain at least one stop")

    values = np.asarray(values, dtype=np.float64).ravel()
    stop_values = np.array([s.value for s in stops], dtype=np.float64)
    stop_colors = np.array([s.color for s in stops], dtype=np.float64)

    out = np.empty((values.size, 4), dtype=np.float64)
    out[:] = stop_colors[-1]

    if len(stops) > 1:
        # First stop index with value >= v, so prev.value < v <= curr.value
        idx = np.clip(np.searchsorted(stop_values, values, side="left"), 1, len(stops) - 1)
        prev_v = stop_values[idx - 1]
        curr_v = stop_values[idx]
        t = ((values - prev_v) / (curr_v - prev_v))[:, None]
        prev_c = stop_colors[idx - 1]
        curr_c = stop_colors[idx]
        interp = np.floor(prev_c + t * (curr_c - prev_c) + 0.5)

        inside = (values > stop_values[0]) & (values < stop_values[-1])
        out[inside] = interp[inside]

    out[values <= stop_values[0]] = stop_colors[0]
    return out.astype(np.uint8)


def average_colors(colors: Iterable[RGBAColor]) -> RGBAColor:
    """Channel-wise mean of RGBA colors, rounded half-up. Empty input gives (0, 0, 0, 0)."""
    colors = list(colors)
    if not colors:
        return (0, 0, 0, 0)
    sums = [sum(c[ch] for c in colors) for ch in range(4)]
    return tuple(int(_round_half_up(s / len(colors))) for s in sums)


def _to_rgba255(color) -> RGBAColor:
    if isinstance(color, str):
        rgba = to_rgba(color)
        return tuple(int(_round_half_up(c * 255)) for c in rgba)

    channels = [int(c) for c in color]
    if len(channels) == 3:
        channels.append(255)
    if len(channels) != 4 or any(c < 0 or c > 255 for c in channels):
        raise ValueError(f"Invalid RGBA color: {color!r}")
    return tuple(channels)


def parse_color_stops(raw) -> List[ColorStop]:
    """
    Build a validated color stop list from configuration data.

    Args:
        raw: Sequence of ``{"value": float, "color": [r, g, b(, a)] | "<matplotlib color>"}``

    Returns:
        List of ColorStop

    Raises:
        ValueError: If the list is empty, a color is invalid, or values are not
            strictly increasing
    """
    stops = [ColorStop(float(item["value"]), _to_rgba255(item["color"])) for item in raw]
    if not stops:
        raise ValueError("Color stop list must contain at least one stop")
    for prev, curr in zip(stops, stops[1:]):
        if not curr.value > prev.value:
            raise ValueError(
                f"Color stop values must be strictly increasing ({prev.value} >= {curr.value})"
            )
    return stops


def flow_height_colormap(
    stops: Sequence[ColorStop] = COLOR_STOPS, name: str = "avalanche_flow"
) -> LinearSegmentedColormap:
    """
    Create a matplotlib colormap equivalent to the color stops.

    Stop values are normalized onto 0-1, so the colormap should be used with
    ``Normalize(stops[0].value, stops[-1].value)``.
    """
    if not stops:
        raise ValueError("Color stop list must contain at least one stop")
    if len(stops) == 1:
        stops = [stops[0], ColorStop(stops[0].value + 1.0, stops[0].color)]

    lo, hi = stops[0].value, stops[-1].value
    nodes = [
        ((s.value - lo) / (hi - lo), tuple(c / 255.0 for c in s.color)) for s in stops
    ]
    return LinearSegmentedColormap.from_list(name, nodes, N=256)


flow_cmap = flow_height_colormap()
try:
    matplotlib.colormaps.register(flow_cmap, force=True)
except (AttributeError, TypeError, ValueError):
    logger.debug("Could not register %s colormap", flow_cmap.name)
