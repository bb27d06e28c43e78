"""
Data model for avalanche flow visualization.

Grids are stored flat in row-major order (row 0 = north edge) so that index
``y * resolution + x`` addresses the same ground point in a FlowHeightGrid, its
ElevationGrid and the vertex arrays built from them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np

from src.config import WEB_MERCATOR_WKID

RGBAColor = Tuple[int, int, int, int]


@dataclass(frozen=True)
class Extent:
    """Axis-aligned geographic bounding rectangle with its spatial reference."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float
    wkid: int = WEB_MERCATOR_WKID

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.xmin + self.xmax) / 2.0, (self.ymin + self.ymax) / 2.0)

    def is_valid(self) -> bool:
        """True when all bounds are finite and the rectangle has positive area."""
        bounds = (self.xmin, self.ymin, self.xmax, self.ymax)
        return all(math.isfinite(v) for v in bounds) and self.width > 0 and self.height > 0

    def union(self, other: "Extent") -> "Extent":
        """Smallest extent covering both. Spatial references must match."""
        if other.wkid != self.wkid:
            raise ValueError(f"Cannot union extents in wkid {self.wkid} and {other.wkid}")
        return Extent(
            xmin=min(self.xmin, other.xmin),
            ymin=min(self.ymin, other.ymin),
            xmax=max(self.xmax, other.xmax),
            ymax=max(self.ymax, other.ymax),
            wkid=self.wkid,
        )

    def expand(self, factor: float) -> "Extent":
        """Scale the extent about its center."""
        cx, cy = self.center
        half_w = self.width * factor / 2.0
        half_h = self.height * factor / 2.0
        return Extent(cx - half_w, cy - half_h, cx + half_w, cy + half_h, self.wkid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "xmin": self.xmin,
            "ymin": self.ymin,
            "xmax": self.xmax,
            "ymax": self.ymax,
            "spatialReference": {"wkid": self.wkid},
        }


@dataclass(frozen=True)
class ColorStop:
    """Flow height value and the RGBA color (0-255 channels) it maps to."""

    value: float
    color: RGBAColor


@dataclass
class RasterFrame:
    """Decoded single-band raster. Discarded right after resampling."""

    pixels: np.ndarray
    extent: Extent

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(frozen=True, eq=False)
class FlowHeightGrid:
    """
    Square grid of non-negative flow heights for one time step.

    Attributes:
        heights: Flat float32 array of ``resolution ** 2`` values (read-only)
        resolution: Grid side length
        max_height: Largest non-zero height (0 when the grid is empty)
        non_zero_count: Number of cells with flow
        extent: Bounding box of the source raster
    """

    heights: np.ndarray
    resolution: int
    max_height: float
    non_zero_count: int
    extent: Extent

    def __post_init__(self):
        if self.heights.shape != (self.resolution * self.resolution,):
            raise ValueError(
                f"Expected {self.resolution ** 2} heights, got shape {self.heights.shape}"
            )
        self.heights.setflags(write=False)

    def as_2d(self) -> np.ndarray:
        return self.heights.reshape(self.resolution, self.resolution)


@dataclass(frozen=True, eq=False)
class ElevationGrid:
    """
    Ground elevation samples co-registered with a flow-height grid.

    Attributes:
        points: ``(resolution ** 2, 2)`` array of (x, y) ground positions
        elevations: ``resolution ** 2`` elevations in meters
        resolution: Grid side length
        degraded: True when the elevation query failed and zeros were substituted
    """

    points: np.ndarray
    elevations: np.ndarray
    resolution: int
    degraded: bool = False

    def __post_init__(self):
        n = self.resolution * self.resolution
        if self.points.shape != (n, 2) or self.elevations.shape != (n,):
            raise ValueError(
                f"Elevation grid of resolution {self.resolution} needs {n} points and elevations"
            )


@dataclass(frozen=True, eq=False)
class Mesh:
    """
    Flat-shaded triangle mesh.

    Every triangle owns its three vertices, so ``faces`` is simply
    ``arange(vertex_count).reshape(-1, 3)`` and each triangle's vertices share
    one color.
    """

    positions: np.ndarray
    colors: np.ndarray
    faces: np.ndarray
    wkid: int = WEB_MERCATOR_WKID

    @property
    def vertex_count(self) -> int:
        return int(self.positions.shape[0])

    @property
    def triangle_count(self) -> int:
        return int(self.faces.shape[0])

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Per-axis (min, max) of vertex positions."""
        return self.positions.min(axis=0), self.positions.max(axis=0)

    def same_geometry(self, other: "Mesh") -> bool:
        """Exact equality of positions, colors and faces."""
        return (
            self.wkid == other.wkid
            and np.array_equal(self.positions, other.positions)
            and np.array_equal(self.colors, other.colors)
            and np.array_equal(self.faces, other.faces)
        )


@dataclass(frozen=True)
class TerrainConfig:
    """Mesh construction settings shared by every frame of a simulation."""

    exaggeration_factor: float
    grid_resolution: int


@dataclass(frozen=True)
class AnimationDefaults:
    playback_speed: int
    smoothing_factor: int
    flatten_passes: int


@dataclass(frozen=True)
class SimulationConfig:
    """
    Immutable descriptor of one simulation's frame series.

    Frame files live at ``<base>/<folder>/<prefix><time:.2f><suffix>`` for every
    time step in the inclusive ``time_range``.
    """

    id: str
    name: str
    folder: str
    prefix: str
    suffix: str
    time_interval: float
    time_range: Tuple[float, float]
    description: Optional[str] = None
    release_area: Optional[Tuple[Tuple[float, float], ...]] = None
    release_depth: Optional[float] = None
    dem_source: Optional[str] = None
    dem_grid_resolution: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class AppConfig:
    """Parsed configuration document: simulations plus global defaults."""

    simulations: Tuple[SimulationConfig, ...]
    terrain: TerrainConfig
    animation: AnimationDefaults
    color_stops: Tuple[ColorStop, ...]

    def find(self, simulation_id: str) -> Optional[SimulationConfig]:
        for sim in self.simulations:
            if sim.id == simulation_id:
                return sim
        return None

    def terrain_for(self, sim: SimulationConfig) -> TerrainConfig:
        """Terrain settings for one simulation, honoring its grid resolution override."""
        if sim.dem_grid_resolution:
            return replace(self.terrain, grid_resolution=sim.dem_grid_resolution)
        return self.terrain


class EngineStatus(Enum):
    """Lifecycle of a SimulationPlaybackEngine."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    DISPOSED = "disposed"


@dataclass
class PlaybackState:
    """Mutable playback state owned by exactly one engine."""

    current_frame_index: int = 0
    is_playing: bool = False
    playback_speed: int = 1000
    smoothing_factor: int = 2
    flatten_passes: int = 5
    exaggeration_factor: float = 20.0

    def copy(self) -> "PlaybackState":
        return replace(self)
