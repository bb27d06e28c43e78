"""
Mesh generation for flow height visualization.

Turns a flow-height grid and a co-registered ground elevation grid into a
flat-shaded triangle mesh draped over the terrain. Triangles are only emitted
where flow is present, so mesh topology changes from frame to frame.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from src.config import MESH_Z_OFFSET
from src.avalanche.color_mapping import COLOR_STOPS, colors_for
from src.avalanche.interpolation import upsample
from src.avalanche.models import (
    ColorStop,
    ElevationGrid,
    Extent,
    FlowHeightGrid,
    Mesh,
    TerrainConfig,
)

logger = logging.getLogger(__name__)


def generate_grid_points(extent: Extent, resolution: int) -> np.ndarray:
    """
    Generate evenly spaced ground positions covering an extent.

    Args:
        extent: Geographic extent
        resolution: Points per side (>= 2)

    Returns:
        np.ndarray of shape (resolution ** 2, 2), row-major with row 0 at
        ``ymax`` (north) and column 0 at ``xmin`` (west)
    """
    if resolution < 2:
        raise ValueError(f"Grid resolution must be >= 2, got {resolution}")

    x_step = (extent.xmax - extent.xmin) / (resolution - 1)
    y_step = (extent.ymax - extent.ymin) / (resolution - 1)

    y_indices, x_indices = np.mgrid[0:resolution, 0:resolution]
    return np.column_stack(
        [
            extent.xmin + x_indices.ravel() * x_step,
            extent.ymax - y_indices.ravel() * y_step,
        ]
    )


def generate_cell_triangles(resolution: int) -> np.ndarray:
    """
    Split every 2x2 cell of a grid into two triangles.

    With corners i1 (top-left), i2 (top-right), i3 (bottom-left) and
    i4 (bottom-right), each cell yields (i1, i2, i3) followed by (i2, i4, i3).

    Returns:
        np.ndarray of shape (2 * (resolution - 1) ** 2, 3) of vertex indices
    """
    y_cells, x_cells = np.mgrid[0 : resolution - 1, 0 : resolution - 1]
    i1 = (y_cells * resolution + x_cells).ravel()
    i2 = i1 + 1
    i3 = i1 + resolution
    i4 = i3 + 1

    tri_a = np.column_stack([i1, i2, i3])
    tri_b = np.column_stack([i2, i4, i3])
    return np.stack([tri_a, tri_b], axis=1).reshape(-1, 3)


def build_mesh(
    flow_grid: FlowHeightGrid,
    base_ground: ElevationGrid,
    smoothed_ground: Optional[ElevationGrid],
    terrain_config: TerrainConfig,
    smoothing_factor: int,
    flatten_passes: int,
    color_stops: Sequence[ColorStop] = COLOR_STOPS,
) -> Optional[Mesh]:
    """
    Create a flat-shaded flow mesh for one time step.

    When ``smoothing_factor > 1`` and a smoothed ground grid is available, the
    flow grid is upsampled to ``(res - 1) * smoothing_factor + 1`` and flattened
    with ``flatten_passes`` smoothing passes; otherwise the base grids are used.

    Vertex z is ground elevation + flow height * exaggeration + MESH_Z_OFFSET.
    A triangle is kept only if one of its corners has flow; its three vertices
    share the rounded mean of the corner colors.

    Args:
        flow_grid: Flow heights for the time step
        base_ground: Ground elevations co-registered with flow_grid
        smoothed_ground: Upsampled ground grid or None
        terrain_config: Exaggeration factor and base grid resolution
        smoothing_factor: Grid upsampling factor (1 = none)
        flatten_passes: Smoothing passes applied after upsampling
        color_stops: Color law for flow heights

    Returns:
        Mesh, or None when the grid has no flow or no triangle survives culling
    """
    if flow_grid.non_zero_count == 0:
        return None

    base_res = flow_grid.resolution
    if base_ground.resolution != base_res:
        raise ValueError(
            f"Ground grid resolution {base_ground.resolution} does not match "
            f"flow grid resolution {base_res}"
        )

    if smoothing_factor > 1 and smoothed_ground is not None:
        resolution = (base_res - 1) * smoothing_factor + 1
        if smoothed_ground.resolution != resolution:
            raise ValueError(
                f"Smoothed ground resolution {smoothed_ground.resolution} does not match "
                f"factor {smoothing_factor} (expected {resolution})"
            )
        heights = upsample(flow_grid.heights, base_res, resolution, flatten_passes)
        ground = smoothed_ground
    else:
        resolution = base_res
        heights = flow_grid.heights.astype(np.float64)
        ground = base_ground

    z = ground.elevations + heights * terrain_config.exaggeration_factor + MESH_Z_OFFSET
    vertex_positions = np.column_stack([ground.points, z])
    vertex_colors = colors_for(heights, color_stops).astype(np.int64)

    triangles = generate_cell_triangles(resolution)
    has_flow = heights > 0
    triangles = triangles[has_flow[triangles].any(axis=1)]

    if len(triangles) == 0:
        return None

    # Flat shading: one averaged color per triangle, vertices not shared
    tri_colors = np.floor(vertex_colors[triangles].sum(axis=1) / 3.0 + 0.5).astype(np.uint8)
    positions = vertex_positions[triangles].reshape(-1, 3)
    colors = np.repeat(tri_colors, 3, axis=0)
    faces = np.arange(len(positions), dtype=np.int64).reshape(-1, 3)

    logger.debug(
        "Built mesh at resolution %d: %d triangles (%d flow cells)",
        resolution,
        len(faces),
        int(has_flow.sum()),
    )

    return Mesh(positions=positions, colors=colors, faces=faces, wkid=flow_grid.extent.wkid)
