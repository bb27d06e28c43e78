"""
Grid resampling and smoothing for flow height and ground elevation grids.

All grids are square and stored flat in row-major order. Normalized
coordinates run from 0 (west / north edge) to 1 (east / south edge).
"""

import numpy as np
from scipy import ndimage

from src.avalanche.models import ElevationGrid

# 3x3 Gaussian-like weights: center 4, edge-adjacent 2, corners 1
SMOOTH_KERNEL = np.array(
    [
        [1.0, 2.0, 1.0],
        [2.0, 4.0, 2.0],
        [1.0, 2.0, 1.0],
    ]
)


def _check_grid(grid, res):
    grid = np.asarray(grid, dtype=np.float64).ravel()
    if grid.size != res * res:
        raise ValueError(f"Grid has {grid.size} values, expected {res}x{res}={res * res}")
    return grid


def bilinear(grid, src_res: int, x: float, y: float) -> float:
    """
    Bilinear interpolation on a flat square grid.

    Args:
        grid: Flat row-major grid of ``src_res ** 2`` values
        src_res: Source grid resolution (width = height)
        x: Normalized x coordinate in [0, 1]
        y: Normalized y coordinate in [0, 1]

    Returns:
        Interpolated value. Integer grid positions reproduce grid values exactly.
    """
    fx = x * (src_res - 1)
    fy = y * (src_res - 1)

    x0 = int(np.floor(fx))
    y0 = int(np.floor(fy))
    x1 = min(x0 + 1, src_res - 1)
    y1 = min(y0 + 1, src_res - 1)

    tx = fx - x0
    ty = fy - y0

    v00 = grid[y0 * src_res + x0]
    v10 = grid[y0 * src_res + x1]
    v01 = grid[y1 * src_res + x0]
    v11 = grid[y1 * src_res + x1]

    v0 = v00 * (1 - tx) + v10 * tx
    v1 = v01 * (1 - tx) + v11 * tx
    return float(v0 * (1 - ty) + v1 * ty)


def bilinear_sample(grid, src_res: int, xs, ys) -> np.ndarray:
    """
    Vectorized `bilinear` for arrays of normalized coordinates.

    Args:
        grid: Flat row-major grid of ``src_res ** 2`` values
        src_res: Source grid resolution
        xs: Normalized x coordinates
        ys: Normalized y coordinates (same shape as xs)

    Returns:
        Array of interpolated values with the shape of xs
    """
    grid = _check_grid(grid, src_res)
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)

    fx = xs * (src_res - 1)
    fy = ys * (src_res - 1)
    x0 = np.floor(fx).astype(np.int64)
    y0 = np.floor(fy).astype(np.int64)
    x1 = np.minimum(x0 + 1, src_res - 1)
    y1 = np.minimum(y0 + 1, src_res - 1)
    tx = fx - x0
    ty = fy - y0

    v00 = grid[y0 * src_res + x0]
    v10 = grid[y0 * src_res + x1]
    v01 = grid[y1 * src_res + x0]
    v11 = grid[y1 * src_res + x1]

    v0 = v00 * (1 - tx) + v10 * tx
    v1 = v01 * (1 - tx) + v11 * tx
    return v0 * (1 - ty) + v1 * ty


def smooth(grid, res: int, passes: int) -> np.ndarray:
    """
    Flatten sharp peaks with repeated 3x3 weighted averaging.

    Cells holding exactly 0 stay 0, so flow never bleeds into empty terrain.
    A non-zero cell becomes the weighted mean of its positive neighbors
    (itself included); with no positive neighbor it keeps its value.

    Args:
        grid: Flat row-major grid of ``res ** 2`` values
        res: Grid resolution
        passes: Number of smoothing passes (0 returns an unchanged copy)

    Returns:
        Flat float64 array
    """
    if passes < 0:
        raise ValueError(f"passes must be >= 0, got {passes}")

    current = _check_grid(grid, res).reshape(res, res).copy()

    for _ in range(passes):
        positive = current > 0
        weighted = ndimage.correlate(
            np.where(positive, current, 0.0), SMOOTH_KERNEL, mode="constant", cval=0.0
        )
        weights = ndimage.correlate(
            positive.astype(np.float64), SMOOTH_KERNEL, mode="constant", cval=0.0
        )
        averaged = np.divide(weighted, weights, out=current.copy(), where=weights > 0)
        current = np.where(current == 0, 0.0, averaged)

    return current.ravel()


def _normalized_axis(res):
    if res < 2:
        raise ValueError(f"Destination resolution must be >= 2, got {res}")
    return np.arange(res, dtype=np.float64) / (res - 1)


def upsample(src_grid, src_res: int, dst_res: int, flatten_passes: int) -> np.ndarray:
    """
    Upsample a grid with bilinear interpolation, then apply `smooth`.

    Args:
        src_grid: Flat source grid of ``src_res ** 2`` values
        src_res: Source resolution
        dst_res: Destination resolution
        flatten_passes: Smoothing passes applied to the upsampled grid

    Returns:
        Flat float64 array of ``dst_res ** 2`` values
    """
    norm = _normalized_axis(dst_res)
    ys, xs = np.meshgrid(norm, norm, indexing="ij")
    dst_grid = bilinear_sample(src_grid, src_res, xs.ravel(), ys.ravel())
    return smooth(dst_grid, dst_res, flatten_passes)


def smoothed_grid(
    base_points, base_elevations, base_res: int, factor: int, degraded: bool = False
) -> ElevationGrid:
    """
    Upsample ground positions and elevations by an integer factor.

    Positions are linear between the base grid's corner coordinates,
    elevations are bilinear. Terrain is never flattened.

    Args:
        base_points: ``(base_res ** 2, 2)`` ground positions, row 0 at the north edge
        base_elevations: ``base_res ** 2`` elevations
        base_res: Base grid resolution
        factor: Upsampling factor (>= 1)
        degraded: Carried over from the base grid

    Returns:
        ElevationGrid with resolution ``(base_res - 1) * factor + 1``
    """
    if factor < 1:
        raise ValueError(f"Smoothing factor must be >= 1, got {factor}")

    base_points = np.asarray(base_points, dtype=np.float64)
    smooth_res = (base_res - 1) * factor + 1

    x_min = base_points[0, 0]
    x_max = base_points[base_res - 1, 0]
    y_max = base_points[0, 1]
    y_min = base_points[(base_res - 1) * base_res, 1]

    norm = _normalized_axis(smooth_res)
    norm_y, norm_x = np.meshgrid(norm, norm, indexing="ij")
    norm_x = norm_x.ravel()
    norm_y = norm_y.ravel()

    points = np.column_stack(
        [
            x_min + norm_x * (x_max - x_min),
            y_max - norm_y * (y_max - y_min),
        ]
    )
    elevations = bilinear_sample(base_elevations, base_res, norm_x, norm_y)

    return ElevationGrid(
        points=points, elevations=elevations, resolution=smooth_res, degraded=degraded
    )
