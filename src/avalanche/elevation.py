"""
Ground elevation collaborators.

An elevation service returns one ground elevation per point of a square grid
covering an extent. Services never fail hard: on any error the grid is filled
with zeros, flagged as degraded and a warning is logged.

Services:
- ArcGISElevationService: ImageServer ``getSamples`` over HTTP
- RasterElevationService: samples a local DEM file with rasterio
- ConstantElevationService: flat ground, for offline use
"""

import json
import logging
from pathlib import Path
from typing import Optional, Protocol, Union

import numpy as np
import rasterio
import requests
from rasterio.warp import transform as warp_transform

from src.config import ELEVATION_BATCH_SIZE, ELEVATION_SERVICE_URL, HTTP_TIMEOUT_S
from src.avalanche.exceptions import ElevationQueryError
from src.avalanche.mesh_builder import generate_grid_points
from src.avalanche.models import ElevationGrid, Extent, SimulationConfig

logger = logging.getLogger(__name__)


class ElevationService(Protocol):
    """Interface used by the playback engine to get a ground grid."""

    def query_grid_elevations(self, extent: Extent, resolution: int) -> ElevationGrid:
        """Return the ground grid co-registered with a ``resolution``-sided flow grid."""


class PointElevationService:
    """
    Base class for services that sample elevations point by point.

    Subclasses implement `query_points`; this class builds the grid and turns
    failures into a degraded all-zero grid.
    """

    def query_points(self, points: np.ndarray, wkid: int) -> np.ndarray:
        raise NotImplementedError

    def query_grid_elevations(self, extent: Extent, resolution: int) -> ElevationGrid:
        points = generate_grid_points(extent, resolution)
        degraded = False

        try:
            elevations = np.asarray(self.query_points(points, extent.wkid), dtype=np.float64)
            if elevations.shape != (len(points),):
                raise ElevationQueryError(
                    f"Expected {len(points)} elevations, got shape {elevations.shape}"
                )
        except ElevationQueryError as e:
            logger.warning(f"Could not query elevation, using flat ground: {e}")
            elevations = np.zeros(len(points), dtype=np.float64)
            degraded = True

        return ElevationGrid(
            points=points, elevations=elevations, resolution=resolution, degraded=degraded
        )

    def query_point_elevation(self, x: float, y: float, wkid: int) -> float:
        """Elevation of a single point, 0 on failure."""
        try:
            return float(self.query_points(np.array([[x, y]]), wkid)[0])
        except ElevationQueryError as e:
            logger.warning(f"Could not query elevation: {e}")
            return 0.0


class ConstantElevationService(PointElevationService):
    """Flat ground at a fixed elevation."""

    def __init__(self, elevation: float = 0.0):
        self.elevation = float(elevation)

    def query_points(self, points: np.ndarray, wkid: int) -> np.ndarray:
        return np.full(len(points), self.elevation, dtype=np.float64)


class ArcGISElevationService(PointElevationService):
    """
    Query an ArcGIS ImageServer elevation service with ``getSamples``.

    Points are sent as multipoint geometries in batches of ``batch_size``;
    samples come back keyed by ``locationId`` and are reordered to match.
    """

    def __init__(
        self,
        url: str = ELEVATION_SERVICE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT_S,
        batch_size: int = ELEVATION_BATCH_SIZE,
    ):
        self.url = url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.batch_size = batch_size

    def _query_batch(self, batch: np.ndarray, wkid: int) -> np.ndarray:
        geometry = {
            "points": batch.tolist(),
            "spatialReference": {"wkid": wkid},
        }
        params = {
            "geometry": json.dumps(geometry),
            "geometryType": "esriGeometryMultipoint",
            "returnFirstValueOnly": "true",
            "interpolation": "RSP_BilinearInterpolation",
            "f": "json",
        }

        try:
            response = self.session.post(f"{self.url}/getSamples", data=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ElevationQueryError(f"getSamples request failed: {e}") from e

        if "error" in payload:
            raise ElevationQueryError(f"getSamples error: {payload['error']}")

        values = np.zeros(len(batch), dtype=np.float64)
        for sample in payload.get("samples", []):
            idx = int(sample.get("locationId", -1))
            if 0 <= idx < len(batch):
                try:
                    values[idx] = float(sample.get("value") or 0.0)
                except (TypeError, ValueError):
                    # NoData samples come back as non-numeric strings
                    values[idx] = 0.0
        return values

    def query_points(self, points: np.ndarray, wkid: int) -> np.ndarray:
        results = [
            self._query_batch(points[start : start + self.batch_size], wkid)
            for start in range(0, len(points), self.batch_size)
        ]
        logger.debug(f"Queried {len(points)} elevations in {len(results)} batches")
        return np.concatenate(results) if results else np.zeros(0)


class RasterElevationService(PointElevationService):
    """
    Sample ground elevations from a local DEM (any rasterio-readable format).

    Query points are reprojected into the DEM's CRS when needed. Points outside
    the DEM or on nodata pixels get elevation 0.
    """

    def __init__(self, dem_path: Union[str, Path], band: int = 1):
        self.dem_path = str(dem_path)
        self.band = band

    def query_points(self, points: np.ndarray, wkid: int) -> np.ndarray:
        try:
            with rasterio.open(self.dem_path) as dataset:
                xs, ys = points[:, 0], points[:, 1]
                if dataset.crs is not None and dataset.crs.to_epsg() != wkid:
                    xs, ys = warp_transform(f"EPSG:{wkid}", dataset.crs, list(xs), list(ys))

                values = np.array(
                    [s[0] for s in dataset.sample(zip(xs, ys), indexes=self.band)],
                    dtype=np.float64,
                )
                nodata = dataset.nodata
        except (rasterio.errors.RasterioError, OSError) as e:
            raise ElevationQueryError(f"Could not sample DEM {self.dem_path}: {e}") from e

        if nodata is not None:
            values[values == nodata] = 0.0
        values[~np.isfinite(values)] = 0.0
        return values


def elevation_service_for(
    config: SimulationConfig,
    base_path: Union[str, Path],
    default: Optional[ElevationService] = None,
) -> ElevationService:
    """
    Choose the elevation service for a simulation.

    A simulation with a ``dem_source`` samples that DEM (relative sources are
    resolved against ``base_path``); otherwise ``default`` is used, falling back
    to the ArcGIS world elevation service.
    """
    if config.dem_source:
        source = config.dem_source
        if not (source.startswith(("http://", "https://", "/")) or Path(source).is_absolute()):
            source = f"{str(base_path).rstrip('/')}/{source}"
        logger.debug(f"Using DEM {source} for {config.name}")
        return RasterElevationService(source)
    return default if default is not None else ArcGISElevationService()
