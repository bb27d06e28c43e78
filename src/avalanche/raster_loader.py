"""
Raster frame loading for avalanche simulations.

Each time step of a simulation is a single-band GeoTIFF of flow heights. Frames
are fetched (HTTP or local files), decoded with rasterio and resampled to a
fixed square grid with nearest-neighbor sampling.
"""

import logging
import math
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Union

import numpy as np
import rasterio
import requests
from rasterio.io import MemoryFile
from tqdm import tqdm

from src.config import DATA_DIR, HTTP_TIMEOUT_S, WEB_MERCATOR_WKID
from src.avalanche.exceptions import DecodeError, FetchError, FrameLoadError, NoFramesError
from src.avalanche.models import Extent, FlowHeightGrid, RasterFrame, SimulationConfig

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


# =============================================================================
# Transports
# =============================================================================


class FrameTransport(Protocol):
    """Fetches the raw bytes of one frame."""

    def fetch(self, url: str) -> bytes:
        """Return the frame bytes or raise FetchError."""


class HttpFrameTransport:
    """Fetch frames over HTTP(S). Any non-2xx status is a FetchError."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = HTTP_TIMEOUT_S):
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Request failed for {url}: {e}", url=url) from e

        if not response.ok:
            raise FetchError(
                f"HTTP {response.status_code} for {url}", url=url, status_code=response.status_code
            )
        return response.content


class FileFrameTransport:
    """Read frames from the local filesystem."""

    def fetch(self, url: str) -> bytes:
        try:
            return Path(url).read_bytes()
        except OSError as e:
            raise FetchError(f"Could not read {url}: {e}", url=url) from e


def transport_for(location: Union[str, Path]) -> FrameTransport:
    """Pick an HTTP transport for http(s) URLs, a file transport otherwise."""
    if str(location).startswith(("http://", "https://")):
        return HttpFrameTransport()
    return FileFrameTransport()


# =============================================================================
# Time steps and URLs
# =============================================================================


def time_steps(config: SimulationConfig) -> List[float]:
    """
    Generate the time steps of a simulation.

    Steps are computed by index (``start + i * interval``) rather than by
    repeated addition, so floating-point drift never drops or adds the final
    nominal ``end`` value.

    Args:
        config: Simulation configuration

    Returns:
        Ascending list of time values within the inclusive time range

    Examples:
        >>> time_steps(SimulationConfig("a", "A", "f", "p", ".tif", 2.0, (0.0, 4.0)))
        [0.0, 2.0, 4.0]
    """
    start, end = config.time_range
    interval = config.time_interval
    if interval <= 0:
        raise ValueError(f"time_interval must be > 0, got {interval}")
    if end < start:
        return []

    count = int(math.floor((end - start) / interval + 1e-9)) + 1
    return [start + i * interval for i in range(count)]


def frame_url(base_path: Union[str, Path], config: SimulationConfig, time: float) -> str:
    """Location of the frame for ``time``: ``<base>/<folder>/<prefix><time:.2f><suffix>``."""
    base = str(base_path).rstrip("/")
    return f"{base}/{config.folder}/{config.prefix}{time:.2f}{config.suffix}"


# =============================================================================
# Decoding and resampling
# =============================================================================


def decode_raster(data: bytes, url: Optional[str] = None) -> RasterFrame:
    """
    Decode the first band of a raster image.

    Nodata pixels become NaN. The spatial reference falls back to Web Mercator
    when the raster does not carry an EPSG code.

    Raises:
        DecodeError: If the bytes are not a readable raster
    """
    try:
        with MemoryFile(data) as memfile:
            with memfile.open() as dataset:
                if dataset.count < 1:
                    raise DecodeError(f"No raster bands in {url}", url=url)

                band = dataset.read(1, masked=True)
                pixels = np.ma.filled(band.astype(np.float64), np.nan)
                bounds = dataset.bounds
                epsg = dataset.crs.to_epsg() if dataset.crs else None
    except (rasterio.errors.RasterioError, OSError, ValueError) as e:
        raise DecodeError(f"Could not decode raster {url}: {e}", url=url) from e

    extent = Extent(
        xmin=bounds.left,
        ymin=bounds.bottom,
        xmax=bounds.right,
        ymax=bounds.top,
        wkid=epsg or WEB_MERCATOR_WKID,
    )
    return RasterFrame(pixels=pixels, extent=extent)


def resample_nearest(frame: RasterFrame, resolution: int) -> FlowHeightGrid:
    """
    Resample a raster frame to a square flow height grid.

    Each destination cell takes the source pixel at
    ``floor(norm * (size - 1))``. NaN, negative and zero samples become 0.

    Args:
        frame: Decoded raster
        resolution: Destination grid side length (>= 2)

    Returns:
        FlowHeightGrid with max height and non-zero count
    """
    if resolution < 2:
        raise ValueError(f"Grid resolution must be >= 2, got {resolution}")

    norm = np.arange(resolution, dtype=np.float64) / (resolution - 1)
    px = np.floor(norm * (frame.width - 1)).astype(np.int64)
    py = np.floor(norm * (frame.height - 1)).astype(np.int64)

    values = frame.pixels[py[:, None], px[None, :]].ravel()
    with np.errstate(invalid="ignore"):
        positive = values > 0
    heights = np.where(positive, values, 0.0).astype(np.float32)

    non_zero = heights > 0
    non_zero_count = int(non_zero.sum())
    max_height = float(heights[non_zero].max()) if non_zero_count else 0.0

    return FlowHeightGrid(
        heights=heights,
        resolution=resolution,
        max_height=max_height,
        non_zero_count=non_zero_count,
        extent=frame.extent,
    )


def load_frame(
    url: str, grid_resolution: int, transport: Optional[FrameTransport] = None
) -> FlowHeightGrid:
    """
    Fetch, decode and resample one frame.

    Raises:
        FetchError: If the transport fails
        DecodeError: If the raster cannot be parsed
    """
    transport = transport or transport_for(url)
    data = transport.fetch(url)
    frame = decode_raster(data, url=url)
    grid = resample_nearest(frame, grid_resolution)
    logger.debug(
        f"Decoded {url}: {frame.width}x{frame.height} -> {grid_resolution}^2, "
        f"max {grid.max_height:.2f} m, {grid.non_zero_count} flow cells"
    )
    return grid


# =============================================================================
# Batch loading
# =============================================================================


def preload_all_frames(
    config: SimulationConfig,
    grid_resolution: int,
    on_progress: Optional[ProgressCallback] = None,
    base_path: Union[str, Path] = DATA_DIR,
    transport: Optional[FrameTransport] = None,
    show_progress: bool = False,
) -> Dict[float, FlowHeightGrid]:
    """
    Load every time step of a simulation, one after another.

    A frame that fails to fetch or decode is logged and left out of the result;
    ``on_progress(loaded, total)`` is still called for it.

    Args:
        config: Simulation configuration
        grid_resolution: Target grid resolution
        on_progress: Called after each attempt with (attempted count, total)
        base_path: Root URL or directory of the frame folders
        transport: Frame transport (default: chosen from base_path)
        show_progress: Display a tqdm progress bar

    Returns:
        Mapping of time value -> FlowHeightGrid, in time order

    Raises:
        NoFramesError: If no frame could be loaded
    """
    steps = time_steps(config)
    transport = transport or transport_for(base_path)
    frames: Dict[float, FlowHeightGrid] = {}

    for loaded, time in enumerate(
        tqdm(steps, desc=f"Loading {config.name}", disable=not show_progress), start=1
    ):
        url = frame_url(base_path, config, time)
        try:
            frames[time] = load_frame(url, grid_resolution, transport)
        except FrameLoadError as e:
            logger.error(f"Failed to load frame {time:.2f}s: {e}")

        if on_progress is not None:
            on_progress(loaded, len(steps))

    if len(frames) < len(steps):
        logger.warning(
            f"Loaded {len(frames)}/{len(steps)} frames for {config.name}, "
            f"skipped {len(steps) - len(frames)}"
        )
    else:
        logger.info(f"Loaded {len(frames)}/{len(steps)} frames for {config.name}")

    if not frames:
        raise NoFramesError(f"No frames loaded for {config.name}")
    return frames


def get_simulation_extent(
    config: SimulationConfig,
    grid_resolution: int,
    base_path: Union[str, Path] = DATA_DIR,
    transport: Optional[FrameTransport] = None,
) -> Optional[Extent]:
    """Extent of a simulation from its first frame, or None if it cannot be loaded."""
    url = frame_url(base_path, config, config.time_range[0])
    try:
        return load_frame(url, grid_resolution, transport or transport_for(base_path)).extent
    except FrameLoadError as e:
        logger.error(f"Failed to get extent for {config.name}: {e}")
        return None
