"""Pytest configuration and fixtures for avalanche-viz tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest
from rasterio.io import MemoryFile
from rasterio.transform import from_bounds

from src.avalanche.context import RuntimeContext
from src.avalanche.elevation import ConstantElevationService, PointElevationService
from src.avalanche.exceptions import FetchError
from src.avalanche.models import AnimationDefaults, SimulationConfig, TerrainConfig
from src.avalanche.raster_loader import frame_url, time_steps
from src.avalanche.render_surface import InMemoryRenderSurface
from src.avalanche.scheduler import ManualScheduler

BASE_PATH = "mem://frames"


def make_geotiff(pixels, bounds=(0.0, 0.0, 100.0, 100.0), crs="EPSG:3857", nodata=None):
    """Encode a 2D array as single-band float32 GeoTIFF bytes."""
    pixels = np.asarray(pixels, dtype=np.float32)
    height, width = pixels.shape
    transform = from_bounds(*bounds, width, height)

    with MemoryFile() as memfile:
        with memfile.open(
            driver="GTiff",
            width=width,
            height=height,
            count=1,
            dtype="float32",
            crs=crs,
            transform=transform,
            nodata=nodata,
        ) as dataset:
            dataset.write(pixels, 1)
        return memfile.read()


def flow_pixels(level, size=10):
    """Square flow patch in the middle of an otherwise empty raster."""
    pixels = np.zeros((size, size), dtype=np.float32)
    pixels[2:8, 2:8] = level
    return pixels


class FakeTransport:
    """In-memory frame transport. Unknown URLs raise FetchError (HTTP 404)."""

    def __init__(self, frames=None):
        self.frames = dict(frames or {})
        self.fetched = []

    def add(self, url, data):
        self.frames[url] = data

    def fetch(self, url):
        self.fetched.append(url)
        if url not in self.frames:
            raise FetchError(f"HTTP 404 for {url}", url=url, status_code=404)
        return self.frames[url]


class SlopeElevationService(PointElevationService):
    """Ground rising linearly to the north."""

    def query_points(self, points, wkid):
        return 1000.0 + 0.5 * points[:, 1]


def register_frames(transport, config, bounds=(0.0, 0.0, 100.0, 100.0), skip=()):
    """Add one flow raster per time step of ``config``, leaving out indices in ``skip``."""
    for i, time in enumerate(time_steps(config)):
        if i in skip:
            continue
        data = make_geotiff(flow_pixels(0.5 * (i + 1)), bounds=bounds)
        transport.add(frame_url(BASE_PATH, config, time), data)


@pytest.fixture
def sim_config():
    """Three time steps: 0, 2 and 4 seconds."""
    return SimulationConfig(
        id="sim-a",
        name="Sim A",
        folder="sim_a",
        prefix="flow_",
        suffix=".tif",
        time_interval=2.0,
        time_range=(0.0, 4.0),
    )


@pytest.fixture
def terrain_config():
    return TerrainConfig(exaggeration_factor=20.0, grid_resolution=5)


@pytest.fixture
def animation_defaults():
    return AnimationDefaults(playback_speed=1000, smoothing_factor=1, flatten_passes=0)


@pytest.fixture
def transport(sim_config):
    fake = FakeTransport()
    register_frames(fake, sim_config)
    return fake


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def surface():
    return InMemoryRenderSurface()


@pytest.fixture
def slope_elevation():
    return SlopeElevationService()


@pytest.fixture
def runtime_context(surface, scheduler):
    """Context with an empty fake transport; tests register their frames."""
    return RuntimeContext(
        surface=surface,
        elevation_service=ConstantElevationService(500.0),
        scheduler=scheduler,
        transport=FakeTransport(),
        base_path=BASE_PATH,
    )
