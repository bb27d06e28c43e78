"""
Avalanche flow-height playback package.

Core functionality:
- Frame loading and nearest-neighbour resampling of flow-height rasters
- Bilinear upsampling and flattening of ground/flow grids
- Triangle mesh building with flow-height color stops
- SimulationPlaybackEngine for one simulation's frame cache and playback
- MultiSimulationCoordinator for switching between and playing all simulations
"""

from .models import (
    AppConfig,
    ColorStop,
    ElevationGrid,
    EngineStatus,
    Extent,
    FlowHeightGrid,
    Mesh,
    PlaybackState,
    SimulationConfig,
    TerrainConfig,
)
from .exceptions import (
    AvalancheVizError,
    DecodeError,
    DisposedError,
    ElevationQueryError,
    FetchError,
    InvalidConfigError,
    NoExtentError,
    NoFramesError,
)
from .color_mapping import COLOR_STOPS, color_for
from .interpolation import bilinear, smooth, upsample
from .mesh_builder import build_mesh
from .raster_loader import preload_all_frames, time_steps
from .events import Event, EventType
from .playback import SimulationPlaybackEngine
from .coordinator import MultiSimulationCoordinator
from .context import RuntimeContext, create_default_context
from .config_loader import JsonConfigSource, load_app_config

__all__ = [
    "AppConfig",
    "ColorStop",
    "ElevationGrid",
    "EngineStatus",
    "Extent",
    "FlowHeightGrid",
    "Mesh",
    "PlaybackState",
    "SimulationConfig",
    "TerrainConfig",
    "AvalancheVizError",
    "DecodeError",
    "DisposedError",
    "ElevationQueryError",
    "FetchError",
    "InvalidConfigError",
    "NoExtentError",
    "NoFramesError",
    "COLOR_STOPS",
    "color_for",
    "bilinear",
    "smooth",
    "upsample",
    "build_mesh",
    "preload_all_frames",
    "time_steps",
    "Event",
    "EventType",
    "SimulationPlaybackEngine",
    "MultiSimulationCoordinator",
    "RuntimeContext",
    "create_default_context",
    "JsonConfigSource",
    "load_app_config",
]
