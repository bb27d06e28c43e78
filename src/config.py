"""Configuration module for avalanche-viz project.

Centralizes data paths, service endpoints and visualization defaults.
"""
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
AVALANCHE_CONFIG_PATH = DATA_DIR / "avalanches.json"

# Logging
DEFAULT_LOG_LEVEL = "INFO"

# Services
ELEVATION_SERVICE_URL = (
    "https://elevation3d.arcgis.com/arcgis/rest/services/WorldElevation3D/Terrain3D/ImageServer"
)
WEB_MERCATOR_WKID = 3857
HTTP_TIMEOUT_S = 60
ELEVATION_BATCH_SIZE = 1000  # ImageServer getSamples point limit per request

# Terrain defaults
DEFAULT_GRID_RESOLUTION = 100
DEFAULT_EXAGGERATION_FACTOR = 20.0
MESH_Z_OFFSET = 1.0  # meters above ground, keeps the flow surface off the terrain

# Animation defaults
DEFAULT_PLAYBACK_SPEED_MS = 1000
DEFAULT_SMOOTHING_FACTOR = 2
DEFAULT_FLATTEN_PASSES = 5

# Playback speed options (label -> milliseconds per frame)
PLAYBACK_SPEEDS = {
    "4x": 250,
    "2x": 500,
    "1x": 1000,
    "0.5x": 2000,
}

GRID_RESOLUTIONS = [50, 100, 150, 200]
FLATTEN_PASS_OPTIONS = [0, 1, 2, 3, 5, 10]
SMOOTHING_FACTOR_OPTIONS = [1, 2, 3, 4]

# Camera
CAMERA_ANIMATION_DURATION_MS = 2000
CAMERA_EXTENT_EXPAND = 1.3
