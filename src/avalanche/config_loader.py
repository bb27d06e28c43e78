"""
Load the avalanche configuration document.

The document (``avalanches.json``) lists simulations under ``avalanches`` and
optionally carries a ``defaults`` block and a ``colorStops`` list. Keys are
camelCase in the document and snake_case on the parsed dataclasses.

Example document::

    {
      "avalanches": [
        {"id": "a1", "name": "North couloir", "folder": "a1",
         "prefix": "flow_", "suffix": ".tif",
         "timeInterval": 2, "timeRange": [0, 60]}
      ],
      "defaults": {"gridResolution": 100, "exaggerationFactor": 20}
    }
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests

from src.config import (
    AVALANCHE_CONFIG_PATH,
    DEFAULT_EXAGGERATION_FACTOR,
    DEFAULT_FLATTEN_PASSES,
    DEFAULT_GRID_RESOLUTION,
    DEFAULT_PLAYBACK_SPEED_MS,
    DEFAULT_SMOOTHING_FACTOR,
    HTTP_TIMEOUT_S,
)
from src.avalanche.color_mapping import COLOR_STOPS, parse_color_stops
from src.avalanche.exceptions import InvalidConfigError
from src.avalanche.models import AnimationDefaults, AppConfig, SimulationConfig, TerrainConfig

logger = logging.getLogger(__name__)

_REQUIRED_KEYS = ("id", "name", "folder", "prefix", "suffix", "timeInterval", "timeRange")


class JsonConfigSource:
    """
    Configuration document at a local path or an ``http(s)://`` URL.

    Args:
        location: Path or URL of the JSON document
        session: requests session used for URLs
        timeout: HTTP timeout in seconds
    """

    def __init__(
        self,
        location: Union[str, Path] = AVALANCHE_CONFIG_PATH,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT_S,
    ):
        self.location = location
        self.session = session
        self.timeout = timeout

    @property
    def is_remote(self) -> bool:
        return str(self.location).startswith(("http://", "https://"))

    def read(self) -> Dict[str, Any]:
        """Fetch and decode the raw document."""
        location = str(self.location)
        try:
            if self.is_remote:
                session = self.session or requests.Session()
                response = session.get(location, timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
            else:
                with open(location, "r", encoding="utf-8") as f:
                    data = json.load(f)
        except (requests.RequestException, OSError, ValueError) as e:
            raise InvalidConfigError(f"Failed to load avalanche configs from {location}: {e}") from e

        if not isinstance(data, dict):
            raise InvalidConfigError(f"Configuration at {location} must be a JSON object")
        return data

    def load(self) -> AppConfig:
        app_config = parse_app_config(self.read())
        logger.info(f"Loaded {len(app_config.simulations)} avalanche configs from {self.location}")
        return app_config


def _parse_simulation(raw: Dict[str, Any]) -> SimulationConfig:
    if not isinstance(raw, dict):
        raise InvalidConfigError(f"Simulation entry must be an object, got {raw!r}")

    missing = [key for key in _REQUIRED_KEYS if key not in raw]
    if missing:
        raise InvalidConfigError(
            f"Simulation {raw.get('id', '?')!r} is missing keys: {', '.join(missing)}"
        )

    sim_id = str(raw["id"])
    try:
        interval = float(raw["timeInterval"])
        start, end = (float(t) for t in raw["timeRange"])
    except (TypeError, ValueError) as e:
        raise InvalidConfigError(f"Simulation {sim_id!r} has an invalid time axis: {e}") from e

    if interval <= 0:
        raise InvalidConfigError(f"Simulation {sim_id!r}: timeInterval must be > 0, got {interval}")
    if start > end:
        raise InvalidConfigError(f"Simulation {sim_id!r}: timeRange start {start} > end {end}")

    release_area = raw.get("releaseArea")
    if release_area is not None:
        try:
            release_area = tuple((float(x), float(y)) for x, y in release_area)
        except (TypeError, ValueError) as e:
            raise InvalidConfigError(f"Simulation {sim_id!r} has an invalid releaseArea: {e}") from e

    dem_grid_resolution = raw.get("demGridResolution")
    if dem_grid_resolution is not None:
        try:
            dem_grid_resolution = int(dem_grid_resolution)
        except (TypeError, ValueError) as e:
            raise InvalidConfigError(
                f"Simulation {sim_id!r} has an invalid demGridResolution: {e}"
            ) from e
        if dem_grid_resolution < 2:
            raise InvalidConfigError(
                f"Simulation {sim_id!r}: demGridResolution must be >= 2, got {dem_grid_resolution}"
            )

    known = set(_REQUIRED_KEYS) | {
        "description",
        "releaseArea",
        "releaseDepth",
        "demSource",
        "demGridResolution",
    }

    return SimulationConfig(
        id=sim_id,
        name=str(raw["name"]),
        folder=str(raw["folder"]),
        prefix=str(raw["prefix"]),
        suffix=str(raw["suffix"]),
        time_interval=interval,
        time_range=(start, end),
        description=raw.get("description"),
        release_area=release_area,
        release_depth=float(raw["releaseDepth"]) if raw.get("releaseDepth") is not None else None,
        dem_source=raw.get("demSource"),
        dem_grid_resolution=dem_grid_resolution,
        metadata={k: v for k, v in raw.items() if k not in known},
    )


def parse_app_config(data: Dict[str, Any]) -> AppConfig:
    """
    Build an AppConfig from a decoded configuration document.

    Raises:
        InvalidConfigError: On missing keys, a non-positive time interval, an
            inverted time range, duplicate ids or invalid defaults/color stops
    """
    raw_simulations = data.get("avalanches")
    if not isinstance(raw_simulations, list):
        raise InvalidConfigError("Configuration must contain an 'avalanches' list")

    simulations = [_parse_simulation(raw) for raw in raw_simulations]

    seen = set()
    for sim in simulations:
        if sim.id in seen:
            raise InvalidConfigError(f"Duplicate simulation id {sim.id!r}")
        seen.add(sim.id)

    defaults = data.get("defaults") or {}
    try:
        terrain = TerrainConfig(
            exaggeration_factor=float(defaults.get("exaggerationFactor", DEFAULT_EXAGGERATION_FACTOR)),
            grid_resolution=int(defaults.get("gridResolution", DEFAULT_GRID_RESOLUTION)),
        )
        animation = AnimationDefaults(
            playback_speed=int(defaults.get("playbackSpeed", DEFAULT_PLAYBACK_SPEED_MS)),
            smoothing_factor=int(defaults.get("smoothingFactor", DEFAULT_SMOOTHING_FACTOR)),
            flatten_passes=int(defaults.get("flattenPasses", DEFAULT_FLATTEN_PASSES)),
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise InvalidConfigError(f"Invalid defaults block: {e}") from e

    if terrain.grid_resolution < 2:
        raise InvalidConfigError(f"gridResolution must be >= 2, got {terrain.grid_resolution}")
    if animation.playback_speed <= 0:
        raise InvalidConfigError(f"playbackSpeed must be > 0, got {animation.playback_speed}")
    if animation.smoothing_factor < 1:
        raise InvalidConfigError(f"smoothingFactor must be >= 1, got {animation.smoothing_factor}")
    if animation.flatten_passes < 0:
        raise InvalidConfigError(f"flattenPasses must be >= 0, got {animation.flatten_passes}")

    color_stops = COLOR_STOPS
    if data.get("colorStops") is not None:
        try:
            color_stops = parse_color_stops(data["colorStops"])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidConfigError(f"Invalid colorStops: {e}") from e

    return AppConfig(
        simulations=tuple(simulations),
        terrain=terrain,
        animation=animation,
        color_stops=tuple(color_stops),
    )


def load_app_config(location: Union[str, Path] = AVALANCHE_CONFIG_PATH) -> AppConfig:
    """Load and parse the configuration document at ``location``."""
    return JsonConfigSource(location).load()
