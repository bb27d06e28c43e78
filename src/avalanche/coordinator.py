"""
Coordinate several simulation playback engines on one render surface.

The coordinator owns the engines by id, tracks the active simulation and
forwards bulk operations (play-all, parameter broadcast) to every loaded
engine. Engines in play-all mode run their own timers at their own speeds;
they are not synchronized to a common clock.
"""

import logging
from typing import Dict, List, Optional, Tuple, Union

from tqdm import tqdm

from src.config import CAMERA_ANIMATION_DURATION_MS, CAMERA_EXTENT_EXPAND
from src.avalanche.config_loader import JsonConfigSource
from src.avalanche.context import RuntimeContext
from src.avalanche.elevation import elevation_service_for
from src.avalanche.events import Event, EventEmitter, EventHandler, EventType
from src.avalanche.exceptions import InvalidConfigError
from src.avalanche.models import AppConfig, Extent, SimulationConfig
from src.avalanche.playback import SimulationPlaybackEngine
from src.avalanche.raster_loader import ProgressCallback

logger = logging.getLogger(__name__)


class MultiSimulationCoordinator:
    """
    Owns playback engines and the single active simulation.

    Args:
        context: Collaborators shared by every engine
    """

    def __init__(self, context: RuntimeContext):
        self.context = context
        self._app_config: Optional[AppConfig] = context.app_config
        self._engines: Dict[str, SimulationPlaybackEngine] = {}
        self._active_id: Optional[str] = None
        self._play_all_mode = False
        self._events = EventEmitter()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def load_configs(self, source: Optional[JsonConfigSource] = None) -> List[SimulationConfig]:
        """Load the configuration document and return its simulations."""
        source = source or JsonConfigSource()
        self._app_config = source.load()
        self.context.app_config = self._app_config
        return self.get_configs()

    def get_configs(self) -> List[SimulationConfig]:
        if self._app_config is None:
            return []
        return list(self._app_config.simulations)

    @property
    def app_config(self) -> Optional[AppConfig]:
        return self._app_config

    def _resolve(self, id_or_config: Union[str, SimulationConfig]) -> SimulationConfig:
        if isinstance(id_or_config, SimulationConfig):
            return id_or_config
        config = self._app_config.find(id_or_config) if self._app_config else None
        if config is None:
            raise InvalidConfigError(f"Avalanche config not found: {id_or_config}")
        return config

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _create_engine(self, config: SimulationConfig) -> SimulationPlaybackEngine:
        ctx = self.context
        kwargs = {}
        if self._app_config is not None:
            kwargs = dict(
                terrain_config=self._app_config.terrain_for(config),
                animation=self._app_config.animation,
                color_stops=self._app_config.color_stops,
            )

        return SimulationPlaybackEngine(
            config,
            elevation_service=elevation_service_for(config, ctx.base_path, ctx.elevation_service),
            scheduler=ctx.scheduler,
            transport=ctx.transport,
            base_path=ctx.base_path,
            show_progress=ctx.show_progress,
            **kwargs,
        )

    def load_simulation(
        self,
        id_or_config: Union[str, SimulationConfig],
        on_progress: Optional[ProgressCallback] = None,
    ) -> SimulationPlaybackEngine:
        """
        Return the loaded engine for a simulation, creating and initializing it
        if needed. A failed initialization registers nothing.

        Raises:
            InvalidConfigError: If the id is not in the loaded configs
        """
        config = self._resolve(id_or_config)

        engine = self._engines.get(config.id)
        if engine is not None:
            return engine

        engine = self._create_engine(config)
        engine.initialize(self.context.surface, on_progress)
        # Shown later by switch_to or play_all
        engine.hide()
        self._engines[config.id] = engine
        return engine

    def load_all(self, on_progress: Optional[ProgressCallback] = None) -> None:
        """
        Initialize every configured simulation, one after another.

        ``on_progress(loaded, total)`` counts simulations, not frames.
        """
        configs = self.get_configs()
        total = len(configs)

        for loaded, config in enumerate(
            tqdm(configs, desc="Loading simulations", disable=not self.context.show_progress),
            start=1,
        ):
            self.load_simulation(config)
            self._emit(EventType.LOAD_PROGRESS, loaded=loaded, total=total)
            if on_progress is not None:
                on_progress(loaded, total)

        logger.info("Loaded %d simulations", len(self._engines))
        self._emit(EventType.READY)

    # ------------------------------------------------------------------
    # Active simulation
    # ------------------------------------------------------------------

    def _zoom_to(self, extent: Optional[Extent]) -> None:
        if extent is not None:
            self.context.surface.fit_to_extent(
                extent.expand(CAMERA_EXTENT_EXPAND), CAMERA_ANIMATION_DURATION_MS
            )

    def switch_to(self, simulation_id: str, on_progress: Optional[ProgressCallback] = None) -> None:
        """
        Make ``simulation_id`` the active simulation.

        The target is loaded first; if that fails the current simulation stays
        active and untouched.

        Raises:
            InvalidConfigError: If the id is not in the loaded configs
        """
        engine = self.load_simulation(simulation_id, on_progress)

        current = self.get_active_simulation()
        if current is not None and current is not engine:
            current.pause()
            current.hide()

        engine.show()
        engine.display_frame(0)
        self._active_id = simulation_id

        self._zoom_to(engine.extent)
        logger.info("Switched to simulation %s", simulation_id)
        self._emit(EventType.AVALANCHE_CHANGE, simulation_id=simulation_id)

    def get_active_simulation(self) -> Optional[SimulationPlaybackEngine]:
        if self._active_id is None:
            return None
        return self._engines.get(self._active_id)

    def get_active_config(self) -> Optional[SimulationConfig]:
        if self._active_id is None or self._app_config is None:
            return None
        return self._app_config.find(self._active_id)

    def get_all_simulations(self) -> Dict[str, SimulationPlaybackEngine]:
        return dict(self._engines)

    # ------------------------------------------------------------------
    # Play-all mode
    # ------------------------------------------------------------------

    def play_all(self) -> None:
        """Show every loaded simulation from frame 0 and play them together."""
        self._play_all_mode = True

        for engine in self._engines.values():
            engine.display_frame(0)
            engine.show()

        self._zoom_to(self.get_combined_extent())

        for engine in self._engines.values():
            engine.play()

    def stop_all(self) -> None:
        """Leave play-all mode, leaving only the active simulation shown."""
        self._play_all_mode = False

        for engine in self._engines.values():
            engine.pause()
            engine.hide()

        active = self.get_active_simulation()
        if active is not None:
            active.show()

    def is_play_all_mode(self) -> bool:
        return self._play_all_mode

    def toggle_play_all(self) -> None:
        """Pause everything if anything plays, else play everything (play-all mode only)."""
        if not self._play_all_mode:
            return

        any_playing = self.is_any_playing()
        for engine in self._engines.values():
            if any_playing:
                engine.pause()
            else:
                engine.play()

    def is_any_playing(self) -> bool:
        return any(engine.is_playing for engine in self._engines.values())

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    def pause_all(self) -> None:
        for engine in self._engines.values():
            engine.pause()

    def reset_all(self) -> None:
        for engine in self._engines.values():
            engine.reset()

    def set_speed_all(self, speed_ms: int) -> None:
        for engine in self._engines.values():
            engine.set_speed(speed_ms)

    def set_smoothing_all(self, factor: int) -> None:
        for engine in self._engines.values():
            engine.set_smoothing(factor)

    def set_flatten_passes_all(self, passes: int) -> None:
        for engine in self._engines.values():
            engine.set_flatten_passes(passes)

    def set_exaggeration_all(self, factor: float) -> None:
        for engine in self._engines.values():
            engine.set_exaggeration(factor)

    def seek_all_to_time(self, time: float) -> None:
        """Seek every engine; engines whose last step is before ``time`` stay put."""
        for engine in self._engines.values():
            engine.seek_to_time(time)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_combined_extent(self) -> Optional[Extent]:
        """Union of every loaded engine's extent, or None when nothing is loaded."""
        combined = None
        for engine in self._engines.values():
            extent = engine.extent
            if extent is None:
                continue
            combined = extent if combined is None else combined.union(extent)
        return combined

    def get_max_time_range(self) -> Tuple[float, float]:
        """Earliest start and latest end over all configured simulations."""
        configs = self.get_configs()
        if not configs:
            return (0.0, 0.0)
        return (
            min(c.time_range[0] for c in configs),
            max(c.time_range[1] for c in configs),
        )

    def get_min_time_interval(self) -> float:
        configs = self.get_configs()
        if not configs:
            return 1.0
        return min(c.time_interval for c in configs)

    # ------------------------------------------------------------------
    # Events and teardown
    # ------------------------------------------------------------------

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        self._events.subscribe(event_type, handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        self._events.unsubscribe(event_type, handler)

    def _emit(self, event_type: EventType, **fields) -> None:
        self._events.emit(Event(type=event_type, **fields))

    def dispose(self) -> None:
        """Dispose every engine and forget the active simulation."""
        for engine in self._engines.values():
            engine.dispose()
        self._engines.clear()
        self._active_id = None
        self._play_all_mode = False
        self._events.clear()
