"""
Playback engine for a single avalanche simulation.

The engine loads every frame of a simulation, builds one mesh per time step,
attaches the meshes (hidden) to a render surface and then plays them back by
toggling visibility. Lifecycle::

    UNINITIALIZED -> LOADING -> READY <-> PLAYING / PAUSED -> DISPOSED

Changing smoothing, flatten passes or exaggeration rebuilds the whole mesh
cache synchronously before the current frame is shown again. All work runs on
one thread; the playback timer callback is the only re-entry point.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from src.config import (
    DATA_DIR,
    DEFAULT_EXAGGERATION_FACTOR,
    DEFAULT_FLATTEN_PASSES,
    DEFAULT_GRID_RESOLUTION,
    DEFAULT_PLAYBACK_SPEED_MS,
    DEFAULT_SMOOTHING_FACTOR,
)
from src.avalanche.color_mapping import COLOR_STOPS
from src.avalanche.elevation import ElevationService, elevation_service_for
from src.avalanche.events import Event, EventEmitter, EventHandler, EventType
from src.avalanche.exceptions import DisposedError, NoExtentError
from src.avalanche.interpolation import smoothed_grid
from src.avalanche.mesh_builder import build_mesh
from src.avalanche.models import (
    AnimationDefaults,
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
from src.avalanche.raster_loader import (
    FrameTransport,
    ProgressCallback,
    preload_all_frames,
    time_steps,
)
from src.avalanche.render_surface import MeshHandle, RenderSurface
from src.avalanche.scheduler import AsyncioScheduler, PeriodicTimer, Scheduler

logger = logging.getLogger(__name__)

_READY_STATES = (EngineStatus.READY, EngineStatus.PLAYING, EngineStatus.PAUSED)


class SimulationPlaybackEngine:
    """
    Frame cache, mesh cache and playback state machine for one simulation.

    Args:
        config: Simulation configuration
        elevation_service: Ground elevation source (default: chosen from the
            config's ``dem_source``, else the ArcGIS world elevation service)
        scheduler: Timer source for playback (default: running asyncio loop)
        transport: Frame transport (default: chosen from base_path)
        base_path: Root URL or directory of the frame folders
        terrain_config: Grid resolution and initial exaggeration
        animation: Initial playback speed, smoothing factor and flatten passes
        color_stops: Color law for flow heights
        show_progress: Show a progress bar while loading frames
    """

    def __init__(
        self,
        config: SimulationConfig,
        elevation_service: Optional[ElevationService] = None,
        scheduler: Optional[Scheduler] = None,
        transport: Optional[FrameTransport] = None,
        base_path: Union[str, Path] = DATA_DIR,
        terrain_config: Optional[TerrainConfig] = None,
        animation: Optional[AnimationDefaults] = None,
        color_stops: Sequence[ColorStop] = COLOR_STOPS,
        show_progress: bool = False,
    ):
        terrain_config = terrain_config or TerrainConfig(
            exaggeration_factor=DEFAULT_EXAGGERATION_FACTOR,
            grid_resolution=DEFAULT_GRID_RESOLUTION,
        )
        animation = animation or AnimationDefaults(
            playback_speed=DEFAULT_PLAYBACK_SPEED_MS,
            smoothing_factor=DEFAULT_SMOOTHING_FACTOR,
            flatten_passes=DEFAULT_FLATTEN_PASSES,
        )

        self._config = config
        self._time_steps: List[float] = time_steps(config)
        self._grid_resolution = terrain_config.grid_resolution
        self._base_path = base_path
        self._transport = transport
        self._elevation_service = elevation_service or elevation_service_for(config, base_path)
        self._scheduler = scheduler or AsyncioScheduler()
        self._color_stops = list(color_stops)
        self._show_progress = show_progress

        self._state = PlaybackState(
            current_frame_index=0,
            is_playing=False,
            playback_speed=animation.playback_speed,
            smoothing_factor=animation.smoothing_factor,
            flatten_passes=animation.flatten_passes,
            exaggeration_factor=terrain_config.exaggeration_factor,
        )
        self._status = EngineStatus.UNINITIALIZED
        self._surface: Optional[RenderSurface] = None
        self._timer: Optional[PeriodicTimer] = None
        self._shown = True

        self._frame_cache: Dict[float, FlowHeightGrid] = {}
        self._mesh_cache: Dict[float, Mesh] = {}
        self._mesh_handles: Dict[float, MeshHandle] = {}
        self._extent: Optional[Extent] = None
        self._base_ground: Optional[ElevationGrid] = None
        self._smoothed_ground: Optional[ElevationGrid] = None
        self._current_frame_time: Optional[float] = None

        self._events = EventEmitter()

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def is_disposed(self) -> bool:
        return self._status is EngineStatus.DISPOSED

    @property
    def is_ready(self) -> bool:
        return self._status in _READY_STATES

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def extent(self) -> Optional[Extent]:
        return self._extent

    @property
    def time_steps(self) -> List[float]:
        return list(self._time_steps)

    @property
    def state(self) -> PlaybackState:
        """Snapshot of the playback state."""
        return self._state.copy()

    @property
    def is_playing(self) -> bool:
        return self._state.is_playing

    @property
    def current_frame_index(self) -> int:
        return self._state.current_frame_index

    @property
    def current_time(self) -> float:
        if not self._time_steps:
            return 0.0
        return self._time_steps[self._state.current_frame_index]

    @property
    def total_frames(self) -> int:
        return len(self._time_steps)

    @property
    def frame_count(self) -> int:
        """Number of time steps that loaded successfully."""
        return len(self._frame_cache)

    @property
    def is_shown(self) -> bool:
        return self._shown

    @property
    def terrain_config(self) -> TerrainConfig:
        return TerrainConfig(
            exaggeration_factor=self._state.exaggeration_factor,
            grid_resolution=self._grid_resolution,
        )

    @property
    def ground(self) -> Optional[ElevationGrid]:
        return self._base_ground

    def mesh_for_time(self, time: float) -> Optional[Mesh]:
        return self._mesh_cache.get(time)

    def meshes(self) -> Dict[float, Mesh]:
        """Cached meshes by time step (frames without flow are absent)."""
        return dict(self._mesh_cache)

    def frame_for_time(self, time: float) -> Optional[FlowHeightGrid]:
        return self._frame_cache.get(time)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        self._check_not_disposed()
        self._events.subscribe(event_type, handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        self._check_not_disposed()
        self._events.unsubscribe(event_type, handler)

    def _emit(self, event_type: EventType, **fields) -> None:
        self._events.emit(Event(type=event_type, simulation_id=self._config.id, **fields))

    # ------------------------------------------------------------------
    # Initialization and cache building
    # ------------------------------------------------------------------

    def _check_not_disposed(self) -> None:
        if self._status is EngineStatus.DISPOSED:
            raise DisposedError(f"Simulation {self._config.id} has been disposed")

    def initialize(
        self, surface: RenderSurface, on_progress: Optional[ProgressCallback] = None
    ) -> None:
        """
        Load all frames, query ground elevations and build the mesh cache.

        Meshes are attached to ``surface`` hidden. On failure the engine emits
        an ``error`` event, returns to UNINITIALIZED with empty caches and the
        exception propagates.

        Raises:
            NoFramesError: If no frame loaded
            NoExtentError: If the first frame has no usable extent
        """
        self._check_not_disposed()
        if self.is_ready:
            logger.debug("Simulation %s already initialized", self._config.id)
            return

        self._status = EngineStatus.LOADING

        def progress(loaded, total):
            self._emit(EventType.LOAD_PROGRESS, loaded=loaded, total=total)
            if on_progress is not None:
                on_progress(loaded, total)

        try:
            self._frame_cache = preload_all_frames(
                self._config,
                self._grid_resolution,
                on_progress=progress,
                base_path=self._base_path,
                transport=self._transport,
                show_progress=self._show_progress,
            )

            first_frame = next(iter(self._frame_cache.values()))
            extent = first_frame.extent
            if extent is None or not extent.is_valid():
                raise NoExtentError(f"Could not determine extent for {self._config.name}")
            self._extent = extent

            self._base_ground = self._elevation_service.query_grid_elevations(
                extent, self._grid_resolution
            )
            if self._base_ground.degraded:
                logger.warning(
                    "Ground elevations unavailable for %s, meshes use flat ground",
                    self._config.name,
                )

            self._surface = surface
            self._update_smoothed_grid()
            self._rebuild_mesh_cache()
        except Exception as e:
            logger.error("Failed to initialize %s: %s", self._config.name, e)
            self._clear_caches()
            self._surface = None
            self._status = EngineStatus.UNINITIALIZED
            self._emit(EventType.ERROR, error=e)
            raise

        self._status = EngineStatus.READY
        self._emit(EventType.READY)

    def _update_smoothed_grid(self) -> None:
        if self._base_ground is None:
            return

        if self._state.smoothing_factor > 1:
            self._smoothed_ground = smoothed_grid(
                self._base_ground.points,
                self._base_ground.elevations,
                self._base_ground.resolution,
                self._state.smoothing_factor,
                degraded=self._base_ground.degraded,
            )
        else:
            self._smoothed_ground = None

    def _detach_all(self) -> None:
        if self._surface is not None:
            for handle in self._mesh_handles.values():
                self._surface.detach(handle)
        self._mesh_handles.clear()
        self._mesh_cache.clear()

    def _rebuild_mesh_cache(self) -> None:
        """Replace every cached mesh with one built from the current parameters."""
        if self._surface is None or self._base_ground is None:
            return

        self._detach_all()
        terrain_config = self.terrain_config

        for time in self._time_steps:
            frame = self._frame_cache.get(time)
            if frame is None:
                continue

            mesh = build_mesh(
                frame,
                self._base_ground,
                self._smoothed_ground,
                terrain_config,
                self._state.smoothing_factor,
                self._state.flatten_passes,
                self._color_stops,
            )
            if mesh is not None:
                self._mesh_cache[time] = mesh
                self._mesh_handles[time] = self._surface.attach(mesh)

        logger.info(
            "Built %d meshes for %s (smoothing %d, flatten %d, exaggeration %.1f)",
            len(self._mesh_cache),
            self._config.name,
            self._state.smoothing_factor,
            self._state.flatten_passes,
            self._state.exaggeration_factor,
        )

    def _clear_caches(self) -> None:
        self._detach_all()
        self._frame_cache.clear()
        self._extent = None
        self._base_ground = None
        self._smoothed_ground = None
        self._current_frame_time = None

    # ------------------------------------------------------------------
    # Frame navigation
    # ------------------------------------------------------------------

    def display_frame(self, frame_index: int) -> None:
        """
        Show the mesh of ``frame_index`` and hide the previous one.

        Out-of-range indices are ignored. A frame without flow has no mesh, so
        nothing is visible for it. Emits ``frame_change``.
        """
        self._check_not_disposed()
        if not self.is_ready:
            logger.debug("display_frame(%d) ignored: %s not ready", frame_index, self._config.id)
            return
        if not 0 <= frame_index < len(self._time_steps):
            return

        time = self._time_steps[frame_index]

        if self._current_frame_time is not None:
            previous = self._mesh_handles.get(self._current_frame_time)
            if previous is not None:
                self._surface.set_visible(previous, False)

        handle = self._mesh_handles.get(time)
        if handle is not None and self._shown:
            self._surface.set_visible(handle, True)

        self._current_frame_time = time
        self._state.current_frame_index = frame_index
        self._emit(
            EventType.FRAME_CHANGE,
            frame_index=frame_index,
            total_frames=len(self._time_steps),
            time=time,
        )

    def step_forward(self) -> None:
        self._check_not_disposed()
        if self._time_steps:
            self.display_frame((self._state.current_frame_index + 1) % len(self._time_steps))

    def step_backward(self) -> None:
        self._check_not_disposed()
        if self._time_steps:
            self.display_frame((self._state.current_frame_index - 1) % len(self._time_steps))

    def seek_to_time(self, time: float) -> None:
        """
        Display the first time step at or after ``time``.

        Seeking past the last time step leaves the current frame unchanged.
        """
        self._check_not_disposed()
        for index, step in enumerate(self._time_steps):
            if step >= time:
                self.display_frame(index)
                return
        logger.debug("seek_to_time(%s) is past the last step of %s", time, self._config.id)

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def _advance(self) -> None:
        next_index = self._state.current_frame_index + 1
        if next_index >= len(self._time_steps):
            next_index = 0
        self.display_frame(next_index)

    def play(self) -> None:
        """Start looping playback at ``playback_speed`` ms per frame."""
        self._check_not_disposed()
        if self._state.is_playing:
            return
        if not self.is_ready:
            logger.debug("play() ignored: %s not ready", self._config.id)
            return

        # Raises before any state changes when the scheduler cannot run
        timer = PeriodicTimer(self._scheduler, self._state.playback_speed, self._advance)
        timer.start()
        self._timer = timer

        self._state.is_playing = True
        self._status = EngineStatus.PLAYING
        self._emit(EventType.PLAY_STATE_CHANGE, is_playing=True)

    def pause(self) -> None:
        """Stop playback. No frame advance fires after this returns."""
        self._check_not_disposed()
        self._state.is_playing = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.is_ready:
            self._status = EngineStatus.PAUSED
        self._emit(EventType.PLAY_STATE_CHANGE, is_playing=False)

    def toggle_play(self) -> None:
        if self._state.is_playing:
            self.pause()
        else:
            self.play()

    def reset(self) -> None:
        self.pause()
        self.display_frame(0)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def set_speed(self, speed_ms: int) -> None:
        """Change ms per frame; a playing engine restarts its timer immediately."""
        self._check_not_disposed()
        if speed_ms <= 0:
            raise ValueError(f"Playback speed must be > 0 ms, got {speed_ms}")

        self._state.playback_speed = speed_ms
        if self._state.is_playing:
            self.pause()
            self.play()

    def _apply_mesh_parameters(self) -> None:
        if not self.is_ready:
            return
        self._rebuild_mesh_cache()
        self.display_frame(self._state.current_frame_index)

    def set_smoothing(self, factor: int) -> None:
        """Change the upsampling factor (1 = none) and rebuild every mesh."""
        self._check_not_disposed()
        if int(factor) != factor or factor < 1:
            raise ValueError(f"Smoothing factor must be an integer >= 1, got {factor}")

        self._state.smoothing_factor = int(factor)
        self._update_smoothed_grid()
        self._apply_mesh_parameters()

    def set_flatten_passes(self, passes: int) -> None:
        """Change the number of smoothing passes and rebuild every mesh."""
        self._check_not_disposed()
        if int(passes) != passes or passes < 0:
            raise ValueError(f"Flatten passes must be an integer >= 0, got {passes}")

        self._state.flatten_passes = int(passes)
        self._apply_mesh_parameters()

    def set_exaggeration(self, factor: float) -> None:
        """Change the flow height exaggeration and rebuild every mesh."""
        self._check_not_disposed()
        if factor < 0:
            raise ValueError(f"Exaggeration factor must be >= 0, got {factor}")

        self._state.exaggeration_factor = float(factor)
        self._apply_mesh_parameters()

    # ------------------------------------------------------------------
    # Visibility and teardown
    # ------------------------------------------------------------------

    def hide(self) -> None:
        """Hide every cached mesh, keeping the caches."""
        self._check_not_disposed()
        self._shown = False
        if self._surface is None:
            return
        for handle in self._mesh_handles.values():
            self._surface.set_visible(handle, False)

    def show(self) -> None:
        """Show the mesh of the current frame."""
        self._check_not_disposed()
        self._shown = True
        if self._surface is None or self._current_frame_time is None:
            return
        handle = self._mesh_handles.get(self._current_frame_time)
        if handle is not None:
            self._surface.set_visible(handle, True)

    def dispose(self) -> None:
        """Stop playback, detach every mesh and drop all state. Idempotent."""
        if self._status is EngineStatus.DISPOSED:
            return

        self.pause()
        self._clear_caches()
        self._events.clear()
        self._surface = None
        self._status = EngineStatus.DISPOSED
        logger.debug("Disposed simulation %s", self._config.id)
