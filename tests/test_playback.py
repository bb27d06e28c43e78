"""
Test suite for the simulation playback engine.

Playback timing is driven by ManualScheduler, so no test sleeps.
"""

from unittest.mock import patch

import numpy as np
import pytest

from conftest import BASE_PATH, FakeTransport, register_frames
from src.avalanche.events import EventType
from src.avalanche.exceptions import DisposedError, NoExtentError, NoFramesError
from src.avalanche.models import EngineStatus, Extent, FlowHeightGrid
from src.avalanche.playback import SimulationPlaybackEngine
from src.avalanche.scheduler import AsyncioScheduler


@pytest.fixture
def engine(sim_config, transport, scheduler, slope_elevation, terrain_config, animation_defaults):
    """Uninitialized engine over the three-step fixture simulation."""
    return SimulationPlaybackEngine(
        sim_config,
        elevation_service=slope_elevation,
        scheduler=scheduler,
        transport=transport,
        base_path=BASE_PATH,
        terrain_config=terrain_config,
        animation=animation_defaults,
    )


@pytest.fixture
def ready_engine(engine, surface):
    engine.initialize(surface)
    return engine


def record(engine, event_type):
    events = []
    engine.on(event_type, events.append)
    return events


def visible_mesh_ids(surface):
    return {id(mesh) for mesh in surface.visible_meshes()}


class TestInitialize:
    """Tests for loading and cache building."""

    def test_ready_after_initialize(self, engine, surface):
        ready = record(engine, EventType.READY)

        engine.initialize(surface)

        assert engine.status is EngineStatus.READY
        assert engine.frame_count == 3
        assert engine.total_frames == 3
        assert engine.time_steps == [0.0, 2.0, 4.0]
        assert engine.extent == Extent(0.0, 0.0, 100.0, 100.0, 3857)
        assert len(ready) == 1
        assert ready[0].simulation_id == "sim-a"

    def test_meshes_attached_hidden(self, ready_engine, surface):
        assert len(surface) == 3
        assert surface.visible_handles() == []

    def test_progress_callbacks(self, engine, surface):
        progress = []
        events = record(engine, EventType.LOAD_PROGRESS)

        engine.initialize(surface, on_progress=lambda loaded, total: progress.append((loaded, total)))

        assert progress == [(1, 3), (2, 3), (3, 3)]
        assert [(e.loaded, e.total) for e in events] == progress

    def test_failed_frame_is_skipped(
        self, sim_config, scheduler, surface, slope_elevation, terrain_config, animation_defaults
    ):
        transport = FakeTransport()
        register_frames(transport, sim_config, skip={1})
        engine = SimulationPlaybackEngine(
            sim_config,
            elevation_service=slope_elevation,
            scheduler=scheduler,
            transport=transport,
            base_path=BASE_PATH,
            terrain_config=terrain_config,
            animation=animation_defaults,
        )

        engine.initialize(surface)

        assert engine.frame_count == 2
        assert engine.mesh_for_time(2.0) is None
        assert engine.total_frames == 3

    def test_no_frames_resets_and_raises(
        self, sim_config, scheduler, surface, slope_elevation, terrain_config
    ):
        engine = SimulationPlaybackEngine(
            sim_config,
            elevation_service=slope_elevation,
            scheduler=scheduler,
            transport=FakeTransport(),
            base_path=BASE_PATH,
            terrain_config=terrain_config,
        )
        errors = record(engine, EventType.ERROR)

        with pytest.raises(NoFramesError):
            engine.initialize(surface)

        assert engine.status is EngineStatus.UNINITIALIZED
        assert len(errors) == 1
        assert isinstance(errors[0].error, NoFramesError)
        assert len(surface) == 0

    def test_invalid_extent_raises(self, engine, surface):
        empty_extent = FlowHeightGrid(
            heights=np.ones(25, dtype=np.float32),
            resolution=5,
            max_height=1.0,
            non_zero_count=25,
            extent=Extent(0.0, 0.0, 0.0, 0.0),
        )

        with patch(
            "src.avalanche.playback.preload_all_frames", return_value={0.0: empty_extent}
        ):
            with pytest.raises(NoExtentError):
                engine.initialize(surface)

        assert engine.status is EngineStatus.UNINITIALIZED

    def test_second_initialize_is_noop(self, ready_engine, surface, transport):
        fetched = len(transport.fetched)

        ready_engine.initialize(surface)

        assert len(transport.fetched) == fetched

    def test_mesh_heights_follow_ground(self, ready_engine):
        """Flow sits above the sloped ground by height * exaggeration + offset."""
        mesh = ready_engine.mesh_for_time(0.0)
        ground = 1000.0 + 0.5 * mesh.positions[:, 1]
        lift = mesh.positions[:, 2] - ground

        assert lift.min() == pytest.approx(1.0)
        assert lift.max() == pytest.approx(1.0 + 0.5 * 20.0)


class TestDisplayFrame:
    """Tests for frame navigation."""

    def test_display_sequence(self, ready_engine, surface):
        """0 -> 1 -> 0 leaves frame 0 shown, frame 1 hidden, one event per call."""
        events = record(ready_engine, EventType.FRAME_CHANGE)
        mesh0 = ready_engine.mesh_for_time(0.0)
        mesh1 = ready_engine.mesh_for_time(2.0)

        ready_engine.display_frame(0)
        assert visible_mesh_ids(surface) == {id(mesh0)}
        ready_engine.display_frame(1)
        assert visible_mesh_ids(surface) == {id(mesh1)}
        ready_engine.display_frame(0)

        assert visible_mesh_ids(surface) == {id(mesh0)}
        assert [e.time for e in events] == [0.0, 2.0, 0.0]
        assert [e.frame_index for e in events] == [0, 1, 0]
        assert all(e.total_frames == 3 for e in events)

    @pytest.mark.parametrize("index", [-1, 3, 99])
    def test_out_of_range_is_ignored(self, ready_engine, index):
        events = record(ready_engine, EventType.FRAME_CHANGE)

        ready_engine.display_frame(index)

        assert events == []
        assert ready_engine.current_frame_index == 0

    def test_frame_without_mesh_shows_nothing(
        self, sim_config, scheduler, surface, slope_elevation, terrain_config, animation_defaults
    ):
        transport = FakeTransport()
        register_frames(transport, sim_config, skip={1})
        engine = SimulationPlaybackEngine(
            sim_config,
            elevation_service=slope_elevation,
            scheduler=scheduler,
            transport=transport,
            base_path=BASE_PATH,
            terrain_config=terrain_config,
            animation=animation_defaults,
        )
        engine.initialize(surface)
        engine.display_frame(0)

        engine.display_frame(1)

        assert surface.visible_handles() == []
        assert engine.current_time == 2.0

    def test_not_ready_is_noop(self, engine):
        events = record(engine, EventType.FRAME_CHANGE)

        engine.display_frame(0)

        assert events == []

    def test_step_forward_and_backward_wrap(self, ready_engine):
        ready_engine.step_backward()
        assert ready_engine.current_frame_index == 2
        ready_engine.step_forward()
        assert ready_engine.current_frame_index == 0
        ready_engine.step_forward()
        assert ready_engine.current_time == 2.0


class TestSeekToTime:
    """Tests for seeking by time value."""

    def test_seeks_to_first_step_at_or_after(self, ready_engine):
        ready_engine.seek_to_time(1.0)

        assert ready_engine.current_time == 2.0

    def test_exact_time(self, ready_engine):
        ready_engine.seek_to_time(4.0)

        assert ready_engine.current_frame_index == 2

    def test_past_last_step_is_noop(self, ready_engine):
        """Seeking beyond the end keeps the current frame and emits nothing."""
        ready_engine.display_frame(1)
        events = record(ready_engine, EventType.FRAME_CHANGE)

        ready_engine.seek_to_time(10.0)

        assert ready_engine.current_frame_index == 1
        assert events == []


class TestPlayback:
    """Tests for timer-driven playback."""

    def test_play_advances_and_wraps(self, ready_engine, scheduler):
        ready_engine.display_frame(0)
        states = record(ready_engine, EventType.PLAY_STATE_CHANGE)

        ready_engine.play()
        indices = []
        for _ in range(4):
            scheduler.advance(1.0)
            indices.append(ready_engine.current_frame_index)

        assert indices == [1, 2, 0, 1]
        assert ready_engine.status is EngineStatus.PLAYING
        assert [e.is_playing for e in states] == [True]

    def test_pause_stops_ticks(self, ready_engine, scheduler):
        ready_engine.play()
        scheduler.advance(1.0)
        events = record(ready_engine, EventType.FRAME_CHANGE)

        ready_engine.pause()
        scheduler.advance(10.0)

        assert events == []
        assert ready_engine.is_playing is False
        assert ready_engine.status is EngineStatus.PAUSED

    def test_rapid_toggle_settles(self, ready_engine, scheduler):
        """Only one timer survives any sequence of play/pause calls."""
        for _ in range(5):
            ready_engine.toggle_play()
            ready_engine.toggle_play()
        ready_engine.toggle_play()

        scheduler.advance(1.0)

        assert ready_engine.current_frame_index == 1
        assert scheduler.pending == 1

    def test_play_twice_keeps_one_timer(self, ready_engine, scheduler):
        ready_engine.play()
        ready_engine.play()

        assert scheduler.pending == 1

    def test_failing_frame_handler_does_not_stop_playback(self, ready_engine, scheduler):
        """A handler error surfaces once; the loop keeps ticking afterwards."""
        ready_engine.display_frame(0)
        calls = []

        def flaky(event):
            calls.append(event.frame_index)
            if len(calls) == 1:
                raise RuntimeError("handler failed")

        ready_engine.on(EventType.FRAME_CHANGE, flaky)
        ready_engine.play()

        with pytest.raises(RuntimeError, match="handler failed"):
            scheduler.advance(1.0)
        scheduler.advance(1.0)

        assert calls == [1, 2]
        assert ready_engine.is_playing is True
        assert scheduler.pending == 1

    def test_play_without_event_loop_leaves_engine_stopped(
        self, sim_config, transport, slope_elevation, terrain_config, animation_defaults, surface
    ):
        engine = SimulationPlaybackEngine(
            sim_config,
            elevation_service=slope_elevation,
            scheduler=AsyncioScheduler(),
            transport=transport,
            base_path=BASE_PATH,
            terrain_config=terrain_config,
            animation=animation_defaults,
        )
        engine.initialize(surface)
        states = record(engine, EventType.PLAY_STATE_CHANGE)

        with pytest.raises(RuntimeError):
            engine.play()

        assert engine.is_playing is False
        assert engine.status is EngineStatus.READY
        assert states == []

    def test_set_speed_restarts_timer(self, ready_engine, scheduler):
        ready_engine.play()
        ready_engine.set_speed(250)

        scheduler.advance(0.5)

        assert ready_engine.current_frame_index == 2
        assert ready_engine.state.playback_speed == 250

    def test_set_speed_rejects_non_positive(self, ready_engine):
        with pytest.raises(ValueError):
            ready_engine.set_speed(0)

    def test_reset(self, ready_engine, scheduler):
        ready_engine.play()
        scheduler.advance(2.0)

        ready_engine.reset()

        assert ready_engine.current_frame_index == 0
        assert ready_engine.is_playing is False

    def test_play_before_ready_is_noop(self, engine, scheduler):
        engine.play()

        assert engine.is_playing is False
        assert scheduler.pending == 0


class TestParameters:
    """Tests for mesh parameter changes."""

    def test_smoothing_round_trip_restores_meshes(self, ready_engine):
        """setSmoothing(3) then setSmoothing(1) rebuilds identical meshes."""
        original = ready_engine.meshes()

        ready_engine.set_smoothing(3)
        smoothed = ready_engine.meshes()
        ready_engine.set_smoothing(1)
        restored = ready_engine.meshes()

        assert smoothed[0.0].triangle_count > original[0.0].triangle_count
        assert set(restored) == set(original)
        for time, mesh in original.items():
            assert restored[time].same_geometry(mesh)

    def test_rebuild_keeps_current_frame_visible(self, ready_engine, surface):
        ready_engine.display_frame(1)

        ready_engine.set_flatten_passes(3)

        assert visible_mesh_ids(surface) == {id(ready_engine.mesh_for_time(2.0))}
        assert len(surface) == 3

    def test_exaggeration_rebuilds(self, ready_engine):
        before = ready_engine.mesh_for_time(0.0)

        ready_engine.set_exaggeration(40.0)

        after = ready_engine.mesh_for_time(0.0)
        assert after.positions[:, 2].max() > before.positions[:, 2].max()
        assert ready_engine.state.exaggeration_factor == 40.0

    def test_setters_before_ready_store_values(self, engine, surface):
        engine.set_smoothing(2)
        engine.set_flatten_passes(1)

        engine.initialize(surface)

        assert engine.state.smoothing_factor == 2
        # 5x5 grid upsampled by 2 -> 9x9
        assert engine.mesh_for_time(0.0).triangle_count > 2 * 4 * 4

    @pytest.mark.parametrize("factor", [0, -1, 1.5])
    def test_invalid_smoothing_raises(self, ready_engine, factor):
        with pytest.raises(ValueError):
            ready_engine.set_smoothing(factor)

    def test_invalid_flatten_passes_raises(self, ready_engine):
        with pytest.raises(ValueError):
            ready_engine.set_flatten_passes(-1)


class TestVisibility:
    """Tests for hide/show."""

    def test_hide_and_show(self, ready_engine, surface):
        ready_engine.display_frame(2)

        ready_engine.hide()
        assert surface.visible_handles() == []

        ready_engine.show()
        assert visible_mesh_ids(surface) == {id(ready_engine.mesh_for_time(4.0))}

    def test_hidden_engine_stays_hidden_while_playing(self, ready_engine, surface, scheduler):
        ready_engine.hide()
        ready_engine.play()

        scheduler.advance(2.0)

        assert ready_engine.current_frame_index == 2
        assert surface.visible_handles() == []


class TestDispose:
    """Tests for teardown."""

    def test_dispose_detaches_everything(self, ready_engine, surface, scheduler):
        ready_engine.play()

        ready_engine.dispose()

        assert ready_engine.status is EngineStatus.DISPOSED
        assert ready_engine.is_disposed
        assert len(surface) == 0
        assert ready_engine.frame_count == 0
        scheduler.advance(10.0)

    def test_dispose_is_idempotent(self, ready_engine):
        ready_engine.dispose()
        ready_engine.dispose()

        assert ready_engine.status is EngineStatus.DISPOSED

    @pytest.mark.parametrize(
        "operation",
        [
            lambda e: e.play(),
            lambda e: e.pause(),
            lambda e: e.display_frame(0),
            lambda e: e.seek_to_time(0.0),
            lambda e: e.set_speed(500),
            lambda e: e.set_smoothing(2),
            lambda e: e.show(),
            lambda e: e.on(EventType.READY, print),
        ],
    )
    def test_operations_after_dispose_raise(self, ready_engine, surface, operation):
        ready_engine.dispose()

        with pytest.raises(DisposedError):
            operation(ready_engine)

    def test_initialize_after_dispose_raises(self, ready_engine, surface):
        ready_engine.dispose()

        with pytest.raises(DisposedError):
            ready_engine.initialize(surface)
