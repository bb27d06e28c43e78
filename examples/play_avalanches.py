#!/usr/bin/env python3
"""
Avalanche playback demo: load flow-height frames and play them over terrain.

1. Load the avalanche configuration document (local path or URL)
2. Load one simulation (or all of them) into playback engines
3. Play on an asyncio event loop for a given duration, or step headlessly
4. Optionally save matplotlib snapshots of the visible meshes

Usage:
    python examples/play_avalanches.py --list
    python examples/play_avalanches.py --simulation north-couloir --seconds 10
    python examples/play_avalanches.py --all --headless --frames 30 --snapshot-dir output/
    python examples/play_avalanches.py --data-url https://example.org/data --flat-ground

Frame rasters are not shipped; see data/README.md for the expected layout.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import (
    AVALANCHE_CONFIG_PATH,
    DATA_DIR,
    DEFAULT_LOG_LEVEL,
    FLATTEN_PASS_OPTIONS,
    PLAYBACK_SPEEDS,
    SMOOTHING_FACTOR_OPTIONS,
)
from src.avalanche.config_loader import JsonConfigSource
from src.avalanche.context import create_default_context
from src.avalanche.coordinator import MultiSimulationCoordinator
from src.avalanche.elevation import ConstantElevationService
from src.avalanche.events import EventType
from src.avalanche.exceptions import NoFramesError
from src.avalanche.render_surface import MatplotlibRenderSurface
from src.avalanche.scheduler import AsyncioScheduler, ManualScheduler
from src.utils.helpers import setup_logging

logger = setup_logging("src", level=DEFAULT_LOG_LEVEL)


def print_progress(loaded, total):
    print(f"  {loaded}/{total}")


def save_snapshot(surface, snapshot_dir, name, title=None):
    if snapshot_dir is None:
        return
    path = surface.save_snapshot(Path(snapshot_dir) / f"{name}.png", title=title)
    print(f"Saved {path}")


def run_headless(coordinator, scheduler, surface, frames, speed_ms, snapshot_dir):
    """Advance virtual time frame by frame, saving a snapshot per step."""
    for step in range(frames):
        scheduler.advance(speed_ms / 1000.0)
        active = coordinator.get_active_simulation()
        title = f"t = {active.current_time:.2f} s" if active is not None else None
        save_snapshot(surface, snapshot_dir, f"frame_{step:04d}", title)


async def run_realtime(coordinator, seconds):
    """Let the engines' timers run on the event loop for ``seconds``."""
    await asyncio.sleep(seconds)
    coordinator.pause_all()


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Avalanche flow-height playback")
    parser.add_argument(
        "--config",
        type=str,
        default=str(AVALANCHE_CONFIG_PATH),
        help=f"Configuration document path or URL (default: {AVALANCHE_CONFIG_PATH})",
    )
    parser.add_argument(
        "--data-url",
        type=str,
        default=str(DATA_DIR),
        help="Root directory or URL of the frame folders",
    )
    parser.add_argument("--list", action="store_true", help="List configured simulations and exit")
    parser.add_argument("--simulation", type=str, default=None, help="Simulation id to play")
    parser.add_argument("--all", action="store_true", help="Load every simulation and play them together")
    parser.add_argument(
        "--speed",
        type=str,
        choices=list(PLAYBACK_SPEEDS),
        default="1x",
        help="Playback speed (default: 1x)",
    )
    parser.add_argument(
        "--smoothing",
        type=int,
        choices=SMOOTHING_FACTOR_OPTIONS,
        default=None,
        help="Upsampling factor (1 = none)",
    )
    parser.add_argument(
        "--flatten-passes",
        type=int,
        choices=FLATTEN_PASS_OPTIONS,
        default=None,
        help="Smoothing passes after upsampling",
    )
    parser.add_argument("--exaggeration", type=float, default=None, help="Flow height exaggeration")
    parser.add_argument("--flat-ground", action="store_true", help="Skip the elevation service")
    parser.add_argument("--headless", action="store_true", help="Step with virtual time instead of real time")
    parser.add_argument("--frames", type=int, default=20, help="Frames to step in --headless mode")
    parser.add_argument("--seconds", type=float, default=10.0, help="Seconds to play in real time")
    parser.add_argument("--snapshot-dir", type=str, default=None, help="Directory for PNG snapshots")
    args = parser.parse_args()

    app_config = JsonConfigSource(args.config).load()

    if args.list:
        for sim in app_config.simulations:
            start, end = sim.time_range
            print(f"{sim.id:20s} {sim.name:30s} {start:g}-{end:g} s every {sim.time_interval:g} s")
        return 0

    if not args.all and args.simulation is None:
        parser.error("choose --simulation ID or --all")

    speed_ms = PLAYBACK_SPEEDS[args.speed]
    scheduler = ManualScheduler() if args.headless else None
    surface = MatplotlibRenderSurface()

    def build(loop_scheduler):
        context = create_default_context(
            base_path=args.data_url,
            surface=surface,
            elevation_service=ConstantElevationService() if args.flat_ground else None,
            scheduler=loop_scheduler,
            app_config=app_config,
            show_progress=True,
        )
        coordinator = MultiSimulationCoordinator(context)
        coordinator.on(
            EventType.AVALANCHE_CHANGE,
            lambda e: logger.info(f"Active simulation: {e.simulation_id}"),
        )

        print("Loading simulations...")
        if args.all:
            coordinator.load_all(on_progress=print_progress)
        coordinator.switch_to(args.simulation or app_config.simulations[0].id)

        coordinator.set_speed_all(speed_ms)
        if args.smoothing is not None:
            coordinator.set_smoothing_all(args.smoothing)
        if args.flatten_passes is not None:
            coordinator.set_flatten_passes_all(args.flatten_passes)
        if args.exaggeration is not None:
            coordinator.set_exaggeration_all(args.exaggeration)

        if args.all:
            coordinator.play_all()
        else:
            coordinator.get_active_simulation().play()
        return coordinator

    try:
        if args.headless:
            coordinator = build(scheduler)
            run_headless(coordinator, scheduler, surface, args.frames, speed_ms, args.snapshot_dir)
        else:

            async def run():
                coordinator = build(AsyncioScheduler(asyncio.get_running_loop()))
                await run_realtime(coordinator, args.seconds)
                return coordinator

            coordinator = asyncio.run(run())
            save_snapshot(surface, args.snapshot_dir, "final")
    except NoFramesError as e:
        logger.error(f"{e}. Frame rasters are not shipped; point --data-url at the frame folders.")
        return 1

    coordinator.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
