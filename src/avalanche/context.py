"""
Process-scoped wiring shared by the coordinator and its engines.

Build one RuntimeContext at startup and pass it to the coordinator; nothing in
the package looks collaborators up globally.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from src.config import DATA_DIR
from src.avalanche.elevation import ArcGISElevationService, ElevationService
from src.avalanche.models import AppConfig
from src.avalanche.raster_loader import FrameTransport, transport_for
from src.avalanche.render_surface import InMemoryRenderSurface, RenderSurface
from src.avalanche.scheduler import AsyncioScheduler, Scheduler


@dataclass
class RuntimeContext:
    """
    Collaborators for one running application.

    Attributes:
        surface: Render surface shared by all engines
        elevation_service: Ground elevation source for simulations without a DEM
        scheduler: Timer source for playback
        transport: Frame transport
        base_path: Root URL or directory of the frame folders
        app_config: Loaded configuration, if any
        show_progress: Show progress bars while loading frames
    """

    surface: RenderSurface
    elevation_service: ElevationService
    scheduler: Scheduler
    transport: FrameTransport
    base_path: Union[str, Path] = DATA_DIR
    app_config: Optional[AppConfig] = None
    show_progress: bool = False


def create_default_context(
    base_path: Union[str, Path] = DATA_DIR,
    surface: Optional[RenderSurface] = None,
    elevation_service: Optional[ElevationService] = None,
    scheduler: Optional[Scheduler] = None,
    transport: Optional[FrameTransport] = None,
    app_config: Optional[AppConfig] = None,
    show_progress: bool = False,
) -> RuntimeContext:
    """
    Production wiring: ArcGIS elevations, asyncio timers and a transport
    chosen from ``base_path``. Any collaborator can be overridden.
    """
    return RuntimeContext(
        surface=surface if surface is not None else InMemoryRenderSurface(),
        elevation_service=elevation_service or ArcGISElevationService(),
        scheduler=scheduler or AsyncioScheduler(),
        transport=transport or transport_for(base_path),
        base_path=base_path,
        app_config=app_config,
        show_progress=show_progress,
    )
