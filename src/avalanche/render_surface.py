"""
Render surface collaborators.

Playback engines never draw. They attach meshes to a render surface, toggle
their visibility and ask it to fit the view to an extent. Meshes start hidden
when attached.
"""

import itertools
import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple, Union

import numpy as np
from matplotlib.cm import ScalarMappable
from matplotlib.colors import Normalize
from matplotlib.figure import Figure
from mpl_toolkits.mplot3d.art3d import Poly3DCollection

from src.config import CAMERA_ANIMATION_DURATION_MS
from src.avalanche.color_mapping import COLOR_STOPS, flow_height_colormap
from src.avalanche.models import Extent, Mesh

logger = logging.getLogger(__name__)

MeshHandle = int


class RenderSurface(Protocol):
    """Display surface shared by all engines of a coordinator."""

    def attach(self, mesh: Mesh) -> MeshHandle:
        """Add a mesh (hidden) and return its handle."""

    def detach(self, handle: MeshHandle) -> None:
        """Remove a mesh."""

    def set_visible(self, handle: MeshHandle, visible: bool) -> None:
        """Show or hide a mesh."""

    def fit_to_extent(self, extent: Extent, duration_ms: int = CAMERA_ANIMATION_DURATION_MS) -> None:
        """Animate the view to frame ``extent``."""


class InMemoryRenderSurface:
    """
    Headless render surface that only keeps bookkeeping.

    Attributes:
        meshes: handle -> attached Mesh
        visibility: handle -> visible flag
        view_history: Every extent passed to fit_to_extent, oldest first
    """

    def __init__(self):
        self.meshes: Dict[MeshHandle, Mesh] = {}
        self.visibility: Dict[MeshHandle, bool] = {}
        self.view_history: List[Tuple[Extent, int]] = []
        self._ids = itertools.count(1)

    def attach(self, mesh: Mesh) -> MeshHandle:
        handle = next(self._ids)
        self.meshes[handle] = mesh
        self.visibility[handle] = False
        return handle

    def detach(self, handle: MeshHandle) -> None:
        del self.meshes[handle]
        del self.visibility[handle]

    def set_visible(self, handle: MeshHandle, visible: bool) -> None:
        if handle not in self.meshes:
            raise KeyError(f"Unknown mesh handle {handle}")
        self.visibility[handle] = bool(visible)

    def fit_to_extent(self, extent: Extent, duration_ms: int = CAMERA_ANIMATION_DURATION_MS) -> None:
        self.view_history.append((extent, duration_ms))
        logger.debug(f"Fitting view to {extent} over {duration_ms} ms")

    @property
    def view_extent(self) -> Optional[Extent]:
        return self.view_history[-1][0] if self.view_history else None

    def is_visible(self, handle: MeshHandle) -> bool:
        return self.visibility.get(handle, False)

    def visible_handles(self) -> List[MeshHandle]:
        return [h for h, visible in self.visibility.items() if visible]

    def visible_meshes(self) -> List[Mesh]:
        return [self.meshes[h] for h in self.visible_handles()]

    def __len__(self) -> int:
        return len(self.meshes)


class MatplotlibRenderSurface(InMemoryRenderSurface):
    """
    Render surface that can draw its visible meshes to an image file.

    Triangles are drawn as a Poly3DCollection with their flat colors.
    """

    def __init__(self, figsize=(10, 8), dpi: int = 100, elev: float = 35.0, azim: float = -130.0):
        super().__init__()
        self.figsize = figsize
        self.dpi = dpi
        self.elev = elev
        self.azim = azim

    def save_snapshot(
        self, output_path: Union[str, Path], title: Optional[str] = None, legend: bool = True
    ) -> Path:
        """
        Render visible meshes to ``output_path``.

        The horizontal limits follow the last fitted extent, or the mesh bounds
        when the view was never fitted.
        """
        output_path = Path(output_path)
        fig = Figure(figsize=self.figsize, dpi=self.dpi)
        ax = fig.add_subplot(projection="3d")

        meshes = self.visible_meshes()
        for mesh in meshes:
            triangles = mesh.positions[mesh.faces]
            facecolors = mesh.colors[mesh.faces[:, 0]] / 255.0
            ax.add_collection3d(Poly3DCollection(triangles, facecolors=facecolors, edgecolors="none"))

        if meshes:
            lows, highs = zip(*(m.bounds() for m in meshes))
            low = np.min(lows, axis=0)
            high = np.max(highs, axis=0)
            ax.set_zlim(low[2], high[2] if high[2] > low[2] else low[2] + 1.0)
        else:
            low = high = None

        extent = self.view_extent
        if extent is not None:
            ax.set_xlim(extent.xmin, extent.xmax)
            ax.set_ylim(extent.ymin, extent.ymax)
        elif low is not None:
            ax.set_xlim(low[0], high[0])
            ax.set_ylim(low[1], high[1])

        ax.view_init(elev=self.elev, azim=self.azim)
        ax.set_xlabel("x")
        ax.set_ylabel("y")
        ax.set_zlabel("z (m)")
        if title:
            ax.set_title(title)

        if legend:
            mappable = ScalarMappable(
                norm=Normalize(COLOR_STOPS[0].value, COLOR_STOPS[-1].value),
                cmap=flow_height_colormap(COLOR_STOPS),
            )
            fig.colorbar(mappable, ax=ax, shrink=0.6, label="Flow height (m)")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path)
        logger.info(f"Saved snapshot of {len(meshes)} meshes to {output_path}")
        return output_path
