"""
Tests for render surfaces.

MatplotlibRenderSurface draws with the Agg backend selected in conftest.
"""

import numpy as np
import pytest

from src.avalanche.models import Extent, Mesh
from src.avalanche.render_surface import InMemoryRenderSurface, MatplotlibRenderSurface


def triangle_mesh(z=0.0):
    positions = np.array([[0.0, 0.0, z], [10.0, 0.0, z + 1.0], [0.0, 10.0, z + 2.0]])
    colors = np.tile(np.array([200, 50, 50, 255], dtype=np.uint8), (3, 1))
    faces = np.array([[0, 1, 2]])
    return Mesh(positions=positions, colors=colors, faces=faces)


class TestInMemoryRenderSurface:
    """Tests for headless bookkeeping."""

    def test_attached_meshes_start_hidden(self):
        surface = InMemoryRenderSurface()

        handle = surface.attach(triangle_mesh())

        assert len(surface) == 1
        assert surface.is_visible(handle) is False

    def test_handles_are_unique(self):
        surface = InMemoryRenderSurface()

        handles = {surface.attach(triangle_mesh()) for _ in range(5)}

        assert len(handles) == 5

    def test_set_visible(self):
        surface = InMemoryRenderSurface()
        mesh = triangle_mesh()
        handle = surface.attach(mesh)

        surface.set_visible(handle, True)

        assert surface.visible_handles() == [handle]
        assert surface.visible_meshes()[0] is mesh

    def test_detach(self):
        surface = InMemoryRenderSurface()
        handle = surface.attach(triangle_mesh())

        surface.detach(handle)

        assert len(surface) == 0
        with pytest.raises(KeyError):
            surface.set_visible(handle, True)

    def test_fit_to_extent_is_recorded(self):
        surface = InMemoryRenderSurface()
        extent = Extent(0.0, 0.0, 1.0, 1.0)

        surface.fit_to_extent(extent, 500)

        assert surface.view_extent == extent
        assert surface.view_history == [(extent, 500)]


class TestMatplotlibRenderSurface:
    """Tests for snapshot rendering."""

    def test_save_snapshot_writes_png(self, tmp_path):
        surface = MatplotlibRenderSurface(figsize=(4, 3), dpi=50)
        handle = surface.attach(triangle_mesh(100.0))
        surface.set_visible(handle, True)
        surface.fit_to_extent(Extent(-5.0, -5.0, 15.0, 15.0))

        path = surface.save_snapshot(tmp_path / "out" / "frame.png", title="t = 0.00 s")

        assert path.exists()
        assert path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"

    def test_snapshot_without_meshes(self, tmp_path):
        surface = MatplotlibRenderSurface(figsize=(4, 3), dpi=50)

        path = surface.save_snapshot(tmp_path / "empty.png", legend=False)

        assert path.exists()
