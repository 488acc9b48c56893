"""
Slice Plane
===========
One axis-aligned cross-section of a VoxelGrid, rasterised with its
overlays into an RGBA image ready to be textured on a quad.

The slice is either DIRTY (its geometry must be recomputed) or CLEAN.
Recomputation happens only inside `repaint()`.
"""
from __future__ import annotations

from enum import Enum, auto
import logging
from math import floor
from typing import Optional, TYPE_CHECKING

import matplotlib.pyplot as plt
import numpy as np

from volumeslice.errors import OutOfRangeIndex
from volumeslice.geometry.axes import Axis, as_axis
from volumeslice.volume.compositing import (
    grayscale_layer,
    label_layer,
    layer_alphas,
    screen_blend,
    to_rgba,
)

if TYPE_CHECKING:
    import numpy.typing as npt

    from volumeslice.volume.grid import SliceGeometry, VoxelGrid

logger = logging.getLogger(__name__)


class SliceState(Enum):
    DIRTY = auto()
    CLEAN = auto()


class SlicePlane:
    """
    Cached geometry and composited raster of a slice of a grid.
    """

    def __init__(
        self,
        grid: VoxelGrid,
        axis: Axis | str = Axis.Z,
        index: int = 0,
        geometry: Optional[SliceGeometry] = None,
    ) -> None:
        """
        Initialize the slice and register it with its grid.

        Args:
            grid: The grid the slice is taken from.
            axis: Normal axis of the slice.
            index: Slice index along the axis.
            geometry: Geometry already computed for this axis and index, if any.

        Raises:
            OutOfRangeIndex: If the index is outside the grid along `axis`.
        """
        self.axis: Axis = as_axis(axis)
        self._index: int = grid.check_slice_index(self.axis, index)
        self._grid: Optional[VoxelGrid] = grid

        if geometry is not None and (geometry.axis != self.axis or geometry.index != self._index):
            geometry = None
        self._geometry: Optional[SliceGeometry] = geometry

        # (grid, flat index per pixel) for the base grid then each overlay
        self._layers: list[tuple[VoxelGrid, npt.NDArray[np.intp]]] = []
        self._generation: Optional[int] = None
        self._needs_geometry = True

        self.raster: Optional[npt.NDArray[np.uint8]] = None
        self._handle: Optional[int] = grid.register_slice(self)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(axis='{self.axis.value}', index={self._index}, state={self.state.name})"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def grid(self) -> VoxelGrid:
        if self._grid is None:
            raise RuntimeError("Slice plane has been disposed.")
        return self._grid

    @property
    def handle(self) -> Optional[int]:
        """Registry handle of this slice in its grid, None once disposed."""
        return self._handle

    @property
    def state(self) -> SliceState:
        if self._needs_geometry or self._grid is None or self._generation != self._grid.generation:
            return SliceState.DIRTY
        return SliceState.CLEAN

    @property
    def index(self) -> int:
        return self._index

    @index.setter
    def index(self, value: int) -> None:
        self.set_index(value)

    def set_index(self, value: int) -> None:
        """
        Move the slice along its axis; the geometry is recomputed at the next repaint.

        Raises:
            OutOfRangeIndex: If the index is outside the grid.
        """
        value = self.grid.check_slice_index(self.axis, value)
        if value != self._index:
            self._index = value
            self._needs_geometry = True

    # ------------------------------------------------------------------
    # Cached geometry
    # ------------------------------------------------------------------

    @property
    def geometry(self) -> SliceGeometry:
        if self._geometry is None:
            raise RuntimeError("Slice geometry is not available; call repaint() first.")
        return self._geometry

    @property
    def i_length(self) -> int:
        return self.geometry.i_length

    @property
    def j_length(self) -> int:
        return self.geometry.j_length

    @property
    def plane_width(self) -> float:
        return self.geometry.plane_width

    @property
    def plane_height(self) -> float:
        return self.geometry.plane_height

    @property
    def matrix(self) -> npt.NDArray[np.float64]:
        """4x4 placement of the slice quad in RAS space."""
        return self.geometry.matrix

    def _update_geometry(self, grid: VoxelGrid) -> None:
        geometry = grid.plane_geometry(self.axis, self._index)
        layers = [(grid, geometry.index_map())]

        for n, overlay in enumerate(grid.overlays, start=1):
            overlay_geometry = overlay.plane_geometry(self.axis, self._index, owner=grid.transform)
            index_map = overlay_geometry.index_map(geometry.i_length, geometry.j_length)
            if index_map.size and (index_map.min() < 0 or index_map.max() >= overlay.data.size):
                raise OutOfRangeIndex(
                    f"Overlay #{n} with dims {overlay.dims} cannot be sampled on the "
                    f"{geometry.i_length}x{geometry.j_length} slice of grid {grid.dims}."
                )
            layers.append((overlay, index_map))

        self._geometry = geometry
        self._layers = layers
        self._generation = grid.generation
        self._needs_geometry = False
        logger.debug(
            f"Slice {self.axis.value}={self._index}: geometry {geometry.i_length}x{geometry.j_length} px, "
            f"{geometry.plane_width:.2f}x{geometry.plane_height:.2f} mm, {len(layers)} layer(s)."
        )

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def repaint(self) -> npt.NDArray[np.uint8]:
        """
        Rebuild the raster, recomputing the geometry first if the slice is dirty.

        Returns:
            RGBA uint8 raster of shape (j_length, i_length, 4).
        """
        grid = self.grid
        if self.state is SliceState.DIRTY:
            self._update_geometry(grid)

        self.raster = self._composite(grid)
        return self.raster

    def _composite(self, grid: VoxelGrid) -> npt.NDArray[np.uint8]:
        geometry = self.geometry
        base_alpha, overlay_alpha = layer_alphas(grid.mix_ratio, len(self._layers) - 1)

        rgb = np.zeros((geometry.j_length, geometry.i_length, 3), dtype=np.float64)

        for n, (layer_grid, index_map) in enumerate(self._layers):
            values = layer_grid.data[index_map]
            if layer_grid.color_table is not None:
                layer_rgb, coverage = label_layer(values, layer_grid.color_table)
            else:
                layer_rgb, coverage = grayscale_layer(
                    values,
                    layer_grid.window_low,
                    layer_grid.window_high,
                    layer_grid.lower_threshold,
                    layer_grid.upper_threshold,
                )
            alpha = base_alpha if n == 0 else overlay_alpha
            rgb = screen_blend(rgb, layer_rgb, alpha, coverage)

        return to_rgba(rgb)

    def get_voxel_index_at_uv(self, u: float, v: float) -> int:
        """
        Flat grid index under a texture coordinate of the slice quad.

        Args:
            u: Horizontal texture coordinate, 0 at the left edge.
            v: Vertical texture coordinate, 0 at the bottom edge.

        Raises:
            OutOfRangeIndex: If (u, v) falls outside the raster.
        """
        geometry = self.geometry
        i = int(floor(u * geometry.i_length + 0.5))
        j = int(floor((1.0 - v) * geometry.j_length + 0.5))
        if not (0 <= i < geometry.i_length and 0 <= j < geometry.j_length):
            raise OutOfRangeIndex(
                f"Texture coordinate ({u}, {v}) maps to pixel ({i}, {j}) outside "
                f"{geometry.i_length}x{geometry.j_length}."
            )
        return int(geometry.access(i, j))

    def plot(self) -> None:
        """
        Show the current raster with matplotlib, scaled to the plane size in mm.
        """
        raster = self.raster if self.raster is not None else self.repaint()
        geometry = self.geometry

        plt.rcParams["figure.constrained_layout.use"] = True
        fig = plt.figure(figsize=(6, 6))

        plt.imshow(raster, extent=(0.0, geometry.plane_width, 0.0, geometry.plane_height))

        plt.title(f"Slice {self.axis.value.upper()} = {self._index}")
        plt.xlabel("i (mm)")
        plt.ylabel("j (mm)")
        plt.show()

    def dispose(self) -> None:
        """Detach from the grid and drop cached data. Safe to call repeatedly."""
        if self._grid is None:
            return
        self._grid.unregister_slice(self._handle)
        self._grid = None
        self._handle = None
        self._layers = []
        self.raster = None
