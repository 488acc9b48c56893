"""
Voxel Grid
==========
A 3D scalar volume stored as a flat buffer (x fastest, then y, then z),
together with its spacing, orientation and display parameters.

Classes:
    SliceGeometry: Everything needed to rasterise and place one slice.
    VoxelGrid: The volume itself; computes slice geometry and owns the
        registry of slices extracted from it.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import weakref
from typing import Callable, Optional, Sequence, Union, TYPE_CHECKING

import numpy as np

from volumeslice.config import DEFAULT_MIX_RATIO, DTYPE_ALIASES
from volumeslice.errors import InvalidGeometry, OutOfRangeIndex
from volumeslice.geometry.axes import Axis, as_axis, convention_for
from volumeslice.geometry.transforms import CoordinateTransform
from volumeslice.volume.registry import SliceRegistry
from volumeslice.volume.slice_plane import SlicePlane

if TYPE_CHECKING:
    import numpy.typing as npt

    from volumeslice.volume.color_lut import ColorLookupTable

logger = logging.getLogger(__name__)

PixelAccess = Callable[["npt.ArrayLike", "npt.ArrayLike"], "npt.NDArray[np.intp] | int"]
TransformLike = Union[CoordinateTransform, "npt.ArrayLike", None]


@dataclass(frozen=True, eq=False)
class SliceGeometry:
    """
    Geometry of one axis-aligned slice.

    Attributes:
        axis: Normal axis of the slice.
        index: Slice index along the normal axis.
        i_length: Raster width in pixels.
        j_length: Raster height in pixels.
        access: Maps raster (i, j) to a flat index into the grid buffer.
            Accepts scalars or broadcastable integer arrays.
        plane_width: Width of the slice in RAS units (mm).
        plane_height: Height of the slice in RAS units (mm).
        matrix: 4x4 placement of the slice quad in RAS space.
        reverse: Mirror flags applied to the storage (x, y, z) coordinates.
    """
    axis: Axis
    index: int
    i_length: int
    j_length: int
    access: PixelAccess
    plane_width: float
    plane_height: float
    matrix: npt.NDArray[np.float64]
    reverse: tuple[bool, bool, bool]

    def index_map(self, i_length: Optional[int] = None, j_length: Optional[int] = None) -> npt.NDArray[np.intp]:
        """
        Flat buffer index of every raster pixel.

        Args:
            i_length: Raster width to sample; defaults to this slice's width.
            j_length: Raster height to sample; defaults to this slice's height.

        Returns:
            Integer array of shape (j_length, i_length).
        """
        i_length = self.i_length if i_length is None else i_length
        j_length = self.j_length if j_length is None else j_length
        jj, ii = np.indices((j_length, i_length), dtype=np.intp)
        return np.asarray(self.access(ii, jj), dtype=np.intp)


class VoxelGrid:
    """
    Scalar voxel volume with orientation, display parameters and overlays.
    """

    def __init__(
        self,
        data: npt.ArrayLike,
        dims: Sequence[int],
        spacing: Sequence[float] = (1.0, 1.0, 1.0),
        transform: TransformLike = None,
        axis_order: Sequence[str] = ("x", "y", "z"),
        window: Optional[tuple[float, float]] = None,
        thresholds: Optional[tuple[float, float]] = None,
        mix_ratio: float = DEFAULT_MIX_RATIO,
        color_table: Optional[ColorLookupTable] = None,
    ) -> None:
        """
        Initialize the grid from a decoded scalar buffer.

        Args:
            data: Flat buffer of length nx*ny*nz with x varying fastest.
            dims: Grid shape (nx, ny, nz).
            spacing: Voxel size along each storage axis, in the order given by `axis_order`.
            transform: Voxel->anatomical orientation: a CoordinateTransform,
                a 3x3/4x4 affine, or None for identity.
            axis_order: Permutation of 'x', 'y', 'z' naming the storage axes.
            window: Display range (low, high); defaults to the data min/max.
            thresholds: Voxels outside (lower, upper) are not drawn; defaults to unbounded.
            mix_ratio: Visibility of this grid when overlays are composited over it.
            color_table: Optional label colour table; if set, the grid is drawn as labels.

        Raises:
            InvalidGeometry: For degenerate dims, a size mismatch, bad spacing,
                a bad axis order or an unsupported transform.
        """
        self.dims: tuple[int, int, int] = self._validate_dims(dims)
        self.data: npt.NDArray = self._validate_data(data, self.dims)
        self.spacing: tuple[float, float, float] = self._validate_spacing(spacing)
        self.axis_order: tuple[str, str, str] = self._validate_axis_order(axis_order)
        self.transform: CoordinateTransform = self._resolve_transform(transform)

        self.color_table = color_table
        self.overlays: list[VoxelGrid] = []
        self._registry = SliceRegistry()
        # Grids this one is attached to as an overlay
        self._owners: weakref.WeakSet[VoxelGrid] = weakref.WeakSet()
        self._generation = 0
        self._disposed = False

        self.min, self.max = self.compute_min_max()

        if window is None:
            window = (self.min, self.max) if self.min <= self.max else (0.0, 0.0)
        self.window_low, self.window_high = self._validate_range(window, "Window")

        if thresholds is None:
            thresholds = (-math.inf, math.inf)
        self.lower_threshold, self.upper_threshold = self._validate_range(thresholds, "Threshold")

        self.mix_ratio = self._validate_mix_ratio(mix_ratio)

        logger.info(
            f"Created voxel grid {self.dims[0]}x{self.dims[1]}x{self.dims[2]} "
            f"({self.data.dtype}), spacing={self.spacing}, {self.transform}."
        )

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_buffer(
        cls,
        buffer: bytes | bytearray | memoryview,
        dims: Sequence[int],
        dtype: str = "uint8",
        **kwargs,
    ) -> VoxelGrid:
        """
        Build a grid from raw decoded bytes.

        Args:
            buffer: Raw voxel bytes, x fastest.
            dims: Grid shape (nx, ny, nz).
            dtype: Voxel type name as written in volume headers ('uint8',
                'short', 'float', ...). Unknown names fall back to uint8.
            **kwargs: Forwarded to the constructor.
        """
        numpy_dtype = DTYPE_ALIASES.get(str(dtype).strip().lower())
        if numpy_dtype is None:
            logger.warning(f"Unknown voxel type '{dtype}', reading buffer as uint8.")
            numpy_dtype = np.dtype(np.uint8)

        itemsize = numpy_dtype.itemsize
        if len(buffer) % itemsize != 0:
            raise InvalidGeometry(f"Buffer of {len(buffer)} bytes is not a multiple of {itemsize} ({numpy_dtype}).")

        data = np.frombuffer(buffer, dtype=numpy_dtype).copy()
        return cls(data, dims, **kwargs)

    @classmethod
    def from_array(cls, volume: npt.ArrayLike, **kwargs) -> VoxelGrid:
        """
        Build a grid from a 3D array indexed as volume[x, y, z].

        This is the layout returned by nibabel's ``get_fdata()``.
        """
        volume = np.asarray(volume)
        if volume.ndim != 3:
            raise InvalidGeometry(f"Expected a 3D array, got {volume.ndim} dimensions.")
        return cls(volume.ravel(order="F"), volume.shape, **kwargs)

    @staticmethod
    def _validate_dims(dims: Sequence[int]) -> tuple[int, int, int]:
        dims = tuple(dims)
        if len(dims) != 3:
            raise InvalidGeometry(f"Grid must have 3 dimensions, got {dims}.")
        out = []
        for d in dims:
            if isinstance(d, bool) or int(d) != d or int(d) <= 0:
                raise InvalidGeometry(f"Grid dimensions must be positive integers, got {dims}.")
            out.append(int(d))
        return out[0], out[1], out[2]

    @staticmethod
    def _validate_data(data: npt.ArrayLike, dims: tuple[int, int, int]) -> npt.NDArray:
        array = np.asarray(data).reshape(-1)
        expected = dims[0] * dims[1] * dims[2]
        if array.size != expected:
            raise InvalidGeometry(
                f"Buffer length {array.size} does not match dims {dims} ({expected} voxels)."
            )
        if not (np.issubdtype(array.dtype, np.number) or array.dtype == np.bool_):
            raise InvalidGeometry(f"Voxel data must be numeric, got dtype {array.dtype}.")
        return array

    @staticmethod
    def _validate_spacing(spacing: Sequence[float]) -> tuple[float, float, float]:
        values = tuple(float(s) for s in spacing)
        if len(values) != 3:
            raise InvalidGeometry(f"Spacing must have 3 components, got {values}.")
        if any(not math.isfinite(s) or s <= 0.0 for s in values):
            raise InvalidGeometry(f"Spacing must be finite and positive, got {values}.")
        return values[0], values[1], values[2]

    @staticmethod
    def _validate_axis_order(axis_order: Sequence[str]) -> tuple[str, str, str]:
        order = tuple(str(a).lower() for a in axis_order)
        if sorted(order) != ["x", "y", "z"]:
            raise InvalidGeometry(f"Axis order must be a permutation of x, y, z, got {axis_order}.")
        return order[0], order[1], order[2]

    @staticmethod
    def _resolve_transform(transform: TransformLike) -> CoordinateTransform:
        if transform is None:
            return CoordinateTransform()
        if isinstance(transform, CoordinateTransform):
            return transform
        return CoordinateTransform.from_affine(transform)

    @staticmethod
    def _validate_range(bounds: tuple[float, float], name: str) -> tuple[float, float]:
        low, high = (float(b) for b in bounds)
        if math.isnan(low) or math.isnan(high):
            raise ValueError(f"{name} bounds must not be NaN, got ({low}, {high}).")
        if low > high:
            raise ValueError(f"{name} low bound {low} exceeds high bound {high}.")
        return low, high

    @staticmethod
    def _validate_mix_ratio(ratio: float) -> float:
        ratio = float(ratio)
        if not 0.0 <= ratio <= 1.0:
            raise ValueError(f"Mix ratio must be within [0, 1], got {ratio}.")
        return ratio

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(dims={self.dims}, dtype={self.data.dtype}, "
            f"overlays={len(self.overlays)}, slices={len(self._registry)})"
        )

    @property
    def generation(self) -> int:
        """
        Change counter covering this grid and its overlays.

        Slices compare it to the value cached at their last geometry update
        to know whether they are dirty. Any change to this grid, to its list
        of overlays or to an attached overlay increments it, so it never
        returns to a value seen before.
        """
        return self._generation

    def _touch(self) -> None:
        self._generation += 1
        # Overlay chains are acyclic, see attach_overlay
        for owner in list(self._owners):
            owner._touch()

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _ensure_alive(self) -> None:
        if self._disposed:
            raise RuntimeError("Voxel grid has been disposed.")

    @property
    def ras_dimensions(self) -> tuple[float, float, float]:
        """Extent of the grid along x, y, z in RAS units."""
        return (
            self.dims[0] * self.spacing_along(Axis.X),
            self.dims[1] * self.spacing_along(Axis.Y),
            self.dims[2] * self.spacing_along(Axis.Z),
        )

    def spacing_along(self, axis: Axis | str) -> float:
        """Voxel spacing along an anatomical axis."""
        return self.spacing[self.axis_order.index(as_axis(axis).value)]

    @property
    def slices(self) -> list[SlicePlane]:
        """Live slices extracted from this grid."""
        return list(self._registry)

    # ------------------------------------------------------------------
    # Voxel access
    # ------------------------------------------------------------------

    def access(self, i: int, j: int, k: int) -> int:
        """Flat buffer index of voxel (i, j, k)."""
        nx, ny, nz = self.dims
        if not (0 <= i < nx and 0 <= j < ny and 0 <= k < nz):
            raise OutOfRangeIndex(f"Voxel ({i}, {j}, {k}) is outside grid {self.dims}.")
        return k * nx * ny + j * nx + i

    def reverse_access(self, index: int) -> tuple[int, int, int]:
        """Voxel coordinates (i, j, k) of a flat buffer index."""
        nx, ny, nz = self.dims
        if not 0 <= index < nx * ny * nz:
            raise OutOfRangeIndex(f"Flat index {index} is outside grid {self.dims}.")
        k = index // (nx * ny)
        j = (index - k * nx * ny) // nx
        i = index - k * nx * ny - j * nx
        return i, j, k

    def get(self, i: int, j: int, k: int):
        """Scalar value of voxel (i, j, k)."""
        self._ensure_alive()
        return self.data[self.access(i, j, k)]

    def compute_min_max(self) -> tuple[float, float]:
        """
        Minimum and maximum of the data, ignoring NaN.

        The result is also stored on `min` and `max`.

        Returns:
            (min, max), or (inf, -inf) if every voxel is NaN.
        """
        values = self.data
        if np.issubdtype(values.dtype, np.floating):
            values = values[~np.isnan(values)]

        if values.size == 0:
            low, high = math.inf, -math.inf
        else:
            low, high = float(values.min()), float(values.max())

        self.min, self.max = low, high
        return low, high

    def map(self, function: Callable[[npt.NDArray], npt.ArrayLike]) -> VoxelGrid:
        """
        Replace every voxel value by `function(values)`.

        The function receives a copy of the whole buffer and must return an
        array of the same size; results are cast to the grid's dtype.

        Returns:
            self
        """
        self._ensure_alive()
        result = np.asarray(function(self.data.copy())).reshape(-1)
        if result.size != self.data.size:
            raise InvalidGeometry(f"Mapped buffer has {result.size} values, expected {self.data.size}.")
        self.data = result.astype(self.data.dtype, copy=False)
        self._touch()
        return self

    # ------------------------------------------------------------------
    # Display parameters
    # ------------------------------------------------------------------

    def set_window(self, low: float, high: float) -> None:
        """Set the window-levelling range; marks all slices dirty."""
        self.window_low, self.window_high = self._validate_range((low, high), "Window")
        self._touch()
        logger.debug(f"Window set to [{self.window_low}, {self.window_high}].")

    def set_thresholds(self, lower: float, upper: float) -> None:
        """Set the visible value range; marks all slices dirty."""
        self.lower_threshold, self.upper_threshold = self._validate_range((lower, upper), "Threshold")
        self._touch()
        logger.debug(f"Thresholds set to [{self.lower_threshold}, {self.upper_threshold}].")

    def set_mix_ratio(self, ratio: float) -> None:
        """Set the visibility of this grid against its overlays; marks all slices dirty."""
        self.mix_ratio = self._validate_mix_ratio(ratio)
        self._touch()
        logger.debug(f"Mix ratio set to {self.mix_ratio}.")

    def set_color_table(self, table: Optional[ColorLookupTable]) -> None:
        """Draw the grid through a label colour table, or as greyscale with None."""
        self.color_table = table
        self._touch()

    # ------------------------------------------------------------------
    # Overlays
    # ------------------------------------------------------------------

    def _reaches(self, other: VoxelGrid) -> bool:
        return any(o is other or o._reaches(other) for o in self.overlays)

    def attach_overlay(self, overlay: VoxelGrid) -> None:
        """
        Composite another co-registered grid over this one.

        The overlay is assumed to share this grid's voxel layout. A differing
        voxel count is only logged; slices fail at repaint if the overlay is
        too small to be sampled.

        Raises:
            ValueError: If attaching would make a grid its own overlay.
        """
        self._ensure_alive()
        if overlay is self or overlay._reaches(self):
            raise ValueError("A grid cannot be composited over itself.")

        if overlay.data.size != self.data.size:
            logger.warning(
                f"Overlay dims {overlay.dims} differ from base grid dims {self.dims}; "
                "voxels are matched by index without resampling."
            )
        self.overlays.append(overlay)
        overlay._owners.add(self)
        self._touch()
        logger.debug(f"Attached overlay #{len(self.overlays)} {overlay.dims}.")

    def detach_overlay(self, overlay: VoxelGrid) -> None:
        """Stop compositing an overlay. Unknown grids are ignored."""
        for n, o in enumerate(self.overlays):
            if o is overlay:
                del self.overlays[n]
                if not any(other is overlay for other in self.overlays):
                    overlay._owners.discard(self)
                self._touch()
                return

    # ------------------------------------------------------------------
    # Slicing
    # ------------------------------------------------------------------

    def axis_length(self, axis: Axis | str) -> int:
        """Number of slices along an anatomical axis."""
        axis = as_axis(axis)
        normal = np.zeros(3)
        normal[axis.position] = 1.0
        return self.transform.pixel_extent(normal, self.dims)

    def check_slice_index(self, axis: Axis | str, index: int) -> int:
        """
        Validate a slice index.

        Returns:
            The index as int.

        Raises:
            OutOfRangeIndex: If the index is not an integer in [0, axis_length).
        """
        if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
            raise OutOfRangeIndex(f"Slice index must be an integer, got {index!r}.")
        length = self.axis_length(axis)
        if not 0 <= index < length:
            raise OutOfRangeIndex(f"Slice index {index} is outside [0, {length}) along {as_axis(axis).value}.")
        return int(index)

    def plane_geometry(
        self,
        axis: Axis | str,
        index: int,
        owner: Optional[CoordinateTransform] = None
    ) -> SliceGeometry:
        """
        Compute the geometry of the slice orthogonal to `axis` at `index`.

        Slice indices always increase towards R, A and S whatever the storage
        direction; mirrored storage axes are resolved in the pixel access.

        Args:
            axis: Normal axis.
            index: Slice index along the axis.
            owner: Orientation of the grid this one is drawn on (for overlays).
                None when the grid is drawn on its own slice.

        Returns:
            The slice geometry.

        Raises:
            OutOfRangeIndex: If the index is out of range for a grid drawn on its own slice.
        """
        self._ensure_alive()
        axis = as_axis(axis)
        convention = convention_for(axis)
        if owner is None:
            index = self.check_slice_index(axis, index)
        else:
            index = int(index)

        correction = self.transform.correction_from(owner)
        signs = correction @ convention.canonical_signs
        reverse = (bool(signs[0] < 0), bool(signs[1] < 0), bool(signs[2] < 0))

        access = self._pixel_access(convention.slots, reverse, index)

        i_length = self.transform.pixel_extent(convention.i_direction, self.dims)
        j_length = self.transform.pixel_extent(convention.j_direction, self.dims)

        plane_width = abs(i_length * self.spacing_along(convention.i_axis))
        plane_height = abs(j_length * self.spacing_along(convention.j_axis))

        # Middle slice sits at the origin
        normal_spacing = self.spacing_along(axis)
        extent = self.dims[axis.position] * normal_spacing
        offset = (extent - normal_spacing) / 2.0

        matrix = np.eye(4)
        matrix[:3, :3] = self.transform.rotation @ convention.base_rotation
        matrix[axis.position, 3] = index * normal_spacing - offset

        return SliceGeometry(
            axis=axis,
            index=index,
            i_length=i_length,
            j_length=j_length,
            access=access,
            plane_width=plane_width,
            plane_height=plane_height,
            matrix=matrix,
            reverse=reverse,
        )

    def _pixel_access(
        self,
        slots: tuple[str, str, str],
        reverse: tuple[bool, bool, bool],
        index: int
    ) -> PixelAccess:
        nx, ny, nz = self.dims
        lengths = self.dims

        def coordinate(n: int, i, j):
            value = {"i": i, "j": j, "k": index}[slots[n]]
            return lengths[n] - 1 - value if reverse[n] else value

        def access(i, j):
            x = coordinate(0, i, j)
            y = coordinate(1, i, j)
            z = coordinate(2, i, j)
            return z * nx * ny + y * nx + x

        return access

    def extract_slice_plane(self, axis: Axis | str, index: int) -> SlicePlane:
        """
        Extract the slice orthogonal to `axis` at `index`.

        The slice is registered with this grid so that display changes mark
        it dirty. Keep a reference to it: the grid holds slices weakly.

        Returns:
            A new SlicePlane carrying the freshly computed geometry.
        """
        geometry = self.plane_geometry(axis, index)
        return SlicePlane(self, geometry.axis, geometry.index, geometry=geometry)

    def register_slice(self, slice_plane: SlicePlane) -> int:
        """Add a slice to the registry and return its handle."""
        self._ensure_alive()
        return self._registry.register(slice_plane)

    def unregister_slice(self, handle: Optional[int]) -> None:
        self._registry.unregister(handle)

    def repaint_all_slices(self) -> VoxelGrid:
        """Repaint every live slice extracted from this grid."""
        for slice_plane in self._registry:
            slice_plane.repaint()
        return self

    def dispose(self) -> None:
        """
        Dispose all slices and release the voxel buffer. Safe to call repeatedly.

        A disposed grid is detached from every grid it was an overlay of, so
        their slices turn dirty and repaint without it.
        """
        if self._disposed:
            return
        for owner in list(self._owners):
            while any(o is self for o in owner.overlays):
                owner.detach_overlay(self)
        for slice_plane in self._registry.clear():
            slice_plane.dispose()
        for overlay in self.overlays:
            overlay._owners.discard(self)
        self.overlays = []
        self.data = np.empty(0, dtype=self.data.dtype)
        self._disposed = True
        logger.info("Voxel grid disposed.")
