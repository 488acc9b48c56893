"""
volumeslice - axis-aligned slicing of voxel volumes and landmark alignment.

- VoxelGrid: scalar volume with orientation, window levelling and overlays
- SlicePlane: cached slice geometry and composited RGBA raster
- PointSetAligner: Kabsch rotation between corresponding point sets
"""
from importlib.metadata import PackageNotFoundError, version

from volumeslice.alignment import AlignmentResult, PointSetAligner, rotation_to_align_points
from volumeslice.errors import InsufficientPoints, InvalidGeometry, OutOfRangeIndex, VolumeSliceError
from volumeslice.geometry import Axis, CoordinateTransform
from volumeslice.logging_config import setup_logging
from volumeslice.volume import ColorLookupTable, SliceGeometry, SlicePlane, SliceState, VoxelGrid, parse_color_lut

try:
    __version__ = version("volumeslice")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

__all__ = [
    "AlignmentResult",
    "Axis",
    "ColorLookupTable",
    "CoordinateTransform",
    "InsufficientPoints",
    "InvalidGeometry",
    "OutOfRangeIndex",
    "PointSetAligner",
    "SliceGeometry",
    "SlicePlane",
    "SliceState",
    "VolumeSliceError",
    "VoxelGrid",
    "parse_color_lut",
    "rotation_to_align_points",
    "setup_logging",
]
