"""
Voxel grids, their slices and slice compositing.
"""
from .color_lut import ColorLookupTable, LabelColor, parse_color_lut
from .grid import SliceGeometry, VoxelGrid
from .registry import SliceRegistry
from .slice_plane import SlicePlane, SliceState

__all__ = [
    "ColorLookupTable",
    "LabelColor",
    "SliceGeometry",
    "SlicePlane",
    "SliceRegistry",
    "SliceState",
    "VoxelGrid",
    "parse_color_lut",
]
