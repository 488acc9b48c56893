"""
Orientation conventions and voxel/anatomical coordinate handling.
"""
from .axes import AXIS_CONVENTIONS, Axis, AxisConvention, as_axis, convention_for
from .transforms import CoordinateTransform

__all__ = [
    "AXIS_CONVENTIONS",
    "Axis",
    "AxisConvention",
    "CoordinateTransform",
    "as_axis",
    "convention_for",
]
