"""
Per-axis slicing conventions in right-handed RAS space.

Each anatomical axis has a fixed pair of in-plane directions, a canonical
±1 basis used to detect mirrored storage axes, and the base rotation that
turns a default XY plane so that it is orthogonal to the axis.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt


class Axis(StrEnum):
    """Anatomical axis normal to a slice."""
    X = "x"
    Y = "y"
    Z = "z"

    @property
    def position(self) -> int:
        """Position of the axis in an (x, y, z) triple."""
        return "xyz".index(self.value)


@dataclass(frozen=True)
class AxisConvention:
    """
    Fixed geometry of the slices taken along one axis.

    Attributes:
        i_direction: RAS direction of increasing raster column.
        j_direction: RAS direction of increasing raster row.
        canonical_signs: ±1 basis pushed through the correction matrix to obtain reverse flags.
        base_rotation: 3x3 rotation placing the default XY plane orthogonal to the axis.
        i_axis: Axis whose spacing scales the plane width.
        j_axis: Axis whose spacing scales the plane height.
        slots: Which of ("i", "j", "k") fills the storage (x, y, z) coordinate;
            "k" is the fixed slice index.
    """
    i_direction: npt.NDArray[np.float64]
    j_direction: npt.NDArray[np.float64]
    canonical_signs: npt.NDArray[np.float64]
    base_rotation: npt.NDArray[np.float64]
    i_axis: Axis
    j_axis: Axis
    slots: tuple[str, str, str]


def _vec(x: float, y: float, z: float) -> npt.NDArray[np.float64]:
    v = np.array([x, y, z], dtype=np.float64)
    v.setflags(write=False)
    return v


def _mat(rows: list[list[float]]) -> npt.NDArray[np.float64]:
    m = np.array(rows, dtype=np.float64)
    m.setflags(write=False)
    return m


# +90 deg about Y
_ROT_Y_POS_90 = _mat([
    [0.0, 0.0, 1.0],
    [0.0, 1.0, 0.0],
    [-1.0, 0.0, 0.0],
])

# -90 deg about X
_ROT_X_NEG_90 = _mat([
    [1.0, 0.0, 0.0],
    [0.0, 0.0, 1.0],
    [0.0, -1.0, 0.0],
])

_IDENTITY = _mat([
    [1.0, 0.0, 0.0],
    [0.0, 1.0, 0.0],
    [0.0, 0.0, 1.0],
])

AXIS_CONVENTIONS: dict[Axis, AxisConvention] = {
    Axis.X: AxisConvention(
        i_direction=_vec(0.0, 0.0, -1.0),
        j_direction=_vec(0.0, -1.0, 0.0),
        canonical_signs=_vec(1.0, -1.0, -1.0),
        base_rotation=_ROT_Y_POS_90,
        i_axis=Axis.Z,
        j_axis=Axis.Y,
        slots=("k", "j", "i"),
    ),
    Axis.Y: AxisConvention(
        i_direction=_vec(1.0, 0.0, 0.0),
        j_direction=_vec(0.0, 0.0, 1.0),
        canonical_signs=_vec(1.0, 1.0, 1.0),
        base_rotation=_ROT_X_NEG_90,
        i_axis=Axis.X,
        j_axis=Axis.Z,
        slots=("i", "k", "j"),
    ),
    Axis.Z: AxisConvention(
        i_direction=_vec(1.0, 0.0, 0.0),
        j_direction=_vec(0.0, -1.0, 0.0),
        canonical_signs=_vec(1.0, -1.0, 1.0),
        base_rotation=_IDENTITY,
        i_axis=Axis.X,
        j_axis=Axis.Y,
        slots=("i", "j", "k"),
    ),
}


def as_axis(axis: Axis | str) -> Axis:
    """Coerce 'x'/'y'/'z' (any case) or an Axis into an Axis."""
    if isinstance(axis, Axis):
        return axis
    try:
        return Axis(str(axis).lower())
    except ValueError:
        raise ValueError(f"Unknown axis '{axis}'. Expected one of 'x', 'y', 'z'.") from None


def convention_for(axis: Axis | str) -> AxisConvention:
    return AXIS_CONVENTIONS[as_axis(axis)]
