"""Exceptions raised by the slicing and alignment core."""


class VolumeSliceError(Exception):
    """Base class for all volumeslice errors."""


class InvalidGeometry(VolumeSliceError, ValueError):
    """Degenerate dimensions, zero spacing or an unsupported voxel transform."""


class InsufficientPoints(VolumeSliceError, ValueError):
    """Too few correspondences to constrain a 3D rotation."""

    def __init__(self, n_points: int, required: int) -> None:
        super().__init__(f"Need at least {required} point correspondences, got {n_points}.")
        self.n_points = n_points
        self.required = required


class OutOfRangeIndex(VolumeSliceError, IndexError):
    """A slice index, voxel coordinate or pixel coordinate is outside its bounds."""
