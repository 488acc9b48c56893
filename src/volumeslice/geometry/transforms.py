"""
Voxel (IJK) <-> anatomical (RAS) orientation handling.

Only axis-aligned, sign-only transforms are supported: the rotation part of
the voxel->anatomical matrix must be a diagonal of ±1 entries.
"""
from __future__ import annotations

from math import floor
from typing import Sequence, TYPE_CHECKING

import numpy as np

from volumeslice.config import ORIENTATION_TOLERANCE
from volumeslice.errors import InvalidGeometry

if TYPE_CHECKING:
    import numpy.typing as npt


class CoordinateTransform:
    """
    Signed-diagonal rotation mapping voxel index axes to RAS axes.
    """

    def __init__(self, rotation: npt.ArrayLike | None = None) -> None:
        """
        Args:
            rotation: 3x3 matrix with ±1 on the diagonal. Defaults to identity.

        Raises:
            InvalidGeometry: If the matrix is not a 3x3 signed diagonal.
        """
        if rotation is None:
            rotation = np.eye(3)
        matrix = np.asarray(rotation, dtype=np.float64)
        self._validate(matrix)
        # Snap to exact ±1 so sign tests and inverses are exact
        self.rotation: npt.NDArray[np.float64] = np.diag(np.sign(np.diag(matrix)))
        self.rotation.setflags(write=False)
        self.inverse: npt.NDArray[np.float64] = self.rotation.T.copy()
        self.inverse.setflags(write=False)

    def __repr__(self) -> str:
        signs = ", ".join(f"{s:+.0f}" for s in np.diag(self.rotation))
        return f"{self.__class__.__name__}(diag=({signs}))"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CoordinateTransform):
            return NotImplemented
        return bool(np.array_equal(self.rotation, other.rotation))

    def __hash__(self) -> int:
        return hash(tuple(np.diag(self.rotation)))

    @staticmethod
    def _validate(matrix: npt.NDArray[np.float64]) -> None:
        if matrix.shape != (3, 3):
            raise InvalidGeometry(f"Rotation must be 3x3, got shape {matrix.shape}.")
        if not np.all(np.isfinite(matrix)):
            raise InvalidGeometry("Rotation contains non-finite entries.")

        off_diagonal = matrix - np.diag(np.diag(matrix))
        if np.any(np.abs(off_diagonal) > ORIENTATION_TOLERANCE):
            raise InvalidGeometry(
                "Only axis-aligned sign-flip transforms are supported "
                f"(off-diagonal entries found):\n{matrix}"
            )

        diagonal = np.abs(np.diag(matrix))
        if np.any(diagonal < ORIENTATION_TOLERANCE):
            raise InvalidGeometry(f"Rotation is not invertible:\n{matrix}")
        if np.any(np.abs(diagonal - 1.0) > ORIENTATION_TOLERANCE):
            raise InvalidGeometry(f"Diagonal entries must be ±1, got {np.diag(matrix)}.")

    @classmethod
    def from_affine(cls, affine: npt.ArrayLike) -> CoordinateTransform:
        """
        Build a transform from a voxel->anatomical affine.

        The affine may be 3x3 or 4x4 and may carry voxel spacing in its
        columns (as NIfTI qform/sform matrices do). Columns are normalised to
        recover the pure rotation; translation is ignored.

        Args:
            affine: 3x3 or 4x4 matrix.

        Returns:
            The signed-diagonal transform.

        Raises:
            InvalidGeometry: For a wrong shape, a zero column or a non sign-only rotation.
        """
        matrix = np.asarray(affine, dtype=np.float64)
        if matrix.shape not in ((3, 3), (4, 4)):
            raise InvalidGeometry(f"Affine must be 3x3 or 4x4, got shape {matrix.shape}.")

        linear = matrix[:3, :3]
        norms = np.linalg.norm(linear, axis=0)
        if np.any(norms < ORIENTATION_TOLERANCE):
            raise InvalidGeometry(f"Affine has a zero-length column (zero spacing):\n{matrix}")

        return cls(linear / norms)

    @property
    def reverse_flags(self) -> tuple[bool, bool, bool]:
        """Per storage axis: True where the index runs opposite to the RAS axis."""
        d = np.diag(self.rotation)
        return bool(d[0] < 0), bool(d[1] < 0), bool(d[2] < 0)

    def apply_inverse(self, vector: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Rotate a RAS direction into IJK."""
        return self.inverse @ np.asarray(vector, dtype=np.float64)

    def correction_from(self, owner: CoordinateTransform | None) -> npt.NDArray[np.float64]:
        """
        Matrix that cancels the owner's orientation for a grid drawn on the owner's plane.

        Args:
            owner: Transform of the grid this one is composited against, or None
                when the grid is drawn on its own plane.

        Returns:
            inverse(owner.rotation) @ self.rotation, or identity without an owner.
        """
        if owner is None:
            return np.eye(3)
        return owner.inverse @ self.rotation

    def pixel_extent(self, direction: npt.ArrayLike, dims: Sequence[int]) -> int:
        """
        Number of voxels crossed along a RAS in-plane direction.

        The direction is mapped into IJK through the inverse rotation,
        normalised and dotted with the grid shape.

        Args:
            direction: RAS direction vector.
            dims: Grid shape (nx, ny, nz).

        Returns:
            floor(|normalize(inverse @ direction) . dims|)

        Raises:
            InvalidGeometry: If the direction has zero length.
        """
        v = self.apply_inverse(direction)
        norm = np.linalg.norm(v)
        if norm < ORIENTATION_TOLERANCE:
            raise InvalidGeometry(f"Direction {direction} has zero length.")
        v = v / norm
        return int(floor(abs(float(np.dot(v, np.asarray(dims, dtype=np.float64))))))
