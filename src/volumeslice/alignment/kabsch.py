"""
Rigid rotation between two corresponding point sets (Kabsch algorithm).

The rotation minimises the RMSD between the centred point sets. With the
cross-covariance built as ``H = Qc^T @ Pc`` (reference rows, moving
columns), the returned rotation R satisfies ``Pc[n] ~= R @ Qc[n]``.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

import numpy as np
import scipy as sp
from scipy.spatial.transform import Rotation

from volumeslice.config import MIN_ALIGNMENT_POINTS
from volumeslice.errors import InsufficientPoints

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

_REFLECTION_FIX = np.diag([1.0, 1.0, -1.0])


@dataclass(frozen=True)
class AlignmentResult:
    """
    Outcome of a point set alignment.

    Attributes:
        rotation: 3x3 proper rotation (det = +1).
        moving_centroid: Centroid of the moving set.
        reference_centroid: Centroid of the reference set.
        rmsd: Root mean squared distance between the centred moving points
            and the rotated centred reference points.
        n_points: Number of correspondences used.
    """
    rotation: npt.NDArray[np.float64]
    moving_centroid: npt.NDArray[np.float64]
    reference_centroid: npt.NDArray[np.float64]
    rmsd: float
    n_points: int

    @property
    def quaternion(self) -> npt.NDArray[np.float64]:
        """Rotation as a unit quaternion (x, y, z, w)."""
        return Rotation.from_matrix(self.rotation).as_quat()

    @property
    def is_identity(self) -> bool:
        return bool(np.allclose(self.rotation, np.eye(3)))


def _as_points(points: npt.ArrayLike, name: str) -> npt.NDArray[np.float64]:
    array = np.array(points, dtype=np.float64, copy=True)
    if array.size == 0:
        return array.reshape(0, 3)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"{name} points must have shape (N, 3), got {array.shape}.")
    if not np.all(np.isfinite(array)):
        raise ValueError(f"{name} points contain non-finite coordinates.")
    return array


def _centroid(points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    if len(points) == 0:
        return np.zeros(3)
    return points.mean(axis=0)


def kabsch_rotation(
    moving_centered: npt.NDArray[np.float64],
    reference_centered: npt.NDArray[np.float64]
) -> npt.NDArray[np.float64]:
    """
    Optimal rotation between two centred point sets.

    Args:
        moving_centered: (N, 3) moving points with their centroid removed.
        reference_centered: (N, 3) reference points with their centroid removed.

    Returns:
        3x3 rotation R with det(R) = +1.
    """
    h = reference_centered.T @ moving_centered

    u, _, vt = sp.linalg.svd(h)
    v = vt.T

    r = v @ u.T
    if np.linalg.det(r) < 0.0:
        logger.debug("Kabsch: reflection detected, flipping the weakest axis.")
        r = v @ _REFLECTION_FIX @ u.T
    return r


def rotation_to_align_points(
    moving: npt.ArrayLike,
    reference: npt.ArrayLike
) -> npt.NDArray[np.float64]:
    """
    Rotation aligning two corresponding point sets.

    Args:
        moving: (N, 3) points P.
        reference: (N, 3) points Q, paired with P by row.

    Returns:
        3x3 rotation R with P - mean(P) ~= R @ (Q - mean(Q)).

    Raises:
        ValueError: If the shapes differ or are not (N, 3).
        InsufficientPoints: If N < 3.
    """
    p = _as_points(moving, "Moving")
    q = _as_points(reference, "Reference")
    if p.shape != q.shape:
        raise ValueError(f"Point sets must have the same shape, got {p.shape} and {q.shape}.")
    if len(p) < MIN_ALIGNMENT_POINTS:
        raise InsufficientPoints(len(p), MIN_ALIGNMENT_POINTS)

    return kabsch_rotation(p - _centroid(p), q - _centroid(q))


class PointSetAligner:
    """
    Kabsch solver with the identity fallback for under-determined input.
    """

    def __init__(self, min_points: int = MIN_ALIGNMENT_POINTS) -> None:
        """
        Args:
            min_points: Fewest correspondences accepted; never less than 3.
        """
        self.min_points = max(int(min_points), MIN_ALIGNMENT_POINTS)

    def fit(self, moving: npt.ArrayLike, reference: npt.ArrayLike) -> AlignmentResult:
        """
        Align `reference` onto `moving`.

        Fewer than `min_points` correspondences cannot constrain a 3D rotation;
        the identity is returned in that case.

        Args:
            moving: (N, 3) points P.
            reference: (N, 3) points Q, paired with P by row.

        Returns:
            The alignment result.

        Raises:
            ValueError: If the shapes differ or are not (N, 3).
        """
        p = _as_points(moving, "Moving")
        q = _as_points(reference, "Reference")
        if p.shape != q.shape:
            raise ValueError(f"Point sets must have the same shape, got {p.shape} and {q.shape}.")

        p_centroid = _centroid(p)
        q_centroid = _centroid(q)
        p_centered = p - p_centroid
        q_centered = q - q_centroid

        try:
            if len(p) < self.min_points:
                raise InsufficientPoints(len(p), self.min_points)
            rotation = kabsch_rotation(p_centered, q_centered)
        except InsufficientPoints as e:
            logger.warning(f"{e} Returning the identity rotation.")
            rotation = np.eye(3)

        residual = p_centered - q_centered @ rotation.T
        rmsd = float(np.sqrt(np.mean(np.sum(residual ** 2, axis=1)))) if len(p) else 0.0

        return AlignmentResult(
            rotation=rotation,
            moving_centroid=p_centroid,
            reference_centroid=q_centroid,
            rmsd=rmsd,
            n_points=len(p),
        )

    def align(self, moving: npt.ArrayLike, reference: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Rotation only; see `fit`."""
        return self.fit(moving, reference).rotation
