"""
Pairing of user-picked marks with reference landmarks before alignment.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Hashable, Iterable, TYPE_CHECKING

import numpy as np
from scipy.spatial.transform import Rotation

from volumeslice.alignment.kabsch import AlignmentResult, PointSetAligner

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Landmark:
    """A named reference point of an atlas or model."""
    id: Hashable
    coord: tuple[float, float, float]
    name: str = ""


@dataclass(frozen=True)
class MarkInstance:
    """A point placed by the user for one landmark."""
    landmark_id: Hashable
    coord: tuple[float, float, float]


def pair_marks(
    marks: Iterable[MarkInstance],
    landmarks: Iterable[Landmark]
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Match marks to landmarks by id.

    Marks whose landmark is unknown are skipped.

    Returns:
        (moving, reference) arrays of shape (N, 3), paired by row.
    """
    by_id = {lm.id: lm for lm in landmarks}
    moving: list[tuple[float, float, float]] = []
    reference: list[tuple[float, float, float]] = []

    for mark in marks:
        landmark = by_id.get(mark.landmark_id)
        if landmark is None:
            logger.warning(f"No landmark with id {mark.landmark_id!r}; mark ignored.")
            continue
        moving.append(tuple(mark.coord))
        reference.append(tuple(landmark.coord))

    return (
        np.array(moving, dtype=np.float64).reshape(-1, 3),
        np.array(reference, dtype=np.float64).reshape(-1, 3),
    )


def align_landmarks(
    marks: Iterable[MarkInstance],
    landmarks: Iterable[Landmark],
    aligner: PointSetAligner | None = None,
) -> AlignmentResult:
    """Fit the rotation between picked marks (moving) and their landmarks (reference)."""
    moving, reference = pair_marks(marks, landmarks)
    aligner = aligner or PointSetAligner()
    return aligner.fit(moving, reference)


def rotation_to_align_landmarks(
    marks: Iterable[MarkInstance],
    landmarks: Iterable[Landmark]
) -> npt.NDArray[np.float64]:
    """
    Quaternion (x, y, z, w) of the landmark alignment rotation.

    Identity (0, 0, 0, 1) when fewer than three marks match a landmark.
    """
    result = align_landmarks(marks, landmarks)
    return Rotation.from_matrix(result.rotation).as_quat()
