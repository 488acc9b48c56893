"""
Rigid alignment of corresponding landmark sets.
"""
from .kabsch import AlignmentResult, PointSetAligner, kabsch_rotation, rotation_to_align_points
from .landmarks import Landmark, MarkInstance, align_landmarks, pair_marks, rotation_to_align_landmarks

__all__ = [
    "AlignmentResult",
    "Landmark",
    "MarkInstance",
    "PointSetAligner",
    "align_landmarks",
    "kabsch_rotation",
    "pair_marks",
    "rotation_to_align_landmarks",
    "rotation_to_align_points",
]
