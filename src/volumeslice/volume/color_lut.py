"""
Colour lookup tables for labelled (segmented) volumes.

Labels are integers; a table maps each known label to an RGBA colour.
Tables are usually read from FreeSurfer-style text files, either the plain
``<index> <name> <r> <g> <b> <a>`` layout or the hemisphere-tagged
``<index> LH:_ctx_(abbrev) <r> <g> <b> <a>`` layout.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Iterable, Mapping, Optional, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

_HEMISPHERE_LINE = re.compile(
    r"^\s*(\d+)\s+([RL]H):_.*_\(([^)]*)\)\s+(\d+)\s+(\d+)\s+(\d+)\s+(\d+)"
)
_PLAIN_LINE = re.compile(r"^\s*(\d+)\s+(\S+)\s+(\d+)\s+(\d+)\s+(\d+)\s+(\d+)")


@dataclass(frozen=True)
class LabelColor:
    """One entry of a colour lookup table."""
    index: int
    abbrev: str
    color: tuple[int, int, int, int]
    hemisphere: Optional[str] = None


class ColorLookupTable:
    """
    Mapping label -> RGBA with vectorised lookup for whole slices.
    """

    def __init__(self, entries: Iterable[LabelColor] | Mapping[int, Iterable[int]] = ()) -> None:
        """
        Args:
            entries: LabelColor records, or a mapping label -> (r, g, b[, a]).

        Raises:
            ValueError: For negative labels or colour components outside 0..255.
        """
        self._entries: dict[int, LabelColor] = {}

        if isinstance(entries, Mapping):
            items = [
                LabelColor(index=int(label), abbrev=str(label), color=self._rgba(color))
                for label, color in entries.items()
            ]
        else:
            items = list(entries)

        for entry in items:
            if entry.index < 0:
                raise ValueError(f"Label index must be non-negative, got {entry.index}.")
            self._entries[entry.index] = LabelColor(
                index=entry.index,
                abbrev=entry.abbrev,
                color=self._rgba(entry.color),
                hemisphere=entry.hemisphere,
            )

        self._rgb, self._present = self._build_dense()

    @staticmethod
    def _rgba(color: Iterable[int]) -> tuple[int, int, int, int]:
        values = [int(c) for c in color]
        if len(values) == 3:
            values.append(255)
        if len(values) != 4:
            raise ValueError(f"Colour must have 3 or 4 components, got {values}.")
        if any(c < 0 or c > 255 for c in values):
            raise ValueError(f"Colour components must be within 0..255, got {values}.")
        return values[0], values[1], values[2], values[3]

    def _build_dense(self) -> tuple[npt.NDArray[np.uint8], npt.NDArray[np.bool_]]:
        size = max(self._entries) + 1 if self._entries else 0
        rgb = np.zeros((size, 3), dtype=np.uint8)
        present = np.zeros(size, dtype=bool)
        for index, entry in self._entries.items():
            rgb[index] = entry.color[:3]
            present[index] = True
        return rgb, present

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_labels={len(self)})"

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, label: object) -> bool:
        return label in self._entries

    def __getitem__(self, label: int) -> LabelColor:
        return self._entries[label]

    def get(self, label: int) -> Optional[LabelColor]:
        return self._entries.get(label)

    @property
    def labels(self) -> list[int]:
        return sorted(self._entries)

    def colorize(
        self,
        values: npt.ArrayLike
    ) -> tuple[npt.NDArray[np.uint8], npt.NDArray[np.bool_]]:
        """
        Map scalar values to label colours.

        Values are truncated towards zero to integer labels. Labels without an
        entry (including negative, NaN and out-of-table values) are reported
        as absent and coloured black.

        Args:
            values: Array of scalar voxel values, any shape.

        Returns:
            Tuple (rgb, present): uint8 array of shape values.shape + (3,) and
            a boolean mask of labels found in the table.
        """
        values = np.asarray(values, dtype=np.float64)
        finite = np.isfinite(values)
        labels = np.where(finite, np.trunc(np.where(finite, values, 0.0)), -1.0)

        in_table = finite & (labels >= 0) & (labels < len(self._present))
        safe = np.where(in_table, labels, 0).astype(np.intp)

        if len(self._present) == 0:
            present = np.zeros(values.shape, dtype=bool)
            return np.zeros(values.shape + (3,), dtype=np.uint8), present

        present = in_table & self._present[safe]
        rgb = np.where(present[..., np.newaxis], self._rgb[safe], 0).astype(np.uint8)
        return rgb, present


def parse_color_lut(text: str) -> ColorLookupTable:
    """
    Parse a FreeSurfer-style colour table.

    Blank lines, comments and lines in neither supported layout are skipped.

    Args:
        text: Full contents of the table file.

    Returns:
        The lookup table.
    """
    entries: list[LabelColor] = []
    skipped = 0

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        match = _HEMISPHERE_LINE.match(line)
        if match:
            index, hemisphere, abbrev, r, g, b, a = match.groups()
            entries.append(LabelColor(
                index=int(index),
                abbrev=abbrev,
                color=(int(r), int(g), int(b), int(a)),
                hemisphere=hemisphere,
            ))
            continue

        match = _PLAIN_LINE.match(line)
        if match:
            index, abbrev, r, g, b, a = match.groups()
            entries.append(LabelColor(index=int(index), abbrev=abbrev, color=(int(r), int(g), int(b), int(a))))
            continue

        skipped += 1

    if skipped:
        logger.debug(f"Skipped {skipped} unparseable colour table lines.")
    logger.info(f"Parsed colour table with {len(entries)} entries.")
    return ColorLookupTable(entries)
