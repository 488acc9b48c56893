"""
Handle-based registry of the slices extracted from a grid.

The grid owns only this registry, which keeps slices by integer handle
through weak references. A slice that is no longer referenced elsewhere
simply drops out, so no reference cycle between grid and slice needs to be
broken by hand.
"""
from __future__ import annotations

from itertools import count
from typing import Iterator, TYPE_CHECKING
import weakref

if TYPE_CHECKING:
    from volumeslice.volume.slice_plane import SlicePlane


class SliceRegistry:
    """Weak, handle-keyed store of SlicePlane instances."""

    def __init__(self) -> None:
        self._handles = count(1)
        self._slices: weakref.WeakValueDictionary[int, SlicePlane] = weakref.WeakValueDictionary()

    def register(self, slice_plane: SlicePlane) -> int:
        """Store a slice and return its handle."""
        handle = next(self._handles)
        self._slices[handle] = slice_plane
        return handle

    def unregister(self, handle: int | None) -> None:
        """Forget a handle. Unknown or None handles are ignored."""
        if handle is None:
            return
        self._slices.pop(handle, None)

    def __len__(self) -> int:
        return len(self._slices)

    def __iter__(self) -> Iterator[SlicePlane]:
        # Snapshot: slices may be collected or unregistered while iterating
        return iter([s for _, s in sorted(self._slices.items())])

    def clear(self) -> list[SlicePlane]:
        """Empty the registry and return the slices that were still alive."""
        alive = list(self)
        self._slices.clear()
        return alive
