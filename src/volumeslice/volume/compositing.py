"""
Window levelling, label colouring and screen blending of slice layers.

Layers are RGB in [0, 1] with a boolean coverage mask. They are blended
over a black background in order, base grid first, and converted to an
opaque uint8 RGBA raster at the end.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from volumeslice.config import RASTER_CHANNELS, RASTER_DTYPE

if TYPE_CHECKING:
    import numpy.typing as npt

    from volumeslice.volume.color_lut import ColorLookupTable


def window_level(
    values: npt.ArrayLike,
    window_low: float,
    window_high: float
) -> npt.NDArray[np.uint8]:
    """
    Linear remap of [window_low, window_high] to display intensity 0..255.

    Intensities are floored and clamped. A zero-width window acts as a step
    at `window_high`. NaN maps to 0.

    Args:
        values: Scalar voxel values.
        window_low: Value shown as black.
        window_high: Value shown as white.

    Returns:
        uint8 grey levels with the shape of `values`.
    """
    values = np.asarray(values, dtype=np.float64)
    if window_high > window_low:
        scaled = np.floor(255.0 * (values - window_low) / (window_high - window_low))
    else:
        scaled = np.where(values >= window_high, 255.0, 0.0)
    scaled = np.nan_to_num(scaled, nan=0.0, posinf=255.0, neginf=0.0)
    return np.clip(scaled, 0.0, 255.0).astype(np.uint8)


def grayscale_layer(
    values: npt.ArrayLike,
    window_low: float,
    window_high: float,
    lower_threshold: float = -np.inf,
    upper_threshold: float = np.inf,
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.bool_]]:
    """
    Window-levelled grey layer as RGB in [0, 1] plus a coverage mask.

    Voxels outside [lower_threshold, upper_threshold] are not covered.
    """
    values = np.asarray(values, dtype=np.float64)
    grey = window_level(values, window_low, window_high).astype(np.float64) / 255.0
    with np.errstate(invalid="ignore"):
        covered = (values >= lower_threshold) & (values <= upper_threshold)
    # NaN voxels still paint black rather than vanish
    covered |= np.isnan(values)
    rgb = np.repeat(grey[..., np.newaxis], 3, axis=-1)
    return rgb, covered


def label_layer(
    values: npt.ArrayLike,
    table: ColorLookupTable
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.bool_]]:
    """Label-coloured layer as RGB in [0, 1]; labels missing from the table are not covered."""
    rgb, present = table.colorize(values)
    return rgb.astype(np.float64) / 255.0, present


def screen_blend(
    background: npt.NDArray[np.float64],
    layer_rgb: npt.NDArray[np.float64],
    alpha: float,
    coverage: npt.NDArray[np.bool_] | None = None,
) -> npt.NDArray[np.float64]:
    """
    Never-darkening blend of a layer over a background, both RGB in [0, 1].

        result = 1 - (1 - background) * (1 - layer * alpha)

    Uncovered pixels leave the background unchanged.
    """
    contribution = layer_rgb * alpha
    if coverage is not None:
        contribution = np.where(coverage[..., np.newaxis], contribution, 0.0)
    return 1.0 - (1.0 - background) * (1.0 - contribution)


def to_rgba(rgb: npt.NDArray[np.float64]) -> npt.NDArray[np.uint8]:
    """Opaque RGBA raster from RGB in [0, 1]."""
    height, width = rgb.shape[:2]
    raster = np.empty((height, width, RASTER_CHANNELS), dtype=RASTER_DTYPE)
    raster[..., :3] = np.clip(np.rint(rgb * 255.0), 0.0, 255.0).astype(RASTER_DTYPE)
    raster[..., 3] = 255
    return raster


def layer_alphas(mix_ratio: float, n_overlays: int) -> tuple[float, float]:
    """
    Alpha of the base grid and of each overlay.

    Returns:
        (base_alpha, overlay_alpha); (1, 0) without overlays.
    """
    if n_overlays <= 0:
        return 1.0, 0.0
    base = min(max(float(mix_ratio), 0.0), 1.0)
    return base, (1.0 - base) / n_overlays
