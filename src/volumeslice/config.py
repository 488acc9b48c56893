"""
Configuration & Constants
=========================
Central registry for the numeric tolerances and defaults shared by the
slicing and alignment code.

Exports:
    ORIENTATION_TOLERANCE (float): Max deviation of a rotation entry from 0/±1.
    MIN_ALIGNMENT_POINTS (int): Fewest correspondences that constrain a 3D rotation.
    DEFAULT_MIX_RATIO (float): Visibility of the base grid when overlays exist.
    RASTER_DTYPE: dtype of composited RGBA rasters.
    DTYPE_ALIASES (dict): Decoder type names mapped to numpy dtypes.
"""
import numpy as np

ORIENTATION_TOLERANCE: float = 1e-6

MIN_ALIGNMENT_POINTS: int = 3

DEFAULT_MIX_RATIO: float = 1.0

RASTER_DTYPE = np.uint8
RASTER_CHANNELS: int = 4

# Type names used by volume headers (NRRD/NIfTI style) -> numpy dtype
DTYPE_ALIASES: dict[str, np.dtype] = {}

for _names, _dtype in (
    (("uint8", "uchar", "unsigned char", "uint8_t"), np.uint8),
    (("int8", "signed char", "int8_t"), np.int8),
    (("int16", "short", "short int", "signed short", "signed short int", "int16_t"), np.int16),
    (("uint16", "ushort", "unsigned short", "unsigned short int", "uint16_t"), np.uint16),
    (("int32", "int", "signed int", "int32_t"), np.int32),
    (("uint32", "uint", "unsigned int", "uint32_t"), np.uint32),
    (("int64", "longlong", "long long", "long long int", "signed long long",
      "signed long long int", "int64_t"), np.int64),
    (("uint64", "ulonglong", "unsigned long long", "unsigned long long int", "uint64_t"), np.uint64),
    (("float32", "float"), np.float32),
    (("float64", "double"), np.float64),
):
    for _name in _names:
        DTYPE_ALIASES[_name] = np.dtype(_dtype)

del _names, _dtype, _name
