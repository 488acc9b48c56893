import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from volumeslice import VoxelGrid


@pytest.fixture
def bright_voxel_grid() -> VoxelGrid:
    """4x4x4 zeros with voxel (2, 2, 2) = 100, window [0, 100]."""
    data = np.zeros(64, dtype=np.int16)
    data[2 * 16 + 2 * 4 + 2] = 100
    return VoxelGrid(data, (4, 4, 4), window=(0, 100))


@pytest.fixture
def ramp_grid() -> VoxelGrid:
    """4x3x2 grid whose voxel value equals its flat index."""
    return VoxelGrid(np.arange(24, dtype=np.float32), (4, 3, 2), spacing=(1.0, 2.0, 3.0))


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)
