import gc
import logging
import math

import numpy as np
import pytest

from volumeslice import (
    CoordinateTransform,
    InvalidGeometry,
    OutOfRangeIndex,
    SliceState,
    VoxelGrid,
)


# ----------------------------------------------------------------------
# Construction
# ----------------------------------------------------------------------

@pytest.mark.parametrize(
    "kwargs",
    [
        dict(data=np.zeros(7), dims=(2, 2, 2)),
        dict(data=np.zeros(0), dims=(0, 2, 2)),
        dict(data=np.zeros(8), dims=(2, 2)),
        dict(data=np.zeros(8), dims=(2, 2, 2), spacing=(1.0, 0.0, 1.0)),
        dict(data=np.zeros(8), dims=(2, 2, 2), spacing=(1.0, -1.0, 1.0)),
        dict(data=np.zeros(8), dims=(2, 2, 2), spacing=(1.0, math.inf, 1.0)),
        dict(data=np.zeros(8), dims=(2, 2, 2), axis_order=("x", "x", "z")),
        dict(data=np.zeros(8), dims=(2, 2, 2), transform=[[0, 1, 0], [1, 0, 0], [0, 0, 1]]),
    ],
)
def test_invalid_construction_raises(kwargs):
    with pytest.raises(InvalidGeometry):
        VoxelGrid(**kwargs)


def test_window_defaults_to_data_range_ignoring_nan():
    grid = VoxelGrid([np.nan, 3.0, -2.0, 7.0], (4, 1, 1))
    assert (grid.min, grid.max) == (-2.0, 7.0)
    assert (grid.window_low, grid.window_high) == (-2.0, 7.0)
    assert (grid.lower_threshold, grid.upper_threshold) == (-math.inf, math.inf)


def test_all_nan_grid_has_empty_range():
    grid = VoxelGrid([np.nan] * 8, (2, 2, 2))
    assert grid.compute_min_max() == (math.inf, -math.inf)
    assert (grid.window_low, grid.window_high) == (0.0, 0.0)


def test_from_buffer_uses_header_type_names():
    raw = np.arange(1, 9, dtype=np.int16).tobytes()
    grid = VoxelGrid.from_buffer(raw, (2, 2, 2), dtype="short")
    assert grid.data.dtype == np.int16
    assert grid.get(1, 1, 1) == 8
    assert grid.get(1, 0, 0) == 2


def test_from_buffer_rejects_partial_values():
    with pytest.raises(InvalidGeometry):
        VoxelGrid.from_buffer(b"\x00\x01\x02", (1, 1, 1), dtype="int16")


def test_from_array_keeps_xyz_indexing():
    volume = np.arange(24).reshape(4, 3, 2)
    grid = VoxelGrid.from_array(volume)
    assert grid.dims == (4, 3, 2)
    for x, y, z in [(0, 0, 0), (3, 1, 1), (2, 2, 0), (1, 0, 1)]:
        assert grid.get(x, y, z) == volume[x, y, z]


def test_affine_transform_is_accepted():
    grid = VoxelGrid(np.zeros(8), (2, 2, 2), transform=np.diag([-2.0, 2.0, 2.0, 1.0]))
    assert grid.transform == CoordinateTransform(np.diag([-1.0, 1.0, 1.0]))


# ----------------------------------------------------------------------
# Voxel access
# ----------------------------------------------------------------------

def test_get_uses_x_fastest_layout(ramp_grid):
    assert ramp_grid.get(1, 2, 1) == 1 * 12 + 2 * 4 + 1
    assert ramp_grid.reverse_access(21) == (1, 2, 1)


@pytest.mark.parametrize("ijk", [(4, 0, 0), (0, 3, 0), (0, 0, 2), (-1, 0, 0)])
def test_get_out_of_range_raises(ramp_grid, ijk):
    with pytest.raises(OutOfRangeIndex):
        ramp_grid.get(*ijk)


def test_reverse_access_out_of_range_raises(ramp_grid):
    with pytest.raises(OutOfRangeIndex):
        ramp_grid.reverse_access(24)


def test_axis_length_and_ras_dimensions(ramp_grid):
    assert [ramp_grid.axis_length(a) for a in "xyz"] == [4, 3, 2]
    assert ramp_grid.ras_dimensions == (4.0, 6.0, 6.0)


def test_spacing_follows_axis_order():
    grid = VoxelGrid(np.zeros(8), (2, 2, 2), spacing=(1.0, 2.0, 3.0), axis_order=("z", "x", "y"))
    assert grid.spacing_along("z") == 1.0
    assert grid.spacing_along("x") == 2.0
    assert grid.spacing_along("y") == 3.0


def test_map_replaces_values_and_marks_slices_dirty(ramp_grid):
    plane = ramp_grid.extract_slice_plane("z", 0)
    plane.repaint()
    ramp_grid.map(lambda values: values * 2)
    assert ramp_grid.get(3, 0, 0) == 6
    assert plane.state is SliceState.DIRTY


# ----------------------------------------------------------------------
# Display parameters
# ----------------------------------------------------------------------

@pytest.mark.parametrize(
    "setter, args",
    [
        ("set_window", (10.0, 0.0)),
        ("set_window", (math.nan, 1.0)),
        ("set_thresholds", (5.0, 1.0)),
        ("set_mix_ratio", (1.5,)),
        ("set_mix_ratio", (-0.1,)),
    ],
)
def test_invalid_display_parameters_raise(ramp_grid, setter, args):
    with pytest.raises(ValueError):
        getattr(ramp_grid, setter)(*args)


@pytest.mark.parametrize(
    "setter, args",
    [
        ("set_window", (0.0, 10.0)),
        ("set_thresholds", (1.0, 5.0)),
        ("set_mix_ratio", (0.5,)),
        ("set_color_table", (None,)),
    ],
)
def test_display_changes_mark_every_slice_dirty(ramp_grid, setter, args):
    planes = [ramp_grid.extract_slice_plane(axis, 0) for axis in "xyz"]
    for plane in planes:
        plane.repaint()
        assert plane.state is SliceState.CLEAN

    getattr(ramp_grid, setter)(*args)

    assert all(plane.state is SliceState.DIRTY for plane in planes)


def test_overlay_changes_mark_base_slices_dirty(ramp_grid):
    overlay = VoxelGrid(np.zeros(24), (4, 3, 2))
    ramp_grid.attach_overlay(overlay)
    plane = ramp_grid.extract_slice_plane("y", 1)
    plane.repaint()
    assert plane.state is SliceState.CLEAN

    overlay.set_window(0.0, 5.0)
    assert plane.state is SliceState.DIRTY


# ----------------------------------------------------------------------
# Overlays
# ----------------------------------------------------------------------

def test_grid_cannot_overlay_itself(ramp_grid):
    with pytest.raises(ValueError):
        ramp_grid.attach_overlay(ramp_grid)

    other = VoxelGrid(np.zeros(24), (4, 3, 2))
    ramp_grid.attach_overlay(other)
    with pytest.raises(ValueError):
        other.attach_overlay(ramp_grid)


def test_mismatched_overlay_is_only_warned(ramp_grid, caplog):
    small = VoxelGrid(np.zeros(8), (2, 2, 2))
    with caplog.at_level(logging.WARNING, logger="volumeslice"):
        ramp_grid.attach_overlay(small)
    assert ramp_grid.overlays == [small]
    assert any("differ" in record.message for record in caplog.records)


def test_detach_overlay(ramp_grid):
    overlay = VoxelGrid(np.zeros(24), (4, 3, 2))
    ramp_grid.attach_overlay(overlay)
    ramp_grid.detach_overlay(overlay)
    ramp_grid.detach_overlay(overlay)
    assert ramp_grid.overlays == []

    # A detached overlay no longer affects its former owner
    generation = ramp_grid.generation
    overlay.set_window(0.0, 1.0)
    assert ramp_grid.generation == generation


def test_generation_only_grows(ramp_grid):
    first = VoxelGrid(np.zeros(24), (4, 3, 2))
    second = VoxelGrid(np.zeros(24), (4, 3, 2))
    for _ in range(5):
        first.set_mix_ratio(0.5)

    seen = [ramp_grid.generation]
    for step in (
        lambda: ramp_grid.attach_overlay(first),
        lambda: first.set_window(0.0, 2.0),
        lambda: ramp_grid.detach_overlay(first),
        lambda: ramp_grid.attach_overlay(second),
        lambda: second.set_thresholds(0.0, 1.0),
    ):
        step()
        assert ramp_grid.generation > seen[-1]
        seen.append(ramp_grid.generation)


# ----------------------------------------------------------------------
# Slice extraction
# ----------------------------------------------------------------------

def test_extract_registers_slice(ramp_grid):
    plane = ramp_grid.extract_slice_plane("z", 1)
    assert ramp_grid.slices == [plane]
    assert plane.geometry.index == 1


@pytest.mark.parametrize("axis, index", [("z", 2), ("z", -1), ("x", 4), ("y", 3), ("y", 1.5)])
def test_extract_out_of_range_raises(ramp_grid, axis, index):
    with pytest.raises(OutOfRangeIndex):
        ramp_grid.extract_slice_plane(axis, index)


def test_registry_does_not_keep_slices_alive(ramp_grid):
    ramp_grid.extract_slice_plane("z", 0)
    gc.collect()
    assert ramp_grid.slices == []


def test_z_geometry(ramp_grid):
    geometry = ramp_grid.plane_geometry("z", 1)
    assert (geometry.i_length, geometry.j_length) == (4, 3)
    assert (geometry.plane_width, geometry.plane_height) == (4.0, 6.0)
    # j runs towards -y, so rows are read from the top of the grid
    assert geometry.reverse == (False, True, False)
    assert geometry.access(0, 0) == 1 * 12 + 2 * 4 + 0
    assert geometry.access(3, 2) == 1 * 12 + 0 * 4 + 3
    np.testing.assert_array_equal(geometry.matrix[:3, :3], np.eye(3))
    # spacing 3, extent 6: slices at -1.5 and +1.5
    np.testing.assert_allclose(geometry.matrix[:3, 3], [0.0, 0.0, 1.5])


def test_x_geometry(ramp_grid):
    geometry = ramp_grid.plane_geometry("x", 3)
    assert (geometry.i_length, geometry.j_length) == (2, 3)
    assert (geometry.plane_width, geometry.plane_height) == (6.0, 6.0)
    assert geometry.reverse == (False, True, True)
    # x = index, y = ny-1-j, z = nz-1-i
    assert geometry.access(0, 0) == 1 * 12 + 2 * 4 + 3
    assert geometry.access(1, 2) == 0 * 12 + 0 * 4 + 3
    np.testing.assert_allclose(
        geometry.matrix[:3, :3],
        [[0.0, 0.0, 1.0], [0.0, 1.0, 0.0], [-1.0, 0.0, 0.0]],
    )
    np.testing.assert_allclose(geometry.matrix[:3, 3], [1.5, 0.0, 0.0])


def test_y_geometry(ramp_grid):
    geometry = ramp_grid.plane_geometry("y", 0)
    assert (geometry.i_length, geometry.j_length) == (4, 2)
    assert (geometry.plane_width, geometry.plane_height) == (4.0, 6.0)
    assert geometry.reverse == (False, False, False)
    assert geometry.access(1, 1) == 1 * 12 + 0 * 4 + 1
    np.testing.assert_allclose(
        geometry.matrix[:3, :3],
        [[1.0, 0.0, 0.0], [0.0, 0.0, 1.0], [0.0, -1.0, 0.0]],
    )
    np.testing.assert_allclose(geometry.matrix[:3, 3], [0.0, -2.0, 0.0])


def test_middle_slice_sits_at_origin():
    grid = VoxelGrid(np.zeros(4 * 4 * 5), (4, 4, 5))
    np.testing.assert_allclose(grid.plane_geometry("z", 2).matrix[:3, 3], [0.0, 0.0, 0.0])


def test_index_map_matches_access(ramp_grid):
    geometry = ramp_grid.plane_geometry("x", 1)
    index_map = geometry.index_map()
    assert index_map.shape == (geometry.j_length, geometry.i_length)
    for j in range(geometry.j_length):
        for i in range(geometry.i_length):
            assert index_map[j, i] == geometry.access(i, j)


def test_flipped_grid_places_quad_with_its_orientation():
    grid = VoxelGrid(np.zeros(24), (4, 3, 2), transform=np.diag([-1.0, 1.0, 1.0]))
    geometry = grid.plane_geometry("z", 0)
    assert geometry.reverse == (False, True, False)
    np.testing.assert_array_equal(geometry.matrix[:3, :3], np.diag([-1.0, 1.0, 1.0]))


def test_overlay_geometry_compensates_owner_orientation():
    owner = CoordinateTransform()
    overlay = VoxelGrid(np.zeros(24), (4, 3, 2), transform=np.diag([-1.0, 1.0, 1.0]))
    geometry = overlay.plane_geometry("z", 0, owner=owner)
    assert geometry.reverse == (True, True, False)
    assert geometry.access(0, 0) == 0 * 12 + 2 * 4 + 3


# ----------------------------------------------------------------------
# Disposal
# ----------------------------------------------------------------------

def test_dispose_is_idempotent_and_releases_slices(ramp_grid):
    plane = ramp_grid.extract_slice_plane("z", 0)
    ramp_grid.dispose()
    ramp_grid.dispose()

    assert ramp_grid.disposed
    assert ramp_grid.slices == []
    assert ramp_grid.data.size == 0
    with pytest.raises(RuntimeError):
        plane.repaint()
    with pytest.raises(RuntimeError):
        ramp_grid.extract_slice_plane("z", 0)
